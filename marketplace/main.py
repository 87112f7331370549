from datetime import datetime

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared.utils import settings, ErrorResponse, HealthResponse
from shared.logging_config import setup_logging, RequestLoggingMiddleware
from shared.metrics import MetricsRegistry
from shared.security_config import setup_rate_limiting, SecurityHeadersMiddleware

from marketplace.container import Services
from marketplace.routers import (
    admin, auth, cart, categories, comparisons, coupons, gift_cards, orders, packages, products,
    realtime, reviews, users, vendors, wishlist
)
from marketplace.store import open_datastore

VERSION = "1.0.0"

# Setup Logging
logger = setup_logging("marketplace")

app = FastAPI(title="Dental Marketplace API", version=VERSION)
app.state.metrics = MetricsRegistry(slow_request_ms=settings.SLOW_REQUEST_MS)

# Security Setup
setup_rate_limiting(app)
app.add_middleware(SecurityHeadersMiddleware)

# Middleware
app.add_middleware(RequestLoggingMiddleware, service_name="marketplace", metrics=app.state.metrics)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

for module in (auth, users, products, categories, vendors, packages, cart, orders, coupons,
               gift_cards, reviews, wishlist, comparisons, admin, realtime):
    app.include_router(module.router)


@app.on_event("startup")
async def startup_datastore():
    app.state.datastore = open_datastore(settings)
    app.state.services = Services(app.state.datastore, settings)
    await app.state.services.create_indexes()
    logger.info(f"Marketplace started with {app.state.datastore.backend} store")


@app.on_event("shutdown")
async def shutdown_datastore():
    app.state.datastore.close()


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    # Already logged with its traceback by RequestLoggingMiddleware
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error="Internal server error").dict()
    )


@app.get("/health", response_model=HealthResponse)
async def health_check():
    datastore = app.state.datastore
    db_status = "connected" if await datastore.ping() else "disconnected"

    if db_status != "connected":
        logger.error(f"Health Check Failed: DB={db_status}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Service Unhealthy: DB={db_status}"
        )

    return HealthResponse(
        service="marketplace",
        status="healthy",
        timestamp=datetime.utcnow(),
        version=VERSION,
        database=db_status,
        dependencies={
            "store": datastore.backend,
            "email": "enabled" if app.state.services.email.enabled else "disabled",
            "image_host": "enabled" if app.state.services.images.enabled else "disabled",
        }
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("marketplace.main:app", host="0.0.0.0", port=8000)
