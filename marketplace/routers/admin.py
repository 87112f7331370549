from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from shared.utils import SuccessResponse, PageResponse

from marketplace.container import Services
from marketplace.dependencies import get_services, require_admin
from marketplace.schemas import UserResponse, UserStatusUpdate, ProductResponse

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/dashboard", response_model=SuccessResponse[dict])
async def dashboard(admin: dict = Depends(require_admin), services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.admin.dashboard())


@router.get("/analytics", response_model=SuccessResponse[dict])
async def analytics(period: str = "30d", admin: dict = Depends(require_admin),
                    services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.admin.analytics(period))


@router.get("/users", response_model=SuccessResponse[PageResponse[UserResponse]])
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[str] = Query(None, pattern="^(user|vendor|admin)$"),
    search: Optional[str] = None,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services)
):
    return SuccessResponse(data=await services.users.list_users(page, limit, role, search))


@router.get("/users/{user_id}", response_model=SuccessResponse[UserResponse])
async def get_user(user_id: str, admin: dict = Depends(require_admin), services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.users.get_user(user_id))


@router.patch("/users/{user_id}", response_model=SuccessResponse[UserResponse])
async def update_user(user_id: str, body: UserStatusUpdate, admin: dict = Depends(require_admin),
                      services: Services = Depends(get_services)):
    user = await services.users.set_status(user_id, body.is_active, body.role)
    return SuccessResponse(data=user, message="User updated")


@router.get("/low-stock", response_model=SuccessResponse[List[ProductResponse]])
async def low_stock(threshold: Optional[int] = Query(None, ge=0), admin: dict = Depends(require_admin),
                    services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.catalog.low_stock(threshold))


@router.post("/gift-cards/expire", response_model=SuccessResponse[dict])
async def expire_gift_cards(admin: dict = Depends(require_admin), services: Services = Depends(get_services)):
    expired = await services.gift_cards.expire_overdue()
    return SuccessResponse(data={"expired": expired}, message=f"{expired} gift cards expired")


@router.get("/metrics", response_model=SuccessResponse[dict])
async def metrics(request: Request, admin: dict = Depends(require_admin),
                  services: Services = Depends(get_services)):
    snapshot = request.app.state.metrics.snapshot()
    snapshot["websocket_subscribers"] = services.hub.subscriber_count
    snapshot["listing_cache_entries"] = len(services.cache)
    return SuccessResponse(data=snapshot)
