from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from shared.utils import SuccessResponse, PageResponse
from shared.security_config import limiter

from marketplace.container import Services
from marketplace.dependencies import get_services, get_current_user, require_admin, is_admin
from marketplace.schemas import (
    OrderCreate, OrderResponse, OrderStatusUpdate, TrackingUpdate, OrderCancel,
    ORDER_STATUS_PATTERN, PAYMENT_STATUS_PATTERN
)

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("", response_model=SuccessResponse[OrderResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
async def create_order(order: OrderCreate, request: Request, user: dict = Depends(get_current_user),
                       services: Services = Depends(get_services)):
    created = await services.orders.create_order(user["sub"], order)
    request.app.state.metrics.increment("orders.created")
    return SuccessResponse(data=created, message="Order placed successfully")


@router.get("", response_model=SuccessResponse[PageResponse[OrderResponse]])
async def my_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = Query(None, pattern=ORDER_STATUS_PATTERN),
    user: dict = Depends(get_current_user),
    services: Services = Depends(get_services)
):
    return SuccessResponse(data=await services.orders.list_user_orders(user["sub"], page, limit, status))


@router.get("/all", response_model=SuccessResponse[PageResponse[OrderResponse]])
async def all_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = Query(None, pattern=ORDER_STATUS_PATTERN),
    payment_status: Optional[str] = Query(None, pattern=PAYMENT_STATUS_PATTERN),
    search: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    sort_by: str = Query("created_at", pattern="^(created_at|total|status|order_number)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services)
):
    result = await services.orders.list_orders(
        page=page, limit=limit, status=status, payment_status=payment_status, search=search,
        start_date=start_date, end_date=end_date, sort_by=sort_by, sort_order=sort_order
    )
    return SuccessResponse(data=result)


@router.get("/stats", response_model=SuccessResponse[dict])
async def order_stats(start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
                      admin: dict = Depends(require_admin), services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.orders.order_stats(start_date, end_date))


@router.get("/{order_id}", response_model=SuccessResponse[OrderResponse])
async def get_order(order_id: str, user: dict = Depends(get_current_user),
                    services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.orders.get_order(order_id, user["sub"], is_admin(user)))


@router.post("/{order_id}/cancel", response_model=SuccessResponse[OrderResponse])
async def cancel_order(order_id: str, request: Request, body: Optional[OrderCancel] = None,
                       user: dict = Depends(get_current_user), services: Services = Depends(get_services)):
    reason = body.reason if body else None
    order = await services.orders.cancel_order(order_id, user["sub"], is_admin(user), reason)
    request.app.state.metrics.increment("orders.cancelled")
    return SuccessResponse(data=order, message="Order cancelled")


@router.put("/{order_id}/status", response_model=SuccessResponse[OrderResponse])
async def update_order_status(order_id: str, body: OrderStatusUpdate, admin: dict = Depends(require_admin),
                              services: Services = Depends(get_services)):
    order = await services.orders.update_status(order_id, body, admin["sub"])
    return SuccessResponse(data=order, message="Order updated")


@router.put("/{order_id}/tracking", response_model=SuccessResponse[OrderResponse])
async def add_tracking(order_id: str, body: TrackingUpdate, admin: dict = Depends(require_admin),
                       services: Services = Depends(get_services)):
    order = await services.orders.add_tracking(order_id, body)
    return SuccessResponse(data=order, message="Tracking information added")
