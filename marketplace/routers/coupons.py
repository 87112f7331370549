from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from shared.utils import SuccessResponse, PageResponse
from shared.security_config import limiter

from marketplace.container import Services
from marketplace.dependencies import get_services, get_current_user, require_admin
from marketplace.schemas import (
    CouponCreate, CouponUpdate, CouponResponse, CouponValidateRequest, CouponValidationResponse,
    BulkOperation
)

router = APIRouter(prefix="/api/coupons", tags=["coupons"])


@router.get("/active", response_model=SuccessResponse[List[CouponResponse]])
async def active_coupons(services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.coupons.active_coupons())


@router.post("/validate", response_model=SuccessResponse[CouponValidationResponse])
@limiter.limit("30/minute")
async def validate_coupon(body: CouponValidateRequest, request: Request, user: dict = Depends(get_current_user),
                          services: Services = Depends(get_services)):
    result = await services.coupons.validate(body.code, user["sub"], body.order_amount)
    coupon = result.get("coupon") or {}
    return SuccessResponse(data=CouponValidationResponse(
        valid=result["valid"],
        message=result["message"],
        code=coupon.get("code"),
        discount_type=coupon.get("discount_type"),
        discount_amount=result.get("discount_amount", 0.0)
    ))


@router.get("/stats", response_model=SuccessResponse[dict])
async def coupon_stats(admin: dict = Depends(require_admin), services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.coupons.coupon_stats())


@router.post("/bulk", response_model=SuccessResponse[dict])
async def bulk_operation(body: BulkOperation, admin: dict = Depends(require_admin),
                         services: Services = Depends(get_services)):
    result = await services.coupons.bulk_operation(body.operation, body.ids)
    return SuccessResponse(data=result, message=f"Bulk {body.operation} completed")


@router.get("", response_model=SuccessResponse[PageResponse[CouponResponse]])
async def list_coupons(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    admin: dict = Depends(require_admin),
    services: Services = Depends(get_services)
):
    return SuccessResponse(data=await services.coupons.list_coupons(page, limit, is_active, search))


@router.post("", response_model=SuccessResponse[CouponResponse], status_code=status.HTTP_201_CREATED)
async def create_coupon(coupon: CouponCreate, admin: dict = Depends(require_admin),
                        services: Services = Depends(get_services)):
    created = await services.coupons.create_coupon(coupon, admin["sub"])
    return SuccessResponse(data=created, message="Coupon created successfully")


@router.get("/{coupon_id}", response_model=SuccessResponse[CouponResponse])
async def get_coupon(coupon_id: str, admin: dict = Depends(require_admin),
                     services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.coupons.get_coupon(coupon_id))


@router.put("/{coupon_id}", response_model=SuccessResponse[CouponResponse])
async def update_coupon(coupon_id: str, coupon: CouponUpdate, admin: dict = Depends(require_admin),
                        services: Services = Depends(get_services)):
    updated = await services.coupons.update_coupon(coupon_id, coupon)
    return SuccessResponse(data=updated, message="Coupon updated successfully")


@router.delete("/{coupon_id}", response_model=SuccessResponse[dict])
async def delete_coupon(coupon_id: str, admin: dict = Depends(require_admin),
                        services: Services = Depends(get_services)):
    await services.coupons.delete_coupon(coupon_id)
    return SuccessResponse(message="Coupon deleted successfully")
