from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from shared.utils import SuccessResponse, PageResponse, BusinessRuleException, ForbiddenException

from marketplace.container import Services
from marketplace.dependencies import (
    get_services, get_optional_user, require_admin, require_vendor_or_admin, is_admin
)
from marketplace.schemas import VendorCreate, VendorUpdate, VendorResponse, ProductResponse

router = APIRouter(prefix="/api/vendors", tags=["vendors"])


@router.get("", response_model=SuccessResponse[PageResponse[VendorResponse]])
async def list_vendors(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = None,
    include_inactive: bool = False,
    user: Optional[dict] = Depends(get_optional_user),
    services: Services = Depends(get_services)
):
    result = await services.vendors.list_vendors(page, limit, search, include_inactive and is_admin(user))
    return SuccessResponse(data=result)


@router.get("/me", response_model=SuccessResponse[VendorResponse])
async def my_vendor(user: dict = Depends(require_vendor_or_admin), services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.vendors.require_vendor_for_user(user["sub"]))


@router.get("/{vendor_id}", response_model=SuccessResponse[VendorResponse])
async def get_vendor(vendor_id: str, services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.vendors.get_vendor(vendor_id))


@router.get("/{vendor_id}/products", response_model=SuccessResponse[List[ProductResponse]])
async def vendor_products(vendor_id: str, services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.vendors.vendor_products(vendor_id))


@router.post("", response_model=SuccessResponse[VendorResponse], status_code=status.HTTP_201_CREATED)
async def create_vendor(vendor: VendorCreate, user: dict = Depends(require_vendor_or_admin),
                        services: Services = Depends(get_services)):
    if not is_admin(user):
        # Vendors register their own storefront, one per account
        if await services.vendors.get_vendor_for_user(user["sub"]):
            raise BusinessRuleException("This account already has a vendor profile")
        vendor.user_id = user["sub"]
    created = await services.vendors.create_vendor(vendor)
    return SuccessResponse(data=created, message="Vendor created successfully")


@router.put("/{vendor_id}", response_model=SuccessResponse[VendorResponse])
async def update_vendor(vendor_id: str, vendor: VendorUpdate, user: dict = Depends(require_vendor_or_admin),
                        services: Services = Depends(get_services)):
    if not is_admin(user):
        existing = await services.vendors.get_vendor(vendor_id)
        if existing.get("user_id") != user["sub"]:
            raise ForbiddenException("Not authorized to modify this vendor")
        # Ownership and activation stay with admins
        vendor.user_id = None
        vendor.is_active = None
    updated = await services.vendors.update_vendor(vendor_id, vendor)
    return SuccessResponse(data=updated, message="Vendor updated successfully")


@router.delete("/{vendor_id}", response_model=SuccessResponse[dict])
async def delete_vendor(vendor_id: str, admin: dict = Depends(require_admin),
                        services: Services = Depends(get_services)):
    await services.vendors.delete_vendor(vendor_id)
    return SuccessResponse(message="Vendor deleted successfully")
