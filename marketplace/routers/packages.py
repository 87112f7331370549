from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from shared.utils import SuccessResponse, PageResponse

from marketplace.container import Services
from marketplace.dependencies import get_services, get_optional_user, require_admin, is_admin
from marketplace.schemas import PackageCreate, PackageUpdate, PackageResponse, PackagesAndDiscounts

router = APIRouter(prefix="/api/packages", tags=["packages"])


@router.get("", response_model=SuccessResponse[PageResponse[PackageResponse]])
async def list_packages(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    is_active: Optional[bool] = None,
    search: Optional[str] = None,
    sort_by: str = Query("created_at", pattern="^(created_at|discount_percentage|package_price)$"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    user: Optional[dict] = Depends(get_optional_user),
    services: Services = Depends(get_services)
):
    # Only admins can list inactive packages
    if not is_admin(user):
        is_active = True
    result = await services.packages.list_packages(page, limit, search, is_active, sort_by, sort_order)
    return SuccessResponse(data=result)


@router.get("/combined/list", response_model=SuccessResponse[PackagesAndDiscounts])
async def packages_and_discounts(limit_packages: int = Query(12, ge=1, le=100),
                                 limit_products: int = Query(12, ge=1, le=100),
                                 services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.packages.packages_and_discounts(limit_packages, limit_products))


@router.get("/{package_id}", response_model=SuccessResponse[PackageResponse])
async def get_package(package_id: str, user: Optional[dict] = Depends(get_optional_user),
                      services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.packages.get_package(package_id, include_inactive=is_admin(user)))


@router.post("", response_model=SuccessResponse[PackageResponse], status_code=status.HTTP_201_CREATED)
async def create_package(body: PackageCreate, admin: dict = Depends(require_admin),
                         services: Services = Depends(get_services)):
    created = await services.packages.create_package(body)
    return SuccessResponse(data=created, message="Package created")


@router.put("/{package_id}", response_model=SuccessResponse[PackageResponse])
async def update_package(package_id: str, body: PackageUpdate, admin: dict = Depends(require_admin),
                         services: Services = Depends(get_services)):
    updated = await services.packages.update_package(package_id, body)
    return SuccessResponse(data=updated, message="Package updated")


@router.delete("/{package_id}", response_model=SuccessResponse[dict])
async def delete_package(package_id: str, admin: dict = Depends(require_admin),
                         services: Services = Depends(get_services)):
    await services.packages.delete_package(package_id)
    return SuccessResponse(message="Package deleted")
