from typing import List, Optional

from fastapi import APIRouter, Depends, status

from shared.utils import SuccessResponse

from marketplace.container import Services
from marketplace.dependencies import get_services, get_optional_user, require_admin, is_admin
from marketplace.schemas import CategoryCreate, CategoryUpdate, CategoryResponse

router = APIRouter(prefix="/api/categories", tags=["categories"])


@router.get("", response_model=SuccessResponse[List[CategoryResponse]])
async def list_categories(include_inactive: bool = False, user: Optional[dict] = Depends(get_optional_user),
                          services: Services = Depends(get_services)):
    categories = await services.catalog.list_categories(include_inactive and is_admin(user))
    return SuccessResponse(data=categories)


@router.get("/{category_id}", response_model=SuccessResponse[CategoryResponse])
async def get_category(category_id: str, services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.catalog.get_category(category_id))


@router.post("", response_model=SuccessResponse[CategoryResponse], status_code=status.HTTP_201_CREATED)
async def create_category(category: CategoryCreate, admin: dict = Depends(require_admin),
                          services: Services = Depends(get_services)):
    created = await services.catalog.create_category(category)
    return SuccessResponse(data=created, message="Category created successfully")


@router.put("/{category_id}", response_model=SuccessResponse[CategoryResponse])
async def update_category(category_id: str, category: CategoryUpdate, admin: dict = Depends(require_admin),
                          services: Services = Depends(get_services)):
    updated = await services.catalog.update_category(category_id, category)
    return SuccessResponse(data=updated, message="Category updated successfully")


@router.delete("/{category_id}", response_model=SuccessResponse[dict])
async def delete_category(category_id: str, admin: dict = Depends(require_admin),
                          services: Services = Depends(get_services)):
    await services.catalog.delete_category(category_id)
    return SuccessResponse(message="Category deleted successfully")
