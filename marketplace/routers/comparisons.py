from typing import List

from fastapi import APIRouter, Depends, status

from shared.utils import SuccessResponse

from marketplace.container import Services
from marketplace.dependencies import get_services, get_current_user
from marketplace.schemas import ComparisonCreate, ComparisonProductAdd, ComparisonResponse

router = APIRouter(prefix="/api/comparisons", tags=["comparisons"])


@router.post("", response_model=SuccessResponse[ComparisonResponse], status_code=status.HTTP_201_CREATED)
async def create_comparison(body: ComparisonCreate, user: dict = Depends(get_current_user),
                            services: Services = Depends(get_services)):
    created = await services.comparisons.create(user["sub"], body.product_ids, body.title)
    return SuccessResponse(data=created, message="Comparison created")


@router.get("", response_model=SuccessResponse[List[ComparisonResponse]])
async def my_comparisons(user: dict = Depends(get_current_user), services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.comparisons.list_for_user(user["sub"]))


@router.get("/{comparison_id}", response_model=SuccessResponse[ComparisonResponse])
async def get_comparison(comparison_id: str, user: dict = Depends(get_current_user),
                         services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.comparisons.get_with_products(comparison_id, user["sub"]))


@router.post("/{comparison_id}/products", response_model=SuccessResponse[ComparisonResponse])
async def add_product(comparison_id: str, body: ComparisonProductAdd, user: dict = Depends(get_current_user),
                      services: Services = Depends(get_services)):
    comparison = await services.comparisons.add_product(comparison_id, user["sub"], body.product_id)
    return SuccessResponse(data=comparison, message="Product added to comparison")


@router.delete("/{comparison_id}/products/{product_id}", response_model=SuccessResponse[ComparisonResponse])
async def remove_product(comparison_id: str, product_id: str, user: dict = Depends(get_current_user),
                         services: Services = Depends(get_services)):
    comparison = await services.comparisons.remove_product(comparison_id, user["sub"], product_id)
    return SuccessResponse(data=comparison, message="Product removed from comparison")


@router.delete("/{comparison_id}", response_model=SuccessResponse[dict])
async def delete_comparison(comparison_id: str, user: dict = Depends(get_current_user),
                            services: Services = Depends(get_services)):
    await services.comparisons.delete(comparison_id, user["sub"])
    return SuccessResponse(message="Comparison deleted")
