import base64
import binascii
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, status

from shared.utils import SuccessResponse, PageResponse, ValidationException
from shared.security_config import limiter

from marketplace.container import Services
from marketplace.dependencies import (
    get_services, get_optional_user, require_admin, require_vendor_or_admin,
    acting_vendor_id, is_admin
)
from marketplace.schemas import (
    ProductCreate, ProductUpdate, ProductResponse, ProductImageUpload, StockUpdate
)
from marketplace.services.catalog import SORT_FIELDS

router = APIRouter(prefix="/api/products", tags=["products"])


@router.get("", response_model=SuccessResponse[PageResponse[ProductResponse]])
@limiter.limit("60/minute")
async def list_products(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category: Optional[str] = None,
    vendor: Optional[str] = None,
    min_price: Optional[float] = Query(None, ge=0),
    max_price: Optional[float] = Query(None, ge=0),
    in_stock: Optional[bool] = None,
    featured: Optional[bool] = None,
    search: Optional[str] = None,
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    include_inactive: bool = False,
    user: Optional[dict] = Depends(get_optional_user),
    services: Services = Depends(get_services)
):
    if sort_by not in SORT_FIELDS:
        raise ValidationException(f"sort_by must be one of: {', '.join(SORT_FIELDS)}")
    result = await services.catalog.list_products(
        page=page, limit=limit, category_id=category, vendor_id=vendor,
        min_price=min_price, max_price=max_price, in_stock=in_stock, search=search,
        featured=featured, sort_by=sort_by, sort_order=sort_order,
        include_inactive=include_inactive and is_admin(user)
    )
    return SuccessResponse(data=result)


@router.get("/featured", response_model=SuccessResponse[List[ProductResponse]])
@limiter.limit("60/minute")
async def featured_products(request: Request, limit: int = Query(10, ge=1, le=50),
                            services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.catalog.featured_products(limit))


@router.get("/stats", response_model=SuccessResponse[dict])
async def product_stats(admin: dict = Depends(require_admin), services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.catalog.product_stats())


@router.get("/low-stock", response_model=SuccessResponse[List[ProductResponse]])
async def low_stock(request: Request, threshold: Optional[int] = Query(None, ge=0),
                    user: dict = Depends(require_vendor_or_admin),
                    services: Services = Depends(get_services)):
    products = await services.catalog.low_stock(threshold)
    vendor_id = await acting_vendor_id(request, user)
    if vendor_id is not None:
        products = [p for p in products if p.get("vendor_id") == vendor_id]
    return SuccessResponse(data=products)


@router.get("/{product_id}", response_model=SuccessResponse[ProductResponse])
@limiter.limit("60/minute")
async def get_product(product_id: str, request: Request, services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.catalog.get_product(product_id))


@router.get("/{product_id}/related", response_model=SuccessResponse[List[ProductResponse]])
@limiter.limit("60/minute")
async def related_products(product_id: str, request: Request, limit: int = Query(6, ge=1, le=24),
                           services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.catalog.related_products(product_id, limit))


@router.post("", response_model=SuccessResponse[ProductResponse], status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def create_product(product: ProductCreate, request: Request,
                         user: dict = Depends(require_vendor_or_admin),
                         services: Services = Depends(get_services)):
    vendor_id = await acting_vendor_id(request, user)
    created = await services.catalog.create_product(product, vendor_id)
    return SuccessResponse(data=created, message="Product created successfully")


@router.put("/{product_id}", response_model=SuccessResponse[ProductResponse])
async def update_product(product_id: str, product: ProductUpdate, request: Request,
                         user: dict = Depends(require_vendor_or_admin),
                         services: Services = Depends(get_services)):
    vendor_id = await acting_vendor_id(request, user)
    updated = await services.catalog.update_product(product_id, product, vendor_id)
    return SuccessResponse(data=updated, message="Product updated successfully")


@router.patch("/{product_id}/stock", response_model=SuccessResponse[ProductResponse])
async def update_stock(product_id: str, body: StockUpdate, request: Request,
                       user: dict = Depends(require_vendor_or_admin),
                       services: Services = Depends(get_services)):
    vendor_id = await acting_vendor_id(request, user)
    product = await services.catalog.get_product(product_id, include_inactive=True)
    services.catalog.check_owner(product, vendor_id)
    updated = await services.catalog.update_stock(product_id, body.quantity, body.operation)
    return SuccessResponse(data=updated, message="Stock updated successfully")


@router.post("/{product_id}/images", response_model=SuccessResponse[ProductResponse],
             status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
async def upload_image(product_id: str, body: ProductImageUpload, request: Request,
                       user: dict = Depends(require_vendor_or_admin),
                       services: Services = Depends(get_services)):
    vendor_id = await acting_vendor_id(request, user)
    try:
        content = base64.b64decode(body.content_base64, validate=True)
    except binascii.Error:
        raise ValidationException("Image content is not valid base64")
    updated = await services.catalog.add_image(product_id, content, body.filename, vendor_id)
    return SuccessResponse(data=updated, message="Image uploaded successfully")


@router.delete("/{product_id}", response_model=SuccessResponse[dict])
async def delete_product(product_id: str, request: Request,
                         user: dict = Depends(require_vendor_or_admin),
                         services: Services = Depends(get_services)):
    vendor_id = await acting_vendor_id(request, user)
    await services.catalog.delete_product(product_id, vendor_id)
    return SuccessResponse(message="Product deleted successfully")
