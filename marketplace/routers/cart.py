from fastapi import APIRouter, Depends

from shared.utils import SuccessResponse, BusinessRuleException

from marketplace.container import Services
from marketplace.dependencies import get_services, get_current_user
from marketplace.schemas import (
    CartItemAdd, CartItemUpdate, CouponApply, GuestCartMerge, CartResponse, CartSummary
)

router = APIRouter(prefix="/api/cart", tags=["cart"])


def _snapshot(product: dict) -> dict:
    images = product.get("images") or []
    return {
        "price": product["price"],
        "name": product["name"],
        "image": images[0]["url"] if images else "",
    }


@router.get("", response_model=SuccessResponse[CartResponse])
async def get_cart(user: dict = Depends(get_current_user), services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.carts.get_or_create_cart(user["sub"]))


@router.get("/summary", response_model=SuccessResponse[CartSummary])
async def cart_summary(user: dict = Depends(get_current_user), services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.carts.get_summary(user["sub"]))


@router.post("/items", response_model=SuccessResponse[CartResponse])
async def add_item(item: CartItemAdd, user: dict = Depends(get_current_user),
                   services: Services = Depends(get_services)):
    product = await services.catalog.get_product(item.product_id)
    if (product.get("stock") or 0) < item.quantity:
        raise BusinessRuleException("Insufficient stock")
    cart = await services.carts.add_item(user["sub"], item.product_id, item.quantity, _snapshot(product))
    return SuccessResponse(data=cart, message="Item added to cart")


@router.put("/items/{product_id}", response_model=SuccessResponse[CartResponse])
async def update_item(product_id: str, item: CartItemUpdate, user: dict = Depends(get_current_user),
                      services: Services = Depends(get_services)):
    if item.quantity > 0:
        product = await services.catalog.get_product(product_id)
        if (product.get("stock") or 0) < item.quantity:
            raise BusinessRuleException("Insufficient stock")
    cart = await services.carts.update_item(user["sub"], product_id, item.quantity)
    return SuccessResponse(data=cart, message="Cart updated")


@router.delete("/items/{product_id}", response_model=SuccessResponse[CartResponse])
async def remove_item(product_id: str, user: dict = Depends(get_current_user),
                      services: Services = Depends(get_services)):
    cart = await services.carts.remove_item(user["sub"], product_id)
    return SuccessResponse(data=cart, message="Item removed from cart")


@router.delete("/clear", response_model=SuccessResponse[CartResponse])
async def clear_cart(user: dict = Depends(get_current_user), services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.carts.clear(user["sub"]), message="Cart cleared")


@router.post("/coupon", response_model=SuccessResponse[CartResponse])
async def apply_coupon(body: CouponApply, user: dict = Depends(get_current_user),
                       services: Services = Depends(get_services)):
    cart = await services.carts.apply_coupon(user["sub"], body.code)
    return SuccessResponse(data=cart, message="Coupon applied")


@router.delete("/coupon", response_model=SuccessResponse[CartResponse])
async def remove_coupon(user: dict = Depends(get_current_user), services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.carts.remove_coupon(user["sub"]), message="Coupon removed")


@router.post("/merge", response_model=SuccessResponse[CartResponse])
async def merge_guest_cart(body: GuestCartMerge, user: dict = Depends(get_current_user),
                           services: Services = Depends(get_services)):
    cart = await services.carts.merge_guest_cart(user["sub"], [i.dict() for i in body.items])
    return SuccessResponse(data=cart, message="Guest cart merged")
