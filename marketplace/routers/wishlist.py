from fastapi import APIRouter, Depends, Query

from shared.utils import SuccessResponse

from marketplace.container import Services
from marketplace.dependencies import get_services, get_current_user
from marketplace.schemas import WishlistAdd, WishlistResponse, CartResponse

router = APIRouter(prefix="/api/wishlist", tags=["wishlist"])


@router.get("", response_model=SuccessResponse[WishlistResponse])
async def get_wishlist(user: dict = Depends(get_current_user), services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.wishlists.get_or_create(user["sub"]))


@router.post("", response_model=SuccessResponse[WishlistResponse])
async def add_to_wishlist(body: WishlistAdd, user: dict = Depends(get_current_user),
                          services: Services = Depends(get_services)):
    wishlist = await services.wishlists.add(user["sub"], body.product_id)
    return SuccessResponse(data=wishlist, message="Product added to wishlist")


@router.get("/check/{product_id}", response_model=SuccessResponse[dict])
async def check_wishlist(product_id: str, user: dict = Depends(get_current_user),
                         services: Services = Depends(get_services)):
    in_wishlist = await services.wishlists.contains(user["sub"], product_id)
    return SuccessResponse(data={"product_id": product_id, "in_wishlist": in_wishlist})


@router.post("/{product_id}/move-to-cart", response_model=SuccessResponse[CartResponse])
async def move_to_cart(product_id: str, quantity: int = Query(1, ge=1),
                       user: dict = Depends(get_current_user), services: Services = Depends(get_services)):
    cart = await services.wishlists.move_to_cart(user["sub"], product_id, quantity)
    return SuccessResponse(data=cart, message="Product moved to cart")


@router.delete("/clear", response_model=SuccessResponse[WishlistResponse])
async def clear_wishlist(user: dict = Depends(get_current_user), services: Services = Depends(get_services)):
    return SuccessResponse(data=await services.wishlists.clear(user["sub"]), message="Wishlist cleared")


@router.delete("/{product_id}", response_model=SuccessResponse[WishlistResponse])
async def remove_from_wishlist(product_id: str, user: dict = Depends(get_current_user),
                               services: Services = Depends(get_services)):
    wishlist = await services.wishlists.remove(user["sub"], product_id)
    return SuccessResponse(data=wishlist, message="Product removed from wishlist")
