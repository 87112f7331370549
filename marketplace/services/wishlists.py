from shared.utils import NotFoundException, BusinessRuleException

from marketplace.models import WishlistDB, WishlistItemDB
from marketplace.services.carts import CartService
from marketplace.services.catalog import CatalogService
from marketplace.store import Datastore, DuplicateError


class WishlistService:
    def __init__(self, db: Datastore, catalog: CatalogService, carts: CartService):
        self.wishlists = db.collection("wishlists")
        self.catalog = catalog
        self.carts = carts

    async def create_indexes(self):
        await self.wishlists.create_index("user_id", unique=True)

    async def get_or_create(self, user_id: str) -> dict:
        wishlist = await self.wishlists.find_one_by("user_id", user_id)
        if wishlist:
            return wishlist
        try:
            return await self.wishlists.create(WishlistDB(user_id=user_id).dict(exclude={"id"}))
        except DuplicateError:
            return await self.wishlists.find_one_by("user_id", user_id)

    async def add(self, user_id: str, product_id: str) -> dict:
        product = await self.catalog.get_product(product_id)
        wishlist = await self.get_or_create(user_id)
        images = product.get("images") or []

        def apply(doc):
            items = doc.get("items") or []
            if any(i["product_id"] == product_id for i in items):
                raise BusinessRuleException("Product already in wishlist")
            item = WishlistItemDB(
                product_id=product_id,
                name=product["name"],
                price=product["price"],
                image=images[0]["url"] if images else ""
            )
            return {"items": items + [item.dict()]}

        return await self.wishlists.mutate(wishlist["id"], apply)

    async def remove(self, user_id: str, product_id: str) -> dict:
        wishlist = await self.get_or_create(user_id)

        def apply(doc):
            items = doc.get("items") or []
            kept = [i for i in items if i["product_id"] != product_id]
            if len(kept) == len(items):
                raise NotFoundException("Item not found in wishlist")
            return {"items": kept}

        return await self.wishlists.mutate(wishlist["id"], apply)

    async def clear(self, user_id: str) -> dict:
        wishlist = await self.get_or_create(user_id)
        return await self.wishlists.update(wishlist["id"], {"items": []})

    async def contains(self, user_id: str, product_id: str) -> bool:
        wishlist = await self.wishlists.find_one_by("user_id", user_id)
        return bool(wishlist) and any(i["product_id"] == product_id for i in wishlist.get("items") or [])

    async def move_to_cart(self, user_id: str, product_id: str, quantity: int = 1) -> dict:
        wishlist = await self.get_or_create(user_id)
        if not any(i["product_id"] == product_id for i in wishlist.get("items") or []):
            raise NotFoundException("Item not found in wishlist")
        product = await self.catalog.get_product(product_id)
        if (product.get("stock") or 0) < quantity:
            raise BusinessRuleException(f"Insufficient stock for '{product['name']}'")
        images = product.get("images") or []
        cart = await self.carts.add_item(user_id, product_id, quantity, {
            "price": product["price"],
            "name": product["name"],
            "image": images[0]["url"] if images else "",
        })
        await self.remove(user_id, product_id)
        return cart
