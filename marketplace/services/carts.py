"""
Cart aggregate: one cart per user, mutated only through versioned writes.

Every mutation goes through ``_mutate`` which reapplies ``recompute_totals``
to the new item list, so the pricing fields can never drift from the items.
"""
import logging
from typing import Callable, Iterable, List, Optional

from shared.utils import settings, Settings, NotFoundException, BusinessRuleException

from marketplace.models import CartDB, CartItemDB
from marketplace.pricing import compute_totals
from marketplace.services.coupons import CouponService
from marketplace.store import Datastore, DuplicateError

logger = logging.getLogger("marketplace.carts")


def recompute_totals(cart: dict, config: Settings = settings) -> dict:
    """Return the pricing patch for ``cart`` as it currently stands."""
    items = cart.get("items") or []
    totals = compute_totals(items, cart.get("coupon_discount") or 0, config)
    totals["items"] = items
    return totals


class CartService:
    def __init__(self, db: Datastore, coupons: CouponService, config: Settings = settings):
        self.carts = db.collection("carts")
        self.coupons = coupons
        self.config = config

    async def create_indexes(self):
        await self.carts.create_index("user_id", unique=True)

    async def get_or_create_cart(self, user_id: str) -> dict:
        cart = await self.carts.find_one_by("user_id", user_id)
        if cart:
            return cart
        fresh = CartDB(user_id=user_id).dict(exclude={"id"})
        try:
            return await self.carts.create(fresh)
        except DuplicateError:
            # Another request created it first
            return await self.carts.find_one_by("user_id", user_id)

    async def _mutate(self, user_id: str, change: Callable[[dict], Optional[dict]]) -> dict:
        """
        ``change`` edits the private cart copy in place (items, coupon fields)
        and may raise to abort. Returning False skips the write.
        """
        cart = await self.get_or_create_cart(user_id)

        def apply(doc):
            if change(doc) is False:
                return {}
            patch = recompute_totals(doc, self.config)
            patch["coupon_code"] = doc.get("coupon_code")
            patch["coupon_discount"] = doc.get("coupon_discount") or 0.0
            return patch

        return await self.carts.mutate(cart["id"], apply, not_found="Cart not found")

    async def add_item(self, user_id: str, product_id: str, quantity: int, snapshot: dict) -> dict:
        if quantity <= 0:
            raise BusinessRuleException("Quantity must be positive")

        def change(cart):
            for item in cart["items"]:
                if item["product_id"] == product_id:
                    item["quantity"] += quantity
                    return
            line = CartItemDB(
                product_id=product_id,
                quantity=quantity,
                price=snapshot["price"],
                name=snapshot.get("name") or "",
                image=snapshot.get("image") or ""
            )
            cart["items"].append(line.dict())

        return await self._mutate(user_id, change)

    async def update_item(self, user_id: str, product_id: str, quantity: int) -> dict:
        def change(cart):
            for index, item in enumerate(cart["items"]):
                if item["product_id"] == product_id:
                    if quantity <= 0:
                        del cart["items"][index]
                    else:
                        item["quantity"] = quantity
                    return
            raise NotFoundException("Item not found in cart")

        return await self._mutate(user_id, change)

    async def remove_item(self, user_id: str, product_id: str) -> dict:
        def change(cart):
            cart["items"] = [i for i in cart["items"] if i["product_id"] != product_id]

        return await self._mutate(user_id, change)

    async def clear(self, user_id: str) -> dict:
        def change(cart):
            cart["items"] = []
            cart["coupon_code"] = None
            cart["coupon_discount"] = 0.0

        return await self._mutate(user_id, change)

    async def apply_coupon(self, user_id: str, code: str) -> dict:
        cart = await self.get_or_create_cart(user_id)
        result = await self.coupons.validate(code, user_id, cart.get("subtotal") or 0)
        if not result["valid"]:
            raise BusinessRuleException(result["message"])
        coupon = result["coupon"]
        subtotal_seen = cart.get("subtotal")

        def change(doc):
            # Items changed since validation: the discount was computed on a stale subtotal
            if doc.get("subtotal") != subtotal_seen:
                raise BusinessRuleException("Cart changed while applying coupon, please retry")
            doc["coupon_code"] = coupon["code"]
            doc["coupon_discount"] = result["discount_amount"]

        updated = await self._mutate(user_id, change)
        logger.info(f"Coupon {coupon['code']} applied to cart", extra={"user_id": user_id})
        return updated

    async def remove_coupon(self, user_id: str) -> dict:
        def change(cart):
            cart["coupon_code"] = None
            cart["coupon_discount"] = 0.0

        return await self._mutate(user_id, change)

    async def merge_guest_cart(self, user_id: str, guest_items: Iterable[dict]) -> dict:
        incoming: List[dict] = [dict(i) for i in guest_items if (i.get("quantity") or 0) > 0]

        def change(cart):
            if not incoming:
                return False
            by_product = {item["product_id"]: item for item in cart["items"]}
            for guest in incoming:
                existing = by_product.get(guest["product_id"])
                if existing:
                    existing["quantity"] += guest["quantity"]
                    continue
                line = CartItemDB(
                    product_id=guest["product_id"],
                    quantity=guest["quantity"],
                    price=guest.get("price") or 0,
                    name=guest.get("name") or "",
                    image=guest.get("image") or ""
                ).dict()
                cart["items"].append(line)
                by_product[line["product_id"]] = line

        return await self._mutate(user_id, change)

    async def get_summary(self, user_id: str) -> dict:
        cart = await self.get_or_create_cart(user_id)
        items = cart.get("items") or []
        return {
            "total_items": sum(i.get("quantity") or 0 for i in items),
            "item_count": len(items),
            "has_items": bool(items),
            "subtotal": cart.get("subtotal", 0.0),
            "tax": cart.get("tax", 0.0),
            "shipping": cart.get("shipping", 0.0),
            "discount": cart.get("discount", 0.0),
            "total": cart.get("total", 0.0),
            "coupon_code": cart.get("coupon_code"),
        }

    async def recompute(self, user_id: str) -> dict:
        return await self._mutate(user_id, lambda cart: None)
