import logging
from datetime import datetime
from typing import List, Optional

from shared.utils import (
    NotFoundException, BusinessRuleException, ValidationException, to_decimal, round_money
)

from marketplace.listing import matches_search, filter_documents, sort_documents, paginate
from marketplace.models import CouponDB, CouponUsage
from marketplace.pricing import coupon_discount, DISCOUNT_TYPES
from marketplace.store import Datastore, DuplicateError

logger = logging.getLogger("marketplace.coupons")

BULK_OPERATIONS = ("activate", "deactivate", "make_public", "make_private", "delete")


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def evaluate(coupon: Optional[dict], user_id: Optional[str], order_amount, now: Optional[datetime] = None) -> dict:
    """
    Run the eligibility checks in order and stop at the first failure:
    existence, active flag, validity window, global cap, minimum order,
    user restriction, per-user usage.
    """
    now = now or datetime.utcnow()
    if not coupon:
        return {"valid": False, "message": "Coupon not found"}
    if not coupon.get("is_active", True):
        return {"valid": False, "message": "Coupon is inactive"}
    if now < coupon["valid_from"]:
        return {"valid": False, "message": "Coupon is not yet valid"}
    if now > coupon["valid_until"]:
        return {"valid": False, "message": "Coupon has expired"}
    max_uses = coupon.get("max_uses")
    if max_uses and (coupon.get("used_count") or 0) >= max_uses:
        return {"valid": False, "message": "Coupon usage limit reached"}
    minimum = coupon.get("minimum_order_amount") or 0
    if to_decimal(order_amount) < to_decimal(minimum):
        return {"valid": False, "message": f"Minimum order amount of {minimum:.2f} required"}
    applicable_users = coupon.get("applicable_users") or []
    if applicable_users and user_id not in applicable_users:
        return {"valid": False, "message": "Coupon not applicable for this user"}
    if user_id:
        used_by_user = sum(1 for u in coupon.get("usage_history") or [] if u.get("user_id") == user_id)
        if used_by_user >= (coupon.get("max_uses_per_user") or 1):
            return {"valid": False, "message": "You have already used this coupon"}

    return {
        "valid": True,
        "message": "Coupon is valid",
        "discount_amount": float(coupon_discount(coupon, order_amount)),
        "coupon": coupon,
    }


class CouponService:
    def __init__(self, db: Datastore):
        self.coupons = db.collection("coupons")

    async def create_indexes(self):
        await self.coupons.create_index("code", unique=True)
        await self.coupons.create_index("is_active")

    async def get_by_code(self, code: str) -> Optional[dict]:
        return await self.coupons.find_one_by("code", normalize_code(code))

    async def validate(self, code: str, user_id: Optional[str], order_amount) -> dict:
        coupon = await self.get_by_code(code)
        return evaluate(coupon, user_id, order_amount)

    async def redeem(self, code: str, user_id: str, order_id: Optional[str], order_amount) -> dict:
        """
        Re-validate against the stored coupon and record the usage in the same
        versioned write, so concurrent checkouts cannot exceed the caps.
        Returns the validation result with the updated coupon.
        """
        coupon = await self.get_by_code(code)
        if not coupon:
            raise BusinessRuleException("Coupon not found")

        outcome = {}

        def apply(doc):
            result = evaluate(doc, user_id, order_amount)
            if not result["valid"]:
                raise BusinessRuleException(result["message"])
            outcome.update(result)
            discount = result["discount_amount"]
            usage = CouponUsage(user_id=user_id, order_id=order_id, discount_amount=discount)
            return {
                "used_count": (doc.get("used_count") or 0) + 1,
                "total_orders": (doc.get("total_orders") or 0) + 1,
                "total_discount_given": float(round_money(
                    to_decimal(doc.get("total_discount_given")) + to_decimal(discount)
                )),
                "usage_history": (doc.get("usage_history") or []) + [usage.dict()],
            }

        updated = await self.coupons.mutate(coupon["id"], apply, not_found="Coupon not found")
        outcome["coupon"] = updated
        logger.info(
            f"Coupon {updated['code']} redeemed by {user_id}",
            extra={"user_id": user_id, "order_id": order_id, "event": "coupon.redeemed"}
        )
        return outcome

    async def release(self, code: str, order_id: str) -> Optional[dict]:
        """Undo the redemption recorded for ``order_id``, if any."""
        coupon = await self.get_by_code(code)
        if not coupon:
            return None

        def apply(doc):
            history = doc.get("usage_history") or []
            kept = [u for u in history if u.get("order_id") != order_id]
            if len(kept) == len(history):
                return {}
            removed = [u for u in history if u.get("order_id") == order_id]
            refunded = sum(to_decimal(u.get("discount_amount")) for u in removed)
            return {
                "used_count": max(0, (doc.get("used_count") or 0) - len(removed)),
                "total_orders": max(0, (doc.get("total_orders") or 0) - len(removed)),
                "total_discount_given": float(round_money(
                    max(to_decimal(0), to_decimal(doc.get("total_discount_given")) - refunded)
                )),
                "usage_history": kept,
            }

        return await self.coupons.mutate(coupon["id"], apply, not_found="Coupon not found")

    # --- Admin ---

    async def create_coupon(self, data, created_by: Optional[str] = None) -> dict:
        if data.discount_type not in DISCOUNT_TYPES:
            raise ValidationException("Invalid discount type")
        if await self.get_by_code(data.code):
            raise BusinessRuleException("Coupon code already exists")
        coupon = CouponDB(**data.dict())
        doc = coupon.dict(exclude={"id"})
        doc["created_by"] = created_by
        try:
            return await self.coupons.create(doc)
        except DuplicateError:
            raise BusinessRuleException("Coupon code already exists")

    async def get_coupon(self, coupon_id: str) -> dict:
        coupon = await self.coupons.get_by_id(coupon_id)
        if not coupon:
            raise NotFoundException("Coupon not found")
        return coupon

    async def update_coupon(self, coupon_id: str, data) -> dict:
        coupon = await self.get_coupon(coupon_id)
        patch = {k: v for k, v in data.dict().items() if v is not None}
        valid_from = patch.get("valid_from", coupon["valid_from"])
        valid_until = patch.get("valid_until", coupon["valid_until"])
        if valid_from >= valid_until:
            raise ValidationException("valid_from must be before valid_until")
        value = patch.get("discount_value")
        if value is not None and coupon["discount_type"] == "percentage" and value > 100:
            raise ValidationException("Percentage discount must be between 0 and 100")
        return await self.coupons.update(coupon_id, patch)

    async def delete_coupon(self, coupon_id: str):
        await self.get_coupon(coupon_id)
        await self.coupons.delete(coupon_id)

    async def list_coupons(self, page: int = 1, limit: int = 20, is_active: Optional[bool] = None,
                           search: Optional[str] = None) -> dict:
        if is_active is None:
            docs = await self.coupons.list_all()
        else:
            docs = await self.coupons.list_by_equality("is_active", is_active)
        docs = filter_documents(docs, lambda d: matches_search(d, search, ("code", "name", "description")))
        return paginate(sort_documents(docs, "created_at", "desc"), page, limit)

    async def active_coupons(self) -> List[dict]:
        now = datetime.utcnow()
        docs = await self.coupons.list_by_equality("is_active", True)
        docs = [
            d for d in docs
            if d.get("is_public", True) and d["valid_from"] <= now <= d["valid_until"]
            and not (d.get("max_uses") and (d.get("used_count") or 0) >= d["max_uses"])
        ]
        return sort_documents(docs, "valid_until", "asc")

    async def coupon_stats(self) -> dict:
        now = datetime.utcnow()
        docs = await self.coupons.list_all()
        by_type = {kind: 0 for kind in DISCOUNT_TYPES}
        for d in docs:
            if d.get("discount_type") in by_type:
                by_type[d["discount_type"]] += 1
        return {
            "total": len(docs),
            "active": sum(1 for d in docs if d.get("is_active", True)),
            "inactive": sum(1 for d in docs if not d.get("is_active", True)),
            "public": sum(1 for d in docs if d.get("is_public", True)),
            "expired": sum(1 for d in docs if d["valid_until"] < now),
            "total_usage": sum(d.get("used_count") or 0 for d in docs),
            "total_discount": float(round_money(sum(to_decimal(d.get("total_discount_given")) for d in docs))),
            "by_type": by_type,
        }

    async def bulk_operation(self, operation: str, ids: List[str]) -> dict:
        patches = {
            "activate": {"is_active": True},
            "deactivate": {"is_active": False},
            "make_public": {"is_public": True},
            "make_private": {"is_public": False},
        }
        if operation not in BULK_OPERATIONS:
            raise ValidationException(f"Invalid operation, expected one of: {', '.join(BULK_OPERATIONS)}")
        affected = 0
        for coupon_id in ids:
            if operation == "delete":
                affected += int(await self.coupons.delete(coupon_id))
            elif await self.coupons.update(coupon_id, patches[operation]) is not None:
                affected += 1
        return {"operation": operation, "requested": len(ids), "affected": affected}
