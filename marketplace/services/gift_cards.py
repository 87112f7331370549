import logging
import secrets
import string
from datetime import datetime
from typing import List, Optional

from shared.utils import (
    NotFoundException, BusinessRuleException, to_decimal, round_money
)

from marketplace.listing import matches_search, filter_documents, sort_documents, paginate
from marketplace.models import GiftCardDB, GiftCardUsage
from marketplace.store import Datastore, DuplicateError

logger = logging.getLogger("marketplace.gift_cards")

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_ATTEMPTS = 5

ACTIVE = "active"
USED = "used"
EXPIRED = "expired"
CANCELLED = "cancelled"


def generate_code() -> str:
    """XXXX-XXXX-XXXX-XXXX over A-Z0-9."""
    groups = ("".join(secrets.choice(CODE_ALPHABET) for _ in range(4)) for _ in range(4))
    return "-".join(groups)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


def check_card(card: Optional[dict], now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    if not card:
        return {"valid": False, "message": "Gift card not found"}
    status = card.get("status", ACTIVE)
    if status == CANCELLED:
        return {"valid": False, "message": "Gift card is inactive"}
    if status == USED:
        return {"valid": False, "message": "Gift card has already been redeemed"}
    expires_at = card.get("expires_at")
    if status == EXPIRED or (expires_at and now > expires_at):
        return {"valid": False, "message": "Gift card has expired"}
    if (card.get("balance") or 0) <= 0:
        return {"valid": False, "message": "Gift card has no remaining balance"}
    return {"valid": True, "message": "Gift card is valid", "gift_card": card}


class GiftCardService:
    def __init__(self, db: Datastore):
        self.gift_cards = db.collection("gift_cards")

    async def create_indexes(self):
        await self.gift_cards.create_index("code", unique=True)
        await self.gift_cards.create_index("issued_to")

    async def create_gift_card(self, data, issued_by: str) -> dict:
        fields = data.dict()
        requested = normalize_code(fields.pop("code", None))
        amount = float(round_money(fields.pop("amount")))
        for _ in range(CODE_ATTEMPTS):
            card = GiftCardDB(
                code=requested or generate_code(),
                amount=amount,
                balance=amount,
                issued_by=issued_by,
                **fields
            )
            try:
                created = await self.gift_cards.create(card.dict(exclude={"id"}))
            except DuplicateError:
                if requested:
                    raise BusinessRuleException("Gift card code already exists")
                continue
            logger.info(f"Gift card {created['id']} issued", extra={"user_id": issued_by})
            return created
        raise BusinessRuleException("Could not allocate a unique gift card code")

    async def get_by_code(self, code: str) -> Optional[dict]:
        return await self.gift_cards.find_one_by("code", normalize_code(code))

    async def get_gift_card(self, card_id: str) -> dict:
        card = await self.gift_cards.get_by_id(card_id)
        if not card:
            raise NotFoundException("Gift card not found")
        return card

    async def validate(self, code: str) -> dict:
        return check_card(await self.get_by_code(code))

    async def redeem(self, code: str, user_id: Optional[str], order_id: Optional[str], amount) -> dict:
        card = await self.get_by_code(code)
        if not card:
            raise BusinessRuleException("Gift card not found")
        requested = round_money(amount)
        if requested <= 0:
            raise BusinessRuleException("Redemption amount must be positive")

        def apply(doc):
            now = datetime.utcnow()
            result = check_card(doc, now)
            if not result["valid"]:
                raise BusinessRuleException(result["message"])
            balance = to_decimal(doc.get("balance"))
            if requested > balance:
                raise BusinessRuleException("Insufficient gift card balance")
            new_balance = round_money(balance - requested)
            usage = GiftCardUsage(order_id=order_id, user_id=user_id, amount=float(requested))
            patch = {
                "balance": float(new_balance),
                "usage_history": (doc.get("usage_history") or []) + [usage.dict()],
            }
            if new_balance <= 0:
                patch.update({"status": USED, "used_at": now, "used_by": user_id})
            return patch

        updated = await self.gift_cards.mutate(card["id"], apply, not_found="Gift card not found")
        logger.info(
            f"Gift card {updated['id']} redeemed for {requested}",
            extra={"user_id": user_id, "order_id": order_id, "event": "gift_card.redeemed"}
        )
        return {"gift_card": updated, "amount_used": float(requested), "remaining_balance": updated["balance"]}

    async def refund(self, code: str, order_id: str) -> Optional[dict]:
        """Credit back what ``order_id`` drew from the card."""
        card = await self.get_by_code(code)
        if not card:
            return None

        def apply(doc):
            history = doc.get("usage_history") or []
            drawn = sum(to_decimal(u.get("amount")) for u in history if u.get("order_id") == order_id)
            if drawn <= 0:
                return {}
            patch = {
                "balance": float(round_money(to_decimal(doc.get("balance")) + drawn)),
                "usage_history": [u for u in history if u.get("order_id") != order_id],
            }
            if doc.get("status") == USED:
                patch.update({"status": ACTIVE, "used_at": None, "used_by": None})
            return patch

        return await self.gift_cards.mutate(card["id"], apply, not_found="Gift card not found")

    async def expire_overdue(self) -> int:
        """Mark active cards past their expiry as expired. Returns how many changed."""
        now = datetime.utcnow()
        changed = 0
        for card in await self.gift_cards.list_by_equality("status", ACTIVE):
            if card.get("expires_at") and now > card["expires_at"]:
                await self.gift_cards.mutate(
                    card["id"],
                    lambda doc: {"status": EXPIRED} if doc.get("status") == ACTIVE else {}
                )
                changed += 1
        return changed

    async def deactivate(self, card_id: str) -> dict:
        def apply(doc):
            if doc.get("status") == USED:
                raise BusinessRuleException("Gift card has already been redeemed")
            return {"status": CANCELLED}

        return await self.gift_cards.mutate(card_id, apply, not_found="Gift card not found")

    async def list_gift_cards(self, page: int = 1, limit: int = 20, status: Optional[str] = None,
                              search: Optional[str] = None) -> dict:
        if status:
            docs = await self.gift_cards.list_by_equality("status", status)
        else:
            docs = await self.gift_cards.list_all()
        docs = filter_documents(docs, lambda d: matches_search(d, search, ("code", "issued_to_email", "message")))
        return paginate(sort_documents(docs, "created_at", "desc"), page, limit)

    async def cards_for_user(self, user_id: str, email: Optional[str] = None) -> List[dict]:
        docs = await self.gift_cards.list_by_equality("issued_to", user_id)
        if email:
            seen = {d["id"] for d in docs}
            docs += [d for d in await self.gift_cards.list_by_equality("issued_to_email", email) if d["id"] not in seen]
        return sort_documents(docs, "created_at", "desc")

    async def gift_card_stats(self) -> dict:
        docs = await self.gift_cards.list_all()
        by_status = {s: 0 for s in (ACTIVE, USED, EXPIRED, CANCELLED)}
        by_type = {"digital": 0, "physical": 0}
        for d in docs:
            by_status[d.get("status", ACTIVE)] = by_status.get(d.get("status", ACTIVE), 0) + 1
            if d.get("type") in by_type:
                by_type[d["type"]] += 1
        total_value = sum(to_decimal(d.get("amount")) for d in docs)
        remaining = sum(to_decimal(d.get("balance")) for d in docs)
        return {
            "total": len(docs),
            "by_status": by_status,
            "by_type": by_type,
            "total_value": float(round_money(total_value)),
            "total_redeemed_value": float(round_money(total_value - remaining)),
            "total_remaining_value": float(round_money(remaining)),
        }
