import re
from datetime import datetime, timedelta

import pytest

from shared.utils import BusinessRuleException

from marketplace.schemas import GiftCardCreate
from marketplace.services.gift_cards import check_card, generate_code

from conftest import run


def issue(services, **fields):
    return services.gift_cards.create_gift_card(GiftCardCreate(**fields), issued_by="admin-1")


def test_generated_code_shape():
    assert re.fullmatch(r"[A-Z0-9]{4}(-[A-Z0-9]{4}){3}", generate_code())


def test_create_sets_balance_and_normalises_code(services):
    card = run(issue(services, amount=25.555, code=" gift-abc "))
    assert card["code"] == "GIFT-ABC"
    assert card["amount"] == 25.56
    assert card["balance"] == 25.56
    assert card["status"] == "active"
    assert card["issued_by"] == "admin-1"


def test_duplicate_requested_code(services):
    async def scenario():
        await issue(services, amount=10, code="SAME")
        await issue(services, amount=10, code="same")

    with pytest.raises(BusinessRuleException, match="already exists"):
        run(scenario())


def test_partial_then_full_redemption(services):
    async def scenario():
        card = await issue(services, amount=50)
        first = await services.gift_cards.redeem(card["code"], "u1", "o1", 20)
        second = await services.gift_cards.redeem(card["code"], "u1", "o2", 30)
        with pytest.raises(BusinessRuleException, match="already been redeemed"):
            await services.gift_cards.redeem(card["code"], "u1", "o3", 1)
        return first, second

    first, second = run(scenario())
    assert first["remaining_balance"] == 30.0
    assert first["gift_card"]["status"] == "active"
    assert second["remaining_balance"] == 0.0
    assert second["gift_card"]["status"] == "used"
    assert second["gift_card"]["used_by"] == "u1"
    assert len(second["gift_card"]["usage_history"]) == 2


def test_cannot_overdraw(services):
    async def scenario():
        card = await issue(services, amount=10)
        await services.gift_cards.redeem(card["code"], "u1", None, 10.01)

    with pytest.raises(BusinessRuleException, match="Insufficient gift card balance"):
        run(scenario())


def test_expired_card_is_rejected(services):
    async def scenario():
        card = await issue(services, amount=10, expires_at=datetime.utcnow() + timedelta(days=1))
        await services.gift_cards.gift_cards.update(card["id"], {"expires_at": datetime.utcnow() - timedelta(seconds=1)})
        result = await services.gift_cards.validate(card["code"])
        expired = await services.gift_cards.expire_overdue()
        return result, expired, await services.gift_cards.get_gift_card(card["id"])

    result, expired, card = run(scenario())
    assert result == {"valid": False, "message": "Gift card has expired"}
    assert expired == 1
    assert card["status"] == "expired"


def test_check_card_order():
    now = datetime.utcnow()
    assert check_card({"status": "cancelled", "balance": 5}, now)["message"] == "Gift card is inactive"
    assert check_card({"status": "active", "balance": 0}, now)["message"] == "Gift card has no remaining balance"
    assert check_card({"status": "active", "balance": 5}, now)["valid"] is True


def test_refund_restores_balance_and_status(services):
    async def scenario():
        card = await issue(services, amount=15)
        await services.gift_cards.redeem(card["code"], "u1", "o1", 15)
        refunded = await services.gift_cards.refund(card["code"], "o1")
        again = await services.gift_cards.refund(card["code"], "o1")
        return refunded, again

    refunded, again = run(scenario())
    assert refunded["balance"] == 15.0
    assert refunded["status"] == "active"
    assert refunded["used_at"] is None
    assert again["version"] == refunded["version"]


def test_deactivate(services):
    async def scenario():
        card = await issue(services, amount=15)
        cancelled = await services.gift_cards.deactivate(card["id"])
        check = await services.gift_cards.validate(card["code"])
        return cancelled, check

    cancelled, check = run(scenario())
    assert cancelled["status"] == "cancelled"
    assert check["valid"] is False


def test_cards_for_user_and_stats(services):
    async def scenario():
        await issue(services, amount=10, issued_to="u1")
        await issue(services, amount=20, issued_to_email="u1@example.com")
        await issue(services, amount=30, issued_to="u2")
        used = await issue(services, amount=5)
        await services.gift_cards.redeem(used["code"], "u3", None, 5)
        mine = await services.gift_cards.cards_for_user("u1", "u1@example.com")
        stats = await services.gift_cards.gift_card_stats()
        return mine, stats

    mine, stats = run(scenario())
    assert sorted(c["amount"] for c in mine) == [10.0, 20.0]
    assert stats["total"] == 4
    assert stats["by_status"]["used"] == 1
    assert stats["total_value"] == 65.0
    assert stats["total_redeemed_value"] == 5.0
    assert stats["total_remaining_value"] == 60.0
