from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError

from shared.utils import BusinessRuleException, ValidationException

from marketplace.schemas import CouponCreate, CouponUpdate
from marketplace.services.coupons import evaluate

from conftest import run, seed_coupon

NOW = datetime(2026, 6, 1, 12, 0, 0)


def coupon(**overrides):
    doc = {
        "code": "SPRING",
        "is_active": True,
        "valid_from": NOW - timedelta(days=1),
        "valid_until": NOW + timedelta(days=1),
        "max_uses": None,
        "used_count": 0,
        "minimum_order_amount": 0,
        "applicable_users": [],
        "usage_history": [],
        "max_uses_per_user": 1,
        "discount_type": "percentage",
        "discount_value": 20,
    }
    doc.update(overrides)
    return doc


@pytest.mark.parametrize("overrides,amount,message", [
    ({"is_active": False}, 50, "Coupon is inactive"),
    ({"valid_from": NOW + timedelta(hours=1)}, 50, "Coupon is not yet valid"),
    ({"valid_until": NOW - timedelta(hours=1)}, 50, "Coupon has expired"),
    ({"max_uses": 3, "used_count": 3}, 50, "Coupon usage limit reached"),
    ({"minimum_order_amount": 100}, 99.99, "Minimum order amount of 100.00 required"),
    ({"applicable_users": ["someone-else"]}, 50, "Coupon not applicable for this user"),
    ({"usage_history": [{"user_id": "u1"}]}, 50, "You have already used this coupon"),
])
def test_evaluate_rejections(overrides, amount, message):
    result = evaluate(coupon(**overrides), "u1", amount, NOW)
    assert result == {"valid": False, "message": message}


def test_evaluate_missing_coupon():
    assert evaluate(None, "u1", 10, NOW)["message"] == "Coupon not found"


def test_checks_stop_at_first_failure():
    # Both inactive and expired: the active flag is checked first
    result = evaluate(coupon(is_active=False, valid_until=NOW - timedelta(days=3)), "u1", 50, NOW)
    assert result["message"] == "Coupon is inactive"


def test_minimum_is_inclusive():
    result = evaluate(coupon(minimum_order_amount=100), "u1", 100, NOW)
    assert result["valid"] is True
    assert result["discount_amount"] == 20.0


def test_per_user_limit_allows_more_uses():
    doc = coupon(max_uses_per_user=2, usage_history=[{"user_id": "u1"}])
    assert evaluate(doc, "u1", 50, NOW)["valid"] is True


def test_redeem_records_usage_and_rejects_second_use(services):
    async def scenario():
        await seed_coupon(services, code="ONCE", discount_type="fixed", discount_value=15)
        first = await services.coupons.redeem("once", "u1", "order-1", 80)
        with pytest.raises(BusinessRuleException) as exc:
            await services.coupons.redeem("ONCE", "u1", "order-2", 80)
        other_user = await services.coupons.redeem("ONCE", "u2", "order-3", 80)
        return first, exc.value, other_user

    first, error, other_user = run(scenario())
    assert first["discount_amount"] == 15.0
    assert first["coupon"]["used_count"] == 1
    assert first["coupon"]["usage_history"][0]["order_id"] == "order-1"
    assert error.detail == "You have already used this coupon"
    assert other_user["coupon"]["used_count"] == 2
    assert other_user["coupon"]["total_discount_given"] == 30.0


def test_global_cap_is_enforced_on_redeem(services):
    async def scenario():
        await seed_coupon(services, code="CAPPED", max_uses=1)
        await services.coupons.redeem("CAPPED", "u1", "o1", 50)
        await services.coupons.redeem("CAPPED", "u2", "o2", 50)

    with pytest.raises(BusinessRuleException, match="usage limit"):
        run(scenario())


def test_release_undoes_redemption(services):
    async def scenario():
        await seed_coupon(services, code="BACK", discount_type="fixed", discount_value=5)
        await services.coupons.redeem("BACK", "u1", "o1", 50)
        released = await services.coupons.release("BACK", "o1")
        again = await services.coupons.redeem("BACK", "u1", "o2", 50)
        return released, again

    released, again = run(scenario())
    assert released["used_count"] == 0
    assert released["usage_history"] == []
    assert released["total_discount_given"] == 0.0
    assert again["coupon"]["used_count"] == 1


def test_release_unknown_order_is_a_no_op(services):
    async def scenario():
        created = await seed_coupon(services, code="NOOP")
        released = await services.coupons.release("NOOP", "unknown-order")
        return created, released

    created, released = run(scenario())
    assert released["version"] == created["version"]


def test_duplicate_code_rejected(services):
    async def scenario():
        await seed_coupon(services, code="DUP")
        await seed_coupon(services, code="dup")

    with pytest.raises(BusinessRuleException, match="already exists"):
        run(scenario())


def test_schema_rejects_bad_window_and_percentage():
    now = datetime.utcnow()
    with pytest.raises(ValidationError):
        CouponCreate(code="BAD", name="bad", discount_type="percentage", discount_value=10,
                     valid_from=now, valid_until=now - timedelta(days=1))
    with pytest.raises(ValidationError):
        CouponCreate(code="BAD", name="bad", discount_type="percentage", discount_value=150,
                     valid_from=now, valid_until=now + timedelta(days=1))


def test_update_validates_merged_window(services):
    async def scenario():
        created = await seed_coupon(services, code="WINDOW")
        await services.coupons.update_coupon(
            created["id"], CouponUpdate(valid_until=created["valid_from"] - timedelta(days=1))
        )

    with pytest.raises(ValidationException):
        run(scenario())


def test_active_coupons_hide_private_and_exhausted(services):
    async def scenario():
        await seed_coupon(services, code="PUBLIC")
        await seed_coupon(services, code="HIDDEN", is_public=False)
        await seed_coupon(services, code="GONE", max_uses=1)
        await services.coupons.redeem("GONE", "u1", "o1", 10)
        return await services.coupons.active_coupons()

    assert [c["code"] for c in run(scenario())] == ["PUBLIC"]


def test_bulk_operations(services):
    async def scenario():
        a = await seed_coupon(services, code="AAA")
        b = await seed_coupon(services, code="BBB")
        deactivated = await services.coupons.bulk_operation("deactivate", [a["id"], b["id"], "missing"])
        deleted = await services.coupons.bulk_operation("delete", [a["id"]])
        stats = await services.coupons.coupon_stats()
        return deactivated, deleted, stats

    deactivated, deleted, stats = run(scenario())
    assert deactivated["affected"] == 2
    assert deleted["affected"] == 1
    assert stats["total"] == 1
    assert stats["inactive"] == 1


def test_bulk_rejects_unknown_operation(services):
    with pytest.raises(ValidationException):
        run(services.coupons.bulk_operation("explode", ["x"]))
