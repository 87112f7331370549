from decimal import Decimal

import pytest

from marketplace.pricing import compute_totals, coupon_discount, shipping_for


def line(price, quantity):
    return {"price": price, "quantity": quantity}


def test_cart_math_scenario():
    totals = compute_totals([line(50, 2)])
    assert totals["subtotal"] == 100.0
    assert totals["tax"] == 10.0
    # Threshold is inclusive
    assert totals["shipping"] == 0.0
    assert totals["discount"] == 0.0
    assert totals["total"] == 110.0
    assert totals["total_items"] == 2


def test_flat_shipping_below_threshold():
    totals = compute_totals([line(99.99, 1)])
    assert totals["shipping"] == 10.0
    assert totals["tax"] == 10.0
    assert totals["total"] == 119.99


def test_empty_cart_is_all_zero():
    totals = compute_totals([])
    assert totals == {
        "subtotal": 0.0, "tax": 0.0, "shipping": 0.0, "discount": 0.0, "total": 0.0, "total_items": 0
    }


def test_discount_is_capped_at_subtotal():
    totals = compute_totals([line(20, 1)], coupon_discount=50)
    assert totals["discount"] == 20.0
    assert totals["total"] == 12.0


@pytest.mark.parametrize("items,discount", [
    ([line(19.99, 3)], 0),
    ([line(0.333, 3), line(1.005, 7)], 1.11),
    ([line(33.33, 3), line(12.5, 1)], 17.25),
    ([line(149.95, 2)], 30),
])
def test_total_matches_rounded_components(items, discount):
    totals = compute_totals(items, discount)
    expected = Decimal(str(totals["subtotal"])) + Decimal(str(totals["tax"])) \
        + Decimal(str(totals["shipping"])) - Decimal(str(totals["discount"]))
    assert Decimal(str(totals["total"])) == expected.quantize(Decimal("0.01"))


def test_lines_without_price_or_quantity_are_ignored():
    totals = compute_totals([line(None, 2), line(10, 0), line(10, 1)])
    assert totals["subtotal"] == 10.0


def test_shipping_for_boundaries():
    assert shipping_for(Decimal("0")) == 0
    assert shipping_for(Decimal("99.99")) == Decimal("10")
    assert shipping_for(Decimal("100")) == 0


def test_percentage_discount_respects_cap():
    coupon = {"discount_type": "percentage", "discount_value": 50, "maximum_discount_amount": 25}
    assert coupon_discount(coupon, 200) == Decimal("25.00")
    assert coupon_discount({"discount_type": "percentage", "discount_value": 15}, 80) == Decimal("12.00")


def test_fixed_discount_never_exceeds_order():
    coupon = {"discount_type": "fixed", "discount_value": 30}
    assert coupon_discount(coupon, 20) == Decimal("20.00")
    assert coupon_discount(coupon, 120) == Decimal("30.00")


def test_free_shipping_coupon_gives_no_discount():
    assert coupon_discount({"discount_type": "free_shipping", "discount_value": 0}, 80) == Decimal("0.00")
