"""Cart and order arithmetic. All business math goes through here."""
from decimal import Decimal
from typing import Iterable, Optional

from shared.utils import settings, Settings, to_decimal, round_money

PERCENTAGE = "percentage"
FIXED = "fixed"
FREE_SHIPPING = "free_shipping"
DISCOUNT_TYPES = (PERCENTAGE, FIXED, FREE_SHIPPING)


def items_subtotal(items: Iterable[dict]) -> Decimal:
    subtotal = Decimal(0)
    for item in items:
        price = item.get("price")
        quantity = item.get("quantity")
        if price and quantity:
            subtotal += to_decimal(price) * int(quantity)
    return subtotal


def shipping_for(subtotal: Decimal, config: Settings = settings) -> Decimal:
    if subtotal <= 0:
        return Decimal(0)
    if subtotal >= config.FREE_SHIPPING_THRESHOLD:
        return Decimal(0)
    return to_decimal(config.FLAT_SHIPPING_FEE)


def compute_totals(items: Iterable[dict], coupon_discount=0, config: Settings = settings) -> dict:
    """
    subtotal = sum(price * quantity), tax = subtotal * TAX_RATE, shipping is
    free at or above FREE_SHIPPING_THRESHOLD, discount never exceeds subtotal.
    Each component is rounded to cents first and the total is derived from
    the rounded components, so total == subtotal + tax + shipping - discount
    holds exactly on the stored values.
    """
    items = list(items)
    raw_subtotal = items_subtotal(items)
    subtotal = round_money(raw_subtotal)
    tax = round_money(raw_subtotal * to_decimal(config.TAX_RATE))
    shipping = round_money(shipping_for(raw_subtotal, config))
    discount = round_money(min(to_decimal(coupon_discount), subtotal))
    total = round_money(subtotal + tax + shipping - discount)
    return {
        "subtotal": float(subtotal),
        "tax": float(tax),
        "shipping": float(shipping),
        "discount": float(discount),
        "total": float(total),
        "total_items": sum(int(i.get("quantity") or 0) for i in items),
    }


def coupon_discount(coupon: dict, order_amount) -> Decimal:
    amount = to_decimal(order_amount)
    value = to_decimal(coupon.get("discount_value"))
    kind = coupon.get("discount_type")
    if kind == PERCENTAGE:
        discount = amount * value / 100
        cap: Optional[float] = coupon.get("maximum_discount_amount")
        if cap:
            discount = min(discount, to_decimal(cap))
        return round_money(discount)
    if kind == FIXED:
        return round_money(min(value, amount))
    # free_shipping: the waiver itself is not applied to cart shipping
    return Decimal("0.00")
