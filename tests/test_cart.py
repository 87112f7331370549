import random
from decimal import Decimal

import pytest

from shared.utils import BusinessRuleException, NotFoundException

from marketplace.services.carts import recompute_totals

from conftest import run, seed_product, seed_coupon

USER = "user-cart"


def snapshot(product):
    return {"price": product["price"], "name": product["name"]}


def assert_total_adds_up(cart):
    expected = Decimal(str(cart["subtotal"])) + Decimal(str(cart["tax"])) \
        + Decimal(str(cart["shipping"])) - Decimal(str(cart["discount"]))
    assert Decimal(str(cart["total"])) == expected.quantize(Decimal("0.01"))


def test_get_or_create_cart_is_idempotent(services):
    async def scenario():
        first = await services.carts.get_or_create_cart(USER)
        second = await services.carts.get_or_create_cart(USER)
        return first, second

    first, second = run(scenario())
    assert first["id"] == second["id"]
    assert first["items"] == []
    assert first["total"] == 0.0


def test_cart_math_through_service(services):
    async def scenario():
        product = await seed_product(services, price=50, stock=10)
        return await services.carts.add_item(USER, product["id"], 2, snapshot(product))

    cart = run(scenario())
    assert cart["subtotal"] == 100.0
    assert cart["tax"] == 10.0
    assert cart["shipping"] == 0.0
    assert cart["total"] == 110.0
    assert cart["total_items"] == 2


def test_adding_same_product_increments_quantity(services):
    async def scenario():
        product = await seed_product(services, price=12.5)
        await services.carts.add_item(USER, product["id"], 1, snapshot(product))
        return await services.carts.add_item(USER, product["id"], 3, snapshot(product))

    cart = run(scenario())
    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 4
    assert cart["subtotal"] == 50.0


def test_update_to_zero_removes_line(services):
    async def scenario():
        product = await seed_product(services)
        await services.carts.add_item(USER, product["id"], 2, snapshot(product))
        return await services.carts.update_item(USER, product["id"], 0)

    cart = run(scenario())
    assert cart["items"] == []
    assert cart["total"] == 0.0
    assert cart["shipping"] == 0.0


def test_update_missing_line(services):
    with pytest.raises(NotFoundException):
        run(services.carts.update_item(USER, "missing", 2))


def test_remove_item_is_idempotent(services):
    async def scenario():
        product = await seed_product(services)
        await services.carts.add_item(USER, product["id"], 1, snapshot(product))
        await services.carts.remove_item(USER, product["id"])
        return await services.carts.remove_item(USER, product["id"])

    assert run(scenario())["items"] == []


def test_non_positive_quantity_is_rejected(services):
    with pytest.raises(BusinessRuleException):
        run(services.carts.add_item(USER, "p1", 0, {"price": 1}))


def test_total_adds_up_after_every_mutation(services):
    rng = random.Random(7)

    async def scenario():
        products = [await seed_product(services, name=f"Item {i}", price=round(rng.uniform(0.5, 80), 2))
                    for i in range(4)]
        await seed_coupon(services, code="TENOFF", discount_type="fixed", discount_value=10)
        carts = []
        for step in range(25):
            product = rng.choice(products)
            action = rng.choice(("add", "add", "update", "remove", "coupon"))
            if action == "add":
                cart = await services.carts.add_item(USER, product["id"], rng.randint(1, 3), snapshot(product))
            elif action == "update":
                cart = await services.carts.get_or_create_cart(USER)
                if cart["items"]:
                    line = rng.choice(cart["items"])
                    cart = await services.carts.update_item(USER, line["product_id"], rng.randint(0, 4))
            elif action == "remove":
                cart = await services.carts.remove_item(USER, product["id"])
            else:
                try:
                    cart = await services.carts.apply_coupon(USER, "TENOFF")
                except BusinessRuleException:
                    cart = await services.carts.remove_coupon(USER)
            carts.append(cart)
        return carts

    for cart in run(scenario()):
        assert_total_adds_up(cart)
        assert cart["discount"] <= cart["subtotal"]


def test_recompute_totals_uses_stored_coupon_discount():
    cart = {"items": [{"price": 40, "quantity": 1}], "coupon_discount": 5}
    patch = recompute_totals(cart)
    assert patch["discount"] == 5.0
    assert patch["total"] == 49.0


def test_apply_coupon_sets_discount(services):
    async def scenario():
        product = await seed_product(services, price=60)
        await services.carts.add_item(USER, product["id"], 1, snapshot(product))
        await seed_coupon(services, code="SAVE10", discount_value=10)
        return await services.carts.apply_coupon(USER, "save10")

    cart = run(scenario())
    assert cart["coupon_code"] == "SAVE10"
    assert cart["discount"] == 6.0
    assert cart["total"] == 60.0 + 6.0 + 10.0 - 6.0


def test_coupon_minimum_order_boundary(services):
    async def scenario():
        product = await seed_product(services, price=99.99)
        await services.carts.add_item(USER, product["id"], 1, snapshot(product))
        await seed_coupon(services, code="MIN100", minimum_order_amount=100)
        await services.carts.apply_coupon(USER, "MIN100")

    with pytest.raises(BusinessRuleException) as exc:
        run(scenario())
    assert "Minimum order amount" in exc.value.detail


def test_discount_is_clamped_when_items_shrink(services):
    async def scenario():
        product = await seed_product(services, price=30)
        await services.carts.add_item(USER, product["id"], 2, snapshot(product))
        await seed_coupon(services, code="FIFTY", discount_type="fixed", discount_value=50)
        await services.carts.apply_coupon(USER, "FIFTY")
        return await services.carts.update_item(USER, product["id"], 1)

    cart = run(scenario())
    assert cart["discount"] == 30.0
    assert_total_adds_up(cart)


def test_clear_drops_items_and_coupon(services):
    async def scenario():
        product = await seed_product(services, price=60)
        await services.carts.add_item(USER, product["id"], 1, snapshot(product))
        await seed_coupon(services)
        await services.carts.apply_coupon(USER, "SAVE10")
        return await services.carts.clear(USER)

    cart = run(scenario())
    assert cart["items"] == []
    assert cart["coupon_code"] is None
    assert cart["discount"] == 0.0
    assert cart["total"] == 0.0


def test_merge_guest_cart(services):
    async def scenario():
        a = await seed_product(services, name="Product A", price=10)
        b = await seed_product(services, name="Product B", price=20)
        await services.carts.add_item(USER, a["id"], 1, snapshot(a))
        return a, b, await services.carts.merge_guest_cart(USER, [
            {"product_id": a["id"], "quantity": 2, "price": 10},
            {"product_id": b["id"], "quantity": 1, "price": 20, "name": "Product B"},
        ])

    a, b, cart = run(scenario())
    quantities = {i["product_id"]: i["quantity"] for i in cart["items"]}
    assert quantities == {a["id"]: 3, b["id"]: 1}
    assert cart["subtotal"] == 50.0


def test_merge_with_nothing_leaves_cart_untouched(services):
    async def scenario():
        before = await services.carts.get_or_create_cart(USER)
        after = await services.carts.merge_guest_cart(USER, [{"product_id": "x", "quantity": 0}])
        return before, after

    before, after = run(scenario())
    assert after["version"] == before["version"]


def test_summary(services):
    async def scenario():
        product = await seed_product(services, price=25)
        await services.carts.add_item(USER, product["id"], 3, snapshot(product))
        return await services.carts.get_summary(USER)

    summary = run(scenario())
    assert summary["total_items"] == 3
    assert summary["item_count"] == 1
    assert summary["has_items"] is True
    assert summary["total"] == 75.0 + 7.5 + 10.0
