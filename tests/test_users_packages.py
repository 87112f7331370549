from datetime import datetime, timedelta

import pytest

from shared.utils import NotFoundException, BusinessRuleException, UnauthorizedException

from marketplace.schemas import (
    UserRegister, ProfileUpdate, AddressCreate, AddressUpdate, OrderCreate, PackageCreate, PackageUpdate
)
from marketplace.services.packages import package_discount, is_running
from marketplace.services.users import default_address

from conftest import run, seed_product, PASSWORD


def address(**fields):
    body = {
        "first_name": "Dana", "last_name": "Reyes", "address1": "12 Molar Street",
        "city": "Austin", "state": "TX", "country": "US", "zip_code": "73301",
    }
    body.update(fields)
    return AddressCreate(**body)


async def new_user(services, email="patient@example.com"):
    return await services.users.register(UserRegister(email=email, password=PASSWORD, full_name="Dana Reyes"))


# --- Profile and address book ---

def test_profile_update_is_sanitised(services):
    async def scenario():
        user = await new_user(services)
        return await services.users.update_profile(user["id"], ProfileUpdate(full_name=" <b>Dana</b> "))

    updated = run(scenario())
    assert updated["full_name"] == "&lt;b&gt;Dana&lt;/b&gt;"
    assert updated["email"] == "patient@example.com"


def test_first_address_becomes_default(services):
    async def scenario():
        user = await new_user(services)
        await services.users.add_address(user["id"], address(city="Austin"))
        return await services.users.add_address(user["id"], address(city="Dallas"))

    addresses = run(scenario())
    assert [a["city"] for a in addresses] == ["Austin", "Dallas"]
    assert [a["is_default"] for a in addresses] == [True, False]
    assert all(a["id"] for a in addresses)


def test_only_one_default_address(services):
    async def scenario():
        user = await new_user(services)
        await services.users.add_address(user["id"], address(city="Austin"))
        added = await services.users.add_address(user["id"], address(city="Dallas", is_default=True))
        first = added[0]["id"]
        switched = await services.users.set_default_address(user["id"], first)
        updated = await services.users.update_address(
            user["id"], added[1]["id"], AddressUpdate(is_default=True, city="Houston")
        )
        return added, switched, updated

    added, switched, updated = run(scenario())
    assert [a["is_default"] for a in added] == [False, True]
    assert [a["is_default"] for a in switched] == [True, False]
    assert [a["is_default"] for a in updated] == [False, True]
    assert updated[1]["city"] == "Houston"


def test_deleting_default_promotes_next_address(services):
    async def scenario():
        user = await new_user(services)
        added = await services.users.add_address(user["id"], address(city="Austin"))
        added = await services.users.add_address(user["id"], address(city="Dallas"))
        return await services.users.delete_address(user["id"], added[0]["id"])

    remaining = run(scenario())
    assert len(remaining) == 1
    assert remaining[0]["city"] == "Dallas"
    assert remaining[0]["is_default"] is True


def test_unknown_address_is_not_found(services):
    async def scenario():
        user = await new_user(services)
        await services.users.set_default_address(user["id"], "missing")

    with pytest.raises(NotFoundException):
        run(scenario())


def test_default_address_respects_type():
    user = {"addresses": [
        {"id": "a", "type": "billing", "city": "Austin", "is_default": True},
        {"id": "b", "type": "shipping", "city": "Dallas", "is_default": False},
    ]}
    assert default_address(user, "shipping")["id"] == "b"
    assert default_address(user, "billing")["id"] == "a"
    assert default_address({"addresses": []}) is None
    assert default_address(None) is None


def test_checkout_falls_back_to_saved_addresses(services):
    async def scenario():
        user = await new_user(services)
        await services.users.add_address(user["id"], address(type="shipping", city="Austin"))
        await services.users.add_address(user["id"], address(type="billing", city="Dallas"))
        product = await seed_product(services, stock=5)
        saved = await services.orders.create_order(user["id"], OrderCreate(
            items=[{"product_id": product["id"], "quantity": 1}]
        ))
        given = await services.orders.create_order(user["id"], OrderCreate(
            items=[{"product_id": product["id"], "quantity": 1}],
            shipping_address={"city": "Houston", "address1": "1 Canine Road"}
        ))
        return saved, given

    saved, given = run(scenario())
    assert saved["shipping_address"]["city"] == "Austin"
    assert saved["billing_address"]["city"] == "Dallas"
    assert "is_default" not in saved["shipping_address"]
    assert given["shipping_address"]["city"] == "Houston"
    assert given["billing_address"]["city"] == "Dallas"


def test_checkout_without_saved_addresses(services):
    async def scenario():
        user = await new_user(services)
        product = await seed_product(services, stock=5)
        return await services.orders.create_order(user["id"], OrderCreate(
            items=[{"product_id": product["id"], "quantity": 1}]
        ))

    order = run(scenario())
    assert order["shipping_address"] is None
    assert order["billing_address"] is None


def test_authenticate_uses_stored_role(services):
    async def scenario():
        user = await new_user(services)
        await services.users.set_status(user["id"], role="admin")
        return await services.users.authenticate({"sub": user["id"], "role": "user", "jti": "j1"})

    assert run(scenario())["role"] == "admin"


def test_authenticate_rejects_unknown_account(services):
    with pytest.raises(UnauthorizedException):
        run(services.users.authenticate({"sub": "ghost", "role": "admin"}))


# --- Packages ---

def test_package_discount_is_clamped():
    assert package_discount(90, 120) == 25.0
    assert package_discount(150, 120) == 0.0
    assert package_discount(0, 120) == 0.0
    assert package_discount(10, 0) == 0.0
    assert package_discount(1, 3) == 66.67


def test_is_running_checks_window():
    now = datetime(2026, 6, 1)
    assert is_running({"is_active": True}, now)
    assert not is_running({"is_active": False}, now)
    assert not is_running({"is_active": True, "starts_at": now + timedelta(days=1)}, now)
    assert not is_running({"is_active": True, "ends_at": now - timedelta(days=1)}, now)
    assert is_running({"is_active": True, "starts_at": now - timedelta(days=1),
                       "ends_at": now + timedelta(days=1)}, now)


def test_package_totals_come_from_catalog(services):
    async def scenario():
        kit = await seed_product(services, name="Composite Kit", price=50)
        bond = await seed_product(services, name="Bonding Agent", price=20)
        return await services.packages.create_package(PackageCreate(
            name="Restorative Starter",
            items=[{"product_id": kit["id"], "quantity": 2}, {"product_id": bond["id"]},
                   {"product_id": "missing", "quantity": 3}],
            package_price=90
        ))

    package = run(scenario())
    assert package["original_total"] == 120.0
    assert package["discount_percentage"] == 25.0
    assert package["is_active"] is True


def test_package_update_recomputes_discount(services):
    async def scenario():
        kit = await seed_product(services, price=50)
        package = await services.packages.create_package(PackageCreate(
            name="Kit Pair", items=[{"product_id": kit["id"], "quantity": 2}], package_price=80
        ))
        renamed = await services.packages.update_package(package["id"], PackageUpdate(name="Kit Duo"))
        repriced = await services.packages.update_package(package["id"], PackageUpdate(package_price=50))
        return package, renamed, repriced

    package, renamed, repriced = run(scenario())
    assert package["discount_percentage"] == 20.0
    assert renamed["name"] == "Kit Duo"
    assert renamed["discount_percentage"] == 20.0
    assert repriced["original_total"] == 100.0
    assert repriced["discount_percentage"] == 50.0


def test_package_window_must_be_ordered(services):
    now = datetime.utcnow()

    async def scenario():
        kit = await seed_product(services)
        await services.packages.create_package(PackageCreate(
            name="Backwards", items=[{"product_id": kit["id"]}], package_price=10,
            starts_at=now, ends_at=now - timedelta(days=1)
        ))

    with pytest.raises(BusinessRuleException):
        run(scenario())


def test_inactive_package_hidden_unless_requested(services):
    async def scenario():
        kit = await seed_product(services)
        package = await services.packages.create_package(PackageCreate(
            name="Retired", items=[{"product_id": kit["id"]}], package_price=10, is_active=False
        ))
        listed = await services.packages.list_packages(is_active=True)
        found = await services.packages.get_package(package["id"], include_inactive=True)
        try:
            await services.packages.get_package(package["id"])
        except NotFoundException:
            hidden = True
        else:
            hidden = False
        return listed, found, hidden

    listed, found, hidden = run(scenario())
    assert listed["total"] == 0
    assert found["name"] == "Retired"
    assert hidden


def test_list_packages_search_and_cache_invalidation(services):
    async def scenario():
        kit = await seed_product(services)
        await services.packages.create_package(PackageCreate(
            name="Endo Bundle", items=[{"product_id": kit["id"]}], package_price=10
        ))
        first = await services.packages.list_packages(search="endo")
        await services.packages.create_package(PackageCreate(
            name="Endo Refill", items=[{"product_id": kit["id"]}], package_price=20
        ))
        second = await services.packages.list_packages(search="endo")
        cheapest = await services.packages.list_packages(sort_by="package_price", sort_order="asc")
        return first, second, cheapest

    first, second, cheapest = run(scenario())
    assert first["total"] == 1
    assert second["total"] == 2
    assert [p["name"] for p in cheapest["items"]] == ["Endo Bundle", "Endo Refill"]


def test_packages_and_discounts(services):
    now = datetime.utcnow()

    async def scenario():
        kit = await seed_product(services, name="Composite Kit", price=50, original_price=100)
        await seed_product(services, name="Gloves", price=8, original_price=10)
        await seed_product(services, name="Mirror", price=5)
        retired = await seed_product(services, name="Retired Bur", price=1, original_price=10)
        await services.catalog.products.update(retired["id"], {"is_active": False})
        await services.packages.create_package(PackageCreate(
            name="Running", items=[{"product_id": kit["id"]}], package_price=40
        ))
        await services.packages.create_package(PackageCreate(
            name="Upcoming", items=[{"product_id": kit["id"]}], package_price=40,
            starts_at=now + timedelta(days=2)
        ))
        await services.packages.create_package(PackageCreate(
            name="Expired", items=[{"product_id": kit["id"]}], package_price=40,
            starts_at=now - timedelta(days=10), ends_at=now - timedelta(days=1)
        ))
        return await services.packages.packages_and_discounts(limit_products=5)

    combined = run(scenario())
    assert [p["name"] for p in combined["packages"]] == ["Running"]
    assert [p["name"] for p in combined["discounted_products"]] == ["Composite Kit", "Gloves"]
