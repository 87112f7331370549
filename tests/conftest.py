import asyncio
import os
from datetime import datetime, timedelta

# Settings are read at import time
os.environ["STORE_BACKEND"] = "memory"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ.pop("EMAIL_API_URL", None)
os.environ.pop("IMAGE_HOST_URL", None)

import pytest
from fastapi.testclient import TestClient

from shared.utils import settings

from marketplace.container import Services
from marketplace.main import app
from marketplace.schemas import CategoryCreate, ProductCreate, CouponCreate
from marketplace.store import MemoryDatastore

PASSWORD = "Password123"


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def services():
    built = Services(MemoryDatastore(), settings)
    run(built.create_indexes())
    return built


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


# --- Service-level seeding ---

async def seed_product(services: Services, name: str = "Composite Kit", price: float = 50.0,
                       stock: int = 10, category_id: str = None, vendor_id: str = None, **extra) -> dict:
    return await services.catalog.create_product(
        ProductCreate(name=name, price=price, stock=stock, category_id=category_id, **extra),
        vendor_id=vendor_id
    )


async def seed_category(services: Services, name: str = "Restorative") -> dict:
    return await services.catalog.create_category(CategoryCreate(name=name))


async def seed_coupon(services: Services, code: str = "SAVE10", **overrides) -> dict:
    now = datetime.utcnow()
    fields = {
        "code": code,
        "name": f"{code} promotion",
        "discount_type": "percentage",
        "discount_value": 10,
        "valid_from": now - timedelta(days=1),
        "valid_until": now + timedelta(days=30),
    }
    fields.update(overrides)
    return await services.coupons.create_coupon(CouponCreate(**fields))


# --- HTTP helpers ---

def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def register(client: TestClient, email: str, role: str = "user") -> dict:
    resp = client.post("/api/auth/register", json={
        "email": email,
        "password": PASSWORD,
        "role": role,
        "full_name": email.split("@")[0].title(),
    })
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def login(client: TestClient, email: str) -> dict:
    resp = client.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


def user_headers(client: TestClient, email: str, role: str = "user") -> dict:
    register(client, email, role)
    return bearer(login(client, email)["access_token"])


def admin_headers(client: TestClient, email: str = "admin@example.com") -> dict:
    user = register(client, email)
    run(client.app.state.services.users.set_status(user["id"], role="admin"))
    return bearer(login(client, email)["access_token"])
