#!/usr/bin/env python3
"""
Smoke test against a running Dental Marketplace API.

Usage:
    1. Start the API: python -m marketplace.main (or uvicorn marketplace.main:app)
    2. Install dependencies: pip install requests
    3. Run the script: python tests/live_smoke.py [BASE_URL]

Covers the buyer path end to end:
    - Authentication (Register/Login/Refresh)
    - Vendor profile and product management
    - Shopping cart and checkout
    - Order cancellation and stock restoration
    - Security/Negative checks

Output:
    - Console logs with pass/fail status
    - live_smoke_results.json report
"""
import requests
import json
import time
import sys
from datetime import datetime
from typing import Dict, Any

# Configuration
BASE_URL = sys.argv[1].rstrip("/") if len(sys.argv) > 1 else "http://localhost:8000"
RESULTS_FILE = "live_smoke_results.json"
PASSWORD = "Password123"

# Colors
class Colors:
    HEADER = '\033[95m'
    BLUE = '\033[94m'
    GREEN = '\033[92m'
    FAIL = '\033[91m'
    ENDC = '\033[0m'

class SmokeRunner:
    def __init__(self):
        self.results = []
        self.session = requests.Session()
        self.store: Dict[str, Any] = {}
        self.start_time = time.time()

    def log(self, message: str, color: str = Colors.ENDC):
        print(f"{color}{message}{Colors.ENDC}")

    def save_result(self, name: str, status: str, duration: float, error: str = None):
        self.results.append({
            "check": name,
            "status": status,
            "duration": duration,
            "error": error,
            "timestamp": datetime.utcnow().isoformat()
        })
        color = Colors.GREEN if status == "PASS" else Colors.FAIL
        self.log(f"[{status}] {name} ({duration:.4f}s)", color)
        if error:
            self.log(f"  Error: {error}", Colors.FAIL)

    def run_check(self, name: str, func):
        start = time.time()
        try:
            func(self)
            self.save_result(name, "PASS", time.time() - start)
        except AssertionError as e:
            self.save_result(name, "FAIL", time.time() - start, str(e))
        except Exception as e:
            self.save_result(name, "ERROR", time.time() - start, str(e))

    def assert_status(self, response, expected: int):
        if response.status_code != expected:
            raise AssertionError(f"Expected status {expected}, got {response.status_code}. Body: {response.text}")

    def auth(self, who: str) -> dict:
        return {"Authorization": f"Bearer {self.store[who + '_token']}"}

    def save_report(self):
        with open(RESULTS_FILE, "w") as f:
            json.dump({
                "summary": {
                    "total": len(self.results),
                    "passed": len([r for r in self.results if r["status"] == "PASS"]),
                    "failed": len([r for r in self.results if r["status"] != "PASS"]),
                    "total_duration": time.time() - self.start_time
                },
                "results": self.results
            }, f, indent=2)
        self.log(f"\nResults saved to {RESULTS_FILE}", Colors.BLUE)

# --- Checks ---

def health_check(runner: SmokeRunner):
    resp = runner.session.get(f"{BASE_URL}/health")
    runner.assert_status(resp, 200)
    if resp.json()["status"] != "healthy":
        raise AssertionError("System is not healthy")

# Phase 1: Authentication

def register_users(runner: SmokeRunner):
    stamp = int(time.time())
    for who, role in (("vendor", "vendor"), ("user", "user")):
        email = f"{who}_{stamp}@example.com"
        resp = runner.session.post(f"{BASE_URL}/api/auth/register", json={
            "email": email,
            "password": PASSWORD,
            "role": role,
            "full_name": f"Smoke {who.title()}"
        })
        runner.assert_status(resp, 201)
        runner.store[f"{who}_email"] = email

def login_users(runner: SmokeRunner):
    for who in ("vendor", "user"):
        resp = runner.session.post(f"{BASE_URL}/api/auth/login", json={
            "email": runner.store[f"{who}_email"],
            "password": PASSWORD
        })
        runner.assert_status(resp, 200)
        runner.store[f"{who}_token"] = resp.json()["data"]["access_token"]
        runner.store[f"{who}_refresh"] = resp.json()["data"]["refresh_token"]

def refresh_rotation(runner: SmokeRunner):
    old = runner.store["user_refresh"]
    resp = runner.session.post(f"{BASE_URL}/api/auth/refresh", json={"refresh_token": old})
    runner.assert_status(resp, 200)
    runner.store["user_token"] = resp.json()["data"]["access_token"]
    replay = runner.session.post(f"{BASE_URL}/api/auth/refresh", json={"refresh_token": old})
    runner.assert_status(replay, 401)

# Phase 2: Catalog

def create_vendor_profile(runner: SmokeRunner):
    resp = runner.session.post(f"{BASE_URL}/api/vendors", json={
        "name": f"Smoke Dental {int(time.time())}"
    }, headers=runner.auth("vendor"))
    runner.assert_status(resp, 201)

def create_product(runner: SmokeRunner):
    resp = runner.session.post(f"{BASE_URL}/api/products", json={
        "name": "Smoke Test Composite",
        "description": "Light-cure universal composite",
        "price": 60.0,
        "stock": 10
    }, headers=runner.auth("vendor"))
    runner.assert_status(resp, 201)
    runner.store["product_id"] = resp.json()["data"]["id"]

def list_products(runner: SmokeRunner):
    resp = runner.session.get(f"{BASE_URL}/api/products", params={"search": "Smoke Test Composite", "limit": 100})
    runner.assert_status(resp, 200)
    products = resp.json()["data"]["items"]
    if not any(p["id"] == runner.store["product_id"] for p in products):
        raise AssertionError("Created product not found in list")

# Phase 3: Cart

def add_to_cart(runner: SmokeRunner):
    resp = runner.session.post(f"{BASE_URL}/api/cart/items", json={
        "product_id": runner.store["product_id"],
        "quantity": 2
    }, headers=runner.auth("user"))
    runner.assert_status(resp, 200)
    cart = resp.json()["data"]
    # 120.00 + 10% tax, free shipping at 100 and above
    if cart["total"] != 132.0:
        raise AssertionError(f"Unexpected cart total {cart['total']}")

# Phase 4: Orders

def create_order(runner: SmokeRunner):
    resp = runner.session.post(f"{BASE_URL}/api/orders", json={
        "items": [{"product_id": runner.store["product_id"], "quantity": 2}],
        "shipping_address": {"address1": "123 Test St", "city": "Porto", "country": "PT"}
    }, headers=runner.auth("user"))
    runner.assert_status(resp, 201)
    order = resp.json()["data"]
    runner.store["order_id"] = order["id"]
    if order["status"] != "pending":
        raise AssertionError("Order status should be pending")

def verify_stock_and_cart(runner: SmokeRunner):
    product = runner.session.get(f"{BASE_URL}/api/products/{runner.store['product_id']}").json()["data"]
    if product["stock"] != 8:
        raise AssertionError(f"Stock not reserved, got {product['stock']}")
    cart = runner.session.get(f"{BASE_URL}/api/cart", headers=runner.auth("user")).json()["data"]
    if cart["items"]:
        raise AssertionError("Cart not cleared after order")

def cancel_order(runner: SmokeRunner):
    resp = runner.session.post(f"{BASE_URL}/api/orders/{runner.store['order_id']}/cancel",
                               json={"reason": "Smoke test"}, headers=runner.auth("user"))
    runner.assert_status(resp, 200)
    product = runner.session.get(f"{BASE_URL}/api/products/{runner.store['product_id']}").json()["data"]
    if product["stock"] != 10:
        raise AssertionError(f"Stock not restored, got {product['stock']}")

# Phase 5: Negative checks

def negative_checks(runner: SmokeRunner):
    resp = runner.session.get(f"{BASE_URL}/api/cart", headers={"Authorization": "Bearer invalid_token"})
    runner.assert_status(resp, 401)

    resp = runner.session.post(f"{BASE_URL}/api/products", json={"name": "Bad", "price": -10},
                               headers=runner.auth("vendor"))
    runner.assert_status(resp, 422)

    resp = runner.session.post(f"{BASE_URL}/api/products", json={"name": "Nope", "price": 1},
                               headers=runner.auth("user"))
    runner.assert_status(resp, 403)


def main():
    runner = SmokeRunner()
    runner.log(f"Starting smoke run against {BASE_URL}...\n", Colors.HEADER)

    for name, check in (
        ("Health Check", health_check),
        ("Register Users", register_users),
        ("Login Users", login_users),
        ("Refresh Rotation", refresh_rotation),
        ("Create Vendor Profile", create_vendor_profile),
        ("Create Product", create_product),
        ("List Products", list_products),
        ("Add to Cart", add_to_cart),
        ("Create Order", create_order),
        ("Verify Stock and Cart", verify_stock_and_cart),
        ("Cancel Order", cancel_order),
        ("Negative Checks", negative_checks),
    ):
        runner.run_check(name, check)

    runner.save_report()

    if any(r["status"] != "PASS" for r in runner.results):
        sys.exit(1)

if __name__ == "__main__":
    main()
