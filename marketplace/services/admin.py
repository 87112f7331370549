"""
Back-office rollups. Everything here materializes whole collections and
reduces in memory, which is fine at marketplace scale and keeps the store
interface down to equality lookups.
"""
from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List

from shared.utils import Settings, ValidationException, to_decimal, round_money

from marketplace.listing import sort_documents
from marketplace.store import Datastore

PERIODS = {"7d": 7, "30d": 30, "90d": 90, "1y": 365}
RECENT_DAYS = 30


def is_revenue(order: dict) -> bool:
    return order.get("status") == "delivered" and order.get("payment_status") == "paid"


def _money(value) -> float:
    return float(round_money(value))


class AdminService:
    def __init__(self, db: Datastore, config: Settings):
        self.db = db
        self.config = config

    def _col(self, name: str):
        return self.db.collection(name)

    async def dashboard(self) -> dict:
        now = datetime.utcnow()
        since = now - timedelta(days=RECENT_DAYS)

        users = await self._col("users").list_all()
        products = await self._col("products").list_all()
        orders = await self._col("orders").list_all()
        reviews = await self._col("reviews").list_all()

        def recent(docs):
            return [d for d in docs if d.get("created_at") and d["created_at"] >= since]

        revenue_orders = [o for o in orders if is_revenue(o)]
        recent_orders = recent(orders)

        return {
            "overview": {
                "total_users": len(users),
                "total_products": len(products),
                "total_orders": len(orders),
                "total_revenue": _money(sum(to_decimal(o.get("total")) for o in revenue_orders)),
                "total_categories": await self._col("categories").count(),
                "total_vendors": await self._col("vendors").count(),
                "total_reviews": len(reviews),
                "total_coupons": await self._col("coupons").count(),
                "total_gift_cards": await self._col("gift_cards").count(),
            },
            "recent_activity": {
                "new_users": len(recent(users)),
                "new_orders": len(recent_orders),
                "new_revenue": _money(sum(to_decimal(o.get("total")) for o in recent_orders if is_revenue(o))),
                "new_products": len(recent(products)),
                "new_reviews": len(recent(reviews)),
            },
            "top_products": self.top_products(products, orders),
            "low_stock_products": [
                {"id": p["id"], "name": p.get("name"), "stock": p.get("stock", 0), "price": p.get("price")}
                for p in sort_documents(
                    [p for p in products if p.get("is_active", True)
                     and (p.get("stock") or 0) <= self.config.LOW_STOCK_THRESHOLD],
                    "stock", "asc"
                )[:20]
            ],
            "recent_orders": [
                {
                    "id": o["id"],
                    "order_number": o.get("order_number"),
                    "user_id": o.get("user_id"),
                    "status": o.get("status"),
                    "total": o.get("total"),
                    "created_at": o.get("created_at"),
                }
                for o in sort_documents(orders, "created_at", "desc")[:10]
            ],
            "revenue_by_category": await self.revenue_by_category(products, revenue_orders),
        }

    @staticmethod
    def top_products(products: List[dict], orders: List[dict], limit: int = 10) -> List[dict]:
        sold: Dict[str, int] = defaultdict(int)
        revenue: Dict[str, Decimal] = defaultdict(Decimal)
        for order in orders:
            if order.get("status") in ("cancelled", "refunded"):
                continue
            for item in order.get("items") or []:
                sold[item["product_id"]] += item.get("quantity") or 0
                revenue[item["product_id"]] += to_decimal(item.get("total"))
        ranked = []
        for product in products:
            if not product.get("is_active", True):
                continue
            ranked.append({
                "id": product["id"],
                "name": product.get("name"),
                "price": product.get("price"),
                "stock": product.get("stock", 0),
                "average_rating": product.get("average_rating", 0.0),
                "total_sold": sold.get(product["id"], 0),
                "total_revenue": _money(revenue.get(product["id"], 0)),
            })
        ranked.sort(key=lambda p: p["total_sold"], reverse=True)
        return ranked[:limit]

    async def revenue_by_category(self, products: List[dict], revenue_orders: List[dict]) -> List[dict]:
        categories = {c["id"]: c for c in await self._col("categories").list_all()}
        product_category = {p["id"]: p.get("category_id") for p in products}
        revenue: Dict[str, Decimal] = defaultdict(Decimal)
        order_count: Dict[str, int] = defaultdict(int)
        for order in revenue_orders:
            for item in order.get("items") or []:
                category_id = product_category.get(item["product_id"])
                if category_id not in categories:
                    continue
                revenue[category_id] += to_decimal(item.get("total"))
                order_count[category_id] += 1
        rows = [
            {
                "category_id": category_id,
                "category_name": categories[category_id].get("name"),
                "revenue": _money(amount),
                "orders": order_count[category_id],
            }
            for category_id, amount in revenue.items()
        ]
        rows.sort(key=lambda r: r["revenue"], reverse=True)
        return rows

    async def analytics(self, period: str = "30d") -> dict:
        if period not in PERIODS:
            raise ValidationException(f"Unknown period '{period}', expected one of: {', '.join(PERIODS)}")
        start = datetime.utcnow() - timedelta(days=PERIODS[period])

        sales: Dict[str, dict] = {}
        for order in await self._col("orders").list_all():
            created = order.get("created_at")
            if not created or created < start or not is_revenue(order):
                continue
            day = sales.setdefault(created.strftime("%Y-%m-%d"), {"revenue": Decimal(0), "orders": 0})
            day["revenue"] += to_decimal(order.get("total"))
            day["orders"] += 1

        signups: Dict[str, int] = defaultdict(int)
        for user in await self._col("users").list_all():
            created = user.get("created_at")
            if created and created >= start:
                signups[created.strftime("%Y-%m-%d")] += 1

        return {
            "period": period,
            "sales": [
                {
                    "date": date,
                    "revenue": _money(row["revenue"]),
                    "orders": row["orders"],
                    "average_order_value": _money(row["revenue"] / row["orders"]),
                }
                for date, row in sorted(sales.items())
            ],
            "new_users": [{"date": date, "count": count} for date, count in sorted(signups.items())],
        }
