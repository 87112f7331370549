"""
Checkout and the order lifecycle.

There are no cross-document transactions: checkout redeems the coupon,
reserves stock line by line, draws the gift card and persists the order,
undoing the earlier steps if a later one fails.
"""
import logging
import random
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from shared.utils import (
    Settings, NotFoundException, BusinessRuleException, ForbiddenException,
    AppException, to_decimal, round_money
)

from marketplace.integrations import EmailSender, NotificationHub, user_room, ADMIN_ROOM
from marketplace.listing import (
    matches_search, in_date_range, filter_documents, sort_documents, paginate
)
from marketplace.models import OrderDB, OrderItemDB
from marketplace.pricing import compute_totals
from marketplace.services.carts import CartService
from marketplace.services.catalog import CatalogService
from marketplace.services.coupons import CouponService
from marketplace.services.gift_cards import GiftCardService
from marketplace.services.users import default_address
from marketplace.store import Datastore, DuplicateError, new_id

logger = logging.getLogger("marketplace.orders")

ORDER_STATUSES = ("pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "refunded")
CANCELLABLE = ("pending", "confirmed")
ORDER_NUMBER_ATTEMPTS = 5


def generate_order_number(now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    return f"DENTAL-{now:%y%m%d}-{random.randint(0, 9999):04d}"


class OrderService:
    def __init__(self, db: Datastore, catalog: CatalogService, coupons: CouponService,
                 gift_cards: GiftCardService, carts: CartService, config: Settings,
                 email: Optional[EmailSender] = None, hub: Optional[NotificationHub] = None):
        self.orders = db.collection("orders")
        self.users = db.collection("users")
        self.catalog = catalog
        self.coupons = coupons
        self.gift_cards = gift_cards
        self.carts = carts
        self.config = config
        self.email = email
        self.hub = hub

    async def create_indexes(self):
        await self.orders.create_index("order_number", unique=True)
        await self.orders.create_index("user_id")
        await self.orders.create_index("status")

    # --- Checkout ---

    async def _validate_lines(self, requested) -> List[dict]:
        quantities: Dict[str, int] = {}
        for item in requested:
            quantities[item.product_id] = quantities.get(item.product_id, 0) + item.quantity

        lines = []
        for product_id, quantity in quantities.items():
            product = await self.catalog.products.get_by_id(product_id)
            if not product:
                raise NotFoundException(f"Product {product_id} not found")
            if not product.get("is_active", True):
                raise BusinessRuleException(f"Product '{product['name']}' is not available")
            if (product.get("stock") or 0) < quantity:
                raise BusinessRuleException(f"Insufficient stock for '{product['name']}'")
            price = round_money(product["price"])
            lines.append(OrderItemDB(
                product_id=product_id,
                name=product["name"],
                sku=product.get("sku"),
                quantity=quantity,
                price=float(price),
                total=float(round_money(price * quantity)),
                vendor_id=product.get("vendor_id")
            ).dict())
        return lines

    def _totals(self, lines: List[dict], discount, summary) -> dict:
        totals = compute_totals(lines, discount, self.config)
        if summary is None or not self.config.TRUST_CLIENT_ORDER_SUMMARY:
            return totals
        supplied = {k: v for k, v in summary.dict().items() if v is not None}
        for field in ("subtotal", "tax", "shipping", "discount", "total"):
            if field in supplied:
                totals[field] = float(round_money(supplied[field]))
        return totals

    async def _addresses(self, user_id: str, data) -> dict:
        """Addresses given at checkout win; otherwise the saved default for each kind is used."""
        user = None
        if not (data.shipping_address and data.billing_address):
            user = await self.users.get_by_id(user_id)
        addresses = {}
        for kind, given in (("shipping", data.shipping_address), ("billing", data.billing_address)):
            if given:
                addresses[kind] = given.dict()
                continue
            saved = default_address(user, kind)
            addresses[kind] = {k: v for k, v in saved.items() if k not in ("id", "type", "is_default")} if saved else None
        return addresses

    async def _release_stock(self, reserved: List[dict]):
        for line in reserved:
            try:
                await self.catalog.release_stock(line["product_id"], line["quantity"])
            except AppException as e:
                logger.error(f"Could not restore stock for {line['product_id']}: {e.detail}",
                             extra={"product_id": line["product_id"]})

    async def create_order(self, user_id: str, data) -> dict:
        lines = await self._validate_lines(data.items)
        order_id = new_id()

        coupon_code = None
        discount = Decimal(0)
        if data.coupon_code:
            subtotal = compute_totals(lines, 0, self.config)["subtotal"]
            redemption = await self.coupons.redeem(data.coupon_code, user_id, order_id, subtotal)
            coupon_code = redemption["coupon"]["code"]
            discount = to_decimal(redemption["discount_amount"])

        if data.gift_card_code:
            card_check = await self.gift_cards.validate(data.gift_card_code)
            if not card_check["valid"]:
                await self._release_coupon(coupon_code, order_id)
                raise BusinessRuleException(card_check["message"])

        totals = self._totals(lines, discount, data.summary)
        addresses = await self._addresses(user_id, data)

        reserved: List[dict] = []
        gift_card_code = None
        gift_card_amount = Decimal(0)
        try:
            for line in lines:
                await self.catalog.reserve_stock(line["product_id"], line["quantity"])
                reserved.append(line)

            if data.gift_card_code:
                card = await self.gift_cards.get_by_code(data.gift_card_code)
                draw = min(to_decimal(card["balance"]), to_decimal(totals["total"]))
                if draw > 0:
                    redemption = await self.gift_cards.redeem(card["code"], user_id, order_id, draw)
                    gift_card_code = card["code"]
                    gift_card_amount = to_decimal(redemption["amount_used"])

            order = await self._persist(order_id, user_id, data, addresses, lines, totals,
                                        coupon_code, gift_card_code, gift_card_amount)
        except Exception:
            await self._release_stock(reserved)
            await self._release_coupon(coupon_code, order_id)
            if gift_card_code:
                await self.gift_cards.refund(gift_card_code, order_id)
            raise

        logger.info(
            f"Order {order['order_number']} placed",
            extra={"user_id": user_id, "order_id": order["id"], "event": "order.created"}
        )
        await self._after_checkout(user_id, order)
        return order

    async def _persist(self, order_id, user_id, data, addresses, lines, totals, coupon_code,
                       gift_card_code, gift_card_amount) -> dict:
        amount_due = max(Decimal(0), to_decimal(totals["total"]) - gift_card_amount)
        order = OrderDB(
            order_number=generate_order_number(),
            user_id=user_id,
            items=lines,
            subtotal=totals["subtotal"],
            tax=totals["tax"],
            shipping=totals["shipping"],
            discount=totals["discount"],
            total=totals["total"],
            gift_card_amount=float(round_money(gift_card_amount)),
            amount_due=float(round_money(amount_due)),
            coupon_code=coupon_code,
            gift_card_code=gift_card_code,
            shipping_address=addresses["shipping"],
            billing_address=addresses["billing"],
            payment_method=data.payment_method,
            shipping_method=data.shipping_method,
            customer_notes=data.customer_notes,
            payment_status="paid" if amount_due <= 0 else "pending"
        )
        doc = order.dict(exclude={"id"})
        doc["id"] = order_id
        for _ in range(ORDER_NUMBER_ATTEMPTS):
            try:
                return await self.orders.create(doc)
            except DuplicateError:
                doc["order_number"] = generate_order_number()
        raise BusinessRuleException("Could not allocate an order number, please retry")

    async def _release_coupon(self, code: Optional[str], order_id: str):
        if not code:
            return
        try:
            await self.coupons.release(code, order_id)
        except AppException as e:
            logger.error(f"Could not release coupon {code}: {e.detail}", extra={"order_id": order_id})

    async def _after_checkout(self, user_id: str, order: dict):
        try:
            await self.carts.clear(user_id)
        except AppException as e:
            logger.warning(f"Cart not cleared after checkout: {e.detail}", extra={"user_id": user_id})

        if self.hub:
            summary = {"order_id": order["id"], "order_number": order["order_number"], "total": order["total"]}
            self.hub.emit("order:created", summary, room=user_room(user_id))
            self.hub.emit("order:new", summary, room=ADMIN_ROOM)

        await self._send_email(order, "order_confirmation", f"Order {order['order_number']} confirmed")

    async def _send_email(self, order: dict, template: str, subject: str):
        if not self.email:
            return
        try:
            user = await self.users.get_by_id(order["user_id"])
            if not user:
                return
            context = {
                "full_name": user.get("full_name"),
                "order_number": order["order_number"],
                "status": order["status"],
                "total": order["total"],
                "items": [{"name": i["name"], "quantity": i["quantity"], "total": i["total"]} for i in order["items"]],
                "tracking_number": order.get("tracking_number"),
            }
            await self.email.send(user["email"], subject, template, context)
        except Exception:
            logger.exception(f"Email '{template}' for order {order['id']} failed", extra={"order_id": order["id"]})

    # --- Lifecycle ---

    async def get_order(self, order_id: str, user_id: Optional[str] = None, is_admin: bool = False) -> dict:
        order = await self.orders.get_by_id(order_id)
        if not order:
            raise NotFoundException("Order not found")
        if not is_admin and order["user_id"] != user_id:
            raise ForbiddenException("Not authorized to view this order")
        return order

    async def cancel_order(self, order_id: str, user_id: str, is_admin: bool = False,
                           reason: Optional[str] = None) -> dict:
        await self.get_order(order_id, user_id, is_admin)

        def apply(order):
            if order["status"] not in CANCELLABLE:
                raise BusinessRuleException(f"Order cannot be cancelled when {order['status']}")
            return {
                "status": "cancelled",
                "cancelled_at": datetime.utcnow(),
                "cancellation_reason": reason,
            }

        # Only the writer that flips the status gets here, so stock is restored once
        order = await self.orders.mutate(order_id, apply, not_found="Order not found")
        await self._release_stock(order["items"])
        await self._release_coupon(order.get("coupon_code"), order_id)
        if order.get("gift_card_code"):
            try:
                await self.gift_cards.refund(order["gift_card_code"], order_id)
            except AppException as e:
                logger.error(f"Gift card refund failed: {e.detail}", extra={"order_id": order_id})

        logger.info(f"Order {order['order_number']} cancelled",
                    extra={"user_id": user_id, "order_id": order_id, "event": "order.cancelled"})
        self._notify_status(order)
        await self._send_email(order, "order_cancelled", f"Order {order['order_number']} cancelled")
        return order

    def _notify_status(self, order: dict):
        if self.hub:
            payload = {"order_id": order["id"], "order_number": order["order_number"], "status": order["status"]}
            self.hub.emit("order:status", payload, room=user_room(order["user_id"]))
            self.hub.emit("order:status", payload, room=ADMIN_ROOM)

    async def update_status(self, order_id: str, data, admin_id: Optional[str] = None) -> dict:
        """Admin overwrite. Any status may follow any other; stock is left alone."""
        order = await self.get_order(order_id, is_admin=True)
        patch = {k: v for k, v in data.dict().items() if v is not None}
        if "status" in patch:
            patch[f"{patch['status']}_at"] = datetime.utcnow()
        updated = await self.orders.update(order_id, patch)
        logger.info(
            f"Order {updated['order_number']} updated: {order['status']} -> {updated['status']}",
            extra={"user_id": admin_id, "order_id": order_id, "event": "order.status"}
        )
        if updated["status"] != order["status"]:
            self._notify_status(updated)
            if updated["status"] in ("shipped", "delivered"):
                await self._send_email(updated, f"order_{updated['status']}",
                                       f"Order {updated['order_number']} {updated['status']}")
        return updated

    async def add_tracking(self, order_id: str, data) -> dict:
        order = await self.get_order(order_id, is_admin=True)
        if order["status"] in ("cancelled", "refunded"):
            raise BusinessRuleException(f"Cannot ship an order that is {order['status']}")
        patch = {
            "tracking_number": data.tracking_number,
            "tracking_url": data.tracking_url,
            "estimated_delivery": data.estimated_delivery,
            "status": "shipped",
            "shipped_at": datetime.utcnow(),
        }
        updated = await self.orders.update(order_id, patch)
        self._notify_status(updated)
        await self._send_email(updated, "order_shipped", f"Order {updated['order_number']} shipped")
        return updated

    # --- Queries ---

    async def list_user_orders(self, user_id: str, page: int = 1, limit: int = 10,
                               status: Optional[str] = None) -> dict:
        docs = await self.orders.list_by_equality("user_id", user_id)
        if status:
            docs = [d for d in docs if d.get("status") == status]
        return paginate(sort_documents(docs, "created_at", "desc"), page, limit)

    async def list_orders(self, page: int = 1, limit: int = 20, status: Optional[str] = None,
                          payment_status: Optional[str] = None, search: Optional[str] = None,
                          start_date: Optional[datetime] = None, end_date: Optional[datetime] = None,
                          sort_by: str = "created_at", sort_order: str = "desc") -> dict:
        if status:
            docs = await self.orders.list_by_equality("status", status)
        else:
            docs = await self.orders.list_all()
        predicates = [
            lambda d: in_date_range(d.get("created_at"), start_date, end_date),
            lambda d: matches_search(d, search, ("order_number", "customer_notes")),
        ]
        if payment_status:
            predicates.append(lambda d: d.get("payment_status") == payment_status)
        docs = filter_documents(docs, *predicates)
        return paginate(sort_documents(docs, sort_by, sort_order), page, limit)

    async def order_stats(self, start_date: Optional[datetime] = None,
                          end_date: Optional[datetime] = None) -> dict:
        docs = [d for d in await self.orders.list_all()
                if in_date_range(d.get("created_at"), start_date, end_date)]
        by_status = {s: 0 for s in ORDER_STATUSES}
        for d in docs:
            by_status[d.get("status")] = by_status.get(d.get("status"), 0) + 1
        revenue_orders = [d for d in docs if d.get("status") == "delivered" and d.get("payment_status") == "paid"]
        revenue = sum(to_decimal(d.get("total")) for d in revenue_orders)
        return {
            "total_orders": len(docs),
            "pending_orders": by_status["pending"],
            "completed_orders": by_status["delivered"],
            "cancelled_orders": by_status["cancelled"],
            "by_status": by_status,
            "total_revenue": float(round_money(revenue)),
            "average_order_value": float(round_money(revenue / len(revenue_orders))) if revenue_orders else 0.0,
        }
