"""Order workflow: checkout, payment confirmation and status changes.

Checkout prices every line from the catalog, reserves stock with a
conditional decrement, persists the order and, for card payments, opens a
payment intent. Anything that fails after stock is reserved is compensated:
the reservation is released and a half-created order is deleted.
"""

from typing import List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from catalog import release_stock, reserve_stock
from database import create_document, to_object_id, utcnow
from errors import BusinessRuleViolation, Forbidden, NotFound, OutOfStock, ProductNotFound, ValidationFailed
from logging_config import get_logger
from notifications import NotificationDispatcher
from payments import FAILED_STATES, SUCCEEDED, PaymentGateway
from request_schemas import OrderCreateBody
from schemas import Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus, Role

logger = get_logger(__name__)


def _money(value: float) -> float:
    return round(value, 2)


def compute_total(items: List[OrderItem], shipping_cost: float = 0, tax_price: float = 0, discount_amount: float = 0) -> Tuple[float, float]:
    """Return ``(subtotal, total)`` for priced line items."""
    subtotal = _money(sum(item.price * item.quantity for item in items))
    total = _money(subtotal + shipping_cost + tax_price - discount_amount)
    return subtotal, total


class OrderService:
    def __init__(self, db: Database, gateway: PaymentGateway, notifier: NotificationDispatcher, currency: str = "usd"):
        self.db = db
        self.gateway = gateway
        self.notifier = notifier
        self.currency = currency

    @property
    def orders(self):
        return self.db["order"]

    # ----------------------- Checkout -----------------------
    def place_order(self, user: dict, body: OrderCreateBody) -> dict:
        priced = self._price_items(body)
        items = [item for _, item in priced]
        subtotal, total = compute_total(items, body.shipping_cost, body.tax_price, body.discount_amount)
        if total < 0:
            raise ValidationFailed("Discount exceeds the order total", code="INVALID_DISCOUNT")

        reserved = self._reserve(priced)

        now = utcnow()
        order = Order(
            user=user["id"],
            customer_name=body.customer_name or user.get("name") or "",
            customer_email=body.customer_email or user["email"],
            items=items,
            shipping_address=body.shipping_address,
            payment_method=body.payment_method,
            subtotal=subtotal,
            shipping_cost=body.shipping_cost,
            tax_price=body.tax_price,
            discount_amount=body.discount_amount,
            total_amount=total,
            payment_status=PaymentStatus.PENDING,
            status=OrderStatus.PROCESSING,
            status_history=[{"status": OrderStatus.PROCESSING, "note": "Order placed", "updated_at": now}],
        )
        try:
            order_id = create_document(self.db, "order", order)
        except Exception:
            self._release(reserved)
            raise
        oid = ObjectId(order_id)
        logger.info(
            "order_created",
            order_id=order_id,
            user_id=user["id"],
            total_amount=total,
            payment_method=order.payment_method,
        )

        result = {"order_id": order_id, "total_amount": total}
        if body.payment_method == PaymentMethod.CARD:
            try:
                intent = self.gateway.create_payment_intent(
                    total, self.currency, {"order_id": order_id, "user_id": user["id"]}
                )
            except Exception:
                self.orders.delete_one({"_id": oid})
                self._release(reserved)
                logger.warning("payment_intent_failed", order_id=order_id, compensated=True)
                raise
            self.orders.update_one(
                {"_id": oid}, {"$set": {"payment_intent_id": intent.id, "updated_at": utcnow()}}
            )
            result["client_secret"] = intent.client_secret
            result["payment_intent_id"] = intent.id

        self.notifier.order_confirmation(self.orders.find_one({"_id": oid}))
        return result

    def _price_items(self, body: OrderCreateBody) -> List[Tuple[ObjectId, OrderItem]]:
        priced = []
        for cart_item in body.items:
            try:
                product_id = ObjectId(cart_item.product)
            except (InvalidId, TypeError):
                raise ProductNotFound(cart_item.product)
            product = self.db["product"].find_one({"_id": product_id})
            if not product:
                raise ProductNotFound(cart_item.product)
            stock = product.get("stock", 0)
            if stock < cart_item.quantity:
                raise OutOfStock(product["name"], cart_item.quantity, stock)
            images = product.get("images") or []
            priced.append(
                (
                    product_id,
                    OrderItem(
                        product=str(product_id),
                        name=product["name"],
                        image=images[0] if images else None,
                        quantity=cart_item.quantity,
                        price=product["price"],
                    ),
                )
            )
        return priced

    def _reserve(self, priced: List[Tuple[ObjectId, OrderItem]]) -> List[Tuple[ObjectId, int]]:
        reserved = []
        for product_id, item in priced:
            if reserve_stock(self.db, product_id, item.quantity) is None:
                self._release(reserved)
                current = self.db["product"].find_one({"_id": product_id}) or {}
                logger.info("stock_reservation_failed", product_id=str(product_id), requested=item.quantity)
                raise OutOfStock(item.name, item.quantity, current.get("stock", 0))
            reserved.append((product_id, item.quantity))
        return reserved

    def _release(self, reserved: List[Tuple[ObjectId, int]]) -> None:
        for product_id, quantity in reserved:
            release_stock(self.db, product_id, quantity)

    # ----------------------- Payment -----------------------
    def update_payment_status(
        self, order_id: str, payment_intent_id: str, user: dict, claimed_status: Optional[str] = None
    ) -> dict:
        """Settle an order's payment from the gateway's view of the intent.

        The intent belongs to the order when the gateway metadata names it, so
        any intent issued for the order settles it, not only the latest one.
        The caller's ``claimed_status`` is only logged. Marking an order paid
        is conditional on it not being paid already, so repeats are no-ops.
        """
        order = self._get(order_id)
        self._check_access(order, user)

        intent = self.gateway.retrieve_payment_intent(payment_intent_id)
        if intent.metadata.get("order_id") != str(order["_id"]):
            raise ValidationFailed("Payment intent does not belong to this order", code="PAYMENT_INTENT_MISMATCH")

        logger.info(
            "payment_status_check",
            order_id=order_id,
            claimed_status=claimed_status,
            gateway_status=intent.status,
        )

        if intent.status == SUCCEEDED:
            now = utcnow()
            updated = self.orders.find_one_and_update(
                {"_id": order["_id"], "payment_status": {"$ne": PaymentStatus.PAID.value}},
                {
                    "$set": {
                        "payment_status": PaymentStatus.PAID.value,
                        "is_paid": True,
                        "paid_at": now,
                        "status": OrderStatus.PROCESSING.value,
                        "payment_intent_id": payment_intent_id,
                        "updated_at": now,
                    },
                    "$push": {
                        "status_history": {
                            "status": OrderStatus.PROCESSING.value,
                            "note": "Payment received",
                            "updated_at": now,
                        }
                    },
                },
                return_document=ReturnDocument.AFTER,
            )
            if updated is not None:
                logger.info("order_paid", order_id=order_id, payment_intent_id=payment_intent_id)
                self.notifier.order_status_update(updated, OrderStatus.PROCESSING.value)
            return {"order_id": order_id, "payment_status": PaymentStatus.PAID.value, "changed": updated is not None}

        if intent.status in FAILED_STATES:
            self.orders.update_one(
                {"_id": order["_id"], "payment_status": {"$ne": PaymentStatus.PAID.value}},
                {"$set": {"payment_status": PaymentStatus.FAILED.value, "updated_at": utcnow()}},
            )
            logger.info("order_payment_failed", order_id=order_id, gateway_status=intent.status)
            raise BusinessRuleViolation("Payment failed.", code="PAYMENT_FAILED")

        raise BusinessRuleViolation("Payment intent status is not succeeded.", code="PAYMENT_NOT_COMPLETED")

    def create_payment_intent(self, order_id: str, user: dict) -> dict:
        order = self._get(order_id)
        if order.get("user") != user["id"]:
            raise Forbidden("Not authorized to access this order")
        if order.get("payment_status") == PaymentStatus.PAID.value:
            raise BusinessRuleViolation("Payment already completed for this order", code="ALREADY_PAID")

        intent = self.gateway.create_payment_intent(
            order["total_amount"], self.currency, {"order_id": order_id, "user_id": user["id"]}
        )
        self.orders.update_one(
            {"_id": order["_id"]}, {"$set": {"payment_intent_id": intent.id, "updated_at": utcnow()}}
        )
        return {"client_secret": intent.client_secret, "payment_intent_id": intent.id}

    # ----------------------- Status -----------------------
    def update_status(self, order_id: str, status: OrderStatus, note: Optional[str] = None) -> dict:
        """Set the status and append to the history. The email is best effort."""
        status = OrderStatus(status).value
        now = utcnow()
        entry = {"status": status, "note": note or f"Status updated to {status}", "updated_at": now}
        order = self.orders.find_one_and_update(
            {"_id": to_object_id(order_id, "order id")},
            {"$set": {"status": status, "updated_at": now}, "$push": {"status_history": entry}},
            return_document=ReturnDocument.AFTER,
        )
        if order is None:
            raise NotFound("Order not found", code="ORDER_NOT_FOUND")
        logger.info("order_status_updated", order_id=order_id, status=status)
        self.notifier.order_status_update(order, status)
        return order

    # ----------------------- Queries -----------------------
    def get_order(self, order_id: str, user: dict) -> dict:
        order = self._get(order_id)
        self._check_access(order, user)
        return order

    def list_for_user(self, user_id: str) -> List[dict]:
        return list(self.orders.find({"user": user_id}).sort("created_at", DESCENDING))

    def delete_order(self, order_id: str) -> None:
        res = self.orders.delete_one({"_id": to_object_id(order_id, "order id")})
        if res.deleted_count == 0:
            raise NotFound("Order not found", code="ORDER_NOT_FOUND")
        logger.info("order_deleted", order_id=order_id)

    @staticmethod
    def _check_access(order: dict, user: dict) -> None:
        if order.get("user") != user["id"] and user.get("role") != Role.ADMIN.value:
            raise Forbidden("Not authorized to access this order")

    def _get(self, order_id: str) -> dict:
        order = self.orders.find_one({"_id": to_object_id(order_id, "order id")})
        if not order:
            raise NotFound("Order not found.", code="ORDER_NOT_FOUND")
        return order


def get_order_service(request: Request) -> OrderService:
    return request.app.state.order_service
