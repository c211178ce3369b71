"""Transactional email: adapters, templates and the dispatcher.

Sending is best effort. ``NotificationDispatcher`` never raises; a failed send
is logged and reported as ``False`` so the triggering request carries on.
"""

from abc import ABC, abstractmethod
from datetime import timedelta
from html import escape
from typing import List, Optional
from uuid import uuid4

import resend

from config import Settings
from database import utcnow
from logging_config import get_logger

logger = get_logger(__name__)


class EmailDeliveryError(Exception):
    pass


# ----------------------- Adapters -----------------------
class EmailPort(ABC):
    @abstractmethod
    def send(self, to: str, subject: str, body: str, html_body: Optional[str] = None) -> str:
        """Send one message and return the transport's message id.

        Raises EmailDeliveryError when the transport refuses the message.
        """
        ...

    def close(self) -> None:
        pass


class ResendEmailAdapter(EmailPort):
    def __init__(self, api_key: str, sender: str) -> None:
        resend.api_key = api_key
        self.sender = sender

    def send(self, to: str, subject: str, body: str, html_body: Optional[str] = None) -> str:
        params = {"from": self.sender, "to": [to], "subject": subject, "text": body}
        if html_body:
            params["html"] = html_body
        try:
            response = resend.Emails.send(params)
        except Exception as exc:
            raise EmailDeliveryError(str(exc)) from exc
        return response.get("id", "") if isinstance(response, dict) else getattr(response, "id", "")


class FakeEmailAdapter(EmailPort):
    """Records messages in memory for test assertions."""

    def __init__(self) -> None:
        self.sent_emails: List[dict] = []
        self.should_succeed = True
        self.failure_reason = "Email delivery failed"

    def configure(self, should_succeed: bool = True, failure_reason: str = "Email delivery failed") -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def send(self, to: str, subject: str, body: str, html_body: Optional[str] = None) -> str:
        if not self.should_succeed:
            raise EmailDeliveryError(self.failure_reason)
        message_id = f"email-{uuid4().hex[:12]}"
        self.sent_emails.append(
            {"message_id": message_id, "to": to, "subject": subject, "body": body, "html_body": html_body}
        )
        return message_id

    def reset(self) -> None:
        self.sent_emails.clear()
        self.should_succeed = True
        self.failure_reason = "Email delivery failed"


def build_mailer(settings: Settings) -> EmailPort:
    if settings.resend_api_key:
        return ResendEmailAdapter(settings.resend_api_key, settings.email_from)
    if settings.is_production:
        logger.warning("email_transport_not_configured", detail="RESEND_API_KEY missing, emails are only recorded")
    return FakeEmailAdapter()


# ----------------------- Templates -----------------------
PAYMENT_METHOD_LABELS = {"card": "Credit Card", "cod": "Cash on Delivery"}


def _format_address(address: dict) -> str:
    parts = [address.get("street"), address.get("city"), address.get("state"), address.get("zip_code"), address.get("country")]
    return ", ".join(p for p in parts if p)


class OrderConfirmationTemplate:
    subject = "Order Confirmation"

    @staticmethod
    def render(context: dict) -> dict:
        lines = [f"- {i['name']} x{i['quantity']} @ {i['price']:.2f}" for i in context["items"]]
        body = (
            f"Hi {context['name']},\n\n"
            f"Thank you for your order #{context['order_number']} placed on {context['order_date']}.\n\n"
            + "\n".join(lines)
            + "\n\n"
            f"Subtotal: {context['subtotal']}\n"
            f"Shipping: {context['shipping_cost']}\n"
            f"Tax: {context['tax']}\n"
            f"Discount: {context['discount']}\n"
            f"Total: {context['total_amount']}\n\n"
            f"Payment method: {context['payment_method']}\n"
            f"Ships to: {context['shipping_address']}\n"
            f"Estimated delivery: {context['estimated_delivery']}\n\n"
            f"Track your order: {context['tracking_url']}\n"
        )
        rows = "".join(
            f"<tr><td>{escape(i['name'])}</td><td>{i['quantity']}</td><td>{i['price']:.2f}</td></tr>"
            for i in context["items"]
        )
        html_body = (
            f"<h1>Thank you for your order, {escape(context['name'])}!</h1>"
            f"<p>Order #{escape(context['order_number'])} &middot; {escape(context['order_date'])}</p>"
            f"<table>{rows}</table>"
            f"<p><strong>Total: {escape(context['total_amount'])}</strong></p>"
            f"<p><a href=\"{escape(context['tracking_url'])}\">Track your order</a></p>"
        )
        return {"subject": OrderConfirmationTemplate.subject, "body": body, "html": html_body}


class OrderStatusUpdateTemplate:
    subject = "Order Status Update"

    @staticmethod
    def render(context: dict) -> dict:
        body = (
            f"Hi {context['name']},\n\n"
            f"Your order #{context['order_number']} is now {context['status']} "
            f"(updated {context['updated_at']}).\n\n"
            f"Track your order: {context['tracking_url']}\n"
        )
        html_body = (
            f"<p>Hi {escape(context['name'])},</p>"
            f"<p>Your order #{escape(context['order_number'])} is now "
            f"<strong>{escape(context['status'])}</strong>.</p>"
            f"<p><a href=\"{escape(context['tracking_url'])}\">Track your order</a></p>"
        )
        return {"subject": OrderStatusUpdateTemplate.subject, "body": body, "html": html_body}


# ----------------------- Dispatcher -----------------------
class NotificationDispatcher:
    def __init__(self, mailer: EmailPort, frontend_url: str) -> None:
        self.mailer = mailer
        self.frontend_url = frontend_url.rstrip("/")

    def _base_context(self, order: dict) -> dict:
        order_id = str(order["_id"])
        return {
            "name": order.get("customer_name") or "there",
            "order_number": order_id[-6:],
            "tracking_url": f"{self.frontend_url}/order/{order_id}",
        }

    def order_confirmation(self, order: dict) -> bool:
        created = order.get("created_at") or utcnow()
        context = self._base_context(order)
        context.update(
            {
                "order_date": created.strftime("%Y-%m-%d"),
                "estimated_delivery": (created + timedelta(days=7)).strftime("%Y-%m-%d"),
                "items": order.get("items", []),
                "subtotal": f"{order.get('subtotal', 0):.2f}",
                "shipping_cost": f"{order.get('shipping_cost', 0):.2f}",
                "tax": f"{order.get('tax_price', 0):.2f}",
                "discount": f"{order.get('discount_amount', 0):.2f}",
                "total_amount": f"{order.get('total_amount', 0):.2f}",
                "payment_method": PAYMENT_METHOD_LABELS.get(order.get("payment_method"), order.get("payment_method")),
                "shipping_address": _format_address(order.get("shipping_address") or {}),
            }
        )
        return self._send(order, OrderConfirmationTemplate.render(context), "order_confirmation")

    def order_status_update(self, order: dict, status: str) -> bool:
        context = self._base_context(order)
        context.update({"status": status.capitalize(), "updated_at": utcnow().strftime("%Y-%m-%d %H:%M UTC")})
        return self._send(order, OrderStatusUpdateTemplate.render(context), "order_status_update")

    def _send(self, order: dict, message: dict, kind: str) -> bool:
        recipient = order.get("customer_email")
        if not recipient:
            logger.warning("email_skipped", kind=kind, order_id=str(order.get("_id")), reason="no_recipient")
            return False
        try:
            message_id = self.mailer.send(recipient, message["subject"], message["body"], message.get("html"))
        except Exception as exc:
            logger.warning("email_send_failed", kind=kind, order_id=str(order.get("_id")), error=str(exc))
            return False
        logger.info("email_sent", kind=kind, order_id=str(order.get("_id")), message_id=message_id)
        return True
