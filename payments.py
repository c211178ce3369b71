"""Payment gateway adapters.

``PaymentGateway`` is the contract the order workflow depends on:
- ``StripeGateway`` talks to Stripe PaymentIntents (production)
- ``FakeGateway`` keeps intents in memory (development and tests)

``build_gateway`` picks one from the settings.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional
from uuid import uuid4

import stripe

from config import Settings
from errors import PaymentGatewayError
from logging_config import get_logger

logger = get_logger(__name__)

SUCCEEDED = "succeeded"
REQUIRES_PAYMENT_METHOD = "requires_payment_method"
# Stripe has no failed status; a declined attempt returns the intent to
# requires_payment_method with last_payment_error set.
PAYMENT_FAILED = "payment_failed"
FAILED_STATES = frozenset({"canceled", PAYMENT_FAILED})


def to_minor_units(amount: float) -> int:
    """Dollars to cents, rounding half up."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    status: str
    amount: int
    currency: str
    client_secret: Optional[str] = None
    metadata: Dict[str, str] = field(default_factory=dict)


class PaymentGateway(ABC):
    @abstractmethod
    def create_payment_intent(self, amount: float, currency: str, metadata: Dict[str, str]) -> PaymentIntent:
        """Create an intent for ``amount`` (major units). Raises PaymentGatewayError."""
        ...

    @abstractmethod
    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        """Fetch the gateway's authoritative view of an intent. Raises PaymentGatewayError."""
        ...

    def close(self) -> None:
        pass


class StripeGateway(PaymentGateway):
    def __init__(self, api_key: str) -> None:
        self.api_key = api_key

    def create_payment_intent(self, amount: float, currency: str, metadata: Dict[str, str]) -> PaymentIntent:
        try:
            intent = stripe.PaymentIntent.create(
                api_key=self.api_key,
                amount=to_minor_units(amount),
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as exc:
            logger.warning("stripe_create_intent_failed", error=str(exc), order_id=metadata.get("order_id"))
            raise PaymentGatewayError(f"Payment gateway error: {exc.user_message or 'request failed'}") from exc
        return self._to_intent(intent)

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        try:
            intent = stripe.PaymentIntent.retrieve(intent_id, api_key=self.api_key)
        except stripe.StripeError as exc:
            logger.warning("stripe_retrieve_intent_failed", error=str(exc), payment_intent_id=intent_id)
            raise PaymentGatewayError(f"Payment gateway error: {exc.user_message or 'request failed'}") from exc
        return self._to_intent(intent)

    @staticmethod
    def _to_intent(intent) -> PaymentIntent:
        metadata = getattr(intent, "metadata", None)
        status = intent.status
        if status == REQUIRES_PAYMENT_METHOD and getattr(intent, "last_payment_error", None):
            status = PAYMENT_FAILED
        return PaymentIntent(
            id=intent.id,
            status=status,
            amount=intent.amount,
            currency=intent.currency,
            client_secret=getattr(intent, "client_secret", None),
            metadata={k: str(v) for k, v in dict(metadata or {}).items()},
        )


class FakeGateway(PaymentGateway):
    """In-memory gateway.

    Intents start in ``requires_payment_method``; ``set_status`` plays the part
    of the customer completing (or failing) the payment.
    """

    def __init__(self) -> None:
        self.intents: Dict[str, PaymentIntent] = {}
        self.calls: List[dict] = []
        self.should_succeed = True
        self.failure_reason = "Card declined"

    def configure(self, should_succeed: bool, failure_reason: str = "Card declined") -> None:
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def create_payment_intent(self, amount: float, currency: str, metadata: Dict[str, str]) -> PaymentIntent:
        self.calls.append({"method": "create_payment_intent", "amount": amount, "currency": currency, "metadata": dict(metadata)})
        if not self.should_succeed:
            raise PaymentGatewayError(f"Payment gateway error: {self.failure_reason}")

        intent_id = f"pi_fake_{uuid4().hex[:16]}"
        intent = PaymentIntent(
            id=intent_id,
            status=REQUIRES_PAYMENT_METHOD,
            amount=to_minor_units(amount),
            currency=currency,
            client_secret=f"{intent_id}_secret_{uuid4().hex[:8]}",
            metadata=dict(metadata),
        )
        self.intents[intent_id] = intent
        return intent

    def retrieve_payment_intent(self, intent_id: str) -> PaymentIntent:
        self.calls.append({"method": "retrieve_payment_intent", "payment_intent_id": intent_id})
        intent = self.intents.get(intent_id)
        if intent is None:
            raise PaymentGatewayError(f"No such payment_intent: {intent_id}")
        return intent

    def set_status(self, intent_id: str, status: str) -> None:
        self.intents[intent_id] = replace(self.intents[intent_id], status=status)


def build_gateway(settings: Settings) -> PaymentGateway:
    if settings.stripe_secret_key:
        return StripeGateway(settings.stripe_secret_key)
    if settings.is_production:
        logger.warning("payment_gateway_not_configured", detail="STRIPE_SECRET_KEY missing, using fake gateway")
    return FakeGateway()
