"""
Payment Capability

The order workflow talks to the payment provider only through the
``PaymentGateway`` protocol. ``StripePaymentGateway`` is the production
implementation; tests inject a fake through the FastAPI dependency.

Amounts cross this boundary as Decimal currency units and are converted to
the provider's minor units here.
"""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Protocol

import stripe
import structlog

from checklistpro.config import get_settings
from checklistpro.errors import PaymentError, ValidationError

logger = structlog.get_logger(__name__)


class PaymentStatus:
    SUCCEEDED = "succeeded"
    REQUIRES_ACTION = "requires_action"
    FAILED = "failed"


@dataclass
class PaymentResult:
    status: str
    payment_id: Optional[str] = None
    client_secret: Optional[str] = None
    failure_message: Optional[str] = None


@dataclass
class PaymentEvent:
    """Normalized provider webhook event"""
    status: str
    payment_id: str
    order_id: Optional[str] = None
    payment_reference: Optional[str] = None
    failure_message: Optional[str] = None


class PaymentGateway(Protocol):
    async def charge(
        self,
        amount: Decimal,
        currency: str,
        payment_method: str,
        reference: str,
        metadata: Dict[str, str],
    ) -> PaymentResult:
        """
        Charge immediately. Declines come back as a FAILED result; provider
        faults raise PaymentError(declined=False).
        """
        ...

    async def create_intent(
        self,
        amount: Decimal,
        currency: str,
        reference: str,
        metadata: Dict[str, str],
    ) -> PaymentResult:
        ...

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> Optional[PaymentEvent]:
        """Verify and normalize a webhook; None for event types we ignore"""
        ...


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).to_integral_value())


class StripePaymentGateway:
    """Stripe PaymentIntents; blocking SDK calls run in a worker thread"""

    def __init__(self, api_key: str, webhook_secret: str = ""):
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    async def charge(
        self,
        amount: Decimal,
        currency: str,
        payment_method: str,
        reference: str,
        metadata: Dict[str, str],
    ) -> PaymentResult:
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                api_key=self.api_key,
                amount=to_minor_units(amount),
                currency=currency,
                payment_method=payment_method,
                confirm=True,
                automatic_payment_methods={"enabled": True, "allow_redirects": "never"},
                metadata=metadata,
                idempotency_key=reference,
            )
        except stripe.CardError as e:
            logger.info("Card declined", payment_reference=reference, code=e.code)
            return PaymentResult(status=PaymentStatus.FAILED, failure_message=e.user_message or str(e))
        except stripe.StripeError as e:
            logger.error("Stripe charge failed", payment_reference=reference, error=str(e))
            raise PaymentError("Payment provider error", declined=False) from e

        return self._result_from_intent(intent)

    async def create_intent(
        self,
        amount: Decimal,
        currency: str,
        reference: str,
        metadata: Dict[str, str],
    ) -> PaymentResult:
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                api_key=self.api_key,
                amount=to_minor_units(amount),
                currency=currency,
                automatic_payment_methods={"enabled": True},
                metadata=metadata,
                idempotency_key=reference,
            )
        except stripe.StripeError as e:
            logger.error("Stripe intent creation failed", payment_reference=reference, error=str(e))
            raise PaymentError("Payment provider error", declined=False) from e

        return PaymentResult(
            status=PaymentStatus.REQUIRES_ACTION,
            payment_id=intent["id"],
            client_secret=intent["client_secret"],
        )

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> Optional[PaymentEvent]:
        if not signature:
            raise ValidationError("Missing webhook signature")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            raise ValidationError("Invalid webhook payload") from e
        except stripe.SignatureVerificationError as e:
            raise ValidationError("Invalid webhook signature") from e

        event_type = event["type"]
        if event_type == "payment_intent.succeeded":
            status = PaymentStatus.SUCCEEDED
        elif event_type == "payment_intent.payment_failed":
            status = PaymentStatus.FAILED
        else:
            logger.debug("Ignoring webhook event", event_type=event_type)
            return None

        intent = event["data"]["object"]
        metadata = dict(intent.get("metadata") or {})
        last_error = intent.get("last_payment_error") or {}
        return PaymentEvent(
            status=status,
            payment_id=intent["id"],
            order_id=metadata.get("order_id"),
            payment_reference=metadata.get("payment_reference"),
            failure_message=last_error.get("message"),
        )

    @staticmethod
    def _result_from_intent(intent: Any) -> PaymentResult:
        status = intent["status"]
        if status == "succeeded":
            return PaymentResult(status=PaymentStatus.SUCCEEDED, payment_id=intent["id"])
        if status in ("requires_action", "processing", "requires_confirmation"):
            return PaymentResult(
                status=PaymentStatus.REQUIRES_ACTION,
                payment_id=intent["id"],
                client_secret=intent.get("client_secret"),
            )
        return PaymentResult(
            status=PaymentStatus.FAILED,
            payment_id=intent["id"],
            failure_message=f"Payment {status}",
        )


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency; overridden in tests"""
    settings = get_settings()
    return StripePaymentGateway(
        api_key=settings.payments.stripe_secret_key.get_secret_value(),
        webhook_secret=settings.payments.stripe_webhook_secret.get_secret_value(),
    )
