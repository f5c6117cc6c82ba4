from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Protocol

import stripe

from .errors import PaymentGatewayError

logger = logging.getLogger(__name__)


def to_cents(amount: float) -> int:
    return int((Decimal(str(amount)) * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: str
    amount_cents: int


@dataclass(frozen=True)
class PaymentResult:
    status: str
    payment_intent_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.status == "succeeded"


class PaymentGateway(Protocol):
    async def create_payment_intent(self, amount_cents: int) -> PaymentIntent: ...

    async def confirm_card_payment(self, intent: PaymentIntent, payment_method: str) -> PaymentResult: ...


class StripeGateway:
    """Stripe PaymentIntents. Card declines come back as a PaymentResult, not an exception."""

    def __init__(self, api_key: Optional[str], currency: str = "usd"):
        self.api_key = api_key
        self.currency = currency

    async def create_payment_intent(self, amount_cents: int) -> PaymentIntent:
        if not self.api_key:
            raise PaymentGatewayError("Payments are not configured")
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                amount=amount_cents,
                currency=self.currency,
                metadata={"source": "tree-rental-app"},
                api_key=self.api_key,
            )
        except stripe.StripeError as e:
            logger.error("Error creating payment intent: %s", e)
            raise PaymentGatewayError(e.user_message or "Unable to start payment. Please try again.") from e
        return PaymentIntent(id=intent.id, client_secret=intent.client_secret, amount_cents=amount_cents)

    async def confirm_card_payment(self, intent: PaymentIntent, payment_method: str) -> PaymentResult:
        try:
            confirmed = await asyncio.to_thread(
                stripe.PaymentIntent.confirm,
                intent.id,
                payment_method=payment_method,
                api_key=self.api_key,
            )
        except stripe.CardError as e:
            return PaymentResult(status="failed", payment_intent_id=intent.id, error=e.user_message or str(e))
        except stripe.StripeError as e:
            logger.error("Error confirming payment %s: %s", intent.id, e)
            return PaymentResult(
                status="failed",
                payment_intent_id=intent.id,
                error=e.user_message or "Payment failed. Please try again.",
            )
        if confirmed.status != "succeeded":
            return PaymentResult(
                status=confirmed.status,
                payment_intent_id=confirmed.id,
                error="Additional card authentication is required to complete this payment",
            )
        return PaymentResult(status="succeeded", payment_intent_id=confirmed.id)
