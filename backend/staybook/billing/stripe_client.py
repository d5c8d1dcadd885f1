"""Async Stripe API wrapper for booking payments.

The ``StripeClient`` is built once at startup (see ``staybook.main``) and
handed to routes through :func:`get_stripe_client`; nothing here keeps a
module-level client.
"""

import logging
import uuid
from decimal import Decimal

import stripe
from fastapi import Request
from stripe import StripeClient

from staybook.booking.pricing import to_money

logger = logging.getLogger(__name__)


def build_stripe_client(secret_key: str) -> StripeClient:
    """Create a StripeClient instance with async HTTP support."""
    return StripeClient(
        secret_key,
        http_client=stripe.HTTPXClient(),
    )


def get_stripe_client(request: Request) -> StripeClient:
    """FastAPI dependency returning the application's Stripe client."""
    return request.app.state.stripe_client


def to_minor_units(amount: Decimal) -> int:
    """Convert a 2-decimal currency amount to Stripe's integer minor units."""
    return int(to_money(amount) * 100)


async def create_payment_intent(
    client: StripeClient,
    booking_id: uuid.UUID,
    amount: Decimal,
    currency: str,
) -> stripe.PaymentIntent:
    """Create a PaymentIntent for a booking's total, tagged with the booking id."""
    logger.info("Creating payment intent for booking %s (%s %s)", booking_id, amount, currency)
    return await client.v1.payment_intents.create_async(
        params={
            "amount": to_minor_units(amount),
            "currency": currency.lower(),
            "automatic_payment_methods": {"enabled": True},
            "metadata": {"booking_id": str(booking_id)},
        }
    )


async def create_refund(
    client: StripeClient,
    booking_id: uuid.UUID,
    payment_intent_id: str,
    amount: Decimal,
) -> stripe.Refund:
    """Refund part or all of a booking's charge."""
    logger.info("Refunding %s on payment intent %s (booking %s)", amount, payment_intent_id, booking_id)
    return await client.v1.refunds.create_async(
        params={
            "payment_intent": payment_intent_id,
            "amount": to_minor_units(amount),
            "metadata": {"booking_id": str(booking_id)},
        }
    )


def construct_webhook_event(
    client: StripeClient, payload: bytes, sig_header: str, webhook_secret: str
) -> stripe.Event:
    """Verify and construct a Stripe webhook event (synchronous)."""
    return client.construct_event(payload, sig_header, webhook_secret)
