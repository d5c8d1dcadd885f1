"""Stripe webhook event handlers: record payment outcomes on bookings."""

import logging
import uuid

import stripe
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from stripe import StripeClient

from staybook.billing.refunds import refund_closed_booking
from staybook.models.booking import Booking
from staybook.services.booking_service import mark_paid, mark_payment_failed, mark_refunded

logger = logging.getLogger(__name__)


def _booking_id_from_metadata(obj) -> uuid.UUID | None:
    """Read the booking id we attach to payment intents, if present and valid."""
    metadata = getattr(obj, "metadata", None) or {}
    raw = metadata.get("booking_id")
    if not raw:
        return None
    try:
        return uuid.UUID(raw)
    except ValueError:
        return None


async def handle_payment_intent_succeeded(
    db: AsyncSession, event: stripe.Event, client: StripeClient | None = None
) -> None:
    """Handle payment_intent.succeeded: mark the booking paid.

    If the booking was cancelled or rejected before the charge landed, the
    refund it owes is sent straight back through ``client``.
    """
    intent = event.data.object
    booking_id = _booking_id_from_metadata(intent)
    if booking_id is None:
        logger.info("Payment intent %s has no booking id, skipping", intent.id)
        return

    booking = await mark_paid(db, booking_id, payment_reference=intent.id)
    if client is not None:
        await refund_closed_booking(client, booking)


async def handle_payment_intent_failed(
    db: AsyncSession, event: stripe.Event, client: StripeClient | None = None
) -> None:
    """Handle payment_intent.payment_failed: mark the booking's payment failed."""
    intent = event.data.object
    booking_id = _booking_id_from_metadata(intent)
    if booking_id is None:
        logger.info("Payment intent %s has no booking id, skipping", intent.id)
        return

    await mark_payment_failed(db, booking_id, payment_reference=intent.id)


async def handle_charge_refunded(
    db: AsyncSession, event: stripe.Event, client: StripeClient | None = None
) -> None:
    """Handle charge.refunded: mark the booking paid with that intent as refunded."""
    charge = event.data.object
    payment_intent_id = getattr(charge, "payment_intent", None)
    if not payment_intent_id:
        logger.info("Charge %s has no payment intent, skipping", charge.id)
        return

    result = await db.execute(select(Booking.id).where(Booking.payment_reference == payment_intent_id))
    booking_id = result.scalar_one_or_none()
    if booking_id is None:
        logger.warning("No booking found for refunded payment intent %s (charge %s)", payment_intent_id, charge.id)
        return

    await mark_refunded(db, booking_id)
