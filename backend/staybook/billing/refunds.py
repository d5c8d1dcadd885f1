"""Refunds owed on paid bookings that were closed before the stay."""

import logging

import stripe
from stripe import StripeClient

from staybook.billing.stripe_client import create_refund
from staybook.booking.lifecycle import PAYMENT_PAID
from staybook.models.booking import Booking
from staybook.services.booking_service import CLOSED_STATUSES, refundable_cents

logger = logging.getLogger(__name__)


async def refund_closed_booking(client: StripeClient, booking: Booking) -> stripe.Refund | None:
    """Send ``booking.refund_amount`` back to the guest through Stripe.

    Applies to cancelled or rejected bookings whose charge went through,
    whether it was paid before or after the booking was closed. Returns
    ``None`` when nothing is owed. The booking is marked ``refunded`` when
    Stripe reports ``charge.refunded``; a failed refund call is logged and
    left for manual follow-up.
    """
    if booking.status not in CLOSED_STATUSES:
        return None
    if booking.payment_status != PAYMENT_PAID or not booking.payment_reference:
        return None
    if refundable_cents(booking) <= 0:
        return None
    try:
        return await create_refund(client, booking.id, booking.payment_reference, booking.refund_amount)
    except stripe.StripeError:
        logger.exception("Refund failed for %s booking %s", booking.status, booking.id)
        return None
