"""Bookings API router.

Guests request, edit, withdraw and cancel bookings; hosts confirm, reject and
cancel bookings on their properties. Admission and lifecycle rules live in
:mod:`staybook.services.booking_service`; rejections surface as
``BookingError`` and are rendered by the handler registered in
``staybook.main``.
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from stripe import StripeClient

from staybook.api.deps import get_current_user, get_db, get_stripe_client
from staybook.billing.refunds import refund_closed_booking
from staybook.billing.stripe_client import create_payment_intent
from staybook.booking.errors import ForbiddenError, InvalidTransitionError
from staybook.booking.lifecycle import PAYMENT_PAID, TERMINAL_STATUSES, check_payment_transition
from staybook.models.property import Property
from staybook.models.user import User
from staybook.schemas.auth import MessageResponse
from staybook.schemas.booking import (
    BookingCreate,
    BookingDetailResponse,
    BookingListResponse,
    BookingQuoteRequest,
    BookingQuoteResponse,
    BookingResponse,
    BookingStatusUpdate,
    BookingUpdate,
    PaymentIntentResponse,
    PriceBreakdownResponse,
)
from staybook.schemas.property import PropertyResponse
from staybook.services import booking_service

router = APIRouter(prefix="/api/v1/bookings", tags=["bookings"])


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.post(
    "/quote",
    response_model=BookingQuoteResponse,
    summary="Price a prospective stay",
)
async def quote_booking(
    body: BookingQuoteRequest,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BookingQuoteResponse:
    """Validate dates, stay length and party size and return the price.

    ``available`` is false when the dates overlap an existing booking; the
    quote itself is still returned.
    """
    quote = await booking_service.quote_stay(
        db,
        property_id=body.property_id,
        guest_id=current_user.id,
        check_in=body.check_in,
        check_out=body.check_out,
        guests=body.guests.to_guest_count(),
    )
    return BookingQuoteResponse(
        property_id=quote.property_id,
        check_in=quote.check_in,
        check_out=quote.check_out,
        nights=quote.nights,
        currency=quote.currency,
        breakdown=PriceBreakdownResponse.model_validate(quote.price.breakdown),
        total=quote.price.total,
        available=quote.available,
        instant_bookable=quote.instant_bookable,
    )


@router.post(
    "",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request a booking",
)
async def create_booking(
    body: BookingCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BookingResponse:
    """Book a property as the current user.

    Instant-bookable properties return a ``confirmed`` booking; all others
    return ``pending`` until the host responds.
    """
    booking = await booking_service.create_booking(
        db,
        property_id=body.property_id,
        guest_id=current_user.id,
        check_in=body.check_in,
        check_out=body.check_out,
        guests=body.guests.to_guest_count(),
        special_requests=body.special_requests,
    )
    return BookingResponse.model_validate(booking)


@router.get(
    "",
    response_model=BookingListResponse,
    summary="List the current user's bookings",
)
async def list_bookings(
    role: str | None = Query(None, pattern="^(guest|host)$", description="Only bookings made as guest or as host"),
    status_filter: str | None = Query(None, alias="status", description="Filter by booking status"),
    skip: int = Query(0, ge=0, description="Pagination offset"),
    limit: int = Query(20, ge=1, le=100, description="Pagination limit"),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BookingListResponse:
    """Return bookings the user made as a guest or received as a host."""
    items, total = await booking_service.list_bookings_for_user(
        db,
        current_user.id,
        role=role,
        status=status_filter,
        skip=skip,
        limit=limit,
    )
    return BookingListResponse(
        items=[BookingResponse.model_validate(b) for b in items],
        total=total,
    )


@router.get(
    "/{booking_id}",
    response_model=BookingDetailResponse,
    summary="Get booking detail with nested property",
)
async def get_booking(
    booking_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BookingDetailResponse:
    """Retrieve a booking the current user is the guest or host of."""
    booking = await booking_service.get_booking_for_party(db, booking_id, current_user.id)
    result = await db.execute(select(Property).where(Property.id == booking.property_id))
    prop = result.scalar_one_or_none()

    detail = BookingDetailResponse.model_validate(booking)
    if prop is not None:
        detail.property = PropertyResponse.model_validate(prop)
    return detail


@router.put(
    "/{booking_id}/status",
    response_model=BookingResponse,
    summary="Confirm, reject or cancel a booking",
)
async def update_booking_status(
    booking_id: uuid.UUID,
    body: BookingStatusUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    stripe_client: StripeClient = Depends(get_stripe_client),
) -> BookingResponse:
    """Apply a status change as the booking's guest or host.

    Cancelling computes the refund from the booking's cancellation policy and
    rejecting refunds the full total; if the booking was already paid, the
    refund is sent to Stripe.
    """
    booking = await booking_service.get_booking(db, booking_id)
    actor_role = booking_service.resolve_actor_role(booking, current_user.id)

    booking = await booking_service.update_booking_status(
        db,
        booking_id,
        actor_id=current_user.id,
        actor_role=actor_role,
        new_status=body.status,
        reason=body.reason,
    )
    await refund_closed_booking(stripe_client, booking)
    return BookingResponse.model_validate(booking)


@router.put(
    "/{booking_id}",
    response_model=BookingResponse,
    summary="Edit a pending booking",
)
async def update_booking(
    booking_id: uuid.UUID,
    body: BookingUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> BookingResponse:
    """Change dates, party size or special requests of a pending booking.

    Date and party changes are re-validated and re-priced; nothing changes
    unless every check passes.
    """
    changes = body.model_dump(exclude_unset=True)
    booking = await booking_service.update_booking_details(
        db,
        booking_id,
        guest_id=current_user.id,
        changes=changes,
    )
    return BookingResponse.model_validate(booking)


@router.delete(
    "/{booking_id}",
    response_model=MessageResponse,
    summary="Withdraw a pending booking",
)
async def delete_booking(
    booking_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    """Delete a pending booking. Only its guest can withdraw it."""
    await booking_service.delete_booking(db, booking_id, guest_id=current_user.id)
    return {"message": "Booking deleted"}


@router.post(
    "/{booking_id}/payment-intent",
    response_model=PaymentIntentResponse,
    summary="Start payment for a booking",
)
async def create_booking_payment_intent(
    booking_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    stripe_client: StripeClient = Depends(get_stripe_client),
) -> PaymentIntentResponse:
    """Create a Stripe PaymentIntent for the booking total.

    The booking is marked paid when Stripe reports ``payment_intent.succeeded``.
    """
    booking = await booking_service.get_booking(db, booking_id)
    if booking.guest_id != current_user.id:
        raise ForbiddenError("Only the guest can pay for this booking", booking_id=str(booking.id))
    if booking.status in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            f"Cannot pay for a {booking.status} booking",
            field="status",
            current=booking.status,
        )
    check_payment_transition(booking.payment_status, PAYMENT_PAID)

    intent = await create_payment_intent(stripe_client, booking.id, booking.total_amount, booking.currency)
    booking.payment_reference = intent.id
    await db.flush()

    return PaymentIntentResponse(
        booking_id=booking.id,
        payment_intent_id=intent.id,
        client_secret=intent.client_secret,
        amount=booking.total_amount,
        currency=booking.currency,
    )
