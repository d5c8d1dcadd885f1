"""Booking service: admission, lifecycle transitions, guest edits and payments.

Every operation that reads availability and then writes runs inside
:func:`~staybook.booking.locks.property_write_guard`, which commits before it
releases the property, so concurrent requests for overlapping dates cannot
both be admitted. All rejections are raised as
:class:`~staybook.booking.errors.BookingError` subclasses and leave the stored
booking untouched.
"""

import logging
import uuid
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from staybook.booking.availability import has_conflict
from staybook.booking.cancellation import refund_amount, refund_percentage
from staybook.booking.errors import (
    BookingConflictError,
    BookingError,
    ForbiddenError,
    InvalidTransitionError,
    NotFoundError,
    PropertyUnavailableError,
)
from staybook.booking.lifecycle import (
    ACTOR_ROLES,
    CANCELLED,
    COMPLETED,
    CONFIRMED,
    GUEST,
    HOST,
    PAYMENT_FAILED,
    PAYMENT_PAID,
    PAYMENT_REFUNDED,
    REJECTED,
    SYSTEM,
    check_editable,
    check_payment_transition,
    check_transition,
    initial_status,
)
from staybook.booking.locks import PropertyLockRegistry, property_write_guard
from staybook.booking.pricing import PriceQuote, compute_price
from staybook.booking.rules import GuestCount, validate_capacity, validate_dates, validate_stay_length
from staybook.models.booking import Booking
from staybook.models.property import Property

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = frozenset({"check_in", "check_out", "guests", "special_requests"})
# Closed before the stay; any payment taken is owed back as ``refund_amount``.
CLOSED_STATUSES = frozenset({CANCELLED, REJECTED})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _naive_utc(value: datetime) -> datetime:
    """Naive UTC datetime for storage in timezone-less columns."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


@dataclass(frozen=True)
class StayQuote:
    """Price preview for a prospective stay."""

    property_id: uuid.UUID
    check_in: date
    check_out: date
    nights: int
    currency: str
    price: PriceQuote
    available: bool
    instant_bookable: bool


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def get_booking(db: AsyncSession, booking_id: uuid.UUID) -> Booking:
    """Fetch a booking by id or raise NotFoundError."""
    result = await db.execute(select(Booking).where(Booking.id == booking_id))
    booking = result.scalar_one_or_none()
    if booking is None:
        raise NotFoundError("Booking not found", field="booking_id", booking_id=str(booking_id))
    return booking


def resolve_actor_role(booking: Booking, user_id: uuid.UUID) -> str:
    """Return ``guest`` or ``host`` for a party to the booking, else raise ForbiddenError."""
    if booking.guest_id == user_id:
        return GUEST
    if booking.host_id == user_id:
        return HOST
    raise ForbiddenError("Access denied", booking_id=str(booking.id))


async def get_booking_for_party(db: AsyncSession, booking_id: uuid.UUID, user_id: uuid.UUID) -> Booking:
    """Fetch a booking the user is the guest or host of."""
    booking = await get_booking(db, booking_id)
    resolve_actor_role(booking, user_id)
    return booking


def _check_admission(
    prop: Property,
    guest_id: uuid.UUID,
    check_in: date,
    check_out: date,
    guests: GuestCount,
    today: date,
) -> int:
    """Run every non-storage admission rule and return the number of nights."""
    if not prop.is_active:
        raise PropertyUnavailableError(
            "Property is not available for booking",
            field="property_id",
            property_id=str(prop.id),
            status=prop.status,
        )
    if prop.owner_id == guest_id:
        raise ForbiddenError("You cannot book your own property", field="property_id", property_id=str(prop.id))

    nights = validate_dates(check_in, check_out, today)
    validate_stay_length(nights, prop.min_stay, prop.max_stay)
    validate_capacity(guests, prop.max_guests)
    return nights


def _price_for(prop: Property, nights: int) -> PriceQuote:
    return compute_price(
        nightly_rate=prop.base_price_per_night,
        nights=nights,
        cleaning_fee=prop.cleaning_fee or 0,
        service_fee=prop.service_fee or 0,
        taxes=prop.taxes or 0,
    )


def _apply_price(booking: Booking, price: PriceQuote, currency: str) -> None:
    """Snapshot a price quote onto the booking."""
    booking.total_amount = price.total
    booking.currency = currency
    booking.nightly_rate = price.breakdown.nightly_rate
    booking.cleaning_fee = price.breakdown.cleaning_fee
    booking.service_fee = price.breakdown.service_fee
    booking.taxes = price.breakdown.taxes


def _conflict(check_in: date, check_out: date) -> BookingConflictError:
    return BookingConflictError(
        "Selected dates are not available",
        field="check_in",
        check_in=check_in,
        check_out=check_out,
    )


@asynccontextmanager
async def _booking_write_guard(
    db: AsyncSession,
    booking_id: uuid.UUID,
    registry: PropertyLockRegistry | None = None,
) -> AsyncIterator[tuple[Booking, Property]]:
    """Lock the booking's property, then reload the booking so guards see committed state."""
    booking = await get_booking(db, booking_id)
    async with property_write_guard(db, booking.property_id, registry) as prop:
        result = await db.execute(
            select(Booking)
            .where(Booking.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        booking = result.scalar_one_or_none()
        if booking is None:
            raise NotFoundError("Booking not found", field="booking_id", booking_id=str(booking_id))
        yield booking, prop


# ---------------------------------------------------------------------------
# Admission
# ---------------------------------------------------------------------------


async def quote_stay(
    db: AsyncSession,
    property_id: uuid.UUID,
    guest_id: uuid.UUID,
    check_in: date,
    check_out: date,
    guests: GuestCount,
    now: datetime | None = None,
) -> StayQuote:
    """Validate a prospective stay and price it without writing anything."""
    now = now or _utcnow()
    result = await db.execute(select(Property).where(Property.id == property_id))
    prop = result.scalar_one_or_none()
    if prop is None:
        raise NotFoundError("Property not found", field="property_id", property_id=str(property_id))

    nights = _check_admission(prop, guest_id, check_in, check_out, guests, now.date())
    available = not await has_conflict(db, prop.id, check_in, check_out)
    return StayQuote(
        property_id=prop.id,
        check_in=check_in,
        check_out=check_out,
        nights=nights,
        currency=prop.currency,
        price=_price_for(prop, nights),
        available=available,
        instant_bookable=prop.instant_bookable,
    )


async def create_booking(
    db: AsyncSession,
    *,
    property_id: uuid.UUID,
    guest_id: uuid.UUID,
    check_in: date,
    check_out: date,
    guests: GuestCount,
    special_requests: str | None = None,
    now: datetime | None = None,
    registry: PropertyLockRegistry | None = None,
) -> Booking:
    """Admit a new booking.

    The booking starts ``confirmed`` with payment ``pending`` when the
    property is instant-bookable, ``pending`` otherwise. Its price and
    cancellation policy are snapshotted from the property.

    Raises:
        NotFoundError: Property does not exist.
        PropertyUnavailableError: Property is not active.
        ForbiddenError: Guest is the property's host.
        InvalidDateRangeError: Check-in not in the future or check-out not after it.
        StayLengthViolationError: Nights outside the property's min/max stay.
        CapacityExceededError: Party larger than the property allows.
        BookingConflictError: Dates overlap a pending or confirmed booking,
            or the property stayed busy past the lock timeout.
    """
    now = now or _utcnow()

    async with property_write_guard(db, property_id, registry) as prop:
        nights = _check_admission(prop, guest_id, check_in, check_out, guests, now.date())

        if await has_conflict(db, prop.id, check_in, check_out):
            raise _conflict(check_in, check_out)

        booking = Booking(
            property_id=prop.id,
            guest_id=guest_id,
            host_id=prop.owner_id,
            check_in=check_in,
            check_out=check_out,
            adults=guests.adults,
            children=guests.children,
            infants=guests.infants,
            status=initial_status(prop.instant_bookable),
            payment_status="pending",
            special_requests=special_requests,
            cancellation_policy=prop.cancellation_policy,
            is_instant_book=prop.instant_bookable,
        )
        _apply_price(booking, _price_for(prop, nights), prop.currency)
        db.add(booking)
        await db.flush()

    await db.refresh(booking)
    logger.info(
        "Created booking %s on property %s (%s -> %s, %d nights, status=%s)",
        booking.id,
        booking.property_id,
        booking.check_in,
        booking.check_out,
        nights,
        booking.status,
    )
    return booking


# ---------------------------------------------------------------------------
# Lifecycle transitions
# ---------------------------------------------------------------------------


async def update_booking_status(
    db: AsyncSession,
    booking_id: uuid.UUID,
    *,
    actor_id: uuid.UUID | None,
    actor_role: str,
    new_status: str,
    reason: str | None = None,
    now: datetime | None = None,
    registry: PropertyLockRegistry | None = None,
) -> Booking:
    """Move a booking to ``new_status`` on behalf of ``actor_role``.

    ``guest`` and ``host`` actors must match the booking's guest/host id;
    ``system`` is reserved for trusted internal callers such as the
    completion job. Entering ``cancelled`` records the reason and the refund
    owed under the booking's cancellation policy. Entering ``rejected`` owes
    the guest the full total.

    Raises:
        NotFoundError: Booking does not exist.
        ForbiddenError: Actor is not the matching party or may not make this move.
        InvalidTransitionError: Move is not allowed from the current status.
    """
    now = now or _utcnow()
    if actor_role not in ACTOR_ROLES:
        raise ForbiddenError(f"Unknown actor role {actor_role!r}", field="actor_role", actor_role=actor_role)

    async with _booking_write_guard(db, booking_id, registry) as (booking, _prop):
        if actor_role == GUEST and booking.guest_id != actor_id:
            raise ForbiddenError("Only the guest can act as guest on this booking", booking_id=str(booking.id))
        if actor_role == HOST and booking.host_id != actor_id:
            raise ForbiddenError("Only the host can act as host on this booking", booking_id=str(booking.id))

        previous = booking.status
        check_transition(previous, new_status, actor_role)

        if new_status == COMPLETED and booking.check_out > now.date():
            raise InvalidTransitionError(
                "Cannot complete a booking before its check-out date",
                field="status",
                current=previous,
                target=new_status,
                check_out=booking.check_out,
            )

        booking.status = new_status
        if new_status == CANCELLED:
            percentage = refund_percentage(booking.cancellation_policy, booking.check_in, now)
            booking.cancellation_reason = reason
            booking.refund_amount = refund_amount(booking.total_amount, percentage)
            booking.cancelled_at = _naive_utc(now)
        elif new_status == REJECTED:
            booking.refund_amount = booking.total_amount
        await db.flush()

    await db.refresh(booking)
    logger.info(
        "Booking %s: %s -> %s by %s%s",
        booking.id,
        previous,
        new_status,
        actor_role,
        f" (refund {booking.refund_amount} {booking.currency})" if new_status in CLOSED_STATUSES else "",
    )
    return booking


async def complete_finished_stays(db: AsyncSession, today: date | None = None) -> list[Booking]:
    """Complete every confirmed booking whose check-out date has been reached.

    Intended to be called by a scheduler; each booking goes through the same
    transition guard as an interactive request.
    """
    today = today or _utcnow().date()
    now = datetime.combine(today, datetime.min.time(), tzinfo=timezone.utc)
    result = await db.execute(
        select(Booking.id).where(Booking.status == CONFIRMED, Booking.check_out <= today)
    )
    completed = []
    for booking_id in result.scalars().all():
        try:
            booking = await update_booking_status(
                db,
                booking_id,
                actor_id=None,
                actor_role=SYSTEM,
                new_status=COMPLETED,
                now=now,
            )
        except BookingError as e:
            # Changed since the scan, e.g. cancelled by a party in the meantime
            logger.warning("Could not complete booking %s: %s", booking_id, e.message)
            continue
        completed.append(booking)
    if completed:
        logger.info("Completed %d finished stays", len(completed))
    return completed


# ---------------------------------------------------------------------------
# Guest edits
# ---------------------------------------------------------------------------


async def update_booking_details(
    db: AsyncSession,
    booking_id: uuid.UUID,
    *,
    guest_id: uuid.UUID,
    changes: Mapping[str, Any],
    now: datetime | None = None,
    registry: PropertyLockRegistry | None = None,
) -> Booking:
    """Apply a guest's edit to a pending booking.

    ``changes`` may hold ``check_in``, ``check_out``, ``guests`` (a partial
    mapping of ``adults``/``children``/``infants`` merged over the current
    counts) and ``special_requests``. Date or guest changes re-run the
    admission rules and the conflict check (excluding this booking) and
    re-price the stay from the property's current rates. Nothing is written
    unless every check passes.

    Raises:
        NotFoundError, ForbiddenError, ImmutableStateError,
        InvalidDateRangeError, StayLengthViolationError,
        CapacityExceededError, BookingConflictError.
    """
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported booking fields: {sorted(unknown)}")
    now = now or _utcnow()

    async with _booking_write_guard(db, booking_id, registry) as (booking, prop):
        if booking.guest_id != guest_id:
            raise ForbiddenError("Only the guest can modify this booking", booking_id=str(booking.id))
        check_editable(booking.status, "modify")

        dates_changed = changes.get("check_in") is not None or changes.get("check_out") is not None
        guests_changed = changes.get("guests") is not None

        check_in = changes.get("check_in") or booking.check_in
        check_out = changes.get("check_out") or booking.check_out
        guests = GuestCount(
            adults=booking.adults,
            children=booking.children,
            infants=booking.infants,
        )
        if guests_changed:
            merged = {"adults": guests.adults, "children": guests.children, "infants": guests.infants}
            merged.update({k: v for k, v in changes["guests"].items() if v is not None})
            guests = GuestCount(**merged)

        price = None
        if dates_changed or guests_changed:
            nights = validate_dates(check_in, check_out, now.date())
            validate_stay_length(nights, prop.min_stay, prop.max_stay)
            validate_capacity(guests, prop.max_guests)
            if dates_changed and await has_conflict(
                db, prop.id, check_in, check_out, exclude_booking_id=booking.id
            ):
                raise _conflict(check_in, check_out)
            price = _price_for(prop, nights)

        # Every check passed; apply the edit.
        booking.check_in = check_in
        booking.check_out = check_out
        booking.adults = guests.adults
        booking.children = guests.children
        booking.infants = guests.infants
        if price is not None:
            _apply_price(booking, price, prop.currency)
        if "special_requests" in changes:
            booking.special_requests = changes["special_requests"]
        await db.flush()

    await db.refresh(booking)
    logger.info("Guest %s updated booking %s", guest_id, booking.id)
    return booking


async def delete_booking(
    db: AsyncSession,
    booking_id: uuid.UUID,
    *,
    guest_id: uuid.UUID,
    registry: PropertyLockRegistry | None = None,
) -> None:
    """Withdraw a pending booking. Only its guest may do so."""
    async with _booking_write_guard(db, booking_id, registry) as (booking, _prop):
        if booking.guest_id != guest_id:
            raise ForbiddenError("Only the guest can delete this booking", booking_id=str(booking.id))
        check_editable(booking.status, "delete")
        await db.delete(booking)
        await db.flush()

    logger.info("Guest %s withdrew booking %s", guest_id, booking_id)


# ---------------------------------------------------------------------------
# Payment boundary
# ---------------------------------------------------------------------------


async def _set_payment_status(
    db: AsyncSession,
    booking_id: uuid.UUID,
    target: str,
    payment_reference: str | None = None,
) -> Booking:
    result = await db.execute(select(Booking).where(Booking.id == booking_id).with_for_update())
    booking = result.scalar_one_or_none()
    if booking is None:
        raise NotFoundError("Booking not found", field="booking_id", booking_id=str(booking_id))

    previous = booking.payment_status
    check_payment_transition(previous, target)
    booking.payment_status = target
    if payment_reference:
        booking.payment_reference = payment_reference
    await db.flush()
    logger.info("Booking %s payment: %s -> %s", booking.id, previous, target)
    return booking


async def mark_paid(db: AsyncSession, booking_id: uuid.UUID, payment_reference: str) -> Booking:
    """Record a successful charge reported by the payment subsystem.

    A charge can land after the booking was cancelled or rejected. It is still
    recorded as paid; the caller owes the guest the booking's ``refund_amount``.
    """
    booking = await _set_payment_status(db, booking_id, PAYMENT_PAID, payment_reference)
    if booking.status in CLOSED_STATUSES:
        logger.warning(
            "Booking %s was paid after it was %s; %s %s is owed back",
            booking.id,
            booking.status,
            booking.refund_amount,
            booking.currency,
        )
    return booking


async def mark_payment_failed(
    db: AsyncSession, booking_id: uuid.UUID, payment_reference: str | None = None
) -> Booking:
    """Record a failed charge reported by the payment subsystem."""
    return await _set_payment_status(db, booking_id, PAYMENT_FAILED, payment_reference)


async def mark_refunded(db: AsyncSession, booking_id: uuid.UUID) -> Booking:
    """Record that the payment subsystem refunded the booking's charge."""
    return await _set_payment_status(db, booking_id, PAYMENT_REFUNDED)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def list_bookings_for_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    role: str | None = None,
    status: str | None = None,
    skip: int = 0,
    limit: int = 20,
) -> tuple[list[Booking], int]:
    """Bookings where the user is the guest (``role="guest"``), the host, or either."""
    if role == GUEST:
        filters = [Booking.guest_id == user_id]
    elif role == HOST:
        filters = [Booking.host_id == user_id]
    else:
        filters = [or_(Booking.guest_id == user_id, Booking.host_id == user_id)]
    if status is not None:
        filters.append(Booking.status == status)

    total_result = await db.execute(select(func.count()).select_from(Booking).where(*filters))
    total = total_result.scalar_one()

    result = await db.execute(
        select(Booking).where(*filters).order_by(Booking.created_at.desc()).offset(skip).limit(limit)
    )
    return list(result.scalars().all()), total


def refundable_cents(booking: Booking) -> int:
    """Refund owed on a cancelled or rejected booking in minor units, 0 if none."""
    if booking.refund_amount is None:
        return 0
    return int((Decimal(booking.refund_amount) * 100).to_integral_value())
