"""Tests for the booking service against a real database session."""

import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from conftest import create_user
from staybook.booking.availability import has_conflict
from staybook.booking.errors import (
    BookingConflictError,
    CapacityExceededError,
    ForbiddenError,
    ImmutableStateError,
    InvalidDateRangeError,
    InvalidTransitionError,
    NotFoundError,
    PropertyUnavailableError,
    StayLengthViolationError,
)
from staybook.booking.rules import GuestCount
from staybook.models.booking import Booking
from staybook.models.user import User
from staybook.services import booking_service

pytestmark = pytest.mark.asyncio(loop_scope="session")

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


async def _book(db: AsyncSession, prop, guest: User, check_in: date, check_out: date, **kwargs) -> Booking:
    kwargs.setdefault("guests", GuestCount(adults=2))
    kwargs.setdefault("now", NOW)
    return await booking_service.create_booking(
        db,
        property_id=prop.id,
        guest_id=guest.id,
        check_in=check_in,
        check_out=check_out,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Admission
# ---------------------------------------------------------------------------


class TestCreateBooking:
    async def test_instant_book_confirms_with_payment_pending(self, db_session, make_property, guest_user):
        prop = await make_property(instant_bookable=True, cleaning_fee=Decimal("50"))
        booking = await _book(db_session, prop, guest_user, date(2024, 5, 5), date(2024, 5, 10))

        assert booking.status == "confirmed"
        assert booking.payment_status == "pending"
        assert booking.is_instant_book is True
        assert booking.host_id == prop.owner_id
        assert booking.nights == 5
        assert booking.total_amount == Decimal("550.00")
        assert booking.nightly_rate == Decimal("100.00")
        assert booking.cleaning_fee == Decimal("50.00")
        assert booking.cancellation_policy == "moderate"

    async def test_request_to_book_starts_pending(self, db_session, test_property, guest_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        assert booking.status == "pending"
        assert booking.is_instant_book is False

    async def test_host_cannot_book_own_property(self, db_session, test_property, host_user):
        with pytest.raises(ForbiddenError) as exc_info:
            await _book(db_session, test_property, host_user, date(2024, 5, 5), date(2024, 5, 7))
        assert exc_info.value.field == "property_id"

    async def test_inactive_property_rejected(self, db_session, make_property, guest_user):
        prop = await make_property(status="inactive")
        with pytest.raises(PropertyUnavailableError):
            await _book(db_session, prop, guest_user, date(2024, 5, 5), date(2024, 5, 7))

    async def test_unknown_property(self, db_session, guest_user):
        with pytest.raises(NotFoundError):
            await booking_service.create_booking(
                db_session,
                property_id=uuid.uuid4(),
                guest_id=guest_user.id,
                check_in=date(2024, 5, 5),
                check_out=date(2024, 5, 7),
                guests=GuestCount(),
                now=NOW,
            )

    async def test_check_in_must_be_in_future(self, db_session, test_property, guest_user):
        with pytest.raises(InvalidDateRangeError):
            await _book(db_session, test_property, guest_user, date(2024, 5, 1), date(2024, 5, 3))

    async def test_check_out_after_check_in(self, db_session, test_property, guest_user):
        with pytest.raises(InvalidDateRangeError):
            await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 5))

    async def test_capacity(self, db_session, test_property, guest_user):
        with pytest.raises(CapacityExceededError):
            await _book(
                db_session,
                test_property,
                guest_user,
                date(2024, 5, 5),
                date(2024, 5, 7),
                guests=GuestCount(adults=3, children=1, infants=1),
            )

    async def test_price_is_snapshotted(self, db_session, test_property, guest_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))

        test_property.base_price_per_night = Decimal("999.00")
        await db_session.flush()
        await db_session.refresh(booking)
        assert booking.total_amount == Decimal("200.00")


class TestStayLength:
    """min_stay=2, max_stay=14."""

    @pytest.fixture
    def check_in(self) -> date:
        return date(2024, 6, 1)

    async def test_one_night_too_short(self, db_session, make_property, guest_user, check_in):
        prop = await make_property(min_stay=2, max_stay=14)
        with pytest.raises(StayLengthViolationError):
            await _book(db_session, prop, guest_user, check_in, check_in + timedelta(days=1))

    async def test_two_nights_allowed(self, db_session, make_property, guest_user, check_in):
        prop = await make_property(min_stay=2, max_stay=14)
        booking = await _book(db_session, prop, guest_user, check_in, check_in + timedelta(days=2))
        assert booking.nights == 2

    async def test_fifteen_nights_too_long(self, db_session, make_property, guest_user, check_in):
        prop = await make_property(min_stay=2, max_stay=14)
        with pytest.raises(StayLengthViolationError):
            await _book(db_session, prop, guest_user, check_in, check_in + timedelta(days=15))


class TestOverlap:
    async def test_back_to_back_stays_allowed(self, db_session, test_property, guest_user):
        await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 10))
        second = await _book(db_session, test_property, guest_user, date(2024, 5, 10), date(2024, 5, 12))
        assert second.check_in == date(2024, 5, 10)

    async def test_overlapping_stay_rejected(self, db_session, test_property, guest_user):
        await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 10))
        with pytest.raises(BookingConflictError) as exc_info:
            await _book(db_session, test_property, guest_user, date(2024, 5, 9), date(2024, 5, 11))
        assert exc_info.value.code == "conflict"

    async def test_cancelled_booking_frees_dates(self, db_session, test_property, guest_user):
        first = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 10))
        await booking_service.update_booking_status(
            db_session, first.id, actor_id=guest_user.id, actor_role="guest", new_status="cancelled", now=NOW
        )
        again = await _book(db_session, test_property, guest_user, date(2024, 5, 6), date(2024, 5, 8))
        assert again.status == "pending"

    async def test_has_conflict_boundary(self, db_session, test_property, guest_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 10))

        assert not await has_conflict(db_session, test_property.id, date(2024, 5, 10), date(2024, 5, 12))
        assert not await has_conflict(db_session, test_property.id, date(2024, 5, 1), date(2024, 5, 5))
        assert await has_conflict(db_session, test_property.id, date(2024, 5, 9), date(2024, 5, 11))
        assert await has_conflict(db_session, test_property.id, date(2024, 5, 6), date(2024, 5, 7))
        assert not await has_conflict(
            db_session, test_property.id, date(2024, 5, 6), date(2024, 5, 7), exclude_booking_id=booking.id
        )

    async def test_other_property_unaffected(self, db_session, make_property, guest_user):
        first = await make_property()
        second = await make_property(title="Second Villa")
        await _book(db_session, first, guest_user, date(2024, 5, 5), date(2024, 5, 10))
        booking = await _book(db_session, second, guest_user, date(2024, 5, 5), date(2024, 5, 10))
        assert booking.property_id == second.id


class TestQuoteStay:
    async def test_quote_does_not_write(self, db_session, make_property, guest_user):
        prop = await make_property(cleaning_fee=Decimal("25"), taxes=Decimal("10"))
        quote = await booking_service.quote_stay(
            db_session, prop.id, guest_user.id, date(2024, 5, 5), date(2024, 5, 8), GuestCount(), now=NOW
        )
        assert quote.nights == 3
        assert quote.price.total == Decimal("335.00")
        assert quote.available is True

        result = await db_session.execute(select(Booking).where(Booking.property_id == prop.id))
        assert result.scalars().all() == []

    async def test_quote_reports_unavailable(self, db_session, test_property, guest_user):
        await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 10))
        quote = await booking_service.quote_stay(
            db_session, test_property.id, guest_user.id, date(2024, 5, 8), date(2024, 5, 9), GuestCount(), now=NOW
        )
        assert quote.available is False


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestStatusTransitions:
    async def test_host_confirms_pending(self, db_session, test_property, guest_user, host_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        updated = await booking_service.update_booking_status(
            db_session, booking.id, actor_id=host_user.id, actor_role="host", new_status="confirmed", now=NOW
        )
        assert updated.status == "confirmed"

    async def test_guest_cannot_confirm(self, db_session, test_property, guest_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        with pytest.raises(ForbiddenError):
            await booking_service.update_booking_status(
                db_session, booking.id, actor_id=guest_user.id, actor_role="guest", new_status="confirmed", now=NOW
            )
        await db_session.refresh(booking)
        assert booking.status == "pending"

    async def test_stranger_cannot_act_as_guest(self, db_session, test_property, guest_user):
        stranger = await create_user(db_session, "stranger")
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        with pytest.raises(ForbiddenError):
            await booking_service.update_booking_status(
                db_session, booking.id, actor_id=stranger.id, actor_role="guest", new_status="cancelled", now=NOW
            )

    async def test_unknown_actor_role(self, db_session, test_property, guest_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        with pytest.raises(ForbiddenError):
            await booking_service.update_booking_status(
                db_session, booking.id, actor_id=guest_user.id, actor_role="admin", new_status="cancelled", now=NOW
            )

    async def test_cancel_six_days_out_refunds_in_full(self, db_session, make_property, guest_user):
        prop = await make_property(instant_bookable=True, cleaning_fee=Decimal("50"))
        booking = await _book(db_session, prop, guest_user, date(2024, 5, 7), date(2024, 5, 12))

        cancelled = await booking_service.update_booking_status(
            db_session,
            booking.id,
            actor_id=guest_user.id,
            actor_role="guest",
            new_status="cancelled",
            reason="Change of plans",
            now=NOW,
        )
        assert cancelled.status == "cancelled"
        assert cancelled.refund_amount == Decimal("550.00")
        assert cancelled.cancellation_reason == "Change of plans"
        assert cancelled.cancelled_at == NOW.replace(tzinfo=None)

    async def test_cancel_three_days_out_refunds_half(self, db_session, make_property, guest_user, host_user):
        prop = await make_property(instant_bookable=True, cleaning_fee=Decimal("50"))
        booking = await _book(db_session, prop, guest_user, date(2024, 5, 7), date(2024, 5, 12))

        cancelled = await booking_service.update_booking_status(
            db_session,
            booking.id,
            actor_id=host_user.id,
            actor_role="host",
            new_status="cancelled",
            now=NOW + timedelta(days=3),
        )
        assert cancelled.refund_amount == Decimal("275.00")

    async def test_cancel_twice_is_invalid_transition(self, db_session, test_property, guest_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        await booking_service.update_booking_status(
            db_session, booking.id, actor_id=guest_user.id, actor_role="guest", new_status="cancelled", now=NOW
        )
        with pytest.raises(InvalidTransitionError):
            await booking_service.update_booking_status(
                db_session, booking.id, actor_id=guest_user.id, actor_role="guest", new_status="cancelled", now=NOW
            )

    async def test_complete_before_check_out_rejected(self, db_session, make_property, guest_user):
        prop = await make_property(instant_bookable=True)
        booking = await _book(db_session, prop, guest_user, date(2024, 5, 5), date(2024, 5, 10))
        with pytest.raises(InvalidTransitionError):
            await booking_service.update_booking_status(
                db_session,
                booking.id,
                actor_id=None,
                actor_role="system",
                new_status="completed",
                now=datetime(2024, 5, 9, tzinfo=timezone.utc),
            )

    async def test_complete_finished_stays(self, db_session, make_property, guest_user):
        prop = await make_property(instant_bookable=True)
        done = await _book(db_session, prop, guest_user, date(2024, 5, 5), date(2024, 5, 10))
        ongoing = await _book(db_session, prop, guest_user, date(2024, 5, 10), date(2024, 5, 14))

        completed = await booking_service.complete_finished_stays(db_session, today=date(2024, 5, 10))

        assert [b.id for b in completed] == [done.id]
        await db_session.refresh(ongoing)
        assert ongoing.status == "confirmed"

    async def test_complete_finished_stays_skips_changed_booking(
        self, db_session, make_property, guest_user, host_user, monkeypatch
    ):
        prop = await make_property(instant_bookable=True)
        first = await _book(db_session, prop, guest_user, date(2024, 5, 2), date(2024, 5, 4))
        second = await _book(db_session, prop, guest_user, date(2024, 5, 5), date(2024, 5, 8))
        original = booking_service.update_booking_status

        async def cancelled_meanwhile(db, booking_id, **kwargs):
            if booking_id == first.id:
                await original(
                    db, booking_id, actor_id=host_user.id, actor_role="host", new_status="cancelled", now=NOW
                )
            return await original(db, booking_id, **kwargs)

        monkeypatch.setattr(booking_service, "update_booking_status", cancelled_meanwhile)

        completed = await booking_service.complete_finished_stays(db_session, today=date(2024, 5, 10))

        assert [b.id for b in completed] == [second.id]
        await db_session.refresh(first)
        assert first.status == "cancelled"

    async def test_reject_owes_full_total(self, db_session, test_property, guest_user, host_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        rejected = await booking_service.update_booking_status(
            db_session, booking.id, actor_id=host_user.id, actor_role="host", new_status="rejected", now=NOW
        )
        assert rejected.status == "rejected"
        assert rejected.refund_amount == rejected.total_amount
        assert booking_service.refundable_cents(rejected) == 20000

    async def test_missing_booking(self, db_session, guest_user):
        with pytest.raises(NotFoundError):
            await booking_service.update_booking_status(
                db_session, uuid.uuid4(), actor_id=guest_user.id, actor_role="guest", new_status="cancelled"
            )


# ---------------------------------------------------------------------------
# Guest edits
# ---------------------------------------------------------------------------


class TestUpdateBookingDetails:
    async def test_date_change_reprices(self, db_session, test_property, guest_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        updated = await booking_service.update_booking_details(
            db_session,
            booking.id,
            guest_id=guest_user.id,
            changes={"check_out": date(2024, 5, 9)},
            now=NOW,
        )
        assert updated.nights == 4
        assert updated.total_amount == Decimal("400.00")

    async def test_guest_merge(self, db_session, test_property, guest_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        updated = await booking_service.update_booking_details(
            db_session, booking.id, guest_id=guest_user.id, changes={"guests": {"children": 2}}, now=NOW
        )
        assert (updated.adults, updated.children, updated.infants) == (2, 2, 0)

    async def test_failed_edit_leaves_booking_unchanged(self, db_session, test_property, guest_user):
        await _book(db_session, test_property, guest_user, date(2024, 5, 10), date(2024, 5, 12))
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))

        with pytest.raises(BookingConflictError):
            await booking_service.update_booking_details(
                db_session,
                booking.id,
                guest_id=guest_user.id,
                changes={"check_out": date(2024, 5, 11), "special_requests": "Crib please"},
                now=NOW,
            )
        await db_session.refresh(booking)
        assert booking.check_out == date(2024, 5, 7)
        assert booking.special_requests is None

    async def test_capacity_rechecked(self, db_session, test_property, guest_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        with pytest.raises(CapacityExceededError):
            await booking_service.update_booking_details(
                db_session, booking.id, guest_id=guest_user.id, changes={"guests": {"children": 3}}, now=NOW
            )

    async def test_confirmed_booking_is_immutable(self, db_session, make_property, guest_user):
        prop = await make_property(instant_bookable=True)
        booking = await _book(db_session, prop, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        with pytest.raises(ImmutableStateError):
            await booking_service.update_booking_details(
                db_session, booking.id, guest_id=guest_user.id, changes={"special_requests": "Late"}, now=NOW
            )

    async def test_only_guest_may_edit(self, db_session, test_property, guest_user, host_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        with pytest.raises(ForbiddenError):
            await booking_service.update_booking_details(
                db_session, booking.id, guest_id=host_user.id, changes={"special_requests": "Late"}, now=NOW
            )

    async def test_unknown_field(self, db_session, test_property, guest_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        with pytest.raises(ValueError):
            await booking_service.update_booking_details(
                db_session, booking.id, guest_id=guest_user.id, changes={"status": "confirmed"}, now=NOW
            )


class TestDeleteBooking:
    async def test_guest_withdraws_pending(self, db_session, test_property, guest_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        await booking_service.delete_booking(db_session, booking.id, guest_id=guest_user.id)

        with pytest.raises(NotFoundError):
            await booking_service.get_booking(db_session, booking.id)

    async def test_confirmed_cannot_be_deleted(self, db_session, make_property, guest_user):
        prop = await make_property(instant_bookable=True)
        booking = await _book(db_session, prop, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        with pytest.raises(ImmutableStateError):
            await booking_service.delete_booking(db_session, booking.id, guest_id=guest_user.id)

    async def test_host_cannot_delete(self, db_session, test_property, guest_user, host_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        with pytest.raises(ForbiddenError):
            await booking_service.delete_booking(db_session, booking.id, guest_id=host_user.id)


# ---------------------------------------------------------------------------
# Payments and queries
# ---------------------------------------------------------------------------


class TestPaymentStatus:
    async def test_paid_then_refunded(self, db_session, make_property, guest_user):
        prop = await make_property(instant_bookable=True)
        booking = await _book(db_session, prop, guest_user, date(2024, 5, 5), date(2024, 5, 7))

        paid = await booking_service.mark_paid(db_session, booking.id, payment_reference="pi_123")
        assert paid.payment_status == "paid"
        assert paid.payment_reference == "pi_123"

        refunded = await booking_service.mark_refunded(db_session, booking.id)
        assert refunded.payment_status == "refunded"

    async def test_paid_twice_rejected(self, db_session, test_property, guest_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        await booking_service.mark_paid(db_session, booking.id, payment_reference="pi_123")
        with pytest.raises(InvalidTransitionError):
            await booking_service.mark_paid(db_session, booking.id, payment_reference="pi_123")

    async def test_failed_then_paid(self, db_session, test_property, guest_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        failed = await booking_service.mark_payment_failed(db_session, booking.id)
        assert failed.payment_status == "failed"
        paid = await booking_service.mark_paid(db_session, booking.id, payment_reference="pi_456")
        assert paid.payment_status == "paid"

    async def test_paid_after_cancellation_is_recorded(self, db_session, test_property, guest_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        await booking_service.update_booking_status(
            db_session, booking.id, actor_id=guest_user.id, actor_role="guest", new_status="cancelled", now=NOW
        )

        paid = await booking_service.mark_paid(db_session, booking.id, payment_reference="pi_late")

        assert paid.status == "cancelled"
        assert paid.payment_status == "paid"
        assert paid.payment_reference == "pi_late"
        assert booking_service.refundable_cents(paid) == 10000

    async def test_refund_requires_payment(self, db_session, test_property, guest_user):
        booking = await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        with pytest.raises(InvalidTransitionError):
            await booking_service.mark_refunded(db_session, booking.id)

    async def test_refundable_cents(self, db_session, make_property, guest_user):
        prop = await make_property(instant_bookable=True, base_price_per_night=Decimal("99.99"))
        booking = await _book(db_session, prop, guest_user, date(2024, 5, 7), date(2024, 5, 8))
        assert booking_service.refundable_cents(booking) == 0

        cancelled = await booking_service.update_booking_status(
            db_session, booking.id, actor_id=guest_user.id, actor_role="guest", new_status="cancelled", now=NOW
        )
        assert booking_service.refundable_cents(cancelled) == 9999


class TestBookingTable:
    @pytest.mark.parametrize("column", ["status", "payment_status", "total_amount", "check_in", "check_out"])
    async def test_required_columns(self, column):
        assert Booking.__table__.c[column].nullable is False


class TestListBookings:
    async def test_role_filters(self, db_session, test_property, guest_user, host_user):
        await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))

        items, total = await booking_service.list_bookings_for_user(db_session, guest_user.id, role="guest")
        assert total == 1 and len(items) == 1
        _, total = await booking_service.list_bookings_for_user(db_session, guest_user.id, role="host")
        assert total == 0
        _, total = await booking_service.list_bookings_for_user(db_session, host_user.id, role="host")
        assert total == 1
        _, total = await booking_service.list_bookings_for_user(db_session, host_user.id)
        assert total == 1

    async def test_status_filter(self, db_session, test_property, guest_user):
        await _book(db_session, test_property, guest_user, date(2024, 5, 5), date(2024, 5, 7))
        _, total = await booking_service.list_bookings_for_user(db_session, guest_user.id, status="confirmed")
        assert total == 0
        _, total = await booking_service.list_bookings_for_user(db_session, guest_user.id, status="pending")
        assert total == 1
