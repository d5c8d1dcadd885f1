"""Availability checker: half-open overlap test against stored bookings."""

import uuid
from datetime import date

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from staybook.booking.lifecycle import BLOCKING_STATUSES
from staybook.models.booking import Booking


async def has_conflict(
    db: AsyncSession,
    property_id: uuid.UUID,
    check_in: date,
    check_out: date,
    exclude_booking_id: uuid.UUID | None = None,
) -> bool:
    """Return True if a pending or confirmed booking overlaps ``[check_in, check_out)``.

    A stay ending on the day another begins does not overlap.
    """
    query = select(Booking.id).where(
        Booking.property_id == property_id,
        Booking.status.in_(BLOCKING_STATUSES),
        Booking.check_in < check_out,
        Booking.check_out > check_in,
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)

    result = await db.execute(select(exists(query)))
    return bool(result.scalar())
