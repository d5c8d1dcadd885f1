"""Admission rules checked before a stay is accepted or edited."""

from dataclasses import dataclass
from datetime import date

from staybook.booking.errors import (
    CapacityExceededError,
    InvalidDateRangeError,
    StayLengthViolationError,
)
from staybook.booking.pricing import count_nights


@dataclass(frozen=True)
class GuestCount:
    """Party composition for a stay."""

    adults: int = 1
    children: int = 0
    infants: int = 0

    def __post_init__(self) -> None:
        if self.adults < 1:
            raise ValueError("At least 1 adult is required")
        if self.children < 0 or self.infants < 0:
            raise ValueError("Guest counts cannot be negative")

    @property
    def total(self) -> int:
        return self.adults + self.children + self.infants


def validate_dates(check_in: date, check_out: date, today: date) -> int:
    """Check the date range and return the number of nights.

    Raises:
        InvalidDateRangeError: If check-in is not after ``today`` or
            check-out is not after check-in.
    """
    if check_in <= today:
        raise InvalidDateRangeError(
            "Check-in date must be in the future",
            field="check_in",
            check_in=check_in,
            today=today,
        )
    if check_out <= check_in:
        raise InvalidDateRangeError(
            "Check-out date must be after check-in date",
            field="check_out",
            check_in=check_in,
            check_out=check_out,
        )
    return count_nights(check_in, check_out)


def validate_stay_length(nights: int, min_stay: int, max_stay: int | None) -> None:
    """Raise StayLengthViolationError if ``nights`` is outside ``[min_stay, max_stay]``."""
    if nights < min_stay:
        raise StayLengthViolationError(
            f"Minimum stay is {min_stay} nights",
            field="check_out",
            nights=nights,
            min_stay=min_stay,
        )
    if max_stay is not None and nights > max_stay:
        raise StayLengthViolationError(
            f"Maximum stay is {max_stay} nights",
            field="check_out",
            nights=nights,
            max_stay=max_stay,
        )


def validate_capacity(guests: GuestCount, capacity: int) -> None:
    """Raise CapacityExceededError if the party is larger than the property allows."""
    if guests.total > capacity:
        raise CapacityExceededError(
            f"This property accommodates at most {capacity} guests",
            field="guests",
            total_guests=guests.total,
            capacity=capacity,
        )
