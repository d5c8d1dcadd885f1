"""Pricing engine: nightly rate, nights and fees to a price breakdown."""

import math
from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal

TWO_PLACES = Decimal("0.01")
SECONDS_PER_DAY = 86400


def to_money(value: Decimal | int | float | str) -> Decimal:
    """Convert a numeric value to a Decimal rounded to minor units."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _as_datetime(value: date) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def count_nights(check_in: date, check_out: date) -> int:
    """Number of calendar nights between check-in and check-out.

    Calendar dates give the plain day difference; datetimes with a time
    component round a partial day up.
    """
    if not isinstance(check_in, datetime) and not isinstance(check_out, datetime):
        return (check_out - check_in).days
    delta = _as_datetime(check_out) - _as_datetime(check_in)
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


@dataclass(frozen=True)
class PriceBreakdown:
    """Components of a stay's price."""

    nightly_rate: Decimal
    nights: int
    cleaning_fee: Decimal
    service_fee: Decimal
    taxes: Decimal

    @property
    def accommodation(self) -> Decimal:
        return to_money(self.nightly_rate * self.nights)


@dataclass(frozen=True)
class PriceQuote:
    """A breakdown and the total it sums to."""

    breakdown: PriceBreakdown
    total: Decimal


def compute_price(
    nightly_rate: Decimal | int | float | str,
    nights: int,
    cleaning_fee: Decimal | int | float | str = 0,
    service_fee: Decimal | int | float | str = 0,
    taxes: Decimal | int | float | str = 0,
) -> PriceQuote:
    """Price a stay: ``nightly_rate * nights + cleaning_fee + service_fee + taxes``.

    Args:
        nightly_rate: Price per night in the property's currency.
        nights: Positive number of nights, see :func:`count_nights`.
        cleaning_fee: Flat cleaning fee, ``>= 0``.
        service_fee: Flat service fee, ``>= 0``.
        taxes: Flat taxes, ``>= 0``.

    Returns:
        A :class:`PriceQuote` whose ``total`` is exact to the cent.
    """
    breakdown = PriceBreakdown(
        nightly_rate=to_money(nightly_rate),
        nights=nights,
        cleaning_fee=to_money(cleaning_fee),
        service_fee=to_money(service_fee),
        taxes=to_money(taxes),
    )
    total = breakdown.accommodation + breakdown.cleaning_fee + breakdown.service_fee + breakdown.taxes
    return PriceQuote(breakdown=breakdown, total=to_money(total))
