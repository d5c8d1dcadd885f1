"""Cancellation policies: refund percentage by lead time before check-in."""

import math
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from decimal import Decimal

from staybook.booking.pricing import SECONDS_PER_DAY, to_money


@dataclass(frozen=True)
class RefundTier:
    """Refund ``percent`` when at least ``min_days`` remain before check-in."""

    min_days: int
    percent: int


@dataclass(frozen=True)
class CancellationPolicy:
    """A named refund schedule. Tiers are checked in order; no match refunds 0."""

    name: str
    tiers: tuple[RefundTier, ...]

    def percentage_for(self, days_until_check_in: int) -> int:
        for tier in self.tiers:
            if days_until_check_in >= tier.min_days:
                return tier.percent
        return 0


DEFAULT_POLICY = "moderate"

POLICIES: dict[str, CancellationPolicy] = {
    "flexible": CancellationPolicy(
        name="flexible",
        tiers=(RefundTier(min_days=1, percent=100),),
    ),
    "moderate": CancellationPolicy(
        name="moderate",
        tiers=(RefundTier(min_days=5, percent=100), RefundTier(min_days=1, percent=50)),
    ),
    "strict": CancellationPolicy(
        name="strict",
        tiers=(RefundTier(min_days=7, percent=50),),
    ),
    "super_strict": CancellationPolicy(
        name="super_strict",
        tiers=(RefundTier(min_days=30, percent=50),),
    ),
}

VALID_POLICY_NAMES: set[str] = set(POLICIES.keys())


def get_policy(policy_name: str | None) -> CancellationPolicy:
    """Get a policy by name. Defaults to moderate if unknown."""
    return POLICIES.get(policy_name or DEFAULT_POLICY, POLICIES[DEFAULT_POLICY])


def days_until_check_in(check_in: date, now: datetime) -> int:
    """Whole days from ``now`` to check-in (00:00 UTC), rounded up.

    Negative once check-in has passed. Naive ``now`` values are read as UTC.
    """
    if isinstance(check_in, datetime):
        check_in_at = check_in
    else:
        check_in_at = datetime.combine(check_in, time.min)
    if check_in_at.tzinfo is None:
        check_in_at = check_in_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return math.ceil((check_in_at - now).total_seconds() / SECONDS_PER_DAY)


def refund_percentage(policy_name: str | None, check_in: date, now: datetime) -> int:
    """Refund percentage (0-100) for cancelling at ``now``."""
    return get_policy(policy_name).percentage_for(days_until_check_in(check_in, now))


def refund_amount(total: Decimal, percentage: int) -> Decimal:
    """Portion of ``total`` refunded at ``percentage``, rounded to the cent."""
    return to_money(Decimal(total) * percentage / 100)
