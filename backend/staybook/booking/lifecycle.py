"""Booking state machine: statuses, allowed transitions and who may make them."""

from staybook.booking.errors import ForbiddenError, ImmutableStateError, InvalidTransitionError

# Booking statuses
PENDING = "pending"
CONFIRMED = "confirmed"
CANCELLED = "cancelled"
COMPLETED = "completed"
REJECTED = "rejected"

BOOKING_STATUSES: tuple[str, ...] = (PENDING, CONFIRMED, CANCELLED, COMPLETED, REJECTED)
TERMINAL_STATUSES: frozenset[str] = frozenset({CANCELLED, COMPLETED, REJECTED})
# Statuses that hold the property's dates
BLOCKING_STATUSES: tuple[str, ...] = (PENDING, CONFIRMED)

# Actors
GUEST = "guest"
HOST = "host"
SYSTEM = "system"

ACTOR_ROLES: tuple[str, ...] = (GUEST, HOST, SYSTEM)

# (from, to) -> roles allowed to make the move
TRANSITIONS: dict[tuple[str, str], frozenset[str]] = {
    (PENDING, CONFIRMED): frozenset({HOST}),
    (PENDING, REJECTED): frozenset({HOST}),
    (PENDING, CANCELLED): frozenset({GUEST}),
    (CONFIRMED, CANCELLED): frozenset({GUEST, HOST}),
    (CONFIRMED, COMPLETED): frozenset({SYSTEM}),
}

# Payment statuses, tracked independently of the booking status
PAYMENT_PENDING = "pending"
PAYMENT_PAID = "paid"
PAYMENT_REFUNDED = "refunded"
PAYMENT_FAILED = "failed"

PAYMENT_STATUSES: tuple[str, ...] = (PAYMENT_PENDING, PAYMENT_PAID, PAYMENT_REFUNDED, PAYMENT_FAILED)

PAYMENT_TRANSITIONS: frozenset[tuple[str, str]] = frozenset(
    {
        (PAYMENT_PENDING, PAYMENT_PAID),
        (PAYMENT_PENDING, PAYMENT_FAILED),
        (PAYMENT_FAILED, PAYMENT_PAID),
        (PAYMENT_FAILED, PAYMENT_FAILED),
        (PAYMENT_PAID, PAYMENT_REFUNDED),
    }
)


def initial_status(instant_bookable: bool) -> str:
    """Status a new booking starts in."""
    return CONFIRMED if instant_bookable else PENDING


def check_transition(current: str, target: str, actor_role: str) -> None:
    """Validate a status change.

    Raises:
        InvalidTransitionError: If ``current -> target`` is not in the table.
        ForbiddenError: If the move exists but ``actor_role`` may not make it.
    """
    allowed_roles = TRANSITIONS.get((current, target))
    if allowed_roles is None:
        raise InvalidTransitionError(
            f"Cannot change booking status from {current} to {target}",
            field="status",
            current=current,
            target=target,
        )
    if actor_role not in allowed_roles:
        raise ForbiddenError(
            f"A {actor_role} cannot change a {current} booking to {target}",
            field="status",
            current=current,
            target=target,
            actor_role=actor_role,
            allowed_roles=sorted(allowed_roles),
        )


def check_editable(current: str, action: str = "modify") -> None:
    """Guest edits and withdrawals are only allowed while the booking is pending."""
    if current != PENDING:
        raise ImmutableStateError(
            f"Cannot {action} a {current} booking; only pending bookings can be changed",
            field="status",
            current=current,
        )


def check_payment_transition(current: str, target: str) -> None:
    """Validate a payment status change reported by the payment boundary."""
    if (current, target) not in PAYMENT_TRANSITIONS:
        raise InvalidTransitionError(
            f"Cannot change payment status from {current} to {target}",
            field="payment_status",
            current=current,
            target=target,
        )
