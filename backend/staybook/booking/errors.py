"""Typed errors raised by the booking core.

Every error carries a stable ``code``, the HTTP status the API layer renders
it with, a human-readable message, the offending ``field`` when there is one
and a ``context`` dict with the constraint values that were violated.
"""

from typing import Any


class BookingError(Exception):
    """Base class for every rejection produced by the booking core."""

    code = "booking_error"
    status_code = 400

    def __init__(self, message: str, *, field: str | None = None, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {
            "detail": self.message,
            "code": self.code,
            "field": self.field,
            "context": self.context,
        }


class NotFoundError(BookingError):
    """The booking or property does not exist."""

    code = "not_found"
    status_code = 404


class ForbiddenError(BookingError):
    """The actor is not allowed to perform the requested action."""

    code = "forbidden"
    status_code = 403


class PropertyUnavailableError(BookingError):
    """The property exists but is not accepting bookings."""

    code = "property_unavailable"
    status_code = 409


class InvalidDateRangeError(BookingError):
    """check_out is not after check_in, or check_in is not in the future."""

    code = "invalid_date_range"
    status_code = 422


class StayLengthViolationError(BookingError):
    """Number of nights is below the minimum or above the maximum stay."""

    code = "stay_length_violation"
    status_code = 422


class CapacityExceededError(BookingError):
    """More guests than the property accommodates."""

    code = "capacity_exceeded"
    status_code = 422


class BookingConflictError(BookingError):
    """The requested dates overlap an existing pending or confirmed booking."""

    code = "conflict"
    status_code = 409


class PropertyBusyError(BookingConflictError):
    """The property's write guard could not be acquired in time."""


class InvalidTransitionError(BookingError):
    """The status change is not permitted from the booking's current state."""

    code = "invalid_transition"
    status_code = 409


class ImmutableStateError(BookingError):
    """Edit or delete attempted on a booking that is no longer pending."""

    code = "immutable_state"
    status_code = 409
