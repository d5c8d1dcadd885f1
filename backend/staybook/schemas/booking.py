"""Pydantic v2 request/response schemas for booking endpoints."""

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, computed_field

from staybook.booking.rules import GuestCount
from staybook.schemas.property import PropertyResponse

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class GuestsIn(BaseModel):
    """Party composition for a new booking."""

    adults: int = Field(1, ge=1)
    children: int = Field(0, ge=0)
    infants: int = Field(0, ge=0)

    def to_guest_count(self) -> GuestCount:
        return GuestCount(adults=self.adults, children=self.children, infants=self.infants)


class GuestsPatch(BaseModel):
    """Partial party composition; unset counts keep their current value."""

    adults: int | None = Field(None, ge=1)
    children: int | None = Field(None, ge=0)
    infants: int | None = Field(None, ge=0)


class BookingCreate(BaseModel):
    """Schema for requesting a booking.

    Date ordering, stay length and capacity are validated by the booking
    service so they come back as structured booking errors.
    """

    property_id: uuid.UUID
    check_in: date
    check_out: date
    guests: GuestsIn = Field(default_factory=GuestsIn)
    special_requests: str | None = Field(None, max_length=500)


class BookingQuoteRequest(BaseModel):
    """Schema for pricing a prospective stay."""

    property_id: uuid.UUID
    check_in: date
    check_out: date
    guests: GuestsIn = Field(default_factory=GuestsIn)


class BookingUpdate(BaseModel):
    """Schema for a guest's edit of a pending booking. All fields optional."""

    check_in: date | None = None
    check_out: date | None = None
    guests: GuestsPatch | None = None
    special_requests: str | None = Field(None, max_length=500)


class BookingStatusUpdate(BaseModel):
    """Schema for confirming, rejecting or cancelling a booking."""

    status: str = Field(..., pattern="^(confirmed|rejected|cancelled)$")
    reason: str | None = Field(None, max_length=200)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class PriceBreakdownResponse(BaseModel):
    """Price components of a stay."""

    nightly_rate: Decimal
    nights: int
    cleaning_fee: Decimal
    service_fee: Decimal
    taxes: Decimal

    model_config = ConfigDict(from_attributes=True)


class BookingQuoteResponse(BaseModel):
    """Price preview for a prospective stay."""

    property_id: uuid.UUID
    check_in: date
    check_out: date
    nights: int
    currency: str
    breakdown: PriceBreakdownResponse
    total: Decimal
    available: bool
    instant_bookable: bool


class GuestsResponse(BaseModel):
    adults: int
    children: int
    infants: int
    total: int


class BookingResponse(BaseModel):
    """Standard booking response returned from booking operations."""

    id: uuid.UUID
    property_id: uuid.UUID
    guest_id: uuid.UUID
    host_id: uuid.UUID
    check_in: date
    check_out: date
    nights: int
    adults: int
    children: int
    infants: int
    total_guests: int
    total_amount: Decimal
    currency: str
    breakdown: PriceBreakdownResponse
    status: str
    payment_status: str
    special_requests: str | None = None
    cancellation_policy: str
    cancellation_reason: str | None = None
    refund_amount: Decimal | None = None
    cancelled_at: datetime | None = None
    is_instant_book: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def guests(self) -> GuestsResponse:
        return GuestsResponse(
            adults=self.adults,
            children=self.children,
            infants=self.infants,
            total=self.total_guests,
        )


class BookingDetailResponse(BookingResponse):
    """Booking response with the nested property, for single-booking views."""

    property: PropertyResponse | None = None


class BookingListResponse(BaseModel):
    """Paginated list of bookings."""

    items: list[BookingResponse]
    total: int


class PaymentIntentResponse(BaseModel):
    """Client secret for confirming a booking payment in the browser."""

    booking_id: uuid.UUID
    payment_intent_id: str
    client_secret: str
    amount: Decimal
    currency: str
