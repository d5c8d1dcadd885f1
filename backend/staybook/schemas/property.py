"""Pydantic v2 request/response schemas for property endpoints."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from staybook.config import settings

_PROPERTY_TYPES = "^(apartment|house|villa|cabin|condo|loft|studio|other)$"
_STATUSES = "^(active|inactive|suspended)$"
_CURRENCIES = "^(USD|EUR|GBP|CAD|AUD)$"
_POLICIES = "^(flexible|moderate|strict|super_strict)$"

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class PropertyCreate(BaseModel):
    """Schema for creating a new property."""

    title: str = Field(..., min_length=1, max_length=100)
    description: str | None = Field(None, max_length=1000)
    location: str | None = Field(None, max_length=255)
    property_type: str = Field(..., pattern=_PROPERTY_TYPES)
    amenities: list[str] | None = None
    status: str = Field("active", pattern=_STATUSES)
    max_guests: int = Field(..., ge=1)
    min_stay: int = Field(1, ge=1)
    max_stay: int | None = Field(None, ge=1)
    instant_bookable: bool = False
    cancellation_policy: str = Field("moderate", pattern=_POLICIES)
    base_price_per_night: Decimal = Field(..., ge=0, decimal_places=2)
    currency: str = Field(settings.default_currency, pattern=_CURRENCIES)
    cleaning_fee: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)
    service_fee: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)
    taxes: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)

    @model_validator(mode="after")
    def check_stay_bounds(self) -> "PropertyCreate":
        """Validate that max_stay is not below min_stay."""
        if self.max_stay is not None and self.max_stay < self.min_stay:
            raise ValueError("max_stay must be greater than or equal to min_stay")
        return self


class PropertyUpdate(BaseModel):
    """Schema for partially updating a property. All fields optional.

    Price changes apply to future bookings only; existing bookings keep the
    price they were created with.
    """

    title: str | None = Field(None, min_length=1, max_length=100)
    description: str | None = Field(None, max_length=1000)
    location: str | None = Field(None, max_length=255)
    property_type: str | None = Field(None, pattern=_PROPERTY_TYPES)
    amenities: list[str] | None = None
    status: str | None = Field(None, pattern=_STATUSES)
    max_guests: int | None = Field(None, ge=1)
    min_stay: int | None = Field(None, ge=1)
    max_stay: int | None = Field(None, ge=1)
    instant_bookable: bool | None = None
    cancellation_policy: str | None = Field(None, pattern=_POLICIES)
    base_price_per_night: Decimal | None = Field(None, ge=0, decimal_places=2)
    currency: str | None = Field(None, pattern=_CURRENCIES)
    cleaning_fee: Decimal | None = Field(None, ge=0, decimal_places=2)
    service_fee: Decimal | None = Field(None, ge=0, decimal_places=2)
    taxes: Decimal | None = Field(None, ge=0, decimal_places=2)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class PropertyResponse(BaseModel):
    """Public property information returned from the API."""

    id: uuid.UUID
    owner_id: uuid.UUID
    title: str
    description: str | None = None
    location: str | None = None
    property_type: str
    amenities: list | None = None
    status: str
    max_guests: int
    min_stay: int
    max_stay: int | None = None
    instant_bookable: bool
    cancellation_policy: str
    base_price_per_night: Decimal
    currency: str
    cleaning_fee: Decimal
    service_fee: Decimal
    taxes: Decimal
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PropertyListResponse(BaseModel):
    """Paginated list of properties."""

    items: list[PropertyResponse]
    total: int
