"""Property model: rentable listings owned by a host."""

import uuid
from decimal import Decimal

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from staybook.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Property(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A listing a guest can book for a range of nights."""

    __tablename__ = "properties"

    owner_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, default=None)
    location: Mapped[str | None] = mapped_column(String(255), default=None)
    property_type: Mapped[str] = mapped_column(String(50), nullable=False)  # apartment, house, villa, ...
    amenities: Mapped[list | None] = mapped_column(JSON, default=list)
    status: Mapped[str] = mapped_column(String(50), default="active")  # active, inactive, suspended

    # Capacity and stay rules
    max_guests: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    min_stay: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_stay: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None = unbounded
    instant_bookable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    cancellation_policy: Mapped[str] = mapped_column(String(20), nullable=False, default="moderate")

    # Pricing
    base_price_per_night: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    cleaning_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    service_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    taxes: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    def __repr__(self) -> str:
        return f"<Property(id={self.id}, title={self.title!r}, status={self.status!r})>"
