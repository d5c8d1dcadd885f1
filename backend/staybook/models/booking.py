"""Booking model: tracks property reservations."""

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from staybook.booking.pricing import PriceBreakdown, count_nights
from staybook.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Booking(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A reservation linking a guest to a host's property for specific dates.

    The price columns are a snapshot taken when the booking was created or
    last edited by the guest; later changes to the property's prices do not
    touch them.
    """

    __tablename__ = "bookings"

    property_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("properties.id", ondelete="CASCADE"),
        nullable=False,
    )
    guest_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    host_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    check_in: Mapped[date] = mapped_column(Date, nullable=False)
    check_out: Mapped[date] = mapped_column(Date, nullable=False)

    adults: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    children: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    infants: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Price snapshot
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    nightly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    cleaning_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    service_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    taxes: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        index=True,
    )  # pending, confirmed, cancelled, completed, rejected
    # pending, paid, refunded, failed
    payment_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    special_requests: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancellation_policy: Mapped[str] = mapped_column(String(20), nullable=False, default="moderate")
    cancellation_reason: Mapped[str | None] = mapped_column(String(200), nullable=True)
    refund_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    is_instant_book: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index("ix_bookings_property_dates", "property_id", "check_in", "check_out"),
    )

    @property
    def nights(self) -> int:
        return count_nights(self.check_in, self.check_out)

    @property
    def total_guests(self) -> int:
        return (self.adults or 0) + (self.children or 0) + (self.infants or 0)

    @property
    def breakdown(self) -> PriceBreakdown:
        return PriceBreakdown(
            nightly_rate=self.nightly_rate,
            nights=self.nights,
            cleaning_fee=self.cleaning_fee,
            service_fee=self.service_fee,
            taxes=self.taxes,
        )

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, property_id={self.property_id}, guest_id={self.guest_id}, status={self.status})>"
        )
