"""Booking model definition.

A booking row covers every kind of occupancy on a listing: a Held
reservation while payment is in flight, a Confirmed or Completed stay, a
Cancelled one, and an owner-imposed block.
"""

from datetime import date, datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.clock import utcnow
from ..core.database import Base

if TYPE_CHECKING:
    from .listing import Listing
    from .payment import PaymentSession, Transaction


class BookingStatus(str, Enum):
    """Booking status enumeration."""
    HELD = "HELD"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"
    OWNER_BLOCKED = "OWNER_BLOCKED"


# Statuses that occupy their date range unconditionally. HELD occupies only
# until its expiry passes.
OCCUPYING_STATUSES = (
    BookingStatus.CONFIRMED,
    BookingStatus.COMPLETED,
    BookingStatus.OWNER_BLOCKED,
)


class Booking(Base):
    """Booking entity for a listing and a half-open date range [start_date, end_date)."""

    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    listing_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("listings.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Identity-provider user id; the owner's id for OWNER_BLOCKED rows
    renter_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    guest_count: Mapped[int] = mapped_column(Integer, nullable=False)

    # Nightly price times nights, in minor units; the service fee is charged on top
    base_cost: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="eur")

    status: Mapped[BookingStatus] = mapped_column(
        String(20),
        nullable=False,
        default=BookingStatus.HELD,
        index=True
    )

    # Hold bookkeeping
    expires_at: Mapped[datetime | None] = mapped_column(nullable=True, index=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Event that moved the booking to CANCELLED, used to recognise redelivery
    cancel_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)
    refund_pending: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("start_date < end_date", name="ck_booking_range_ordered"),
        CheckConstraint("guest_count >= 0", name="ck_booking_guest_count_non_negative"),
        CheckConstraint("base_cost >= 0", name="ck_booking_base_cost_non_negative"),
        CheckConstraint("length(renter_id) > 0", name="ck_booking_renter_not_empty"),
        UniqueConstraint("renter_id", "idempotency_key", name="uq_booking_renter_idempotency_key"),
        Index("ix_bookings_listing_range", "listing_id", "start_date", "end_date"),
    )

    listing: Mapped["Listing"] = relationship("Listing", back_populates="bookings")
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction",
        back_populates="booking",
        passive_deletes="all",
    )
    payment_sessions: Mapped[list["PaymentSession"]] = relationship(
        "PaymentSession",
        back_populates="booking",
        cascade="all, delete-orphan",
    )

    @property
    def nights(self) -> int:
        return (self.end_date - self.start_date).days

    def is_expired_hold(self, now: datetime) -> bool:
        """True for a HELD booking whose expiry has passed."""
        return (
            self.status == BookingStatus.HELD
            and self.expires_at is not None
            and self.expires_at <= now
        )

    def overlaps(self, start: date, end: date) -> bool:
        """Half-open interval overlap with [start, end)."""
        return self.start_date < end and start < self.end_date

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, listing_id={self.listing_id}, "
            f"{self.start_date}->{self.end_date}, status={self.status})>"
        )
