"""Listing model definition."""

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.clock import utcnow
from ..core.database import Base

if TYPE_CHECKING:
    from .booking import Booking


class Listing(Base):
    """A rentable camping spot owned by a host."""

    __tablename__ = "listings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Identity-provider user id of the owner
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    price_per_night: Mapped[int] = mapped_column(Integer, nullable=False)  # minor units
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="eur")
    max_guests: Mapped[int] = mapped_column(Integer, nullable=False)

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
        CheckConstraint("price_per_night >= 0", name="ck_listing_price_non_negative"),
        CheckConstraint("max_guests > 0", name="ck_listing_max_guests_positive"),
        CheckConstraint("length(currency) = 3", name="ck_listing_currency_length"),
    )

    bookings: Mapped[list["Booking"]] = relationship("Booking", back_populates="listing")

    def __repr__(self) -> str:
        return f"<Listing(id={self.id}, owner_id='{self.owner_id}', max_guests={self.max_guests})>"
