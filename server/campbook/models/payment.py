"""Payment session and transaction model definitions."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Integer, String, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.clock import utcnow
from ..core.database import Base

if TYPE_CHECKING:
    from .booking import Booking


class PaymentSessionStatus(str, Enum):
    """Local view of a provider checkout session."""
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"


class TransactionStatus(str, Enum):
    """Transaction status enumeration."""
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    REFUNDED = "REFUNDED"


class PaymentSession(Base):
    """A checkout session opened with the payment provider for one booking."""

    __tablename__ = "payment_sessions"

    # Provider-issued session id
    id: Mapped[str] = mapped_column(String(255), primary_key=True)

    booking_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # minor units, fee included
    service_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[PaymentSessionStatus] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentSessionStatus.PENDING,
        index=True
    )

    # Only the newest session of a booking is active
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Paid but could not be applied; an operator has to refund or resolve it
    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    failure_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    checkout_url: Mapped[str | None] = mapped_column(String(2048), nullable=True)

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
        CheckConstraint("amount >= 0", name="ck_payment_session_amount_non_negative"),
        CheckConstraint("service_fee >= 0", name="ck_payment_session_fee_non_negative"),
    )

    booking: Mapped["Booking"] = relationship("Booking", back_populates="payment_sessions")

    def __repr__(self) -> str:
        return (
            f"<PaymentSession(id='{self.id}', booking_id={self.booking_id}, "
            f"amount={self.amount}, status={self.status}, active={self.is_active})>"
        )


class Transaction(Base):
    """
    Immutable financial record.

    One CONFIRMED row is written per reconciled payment; refunds append a
    REFUNDED row. ``provider_reference`` is unique and is the de-duplication
    gate for reconciliation.
    """

    __tablename__ = "transactions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    booking_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("bookings.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    provider_reference: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    payment_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # total charged or refunded
    base_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    service_fee: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[TransactionStatus] = mapped_column(String(20), nullable=False, index=True)

    created_at: Mapped[datetime] = mapped_column(
        nullable=False,
        default=utcnow,
        server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_transaction_amount_non_negative"),
        CheckConstraint("length(provider_reference) > 0", name="ck_transaction_reference_not_empty"),
    )

    booking: Mapped["Booking"] = relationship("Booking", back_populates="transactions")

    def __repr__(self) -> str:
        return (
            f"<Transaction(id={self.id}, booking_id={self.booking_id}, "
            f"provider_reference='{self.provider_reference}', status={self.status})>"
        )
