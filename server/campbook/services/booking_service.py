"""Booking service for reads and cancellations."""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import Principal
from ..core.clock import Clock, utcnow
from ..core.exceptions import AuthorizationError, NotFoundError
from ..core.locking import listing_locks
from ..models.booking import Booking, BookingStatus
from ..models.listing import Listing
from ..models.payment import Transaction, TransactionStatus
from .booking_state import BookingEvent, transition
from .payment_provider import PaymentProvider, PaymentProviderError
from .payment_service import PaymentService

logger = logging.getLogger(__name__)


class BookingService:
    """Service for booking-related operations."""

    def __init__(self, db: AsyncSession, provider: PaymentProvider, clock: Clock = utcnow):
        self.db = db
        self.clock = clock
        self.payment_service = PaymentService(db, provider, clock)

    async def _owner_id(self, listing_id: UUID) -> Optional[str]:
        result = await self.db.execute(select(Listing.owner_id).where(Listing.id == listing_id))
        return result.scalar_one_or_none()

    async def get_booking(self, booking_id: UUID, principal: Principal) -> Booking:
        """
        Get a booking visible to the caller.

        Raises:
            NotFoundError: If booking not found
            AuthorizationError: If the caller is neither renter nor listing owner
        """
        booking = await self.db.get(Booking, booking_id, populate_existing=True)
        if not booking or booking.status == BookingStatus.OWNER_BLOCKED:
            raise NotFoundError(resource_type="booking", resource_id=str(booking_id))

        if booking.renter_id != principal.user_id:
            if await self._owner_id(booking.listing_id) != principal.user_id:
                raise AuthorizationError(detail="Not allowed to view this booking")

        return booking

    async def list_bookings_for_user(self, user_id: str, limit: int = 100) -> list[Booking]:
        """List a renter's bookings, newest first."""
        stmt = (
            select(Booking)
            .where(
                Booking.renter_id == user_id,
                Booking.status != BookingStatus.OWNER_BLOCKED.value,
            )
            .order_by(Booking.created_at.desc())
            .limit(limit)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def cancel_booking(
        self,
        booking_id: UUID,
        principal: Principal,
        reason: Optional[str] = None,
    ) -> Booking:
        """
        Cancel a held or confirmed booking on behalf of its renter or listing owner.

        A held booking has its open checkout sessions deactivated in the same
        unit of work, and the hosted pages are expired after commit. A paid
        booking is flagged for refund in the same unit of work as the
        cancellation. The refund itself is attempted after commit; failure
        leaves the flag for the refund retry worker and never undoes the
        cancellation.

        Raises:
            NotFoundError: If booking not found
            AuthorizationError: If the caller is neither renter nor listing owner
            IllegalTransitionError: If the booking is already completed or cancelled differently
        """
        booking = await self.get_booking(booking_id, principal)
        event = (
            BookingEvent.RENTER_CANCEL
            if booking.renter_id == principal.user_id
            else BookingEvent.OWNER_CANCEL
        )

        closed_sessions: list[str] = []
        async with listing_locks.hold(self.db, booking.listing_id):
            await self.db.refresh(booking)
            outcome = transition(booking, event, self.clock)

            if outcome.changed and outcome.previous == BookingStatus.HELD:
                closed_sessions = await self.payment_service.deactivate_sessions(booking.id)

            if outcome.changed and outcome.previous == BookingStatus.CONFIRMED:
                paid = await self.db.execute(
                    select(Transaction.id).where(
                        Transaction.booking_id == booking.id,
                        Transaction.status == TransactionStatus.CONFIRMED.value,
                    )
                )
                if paid.first() is not None:
                    booking.refund_pending = True

            await self.db.commit()

        logger.info(
            "Booking cancelled",
            extra={
                "booking_id": str(booking.id),
                "event": event.value,
                "previous_status": outcome.previous.value,
                "refund_pending": booking.refund_pending,
                "reason": reason,
            }
        )

        await self.payment_service.expire_provider_sessions(booking.id, closed_sessions)

        if booking.refund_pending:
            try:
                await self.payment_service.refund_booking(booking.id)
            except PaymentProviderError as exc:
                logger.warning(
                    "Refund failed - will be retried",
                    extra={"booking_id": str(booking.id), "code": exc.code, "error": exc.message}
                )
            booking = await self.db.get(Booking, booking.id, populate_existing=True)

        return booking
