"""Completion sweeper: moves finished stays from CONFIRMED to COMPLETED."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, utcnow
from ..core.locking import listing_locks
from ..models.booking import Booking, BookingStatus
from .booking_state import BookingEvent, transition
from .notifications import NotificationError, Notifier

logger = logging.getLogger(__name__)


class CompletionService:
    """Service for sweeping ended stays."""

    def __init__(self, db: AsyncSession, notifier: Notifier, clock: Clock = utcnow):
        self.db = db
        self.notifier = notifier
        self.clock = clock

    async def sweep(self, now: Optional[datetime] = None, batch_size: int = 500) -> int:
        """
        Complete CONFIRMED bookings whose end date is before ``now``.

        Each booking is re-read and transitioned under its listing lock, so
        a cancellation committed after the selection is never overwritten.
        Each completion is committed before its review request is sent, so a
        notification failure never undoes it. Running the sweep again finds
        nothing new since COMPLETED rows drop out of the selection.

        Args:
            now: Reference time, defaults to the service clock
            batch_size: Maximum bookings per sweep

        Returns:
            Number of bookings transitioned
        """
        cutoff = (now or self.clock()).date()

        stmt = (
            select(Booking.id, Booking.listing_id)
            .where(
                Booking.status == BookingStatus.CONFIRMED.value,
                Booking.end_date < cutoff,
            )
            .order_by(Booking.end_date)
            .limit(batch_size)
        )
        result = await self.db.execute(stmt)
        candidates = [(row.id, row.listing_id) for row in result]

        completed = 0
        for booking_id, listing_id in candidates:
            async with listing_locks.hold(self.db, listing_id):
                booking = await self.db.get(Booking, booking_id, populate_existing=True)
                # Cancelled (and possibly refunded) since the select
                if booking is None or booking.status != BookingStatus.CONFIRMED:
                    await self.db.commit()
                    continue
                transition(booking, BookingEvent.STAY_ENDED, self.clock)
                await self.db.commit()
            completed += 1

            try:
                await self.notifier.request_review(booking)
            except NotificationError as exc:
                logger.warning(
                    "Review request failed",
                    extra={"booking_id": str(booking.id), "error": str(exc)}
                )

        logger.info(
            "Completion sweep finished",
            extra={"cutoff": cutoff.isoformat(), "completed_count": completed}
        )
        return completed
