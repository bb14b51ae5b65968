"""Availability ledger: read-only occupancy view over booking rows."""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from uuid import UUID

from sqlalchemy import and_, exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, utcnow
from ..core.exceptions import ConflictError
from ..models.booking import OCCUPYING_STATUSES, Booking, BookingStatus

logger = logging.getLogger(__name__)


class DateRangeConflict(ConflictError):
    """Exception when a requested range overlaps existing occupancy."""

    def __init__(self, listing_id: str, start: date, end: date):
        super().__init__(
            detail=f"Listing {listing_id} is not available from {start.isoformat()} to {end.isoformat()}",
            code="DATE_RANGE_CONFLICT",
            title="Date Range Conflict",
            conflicting_resource={
                "listing_id": listing_id,
                "start": start.isoformat(),
                "end": end.isoformat(),
            }
        )


@dataclass(frozen=True)
class OccupancyEntry:
    """One occupied half-open range [start, end) on a listing."""

    booking_id: UUID
    listing_id: UUID
    start: date
    end: date
    kind: BookingStatus
    expires_at: datetime | None = None


class AvailabilityService:
    """
    Answers overlap queries for a listing.

    A range is occupied by CONFIRMED, COMPLETED and OWNER_BLOCKED bookings
    and by HELD bookings whose expiry is still in the future. Expired holds
    are ignored here even if nothing has cancelled them yet.

    The overlap predicate is pushed down to the database; at larger scale
    this would become an interval index keyed by listing.
    """

    def __init__(self, db: AsyncSession, clock: Clock = utcnow):
        self.db = db
        self.clock = clock

    def _occupying_overlap(
        self,
        listing_id: UUID,
        start: date,
        end: date,
        exclude_booking_id: UUID | None = None,
    ):
        now = self.clock()
        conditions = [
            Booking.listing_id == listing_id,
            Booking.start_date < end,
            Booking.end_date > start,
            or_(
                Booking.status.in_([s.value for s in OCCUPYING_STATUSES]),
                and_(
                    Booking.status == BookingStatus.HELD.value,
                    Booking.expires_at > now,
                ),
            ),
        ]
        if exclude_booking_id is not None:
            conditions.append(Booking.id != exclude_booking_id)
        return and_(*conditions)

    async def is_range_free(
        self,
        listing_id: UUID,
        start: date,
        end: date,
        exclude_booking_id: UUID | None = None,
    ) -> bool:
        """
        Check whether [start, end) is unoccupied on the listing.

        Args:
            listing_id: Listing to check
            start: First night (inclusive)
            end: Departure day (exclusive)
            exclude_booking_id: Booking to ignore, for re-evaluating an existing hold

        Returns:
            False iff at least one occupying booking overlaps the range
        """
        stmt = select(
            exists().where(self._occupying_overlap(listing_id, start, end, exclude_booking_id))
        )
        result = await self.db.execute(stmt)
        occupied = bool(result.scalar())

        logger.debug(
            "Availability checked",
            extra={
                "listing_id": str(listing_id),
                "start": start.isoformat(),
                "end": end.isoformat(),
                "free": not occupied,
            }
        )
        return not occupied

    async def list_occupancy(self, listing_id: UUID, start: date, end: date) -> list[OccupancyEntry]:
        """List occupying bookings overlapping [start, end), ordered by start date."""
        stmt = (
            select(Booking)
            .where(self._occupying_overlap(listing_id, start, end))
            .order_by(Booking.start_date, Booking.created_at)
        )
        result = await self.db.execute(stmt)

        return [
            OccupancyEntry(
                booking_id=booking.id,
                listing_id=booking.listing_id,
                start=booking.start_date,
                end=booking.end_date,
                kind=BookingStatus(booking.status),
                expires_at=booking.expires_at if booking.status == BookingStatus.HELD else None,
            )
            for booking in result.scalars()
        ]
