"""Listing service: minimal listing access and owner availability blocks."""

import logging
from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, today, utcnow
from ..core.exceptions import AuthorizationError, NotFoundError, ValidationError
from ..core.locking import listing_locks
from ..models.booking import Booking, BookingStatus
from ..models.listing import Listing
from .availability_service import AvailabilityService, DateRangeConflict

logger = logging.getLogger(__name__)


class ListingService:
    """Service for listing lookups and owner-imposed blocks."""

    def __init__(self, db: AsyncSession, clock: Clock = utcnow):
        self.db = db
        self.clock = clock
        self.availability = AvailabilityService(db, clock)

    async def create_listing(
        self,
        owner_id: str,
        title: str,
        price_per_night: int,
        max_guests: int,
        currency: str = "eur",
    ) -> Listing:
        """Create a listing. Full listing management lives outside this service."""
        listing = Listing(
            owner_id=owner_id,
            title=title,
            price_per_night=price_per_night,
            max_guests=max_guests,
            currency=currency.lower(),
        )
        self.db.add(listing)
        await self.db.commit()
        await self.db.refresh(listing)

        logger.info(
            "Listing created",
            extra={"listing_id": str(listing.id), "owner_id": owner_id}
        )
        return listing

    async def get_listing(self, listing_id: UUID) -> Listing | None:
        """Get listing by ID."""
        stmt = select(Listing).where(Listing.id == listing_id)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_listing_or_raise(self, listing_id: UUID) -> Listing:
        """Get listing by ID or raise NotFoundError."""
        listing = await self.get_listing(listing_id)
        if not listing:
            logger.warning("Listing not found", extra={"listing_id": str(listing_id)})
            raise NotFoundError(resource_type="listing", resource_id=str(listing_id))
        return listing

    async def get_owned_listing(self, listing_id: UUID, owner_id: str) -> Listing:
        """Get a listing, requiring ``owner_id`` to own it."""
        listing = await self.get_listing_or_raise(listing_id)
        if listing.owner_id != owner_id:
            raise AuthorizationError(detail="Only the listing owner can manage its availability")
        return listing

    async def create_block(self, listing_id: UUID, owner_id: str, start: date, end: date) -> Booking:
        """
        Make [start, end) unavailable on an owned listing.

        Raises:
            ValidationError: If the range is empty or starts in the past
            AuthorizationError: If the caller does not own the listing
            DateRangeConflict: If the range overlaps existing occupancy
        """
        if start >= end:
            raise ValidationError(detail="Block end date must be after its start date")
        if start < today(self.clock):
            raise ValidationError(detail="Cannot block dates in the past")

        listing = await self.get_owned_listing(listing_id, owner_id)

        async with listing_locks.hold(self.db, listing.id):
            if not await self.availability.is_range_free(listing.id, start, end):
                logger.warning(
                    "Block rejected - range occupied",
                    extra={"listing_id": str(listing.id), "start": start.isoformat(), "end": end.isoformat()}
                )
                raise DateRangeConflict(str(listing.id), start, end)

            block = Booking(
                listing_id=listing.id,
                renter_id=owner_id,
                start_date=start,
                end_date=end,
                guest_count=0,
                base_cost=0,
                currency=listing.currency,
                status=BookingStatus.OWNER_BLOCKED,
            )
            self.db.add(block)
            await self.db.commit()

        await self.db.refresh(block)

        logger.info(
            "Availability block created",
            extra={
                "block_id": str(block.id),
                "listing_id": str(listing.id),
                "start": start.isoformat(),
                "end": end.isoformat(),
            }
        )
        return block

    async def remove_block(self, listing_id: UUID, block_id: UUID, owner_id: str) -> None:
        """Delete an owner block. Only OWNER_BLOCKED rows can be removed this way."""
        listing = await self.get_owned_listing(listing_id, owner_id)

        stmt = select(Booking).where(
            Booking.id == block_id,
            Booking.listing_id == listing.id,
            Booking.status == BookingStatus.OWNER_BLOCKED.value,
        )
        result = await self.db.execute(stmt)
        block = result.scalar_one_or_none()
        if not block:
            raise NotFoundError(resource_type="availability block", resource_id=str(block_id))

        async with listing_locks.hold(self.db, listing.id):
            await self.db.delete(block)
            await self.db.commit()

        logger.info(
            "Availability block removed",
            extra={"block_id": str(block_id), "listing_id": str(listing.id)}
        )
