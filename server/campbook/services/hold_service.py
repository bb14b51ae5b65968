"""Reservation hold manager."""

import logging
import secrets
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, today, utcnow
from ..core.config import settings
from ..core.exceptions import ConflictError, HoldExpiredError, ValidationError
from ..core.locking import listing_locks
from ..core.observability import metrics_collector
from ..models.booking import Booking, BookingStatus
from ..schemas.booking import CreateHoldRequest
from .availability_service import AvailabilityService, DateRangeConflict
from .booking_state import BookingEvent, transition
from .listing_service import ListingService

logger = logging.getLogger(__name__)


class HoldKeyReuseError(ConflictError):
    """Exception when an idempotency key is replayed with different hold parameters."""

    def __init__(self, idempotency_key: str):
        super().__init__(
            detail=f"Idempotency key '{idempotency_key}' was already used for a different hold request",
            code="IDEMPOTENCY_KEY_MISMATCH",
            title="Idempotency Key Mismatch",
        )


class HoldNotActiveError(ConflictError):
    """Exception when an idempotency key is replayed for a hold that was paid or cancelled."""

    def __init__(self, booking_id: str, status: str):
        super().__init__(
            detail=f"Hold {booking_id} is {status}; start a new hold with a new idempotency key",
            code="HOLD_NOT_ACTIVE",
            title="Hold Not Active",
            conflicting_resource={"booking_id": booking_id, "status": status},
        )


class HoldService:
    """
    Creates time-bounded exclusive holds on listing date ranges.

    The availability check and the insert run inside one per-listing
    critical section and one database transaction, so two overlapping
    requests for the same listing cannot both succeed.
    """

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = utcnow,
        ttl_seconds: int | None = None,
    ):
        self.db = db
        self.clock = clock
        self.ttl_seconds = ttl_seconds or settings.hold_ttl_seconds
        self.availability = AvailabilityService(db, clock)
        self.listing_service = ListingService(db, clock)

    def _generate_idempotency_key(self) -> str:
        return f"hold_{secrets.token_urlsafe(24)}"

    async def _find_by_key(self, renter_id: str, idempotency_key: str) -> Booking | None:
        stmt = select(Booking).where(
            Booking.renter_id == renter_id,
            Booking.idempotency_key == idempotency_key,
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    def _validate_request(self, request: CreateHoldRequest) -> None:
        if request.start >= request.end:
            raise ValidationError(
                detail="Check-out date must be after check-in date",
                errors={"end": "must be after start"},
            )
        if request.start < today(self.clock):
            raise ValidationError(
                detail="Bookings cannot start in the past",
                errors={"start": "must not be in the past"},
            )

    async def create_hold(
        self,
        request: CreateHoldRequest,
        renter_id: str,
        idempotency_key: str | None = None,
    ) -> Booking:
        """
        Reserve a date range for a renter while payment is arranged.

        Args:
            request: Listing, date range and guest count
            renter_id: Identity-provider user ID of the renter
            idempotency_key: Client key; replaying it returns the original hold
                while that hold is still live

        Returns:
            Booking in HELD state with an expiry and idempotency key

        Raises:
            ValidationError: For an empty/past range or too many guests
            NotFoundError: If the listing does not exist
            DateRangeConflict: If the range overlaps existing occupancy
            HoldKeyReuseError: If the key was used for a different request
            HoldExpiredError: If the key's hold has lapsed
            HoldNotActiveError: If the key's hold was paid for or cancelled
        """
        self._validate_request(request)

        listing = await self.listing_service.get_listing_or_raise(request.listing_id)
        if request.guest_count > listing.max_guests:
            raise ValidationError(
                detail=f"This listing accepts at most {listing.max_guests} guests",
                errors={"guest_count": f"must be at most {listing.max_guests}"},
            )

        async with listing_locks.hold(self.db, listing.id):
            if idempotency_key:
                existing = await self._find_by_key(renter_id, idempotency_key)
                if existing:
                    if (
                        existing.listing_id != listing.id
                        or existing.start_date != request.start
                        or existing.end_date != request.end
                        or existing.guest_count != request.guest_count
                    ):
                        raise HoldKeyReuseError(idempotency_key)

                    if existing.is_expired_hold(self.clock()) or (
                        existing.cancel_reason == BookingEvent.HOLD_EXPIRED.value
                    ):
                        raise HoldExpiredError(str(existing.id), existing.expires_at)
                    if existing.status != BookingStatus.HELD:
                        raise HoldNotActiveError(str(existing.id), BookingStatus(existing.status).value)

                    await self.db.commit()
                    logger.info(
                        "Hold already exists for idempotency key - returning existing hold",
                        extra={"booking_id": str(existing.id), "renter_id": renter_id}
                    )
                    return existing

            if not await self.availability.is_range_free(listing.id, request.start, request.end):
                metrics_collector.record_hold_conflict()
                logger.warning(
                    "Hold creation failed - date range occupied",
                    extra={
                        "listing_id": str(listing.id),
                        "start": request.start.isoformat(),
                        "end": request.end.isoformat(),
                        "renter_id": renter_id,
                    }
                )
                raise DateRangeConflict(str(listing.id), request.start, request.end)

            expires_at = self.clock() + timedelta(seconds=self.ttl_seconds)
            nights = (request.end - request.start).days

            hold = Booking(
                listing_id=listing.id,
                renter_id=renter_id,
                start_date=request.start,
                end_date=request.end,
                guest_count=request.guest_count,
                base_cost=listing.price_per_night * nights,
                currency=listing.currency,
                status=BookingStatus.HELD,
                expires_at=expires_at,
                idempotency_key=idempotency_key or self._generate_idempotency_key(),
            )
            self.db.add(hold)
            await self.db.commit()

        metrics_collector.record_hold_created()
        logger.info(
            "Hold created successfully",
            extra={
                "booking_id": str(hold.id),
                "listing_id": str(listing.id),
                "start": request.start.isoformat(),
                "end": request.end.isoformat(),
                "guest_count": request.guest_count,
                "base_cost": hold.base_cost,
                "expires_at": expires_at.isoformat(),
            }
        )

        return hold

    async def reap_expired_holds(self, batch_size: int = 100) -> int:
        """
        Cancel HELD bookings whose expiry has passed.

        Availability already ignores expired holds; this only tidies them
        into their terminal state.

        Args:
            batch_size: Maximum number of holds to process

        Returns:
            Number of holds cancelled
        """
        now = self.clock()
        stmt = (
            select(Booking)
            .where(
                Booking.status == BookingStatus.HELD.value,
                Booking.expires_at <= now,
            )
            .order_by(Booking.expires_at)
            .limit(batch_size)
        )
        result = await self.db.execute(stmt)
        candidates = [(hold.id, hold.listing_id) for hold in result.scalars()]

        reaped = 0
        for booking_id, listing_id in candidates:
            async with listing_locks.hold(self.db, listing_id):
                hold = await self.db.get(Booking, booking_id, populate_existing=True)
                # A payment may have confirmed it since the select
                if hold is None or hold.status != BookingStatus.HELD:
                    await self.db.commit()
                    continue
                transition(hold, BookingEvent.HOLD_EXPIRED, self.clock)
                await self.db.commit()
            reaped += 1

        if reaped:
            metrics_collector.record_holds_reaped(reaped)
            logger.info(
                "Expired holds reaped",
                extra={"reaped_count": reaped, "batch_size": batch_size}
            )

        return reaped
