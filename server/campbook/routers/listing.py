"""Listing availability router: occupancy view and owner blocks."""

import logging
from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import Principal
from ..core.clock import Clock
from ..core.database import get_db
from ..core.dependencies import get_clock, get_current_principal
from ..core.exceptions import ValidationError
from ..schemas.common import PROBLEM_RESPONSES
from ..schemas.listing import Availability, Block, CreateBlockRequest, OccupancyEntry
from ..services.listing_service import ListingService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/listings", tags=["listings"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = Depends(get_db)
AUTH_DEPENDENCY = Depends(get_current_principal)
CLOCK_DEPENDENCY = Depends(get_clock)
START_QUERY = Query(..., description="Window start (inclusive)")
END_QUERY = Query(..., description="Window end (exclusive)")

MAX_WINDOW_DAYS = 366


@router.get("/{listing_id}/availability", response_model=Availability, responses=PROBLEM_RESPONSES)
async def get_availability(
    listing_id: UUID,
    start: date = START_QUERY,
    end: date = END_QUERY,
    db: AsyncSession = DB_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
) -> Availability:
    """List occupied ranges of a listing overlapping [start, end)."""
    if start >= end:
        raise ValidationError(detail="end must be after start")
    if (end - start).days > MAX_WINDOW_DAYS:
        raise ValidationError(detail=f"Availability window is limited to {MAX_WINDOW_DAYS} days")

    listing_service = ListingService(db, clock)
    listing = await listing_service.get_listing_or_raise(listing_id)
    entries = await listing_service.availability.list_occupancy(listing.id, start, end)

    return Availability(
        listing_id=listing.id,
        start=start,
        end=end,
        occupied=[
            OccupancyEntry(
                booking_id=entry.booking_id,
                start=entry.start,
                end=entry.end,
                kind=entry.kind,
                expires_at=entry.expires_at,
            )
            for entry in entries
        ],
    )


@router.post(
    "/{listing_id}/blocks",
    response_model=Block,
    status_code=status.HTTP_201_CREATED,
    responses=PROBLEM_RESPONSES,
)
async def create_block(
    listing_id: UUID,
    request: CreateBlockRequest,
    principal: Principal = AUTH_DEPENDENCY,
    db: AsyncSession = DB_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
) -> Block:
    """Make a date range unavailable. Listing owner only."""
    listing_service = ListingService(db, clock)
    block = await listing_service.create_block(listing_id, principal.user_id, request.start, request.end)
    return Block.model_validate(block)


@router.delete(
    "/{listing_id}/blocks/{block_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_class=Response,
    responses=PROBLEM_RESPONSES,
)
async def remove_block(
    listing_id: UUID,
    block_id: UUID,
    principal: Principal = AUTH_DEPENDENCY,
    db: AsyncSession = DB_DEPENDENCY,
) -> Response:
    """Remove an owner block."""
    listing_service = ListingService(db)
    await listing_service.remove_block(listing_id, block_id, principal.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
