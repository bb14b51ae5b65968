"""Booking router for holds, reads and cancellations."""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import Principal
from ..core.clock import Clock
from ..core.dependencies import get_clock, get_current_principal, get_idempotency_key, get_provider
from ..core.database import get_db
from ..models.booking import Booking as BookingModel
from ..schemas.booking import Booking, BookingList, CancelBookingRequest, CreateHoldRequest, Hold
from ..schemas.common import PROBLEM_RESPONSES, Problem
from ..services.booking_service import BookingService
from ..services.hold_service import HoldService
from ..services.payment_provider import PaymentProvider
from ..services.payment_service import compute_charge

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["bookings"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = Depends(get_db)
AUTH_DEPENDENCY = Depends(get_current_principal)
IDEMPOTENCY_KEY_DEPENDENCY = Depends(get_idempotency_key)
PROVIDER_DEPENDENCY = Depends(get_provider)
CLOCK_DEPENDENCY = Depends(get_clock)
CANCEL_BODY = Body(None)


def _cost_fields(booking_model: BookingModel) -> dict:
    charge = compute_charge(booking_model.base_cost)
    return {
        "base_cost": charge.base_cost,
        "service_fee": charge.service_fee,
        "total_cost": charge.total,
    }


def _convert_booking_to_schema(booking_model: BookingModel) -> Booking:
    """Convert booking model to schema."""
    return Booking(
        id=booking_model.id,
        listing_id=booking_model.listing_id,
        renter_id=booking_model.renter_id,
        start=booking_model.start_date,
        end=booking_model.end_date,
        guest_count=booking_model.guest_count,
        status=booking_model.status,
        currency=booking_model.currency,
        expires_at=booking_model.expires_at,
        created_at=booking_model.created_at,
        **_cost_fields(booking_model),
    )


def _convert_hold_to_schema(hold_model: BookingModel) -> Hold:
    """Convert held booking model to schema."""
    return Hold(
        **_convert_booking_to_schema(hold_model).model_dump(),
        idempotency_key=hold_model.idempotency_key,
    )


@router.post(
    "/hold",
    response_model=Hold,
    status_code=status.HTTP_201_CREATED,
    responses={
        **PROBLEM_RESPONSES,
        410: {"model": Problem, "description": "Idempotency key belongs to a lapsed hold"},
    },
)
async def create_hold(
    request: CreateHoldRequest,
    principal: Principal = AUTH_DEPENDENCY,
    db: AsyncSession = DB_DEPENDENCY,
    idempotency_key: Optional[str] = IDEMPOTENCY_KEY_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
) -> Hold:
    """
    Reserve a date range on a listing while payment is arranged.

    Repeating the request with the same Idempotency-Key returns the
    original hold.
    """
    hold_service = HoldService(db, clock)
    hold = await hold_service.create_hold(request, principal.user_id, idempotency_key)
    return _convert_hold_to_schema(hold)


@router.get("", response_model=BookingList, responses=PROBLEM_RESPONSES)
async def list_bookings(
    principal: Principal = AUTH_DEPENDENCY,
    db: AsyncSession = DB_DEPENDENCY,
    provider: PaymentProvider = PROVIDER_DEPENDENCY,
) -> BookingList:
    """List the caller's bookings, newest first."""
    booking_service = BookingService(db, provider)
    bookings = await booking_service.list_bookings_for_user(principal.user_id)
    return BookingList(items=[_convert_booking_to_schema(b) for b in bookings])


@router.get("/{booking_id}", response_model=Booking, responses=PROBLEM_RESPONSES)
async def get_booking(
    booking_id: UUID,
    principal: Principal = AUTH_DEPENDENCY,
    db: AsyncSession = DB_DEPENDENCY,
    provider: PaymentProvider = PROVIDER_DEPENDENCY,
) -> Booking:
    """Get a booking as its renter or as the listing owner."""
    booking_service = BookingService(db, provider)
    booking = await booking_service.get_booking(booking_id, principal)
    return _convert_booking_to_schema(booking)


@router.post("/{booking_id}/cancel", response_model=Booking, responses=PROBLEM_RESPONSES)
async def cancel_booking(
    booking_id: UUID,
    request: Optional[CancelBookingRequest] = CANCEL_BODY,
    principal: Principal = AUTH_DEPENDENCY,
    db: AsyncSession = DB_DEPENDENCY,
    provider: PaymentProvider = PROVIDER_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
) -> Booking:
    """
    Cancel a booking as its renter or as the listing owner.

    Paid bookings are refunded; a failed refund is retried in the background.
    """
    booking_service = BookingService(db, provider, clock)
    booking = await booking_service.cancel_booking(
        booking_id,
        principal,
        reason=request.reason if request else None,
    )
    return _convert_booking_to_schema(booking)
