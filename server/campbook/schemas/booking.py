"""Booking-related Pydantic schemas."""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..models.booking import BookingStatus


class CreateHoldRequest(BaseModel):
    """Request schema for reserving a date range while payment is in flight."""

    listing_id: UUID = Field(..., description="Listing to reserve")
    start: date = Field(..., description="Check-in date (first night)")
    end: date = Field(..., description="Check-out date, exclusive")
    guest_count: int = Field(..., ge=1, le=100, description="Number of guests")


class CancelBookingRequest(BaseModel):
    """Optional body for a cancellation."""

    reason: Optional[str] = Field(None, max_length=500, description="Free-text reason, logged only")


class Booking(BaseModel):
    """Booking response schema."""

    id: UUID = Field(..., description="Unique booking ID")
    listing_id: UUID = Field(..., description="Booked listing")
    renter_id: str = Field(..., description="Renter user ID")
    start: date = Field(..., validation_alias="start_date", description="Check-in date")
    end: date = Field(..., validation_alias="end_date", description="Check-out date, exclusive")
    guest_count: int = Field(..., ge=0, description="Number of guests")
    status: BookingStatus = Field(..., description="Booking status")
    base_cost: int = Field(..., ge=0, description="Nightly price times nights, minor units")
    service_fee: int = Field(..., ge=0, description="Service fee charged on top, minor units")
    total_cost: int = Field(..., ge=0, description="Base cost plus service fee, minor units")
    currency: str = Field(..., description="ISO 4217 currency code")
    expires_at: Optional[datetime] = Field(None, description="Hold expiry (UTC) while HELD")
    created_at: datetime = Field(..., description="Creation time (UTC)")

    model_config = {"from_attributes": True, "populate_by_name": True}


class Hold(Booking):
    """Hold response schema."""

    idempotency_key: str = Field(..., description="Key correlating the hold to its payment session")


class BookingList(BaseModel):
    """List of the caller's bookings."""

    items: list[Booking] = Field(default_factory=list)
