"""Listing availability Pydantic schemas."""

from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..models.booking import BookingStatus


class OccupancyEntry(BaseModel):
    """An occupied range on a listing."""

    booking_id: UUID
    start: date
    end: date = Field(..., description="Exclusive")
    kind: BookingStatus
    expires_at: Optional[datetime] = Field(None, description="Set for holds")

    model_config = {"from_attributes": True}


class Availability(BaseModel):
    """Occupancy of a listing within a window."""

    listing_id: UUID
    start: date
    end: date
    occupied: list[OccupancyEntry] = Field(default_factory=list)


class CreateBlockRequest(BaseModel):
    """Owner request to make a date range unavailable."""

    start: date = Field(..., description="First blocked night")
    end: date = Field(..., description="End of the block, exclusive")


class Block(BaseModel):
    """Owner-imposed availability block."""

    id: UUID
    listing_id: UUID
    start: date = Field(..., validation_alias="start_date")
    end: date = Field(..., validation_alias="end_date")
    created_at: datetime

    model_config = {"from_attributes": True, "populate_by_name": True}
