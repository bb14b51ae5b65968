"""Payment-related Pydantic schemas."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from ..models.booking import BookingStatus
from ..models.payment import PaymentSessionStatus


class CreateSessionRequest(BaseModel):
    """Request schema for opening a checkout session for a held booking."""

    booking_id: UUID = Field(..., description="Held booking to pay for")


class SessionHandle(BaseModel):
    """Redirect handle for a provider checkout session."""

    session_id: str = Field(..., description="Provider session ID")
    booking_id: UUID = Field(..., description="Booking the session pays for")
    redirect_url: str = Field(..., description="Provider-hosted checkout URL")
    amount: int = Field(..., ge=0, description="Total charge, minor units")
    base_cost: int = Field(..., ge=0, description="Base cost, minor units")
    service_fee: int = Field(..., ge=0, description="Service fee, minor units")
    currency: str = Field(..., description="ISO 4217 currency code")
    hold_expires_at: Optional[datetime] = Field(None, description="When the underlying hold lapses")


class SessionStatus(BaseModel):
    """Reconciliation outcome returned to a polling client."""

    session_id: str
    booking_id: UUID
    result: str = Field(..., description="Reconciliation result code")
    payment_status: PaymentSessionStatus
    booking_status: BookingStatus
    transaction_id: Optional[UUID] = None


class WebhookAck(BaseModel):
    """Acknowledgement returned to the payment provider."""

    received: bool = True
    event_type: str
    result: str
