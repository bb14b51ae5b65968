"""Payment router: checkout sessions, status polling and provider webhooks."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.auth import Principal
from ..core.clock import Clock
from ..core.database import get_db
from ..core.dependencies import get_clock, get_current_principal, get_provider
from ..models.payment import Transaction
from ..schemas.common import PROBLEM_RESPONSES, Problem
from ..schemas.payment import CreateSessionRequest, SessionHandle, SessionStatus, WebhookAck
from ..services.payment_provider import PaymentProvider
from ..services.payment_service import PaymentService, Reconciliation, compute_charge

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = Depends(get_db)
AUTH_DEPENDENCY = Depends(get_current_principal)
PROVIDER_DEPENDENCY = Depends(get_provider)
CLOCK_DEPENDENCY = Depends(get_clock)
SIGNATURE_HEADER = Header(None, alias="Stripe-Signature")

PAYMENT_RESPONSES = {
    **PROBLEM_RESPONSES,
    402: {"model": Problem, "description": "Card declined"},
    410: {"model": Problem, "description": "Hold expired"},
    429: {"model": Problem, "description": "Provider rate limited, retry later"},
    503: {"model": Problem, "description": "Provider unavailable, retry later"},
}


def _convert_reconciliation_to_schema(reconciliation: Reconciliation) -> SessionStatus:
    """Convert a reconciliation outcome to the poll response."""
    transaction: Optional[Transaction] = reconciliation.transaction
    return SessionStatus(
        session_id=reconciliation.payment_session.id,
        booking_id=reconciliation.booking.id,
        result=reconciliation.result.value,
        payment_status=reconciliation.payment_session.status,
        booking_status=reconciliation.booking.status,
        transaction_id=transaction.id if transaction else None,
    )


@router.post("/session", response_model=SessionHandle, responses=PAYMENT_RESPONSES)
async def create_session(
    request: CreateSessionRequest,
    principal: Principal = AUTH_DEPENDENCY,
    db: AsyncSession = DB_DEPENDENCY,
    provider: PaymentProvider = PROVIDER_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
) -> SessionHandle:
    """Open a hosted checkout session for a held booking and return its redirect URL."""
    payment_service = PaymentService(db, provider, clock)
    payment_session, booking = await payment_service.create_session(request.booking_id, principal.user_id)
    charge = compute_charge(booking.base_cost)

    return SessionHandle(
        session_id=payment_session.id,
        booking_id=booking.id,
        redirect_url=payment_session.checkout_url,
        amount=payment_session.amount,
        base_cost=charge.base_cost,
        service_fee=payment_session.service_fee,
        currency=payment_session.currency,
        hold_expires_at=booking.expires_at,
    )


@router.get("/session/{session_id}", response_model=SessionStatus, responses=PAYMENT_RESPONSES)
async def get_session_status(
    session_id: str,
    principal: Principal = AUTH_DEPENDENCY,
    db: AsyncSession = DB_DEPENDENCY,
    provider: PaymentProvider = PROVIDER_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
) -> SessionStatus:
    """
    Poll the provider for a checkout session and reconcile it.

    Safe to call repeatedly and concurrently with webhook delivery.
    """
    payment_service = PaymentService(db, provider, clock)
    reconciliation = await payment_service.poll_session(session_id, principal.user_id)
    return _convert_reconciliation_to_schema(reconciliation)


@router.post("/webhook", response_model=WebhookAck, responses={400: PROBLEM_RESPONSES[400]})
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = SIGNATURE_HEADER,
    db: AsyncSession = DB_DEPENDENCY,
    provider: PaymentProvider = PROVIDER_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
) -> WebhookAck:
    """
    Receive a provider webhook.

    The raw body is verified against the signature header before anything
    is trusted; a bad signature is rejected with 400 and changes nothing.
    """
    payload = await request.body()
    payment_service = PaymentService(db, provider, clock)
    reconciliation = await payment_service.handle_webhook(payload, stripe_signature)

    return WebhookAck(event_type=reconciliation.event_type, result=reconciliation.result.value)
