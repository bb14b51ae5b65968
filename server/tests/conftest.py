"""Test configuration and fixtures."""

import json
import os
import time
from datetime import date, datetime, timedelta
from typing import Optional

# Settings are read at import time
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-with-enough-length-for-hs256")
os.environ.setdefault("WORKERS_ENABLED", "false")

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from campbook.core.config import settings
from campbook.core.database import Base, get_db
from campbook.core.dependencies import get_clock, get_provider
from campbook.models import *  # noqa: F403 - Import all models
from campbook.models.payment import PaymentSessionStatus
from campbook.services.listing_service import ListingService
from campbook.services.notifications import NotificationError, Notifier
from campbook.services.payment_provider import (
    CHECKOUT_COMPLETED,
    HANDLED_EVENT_TYPES,
    SESSION_POLL,
    CheckoutSession,
    PaymentProvider,
    ProviderEvent,
    RefundResult,
    WebhookSignatureError,
)

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# Reference time for tests; scenario dates in July 2025 lie in its future
NOW = datetime(2025, 6, 1, 12, 0, 0)

OWNER_ID = "owner-1"
RENTER_ID = "renter-1"
OTHER_RENTER_ID = "renter-2"

VALID_SIGNATURE = "t=1,v1=valid"


class FixedClock:
    """Controllable clock passed wherever services accept ``clock``."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakePaymentProvider(PaymentProvider):
    """In-memory provider recording calls and serving scripted session states."""

    def __init__(self):
        self.sessions: dict[str, dict] = {}
        self.created: list[dict] = []
        self.expired: list[str] = []
        self.refunds: list[dict] = []
        self.create_errors: list[Exception] = []
        self.refund_errors: list[Exception] = []
        self.expire_errors: list[Exception] = []
        self._counter = 0

    async def create_checkout_session(
        self,
        *,
        line_item_name: str,
        amount: int,
        currency: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> CheckoutSession:
        if self.create_errors:
            raise self.create_errors.pop(0)

        self._counter += 1
        session_id = f"cs_test_{self._counter}"
        self.created.append({
            "session_id": session_id,
            "line_item_name": line_item_name,
            "amount": amount,
            "currency": currency,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": dict(metadata),
            "idempotency_key": idempotency_key,
        })
        self.sessions[session_id] = {
            "status": PaymentSessionStatus.PENDING,
            "amount_total": amount,
            "currency": currency,
            "metadata": dict(metadata),
            "provider_reference": None,
            "failure_code": None,
        }
        return CheckoutSession(session_id=session_id, url=f"https://checkout.test/{session_id}")

    def mark(
        self,
        session_id: str,
        status: PaymentSessionStatus,
        provider_reference: Optional[str] = None,
        failure_code: Optional[str] = None,
        amount_total: Optional[int] = None,
    ) -> None:
        """Script the provider-side state of a session."""
        state = self.sessions[session_id]
        state["status"] = status
        state["provider_reference"] = provider_reference
        state["failure_code"] = failure_code
        if amount_total is not None:
            state["amount_total"] = amount_total

    def event(self, session_id: str, event_type: str = SESSION_POLL) -> ProviderEvent:
        state = self.sessions[session_id]
        return ProviderEvent(
            event_type=event_type,
            session_id=session_id,
            status=state["status"],
            provider_reference=state["provider_reference"],
            amount_total=state["amount_total"],
            currency=state["currency"],
            metadata=state["metadata"],
            failure_code=state["failure_code"],
        )

    async def retrieve_session(self, session_id: str) -> ProviderEvent:
        return self.event(session_id)

    async def expire_session(self, session_id: str) -> None:
        if self.expire_errors:
            raise self.expire_errors.pop(0)
        self.expired.append(session_id)

    async def refund(self, provider_reference: str, amount: int, idempotency_key: str) -> RefundResult:
        if self.refund_errors:
            raise self.refund_errors.pop(0)
        self.refunds.append({
            "provider_reference": provider_reference,
            "amount": amount,
            "idempotency_key": idempotency_key,
        })
        return RefundResult(refund_id=f"re_{idempotency_key}", status="succeeded", amount=amount)

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> ProviderEvent:
        if signature != VALID_SIGNATURE:
            raise WebhookSignatureError()
        body = json.loads(payload)
        if body["type"] not in HANDLED_EVENT_TYPES:
            return ProviderEvent(event_type=body["type"], event_id=body.get("id"))
        return self.event(body["session_id"], body["type"])


def webhook_payload(session_id: str, event_type: str = CHECKOUT_COMPLETED) -> bytes:
    return json.dumps({"id": f"evt_{session_id}", "type": event_type, "session_id": session_id}).encode()


class FakeNotifier(Notifier):
    """Notifier recording deliveries; raises when ``fail`` is set."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[str, dict]] = []

    async def send(self, event: str, payload: dict) -> None:
        if self.fail:
            raise NotificationError("delivery failed")
        self.sent.append((event, payload))


def make_token(
    user_id: str = RENTER_ID,
    is_owner=False,
    email: Optional[str] = None,
    expires_in: int = 3600,
    audience: str = "authenticated",
    secret: Optional[str] = None,
) -> str:
    """Issue a token shaped like the identity provider's access tokens."""
    now = int(time.time())
    return jwt.encode(
        {
            "sub": user_id,
            "email": email or f"{user_id}@example.com",
            "aud": audience,
            "iat": now,
            "exp": now + expires_in,
            "user_metadata": {"isowner": is_owner},
        },
        secret or settings.supabase_jwt_secret,
        algorithm="HS256",
    )


def auth_headers(user_id: str = RENTER_ID, **kwargs) -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id, **kwargs)}"}


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def provider():
    return FakePaymentProvider()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest_asyncio.fixture(scope="function")
async def test_engine():
    """Create a test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # Create tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    # Drop tables
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def test_session(test_engine):
    """Create a test database session."""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session() as session:
        yield session


@pytest_asyncio.fixture
async def listing(test_session, clock):
    """A listing sleeping up to four guests at 50.00 per night.

    Detached from the session so a rolled-back conflict does not expire it.
    """
    listing = await ListingService(test_session, clock).create_listing(
        owner_id=OWNER_ID,
        title="Riverside meadow pitch",
        price_per_night=5000,
        max_guests=4,
    )
    test_session.expunge(listing)
    return listing


@pytest_asyncio.fixture(scope="function")
async def test_app(test_session, provider, clock):
    """Create a test FastAPI application."""
    from fastapi import FastAPI
    from fastapi.exceptions import RequestValidationError

    from campbook.core.exceptions import (
        ProblemDetailsException,
        generic_exception_handler,
        problem_details_handler,
        request_validation_handler,
    )
    from campbook.routers import booking, listing, metrics, payment

    # Create a simplified test app without lifespan
    app = FastAPI(title="Campbook Booking API (Test)", version="1.0.0-test")

    # Register exception handlers
    app.add_exception_handler(ProblemDetailsException, problem_details_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Register API routers
    app.include_router(booking.router)
    app.include_router(payment.router)
    app.include_router(listing.router)
    app.include_router(metrics.router)

    # Override dependencies
    async def override_get_db():
        yield test_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_provider] = lambda: provider
    app.dependency_overrides[get_clock] = lambda: clock

    yield app

    # Clean up
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def stay():
    """The July scenario stay: four nights from 2025-07-01."""
    return date(2025, 7, 1), date(2025, 7, 5)
