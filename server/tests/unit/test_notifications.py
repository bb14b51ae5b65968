"""Unit tests for outbound notifications."""

import json
from datetime import date
from uuid import uuid4

import httpx
import pytest

from campbook.models.booking import Booking, BookingStatus
from campbook.services import notifications
from campbook.services.notifications import (
    REVIEW_REQUEST,
    LoggingNotifier,
    NotificationError,
    WebhookNotifier,
)
from conftest import RENTER_ID


def _completed_booking() -> Booking:
    return Booking(
        id=uuid4(),
        listing_id=uuid4(),
        renter_id=RENTER_ID,
        start_date=date(2025, 5, 20),
        end_date=date(2025, 5, 23),
        guest_count=2,
        status=BookingStatus.COMPLETED,
    )


def _notifier_with(handler) -> WebhookNotifier:
    notifier = WebhookNotifier("https://hooks.test/notify")
    notifier._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return notifier


@pytest.mark.asyncio
async def test_webhook_notifier_posts_review_request():
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append(request)
        return httpx.Response(202)

    notifier = _notifier_with(handler)
    booking = _completed_booking()

    await notifier.request_review(booking)
    await notifier.close()

    assert len(received) == 1
    assert str(received[0].url) == "https://hooks.test/notify"
    body = json.loads(received[0].content)
    assert body["event"] == REVIEW_REQUEST
    assert body["data"] == {
        "booking_id": str(booking.id),
        "listing_id": str(booking.listing_id),
        "renter_id": RENTER_ID,
        "start": "2025-05-20",
        "end": "2025-05-23",
    }


@pytest.mark.asyncio
async def test_webhook_notifier_raises_on_error_status():
    notifier = _notifier_with(lambda request: httpx.Response(500))

    with pytest.raises(NotificationError):
        await notifier.request_review(_completed_booking())
    await notifier.close()


@pytest.mark.asyncio
async def test_webhook_notifier_raises_on_transport_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    notifier = _notifier_with(handler)

    with pytest.raises(NotificationError):
        await notifier.request_review(_completed_booking())
    await notifier.close()


def test_get_notifier_defaults_to_logging(monkeypatch):
    monkeypatch.setattr(notifications, "_notifier", None)
    monkeypatch.setattr(notifications.settings, "notification_webhook_url", None)

    assert isinstance(notifications.get_notifier(), LoggingNotifier)


def test_get_notifier_uses_configured_webhook(monkeypatch):
    monkeypatch.setattr(notifications, "_notifier", None)
    monkeypatch.setattr(notifications.settings, "notification_webhook_url", "https://hooks.test/notify")

    notifier = notifications.get_notifier()

    assert isinstance(notifier, WebhookNotifier)
    assert notifier.url == "https://hooks.test/notify"
