"""Outbound booking notifications.

Email delivery lives in another service; this module only hands events to
it. Callers treat notification failures as non-fatal.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from ..core.config import settings
from ..models.booking import Booking

logger = logging.getLogger(__name__)

REVIEW_REQUEST = "booking.review_requested"


class NotificationError(Exception):
    """Raised when a notification could not be delivered."""


def _booking_payload(booking: Booking) -> Dict[str, Any]:
    return {
        "booking_id": str(booking.id),
        "listing_id": str(booking.listing_id),
        "renter_id": booking.renter_id,
        "start": booking.start_date.isoformat(),
        "end": booking.end_date.isoformat(),
    }


class Notifier(ABC):
    """Notification collaborator interface."""

    @abstractmethod
    async def send(self, event: str, payload: Dict[str, Any]) -> None:
        """Deliver one notification event."""

    async def request_review(self, booking: Booking) -> None:
        """Ask the renter to review a completed stay."""
        await self.send(REVIEW_REQUEST, _booking_payload(booking))

    async def close(self) -> None:
        pass


class LoggingNotifier(Notifier):
    """Notifier used when no delivery endpoint is configured."""

    async def send(self, event: str, payload: Dict[str, Any]) -> None:
        logger.info("Notification", extra={"notification_event": event, **payload})


class WebhookNotifier(Notifier):
    """Posts notification events as JSON to an HTTP endpoint."""

    def __init__(self, url: str, timeout: float = 10.0):
        self.url = url
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def send(self, event: str, payload: Dict[str, Any]) -> None:
        client = await self.get_client()
        try:
            response = await client.post(self.url, json={"event": event, "data": payload})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"Failed to deliver {event}: {exc}") from exc

        logger.debug(
            "Notification delivered",
            extra={"notification_event": event, "status_code": response.status_code}
        )


_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    """Process-wide notifier built from settings."""
    global _notifier
    if _notifier is None:
        if settings.notification_webhook_url:
            _notifier = WebhookNotifier(settings.notification_webhook_url)
        else:
            _notifier = LoggingNotifier()
    return _notifier
