"""Booking lifecycle state machine.

    HELD ──PaymentConfirmed──> CONFIRMED ──StayEnded──> COMPLETED
      │                            │
      └─ PaymentFailed ─┐          └─ OwnerCancel / RenterCancel ─┐
         HoldExpired    ├──> CANCELLED <──────────────────────────┘
         OwnerCancel    │
         RenterCancel ──┘

CANCELLED and COMPLETED are terminal. OWNER_BLOCKED rows accept no events.
Re-applying the event that produced the current state is a successful
no-op, which is what makes provider redelivery safe. Every other pair is
rejected with IllegalTransitionError.
"""

import logging
from dataclasses import dataclass
from enum import Enum

from ..core.clock import Clock, utcnow
from ..core.exceptions import ConflictError
from ..core.observability import metrics_collector
from ..models.booking import Booking, BookingStatus

logger = logging.getLogger(__name__)


class BookingEvent(str, Enum):
    """Events that drive a booking through its lifecycle."""
    PAYMENT_CONFIRMED = "PAYMENT_CONFIRMED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    HOLD_EXPIRED = "HOLD_EXPIRED"
    OWNER_CANCEL = "OWNER_CANCEL"
    RENTER_CANCEL = "RENTER_CANCEL"
    STAY_ENDED = "STAY_ENDED"


CANCEL_EVENTS = frozenset({
    BookingEvent.PAYMENT_FAILED,
    BookingEvent.HOLD_EXPIRED,
    BookingEvent.OWNER_CANCEL,
    BookingEvent.RENTER_CANCEL,
})

TERMINAL_STATES = frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED})

TRANSITIONS: dict[tuple[BookingStatus, BookingEvent], BookingStatus] = {
    (BookingStatus.HELD, BookingEvent.PAYMENT_CONFIRMED): BookingStatus.CONFIRMED,
    (BookingStatus.HELD, BookingEvent.PAYMENT_FAILED): BookingStatus.CANCELLED,
    (BookingStatus.HELD, BookingEvent.HOLD_EXPIRED): BookingStatus.CANCELLED,
    (BookingStatus.HELD, BookingEvent.OWNER_CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.HELD, BookingEvent.RENTER_CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.CONFIRMED, BookingEvent.OWNER_CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.CONFIRMED, BookingEvent.RENTER_CANCEL): BookingStatus.CANCELLED,
    (BookingStatus.CONFIRMED, BookingEvent.STAY_ENDED): BookingStatus.COMPLETED,
}


class IllegalTransitionError(ConflictError):
    """Exception when an event is not legal in the booking's current state."""

    def __init__(self, booking_id: str, status: str, event: str):
        super().__init__(
            detail=f"Booking {booking_id} cannot handle {event} while {status}",
            code="ILLEGAL_TRANSITION",
            title="Illegal Booking Transition",
            conflicting_resource={
                "booking_id": booking_id,
                "status": status,
                "event": event,
            }
        )


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of applying an event."""

    booking: Booking
    previous: BookingStatus
    changed: bool


def is_redelivery(status: BookingStatus, event: BookingEvent, cancel_reason: str | None) -> bool:
    """True when ``event`` already produced the booking's current ``status``."""
    if status == BookingStatus.CONFIRMED:
        return event == BookingEvent.PAYMENT_CONFIRMED
    if status == BookingStatus.COMPLETED:
        return event == BookingEvent.STAY_ENDED
    if status == BookingStatus.CANCELLED:
        return event in CANCEL_EVENTS and cancel_reason == event.value
    return False


def next_status(status: BookingStatus, event: BookingEvent) -> BookingStatus | None:
    """Target status for a legal (status, event) pair, None otherwise."""
    return TRANSITIONS.get((status, event))


def transition(booking: Booking, event: BookingEvent, clock: Clock = utcnow) -> TransitionOutcome:
    """
    Apply ``event`` to ``booking`` in place.

    The caller owns the unit of work: side effects tied to a transition
    (transaction rows, refunds) are added to the same session before commit.

    Args:
        booking: Booking to transition
        event: Lifecycle event
        clock: Source of the transition timestamp

    Returns:
        TransitionOutcome with ``changed=False`` for a redelivered event

    Raises:
        IllegalTransitionError: If the event is not legal in the current state
    """
    current = BookingStatus(booking.status)
    event = BookingEvent(event)

    if is_redelivery(current, event, booking.cancel_reason):
        logger.info(
            "Booking event already applied",
            extra={"booking_id": str(booking.id), "status": current.value, "event": event.value}
        )
        return TransitionOutcome(booking=booking, previous=current, changed=False)

    target = next_status(current, event)
    if target is None:
        logger.warning(
            "Illegal booking transition rejected",
            extra={"booking_id": str(booking.id), "status": current.value, "event": event.value}
        )
        raise IllegalTransitionError(str(booking.id), current.value, event.value)

    now = clock()
    booking.status = target
    if target == BookingStatus.CONFIRMED:
        booking.confirmed_at = now
        booking.expires_at = None
    elif target == BookingStatus.CANCELLED:
        booking.cancelled_at = now
        booking.cancel_reason = event.value
    elif target == BookingStatus.COMPLETED:
        booking.completed_at = now

    metrics_collector.record_transition(current.value, target.value, event.value)
    logger.info(
        "Booking transitioned",
        extra={
            "booking_id": str(booking.id),
            "from_status": current.value,
            "to_status": target.value,
            "event": event.value,
        }
    )

    return TransitionOutcome(booking=booking, previous=current, changed=True)
