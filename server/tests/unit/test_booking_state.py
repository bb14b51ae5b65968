"""Unit tests for the booking state machine."""

from datetime import date, timedelta
from uuid import uuid4

import pytest

from campbook.models.booking import Booking, BookingStatus
from campbook.services.booking_state import (
    TRANSITIONS,
    BookingEvent,
    IllegalTransitionError,
    transition,
)
from conftest import NOW, FixedClock


def _booking(status: BookingStatus, cancel_reason: str | None = None) -> Booking:
    return Booking(
        id=uuid4(),
        listing_id=uuid4(),
        renter_id="renter-1",
        start_date=date(2025, 7, 1),
        end_date=date(2025, 7, 5),
        guest_count=2,
        base_cost=20000,
        currency="eur",
        status=status,
        cancel_reason=cancel_reason,
        expires_at=NOW + timedelta(minutes=30) if status == BookingStatus.HELD else None,
    )


@pytest.mark.parametrize(
    ("status", "event", "target"),
    [(status, event, target) for (status, event), target in TRANSITIONS.items()],
)
def test_legal_transitions(status, event, target):
    """Test every legal (status, event) pair reaches its target state."""
    booking = _booking(status)

    outcome = transition(booking, event, FixedClock())

    assert outcome.changed is True
    assert outcome.previous == status
    assert booking.status == target


def test_payment_confirmed_sets_confirmation_fields():
    """Test confirming a hold stamps confirmed_at and clears the expiry."""
    booking = _booking(BookingStatus.HELD)

    transition(booking, BookingEvent.PAYMENT_CONFIRMED, FixedClock())

    assert booking.confirmed_at == NOW
    assert booking.expires_at is None


@pytest.mark.parametrize(
    "event",
    [
        BookingEvent.PAYMENT_FAILED,
        BookingEvent.HOLD_EXPIRED,
        BookingEvent.OWNER_CANCEL,
        BookingEvent.RENTER_CANCEL,
    ],
)
def test_cancellation_records_reason(event):
    """Test cancellation stores the causing event."""
    booking = _booking(BookingStatus.HELD)

    transition(booking, event, FixedClock())

    assert booking.status == BookingStatus.CANCELLED
    assert booking.cancel_reason == event.value
    assert booking.cancelled_at == NOW


def test_stay_ended_sets_completed_at():
    booking = _booking(BookingStatus.CONFIRMED)

    transition(booking, BookingEvent.STAY_ENDED, FixedClock())

    assert booking.status == BookingStatus.COMPLETED
    assert booking.completed_at == NOW


@pytest.mark.parametrize(
    ("status", "event", "cancel_reason"),
    [
        (BookingStatus.CONFIRMED, BookingEvent.PAYMENT_CONFIRMED, None),
        (BookingStatus.COMPLETED, BookingEvent.STAY_ENDED, None),
        (BookingStatus.CANCELLED, BookingEvent.HOLD_EXPIRED, "HOLD_EXPIRED"),
        (BookingStatus.CANCELLED, BookingEvent.RENTER_CANCEL, "RENTER_CANCEL"),
    ],
)
def test_redelivered_event_is_noop(status, event, cancel_reason):
    """Test re-applying the event that produced the current state succeeds without change."""
    booking = _booking(status, cancel_reason)

    outcome = transition(booking, event, FixedClock())

    assert outcome.changed is False
    assert booking.status == status
    assert booking.cancel_reason == cancel_reason


@pytest.mark.parametrize(
    ("status", "event", "cancel_reason"),
    [
        (BookingStatus.CANCELLED, BookingEvent.PAYMENT_CONFIRMED, "HOLD_EXPIRED"),
        (BookingStatus.CANCELLED, BookingEvent.OWNER_CANCEL, "RENTER_CANCEL"),
        (BookingStatus.COMPLETED, BookingEvent.RENTER_CANCEL, None),
        (BookingStatus.CONFIRMED, BookingEvent.HOLD_EXPIRED, None),
        (BookingStatus.CONFIRMED, BookingEvent.PAYMENT_FAILED, None),
        (BookingStatus.HELD, BookingEvent.STAY_ENDED, None),
        (BookingStatus.OWNER_BLOCKED, BookingEvent.PAYMENT_CONFIRMED, None),
        (BookingStatus.OWNER_BLOCKED, BookingEvent.OWNER_CANCEL, None),
    ],
)
def test_illegal_transitions_rejected(status, event, cancel_reason):
    """Test illegal pairs raise and leave the booking untouched."""
    booking = _booking(status, cancel_reason)

    with pytest.raises(IllegalTransitionError) as exc_info:
        transition(booking, event, FixedClock())

    assert exc_info.value.status_code == 409
    assert exc_info.value.code == "ILLEGAL_TRANSITION"
    assert booking.status == status


def test_transition_accepts_raw_status_strings():
    """Test rows loaded from the database carry plain strings."""
    booking = _booking(BookingStatus.HELD)
    booking.status = "HELD"

    outcome = transition(booking, "PAYMENT_CONFIRMED", FixedClock())

    assert outcome.changed is True
    assert booking.status == BookingStatus.CONFIRMED
