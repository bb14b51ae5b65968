"""Unit tests for the availability ledger."""

from datetime import date, timedelta

import pytest

from campbook.models.booking import Booking, BookingStatus
from campbook.services.availability_service import AvailabilityService
from campbook.services.listing_service import ListingService
from conftest import NOW, OWNER_ID


async def _add_booking(session, listing, start, end, status, expires_at=None, renter_id="renter-1"):
    booking = Booking(
        listing_id=listing.id,
        renter_id=renter_id,
        start_date=start,
        end_date=end,
        guest_count=2,
        base_cost=0,
        currency=listing.currency,
        status=status,
        expires_at=expires_at,
    )
    session.add(booking)
    await session.commit()
    return booking


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("start", "end", "free"),
    [
        (date(2025, 7, 5), date(2025, 7, 8), True),   # starts on the departure day
        (date(2025, 6, 28), date(2025, 7, 1), True),  # ends on the arrival day
        (date(2025, 7, 4), date(2025, 7, 6), False),
        (date(2025, 6, 28), date(2025, 7, 2), False),
        (date(2025, 7, 2), date(2025, 7, 3), False),  # contained
        (date(2025, 6, 1), date(2025, 8, 1), False),  # enclosing
    ],
)
async def test_overlap_is_half_open(test_session, listing, clock, start, end, free):
    """Test a confirmed stay [07-01, 07-05) only blocks nights it covers."""
    await _add_booking(test_session, listing, date(2025, 7, 1), date(2025, 7, 5), BookingStatus.CONFIRMED)

    service = AvailabilityService(test_session, clock)

    assert await service.is_range_free(listing.id, start, end) is free


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "occupies"),
    [
        (BookingStatus.CONFIRMED, True),
        (BookingStatus.COMPLETED, True),
        (BookingStatus.OWNER_BLOCKED, True),
        (BookingStatus.CANCELLED, False),
    ],
)
async def test_occupying_statuses(test_session, listing, clock, stay, status, occupies):
    """Test which statuses hold their dates."""
    await _add_booking(test_session, listing, *stay, status)

    service = AvailabilityService(test_session, clock)

    assert await service.is_range_free(listing.id, *stay) is not occupies


@pytest.mark.asyncio
async def test_live_hold_occupies(test_session, listing, clock, stay):
    await _add_booking(
        test_session, listing, *stay, BookingStatus.HELD, expires_at=NOW + timedelta(minutes=5)
    )

    service = AvailabilityService(test_session, clock)

    assert await service.is_range_free(listing.id, *stay) is False


@pytest.mark.asyncio
async def test_expired_hold_is_ignored_before_reaping(test_session, listing, clock, stay):
    """Test a lapsed hold frees its range even while still HELD."""
    await _add_booking(
        test_session, listing, *stay, BookingStatus.HELD, expires_at=NOW - timedelta(seconds=1)
    )

    service = AvailabilityService(test_session, clock)

    assert await service.is_range_free(listing.id, *stay) is True


@pytest.mark.asyncio
async def test_hold_expiring_exactly_now_is_ignored(test_session, listing, clock, stay):
    await _add_booking(test_session, listing, *stay, BookingStatus.HELD, expires_at=NOW)

    service = AvailabilityService(test_session, clock)

    assert await service.is_range_free(listing.id, *stay) is True


@pytest.mark.asyncio
async def test_exclude_booking_id(test_session, listing, clock, stay):
    """Test an existing hold can be re-evaluated against everything but itself."""
    booking = await _add_booking(test_session, listing, *stay, BookingStatus.CONFIRMED)

    service = AvailabilityService(test_session, clock)

    assert await service.is_range_free(listing.id, *stay, exclude_booking_id=booking.id) is True


@pytest.mark.asyncio
async def test_other_listings_do_not_interfere(test_session, listing, clock, stay):
    other = await ListingService(test_session, clock).create_listing(
        owner_id=OWNER_ID, title="Forest clearing", price_per_night=3000, max_guests=2
    )
    await _add_booking(test_session, other, *stay, BookingStatus.CONFIRMED)

    service = AvailabilityService(test_session, clock)

    assert await service.is_range_free(listing.id, *stay) is True
    assert await service.is_range_free(other.id, *stay) is False


@pytest.mark.asyncio
async def test_list_occupancy(test_session, listing, clock):
    """Test occupancy listing is ordered and skips inactive bookings."""
    block = await _add_booking(
        test_session, listing, date(2025, 7, 10), date(2025, 7, 12), BookingStatus.OWNER_BLOCKED
    )
    hold = await _add_booking(
        test_session, listing, date(2025, 7, 1), date(2025, 7, 3), BookingStatus.HELD,
        expires_at=NOW + timedelta(minutes=10),
    )
    await _add_booking(
        test_session, listing, date(2025, 7, 4), date(2025, 7, 6), BookingStatus.HELD,
        expires_at=NOW - timedelta(minutes=10),
    )
    await _add_booking(test_session, listing, date(2025, 7, 6), date(2025, 7, 8), BookingStatus.CANCELLED)

    service = AvailabilityService(test_session, clock)
    entries = await service.list_occupancy(listing.id, date(2025, 7, 1), date(2025, 8, 1))

    assert [entry.booking_id for entry in entries] == [hold.id, block.id]
    assert entries[0].kind == BookingStatus.HELD
    assert entries[0].expires_at == NOW + timedelta(minutes=10)
    assert entries[1].kind == BookingStatus.OWNER_BLOCKED
    assert entries[1].expires_at is None
