"""Unit tests for per-listing locks."""

import asyncio
import gc
from uuid import uuid4

import pytest

from campbook.core.locking import ListingLocks


@pytest.mark.asyncio
async def test_same_listing_is_serialized(test_session):
    locks = ListingLocks()
    listing_id = uuid4()
    order = []

    async def critical_section(name: str):
        async with locks.hold(test_session, listing_id):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(critical_section("a"), critical_section("b"))

    assert order == ["a-in", "a-out", "b-in", "b-out"]


@pytest.mark.asyncio
async def test_other_listings_do_not_wait(test_session):
    locks = ListingLocks()
    entered = asyncio.Event()

    async with locks.hold(test_session, uuid4()):
        async with locks.hold(test_session, uuid4()):
            entered.set()

    assert entered.is_set()


@pytest.mark.asyncio
async def test_idle_locks_are_dropped(test_session):
    """Test the registry does not keep a lock per listing ever touched."""
    locks = ListingLocks()
    listing_id = uuid4()

    async with locks.hold(test_session, listing_id):
        assert str(listing_id) in locks._local_locks

    gc.collect()
    assert str(listing_id) not in locks._local_locks


@pytest.mark.asyncio
async def test_lock_released_after_error(test_session):
    locks = ListingLocks()
    listing_id = uuid4()

    with pytest.raises(RuntimeError):
        async with locks.hold(test_session, listing_id):
            raise RuntimeError("conflict")

    await asyncio.wait_for(_enter(locks, test_session, listing_id), timeout=1)


async def _enter(locks, session, listing_id):
    async with locks.hold(session, listing_id):
        return True
