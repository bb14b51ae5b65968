"""Per-listing serialization of occupancy changes.

On PostgreSQL a transaction-scoped advisory lock keyed by the listing id
serializes every check-then-write on a listing across processes; it is
released when the surrounding transaction commits or rolls back, so the
caller must commit inside the ``hold`` block. Other dialects (SQLite in
tests and local development) are single-writer and fall back to one
asyncio lock per listing within the process.
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class ListingLocks:
    """Lock registry handing out per-listing critical sections."""

    def __init__(self):
        # Weak values: a lock lives only while a holder or waiter references it
        self._local_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _local_lock(self, key: str) -> asyncio.Lock:
        lock = self._local_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._local_locks[key] = lock
        return lock

    @asynccontextmanager
    async def hold(self, db: AsyncSession, listing_id: UUID) -> AsyncIterator[None]:
        """Run the block while holding the lock for ``listing_id``."""
        key = str(listing_id)

        if db.bind is not None and db.bind.dialect.name == "postgresql":
            await db.execute(
                text("SELECT pg_advisory_xact_lock(hashtext(:listing_id))"),
                {"listing_id": key}
            )
            logger.debug("Acquired advisory lock for listing", extra={"listing_id": key})
            try:
                yield
            except BaseException:
                await db.rollback()
                raise
            return

        async with self._local_lock(key):
            try:
                yield
            except BaseException:
                await db.rollback()
                raise


# Global lock registry
listing_locks = ListingLocks()
