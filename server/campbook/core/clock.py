"""Time helpers.

Timestamps are stored as naive UTC datetimes so PostgreSQL and SQLite
compare them the same way.
"""

from datetime import date, datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current UTC time without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today(clock: Clock = utcnow) -> date:
    """Current UTC calendar date according to ``clock``."""
    return clock().date()
