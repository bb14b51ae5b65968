"""Background worker for cancelling expired holds."""

from ..core.database import async_session_factory
from ..services.hold_service import HoldService
from .base import BaseWorker


class HoldReaperWorker(BaseWorker):
    """
    Background worker that cancels holds past their expiry.

    Availability already treats expired holds as free; this moves them to
    CANCELLED so listings and reports stop showing them as HELD.
    """

    def __init__(self, interval_seconds: int = 300, batch_size: int = 100):
        super().__init__(name="HoldReaper", interval_seconds=interval_seconds)
        self.batch_size = batch_size

    async def process(self) -> int:
        async with async_session_factory() as db:
            return await HoldService(db).reap_expired_holds(self.batch_size)
