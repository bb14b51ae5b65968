"""Background worker for the completion sweep."""

from ..core.database import async_session_factory
from ..services.completion_service import CompletionService
from ..services.notifications import get_notifier
from .base import BaseWorker


class CompletionSweepWorker(BaseWorker):
    """Completes confirmed bookings whose stay has ended, daily by default."""

    def __init__(self, interval_seconds: int = 86400):
        super().__init__(name="CompletionSweep", interval_seconds=interval_seconds)

    async def process(self) -> int:
        async with async_session_factory() as db:
            return await CompletionService(db, get_notifier()).sweep()
