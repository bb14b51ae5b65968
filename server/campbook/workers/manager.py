"""Worker manager for coordinating background tasks."""

import asyncio
import logging
from typing import Dict

from ..core.config import settings
from .base import BaseWorker
from .completion_worker import CompletionSweepWorker
from .hold_reaper_worker import HoldReaperWorker
from .refund_worker import RefundRetryWorker

logger = logging.getLogger(__name__)


class WorkerManager:
    """
    Manages background workers for the application.

    Coordinates starting, stopping, and monitoring of all background workers.
    """

    def __init__(self):
        """Initialize the worker manager."""
        self.workers: Dict[str, BaseWorker] = {}
        self._setup_workers()

    def _setup_workers(self) -> None:
        """Initialize all workers."""
        self.workers["hold_reaper"] = HoldReaperWorker(
            interval_seconds=settings.hold_reaper_interval_seconds
        )
        self.workers["completion_sweep"] = CompletionSweepWorker(
            interval_seconds=settings.completion_sweep_interval_seconds
        )
        self.workers["refund_retry"] = RefundRetryWorker(
            interval_seconds=settings.refund_retry_interval_seconds
        )

    async def start_all(self) -> None:
        """Start all workers."""
        if not settings.workers_enabled:
            logger.info("Background workers disabled by configuration")
            return

        for worker in self.workers.values():
            await worker.start()

        logger.info("Started workers", extra={"worker_count": len(self.workers)})

    async def stop_all(self) -> None:
        """Stop all workers gracefully."""
        names = list(self.workers)
        results = await asyncio.gather(
            *(self.workers[name].stop() for name in names),
            return_exceptions=True,
        )

        for name, result in zip(names, results):
            if isinstance(result, Exception):
                logger.error(
                    "Error stopping worker",
                    exc_info=result,
                    extra={"worker": name}
                )

    def get_worker(self, name: str) -> BaseWorker:
        """
        Get a specific worker by name.

        Raises:
            KeyError: If worker not found
        """
        return self.workers[name]

    def get_worker_status(self) -> Dict[str, bool]:
        """Map worker names to their running status."""
        return {name: worker.is_running for name, worker in self.workers.items()}


# Global worker manager instance
worker_manager = WorkerManager()
