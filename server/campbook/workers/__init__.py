"""Background workers for the booking service."""

from .completion_worker import CompletionSweepWorker
from .hold_reaper_worker import HoldReaperWorker
from .refund_worker import RefundRetryWorker

__all__ = ["CompletionSweepWorker", "HoldReaperWorker", "RefundRetryWorker"]
