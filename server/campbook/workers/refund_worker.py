"""Background worker retrying refunds of cancelled paid bookings."""

from ..core.database import async_session_factory
from ..services.payment_provider import get_payment_provider
from ..services.payment_service import PaymentService
from .base import BaseWorker


class RefundRetryWorker(BaseWorker):
    """Retries refunds left pending when the provider call failed at cancellation."""

    def __init__(self, interval_seconds: int = 600, batch_size: int = 50):
        super().__init__(name="RefundRetry", interval_seconds=interval_seconds)
        self.batch_size = batch_size

    async def process(self) -> int:
        async with async_session_factory() as db:
            payment_service = PaymentService(db, get_payment_provider())
            return await payment_service.retry_pending_refunds(self.batch_size)
