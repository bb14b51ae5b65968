"""Payment orchestrator: checkout sessions, reconciliation and refunds."""

import logging
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, utcnow
from ..core.config import settings
from ..core.exceptions import (
    AuthorizationError,
    ConflictError,
    HoldExpiredError,
    NotFoundError,
)
from ..core.locking import listing_locks
from ..core.observability import metrics_collector
from ..models.booking import Booking, BookingStatus
from ..models.listing import Listing
from ..models.payment import (
    PaymentSession,
    PaymentSessionStatus,
    Transaction,
    TransactionStatus,
)
from .availability_service import AvailabilityService
from .booking_state import BookingEvent, transition
from .payment_provider import (
    HANDLED_EVENT_TYPES,
    PaymentProvider,
    PaymentProviderError,
    ProviderEvent,
    RefundResult,
)

logger = logging.getLogger(__name__)


class ReconciliationResult(str, Enum):
    """Outcome of merging a provider report into local state."""
    CONFIRMED = "CONFIRMED"
    ALREADY_RECONCILED = "ALREADY_RECONCILED"
    PENDING = "PENDING"
    FAILED = "FAILED"
    EXPIRED = "EXPIRED"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    IGNORED = "IGNORED"


@dataclass(frozen=True)
class Charge:
    base_cost: int
    service_fee: int
    total: int


@dataclass
class Reconciliation:
    result: ReconciliationResult
    event_type: str
    payment_session: Optional[PaymentSession] = None
    booking: Optional[Booking] = None
    transaction: Optional[Transaction] = None


def compute_charge(base_cost: int, fee_percent: Decimal = settings.service_fee_percent) -> Charge:
    """
    Split the amount charged at checkout into base cost and service fee.

    The fee is ``fee_percent`` of the base cost, rounded half-up to the
    minor unit, and is charged on top of the stored base cost.
    """
    fee = (Decimal(base_cost) * Decimal(fee_percent) / Decimal(100)).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    )
    return Charge(base_cost=base_cost, service_fee=int(fee), total=base_cost + int(fee))


class BookingNotHeldError(ConflictError):
    """Exception when paying for a booking that is no longer held."""

    def __init__(self, booking_id: str, status: str):
        super().__init__(
            detail=f"Booking {booking_id} is {status} and cannot be paid for",
            code="BOOKING_NOT_HELD",
            title="Booking Not Held",
            conflicting_resource={"booking_id": booking_id, "status": status},
        )


class PaymentService:
    """
    Orchestrates the payment provider around the booking lifecycle.

    Webhook deliveries and client polls both end in ``reconcile``. The
    unique provider reference on transactions is the de-duplication gate,
    so redelivered and racing reports confirm a booking at most once.
    """

    def __init__(self, db: AsyncSession, provider: PaymentProvider, clock: Clock = utcnow):
        self.db = db
        self.provider = provider
        self.clock = clock
        self.availability = AvailabilityService(db, clock)

    async def _get_booking_or_raise(self, booking_id: UUID) -> Booking:
        booking = await self.db.get(Booking, booking_id, populate_existing=True)
        if not booking:
            raise NotFoundError(resource_type="booking", resource_id=str(booking_id))
        return booking

    async def _get_listing(self, listing_id: UUID) -> Listing:
        listing = await self.db.get(Listing, listing_id)
        if not listing:
            raise NotFoundError(resource_type="listing", resource_id=str(listing_id))
        return listing

    async def _session_count(self, booking_id: UUID) -> int:
        stmt = select(func.count()).select_from(PaymentSession).where(
            PaymentSession.booking_id == booking_id
        )
        result = await self.db.execute(stmt)
        return result.scalar_one()

    async def _active_sessions(self, booking_id: UUID) -> list[PaymentSession]:
        stmt = select(PaymentSession).where(
            PaymentSession.booking_id == booking_id,
            PaymentSession.is_active.is_(True),
        )
        result = await self.db.execute(stmt)
        return list(result.scalars())

    async def deactivate_sessions(self, booking_id: UUID, keep: Optional[str] = None) -> list[str]:
        """Mark the booking's active sessions inactive; the caller commits.

        Returns:
            IDs of the sessions deactivated, for ``expire_provider_sessions``
        """
        session_ids = [s.id for s in await self._active_sessions(booking_id) if s.id != keep]
        if session_ids:
            await self.db.execute(
                update(PaymentSession)
                .where(PaymentSession.id.in_(session_ids))
                .values(is_active=False)
            )
        return session_ids

    async def expire_provider_sessions(self, booking_id: UUID, session_ids: list[str]) -> None:
        """Close hosted checkout pages after commit. Failures are logged only."""
        for session_id in session_ids:
            try:
                await self.provider.expire_session(session_id)
            except PaymentProviderError as exc:
                # A closed session that still gets paid is flagged for review at reconciliation
                logger.warning(
                    "Failed to expire checkout session",
                    extra={"session_id": session_id, "booking_id": str(booking_id), "error": exc.message}
                )

    async def _confirmed_transaction(self, booking_id: UUID) -> Optional[Transaction]:
        stmt = select(Transaction).where(
            Transaction.booking_id == booking_id,
            Transaction.status == TransactionStatus.CONFIRMED.value,
        )
        result = await self.db.execute(stmt)
        return result.scalars().first()

    async def _transaction_by_reference(self, provider_reference: str) -> Optional[Transaction]:
        stmt = select(Transaction).where(Transaction.provider_reference == provider_reference)
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def create_session(self, booking_id: UUID, renter_id: str) -> tuple[PaymentSession, Booking]:
        """
        Open a provider checkout session for a held booking.

        Any previous session of the booking is deactivated and expired at
        the provider, so at most one session is active per booking.

        Raises:
            NotFoundError: If the booking does not exist
            AuthorizationError: If the caller is not the renter
            BookingNotHeldError: If the booking is no longer held
            HoldExpiredError: If the hold has lapsed
            PaymentProviderError: On provider failure after retries
        """
        booking = await self._get_booking_or_raise(booking_id)
        if booking.renter_id != renter_id:
            raise AuthorizationError(detail="Only the renter can pay for this booking")

        status = BookingStatus(booking.status)
        if status != BookingStatus.HELD:
            raise BookingNotHeldError(str(booking.id), status.value)
        if booking.is_expired_hold(self.clock()):
            raise HoldExpiredError(str(booking.id), booking.expires_at)

        listing = await self._get_listing(booking.listing_id)
        charge = compute_charge(booking.base_cost)
        attempt = await self._session_count(booking.id) + 1
        currency = booking.currency or settings.currency

        metadata = {
            "booking_id": str(booking.id),
            "listing_id": str(booking.listing_id),
            "renter_id": booking.renter_id,
            "start": booking.start_date.isoformat(),
            "end": booking.end_date.isoformat(),
            "guest_count": str(booking.guest_count),
            "base_cost": str(charge.base_cost),
            "service_fee": str(charge.service_fee),
        }

        checkout = await self.provider.create_checkout_session(
            line_item_name=(
                f"{listing.title}: {booking.start_date.isoformat()} to {booking.end_date.isoformat()}"
            ),
            amount=charge.total,
            currency=currency,
            success_url=f"{settings.frontend_url}/booking-success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{settings.frontend_url}/listings/{booking.listing_id}",
            metadata=metadata,
            idempotency_key=f"checkout-{booking.id}-{attempt}",
        )

        stale_status: Optional[str] = None
        superseded: list[str] = []
        async with listing_locks.hold(self.db, booking.listing_id):
            booking = await self._get_booking_or_raise(booking_id)
            if booking.status != BookingStatus.HELD:
                # Cancelled while the provider call was in flight
                stale_status = BookingStatus(booking.status).value
                await self.db.commit()
            else:
                superseded = await self.deactivate_sessions(booking.id, keep=checkout.session_id)
                payment_session = PaymentSession(
                    id=checkout.session_id,
                    booking_id=booking.id,
                    amount=charge.total,
                    service_fee=charge.service_fee,
                    currency=currency,
                    status=PaymentSessionStatus.PENDING,
                    is_active=True,
                    checkout_url=checkout.url,
                )
                self.db.add(payment_session)
                try:
                    await self.db.commit()
                except IntegrityError:
                    # Same provider idempotency key raced us; the session is already stored
                    await self.db.rollback()
                    payment_session = await self.db.get(PaymentSession, checkout.session_id)
                    if payment_session is None:
                        raise
                    booking = await self._get_booking_or_raise(booking_id)
                    superseded = []

        if stale_status:
            await self.expire_provider_sessions(booking.id, [checkout.session_id])
            raise BookingNotHeldError(str(booking.id), stale_status)

        await self.expire_provider_sessions(booking.id, superseded)

        logger.info(
            "Checkout session created",
            extra={
                "session_id": payment_session.id,
                "booking_id": str(booking.id),
                "amount": charge.total,
                "service_fee": charge.service_fee,
                "currency": currency,
                "attempt": attempt,
            }
        )
        return payment_session, booking

    async def _flag_for_review(
        self,
        payment_session: PaymentSession,
        booking: Booking,
        event: ProviderEvent,
        reason: str,
    ) -> Reconciliation:
        payment_session.status = PaymentSessionStatus.PAID
        payment_session.needs_review = True
        payment_session.failure_code = reason
        await self.db.commit()

        logger.error(
            "Paid checkout session needs manual review",
            extra={
                "session_id": payment_session.id,
                "booking_id": str(booking.id),
                "booking_status": BookingStatus(booking.status).value,
                "provider_reference": event.provider_reference,
                "amount_total": event.amount_total,
                "expected_amount": payment_session.amount,
                "reason": reason,
            }
        )
        return Reconciliation(
            result=ReconciliationResult.NEEDS_REVIEW,
            event_type=event.event_type,
            payment_session=payment_session,
            booking=booking,
        )

    async def reconcile(self, event: ProviderEvent, source: str = "webhook") -> Reconciliation:
        """
        Merge a provider-reported session state into bookings and transactions.

        Args:
            event: Provider view of one checkout session
            source: ``webhook`` or ``poll``, for logs and metrics

        Returns:
            Reconciliation describing what happened
        """
        reconciliation = await self._reconcile(event)
        metrics_collector.record_reconciliation(source, reconciliation.result.value)
        logger.info(
            "Payment reconciled",
            extra={
                "source": source,
                "event_type": event.event_type,
                "session_id": event.session_id,
                "provider_reference": event.provider_reference,
                "result": reconciliation.result.value,
            }
        )
        return reconciliation

    async def _reconcile(self, event: ProviderEvent) -> Reconciliation:
        payment_session = None
        if event.session_id:
            payment_session = await self.db.get(PaymentSession, event.session_id)
        if payment_session is None:
            logger.warning(
                "Provider event for unknown checkout session",
                extra={"session_id": event.session_id, "metadata_booking_id": event.booking_id}
            )
            return Reconciliation(result=ReconciliationResult.IGNORED, event_type=event.event_type)

        if event.booking_id and event.booking_id != str(payment_session.booking_id):
            logger.warning(
                "Provider metadata booking does not match stored session",
                extra={
                    "session_id": payment_session.id,
                    "metadata_booking_id": event.booking_id,
                    "booking_id": str(payment_session.booking_id),
                }
            )

        booking = await self._get_booking_or_raise(payment_session.booking_id)

        async with listing_locks.hold(self.db, booking.listing_id):
            await self.db.refresh(payment_session)
            await self.db.refresh(booking)

            if event.provider_reference:
                existing = await self._transaction_by_reference(event.provider_reference)
                if existing is not None:
                    await self.db.commit()
                    return Reconciliation(
                        result=ReconciliationResult.ALREADY_RECONCILED,
                        event_type=event.event_type,
                        payment_session=payment_session,
                        booking=booking,
                        transaction=existing,
                    )

            if PaymentSessionStatus(payment_session.status) == PaymentSessionStatus.PAID:
                # Paid earlier and flagged, or a stale failure arriving after success
                await self.db.commit()
                return Reconciliation(
                    result=(
                        ReconciliationResult.NEEDS_REVIEW
                        if payment_session.needs_review
                        else ReconciliationResult.ALREADY_RECONCILED
                    ),
                    event_type=event.event_type,
                    payment_session=payment_session,
                    booking=booking,
                )

            if event.status == PaymentSessionStatus.PENDING:
                await self.db.commit()
                return Reconciliation(
                    result=ReconciliationResult.PENDING,
                    event_type=event.event_type,
                    payment_session=payment_session,
                    booking=booking,
                )

            if event.status == PaymentSessionStatus.FAILED:
                return await self._apply_failure(event, payment_session, booking)

            if event.status == PaymentSessionStatus.EXPIRED:
                payment_session.status = PaymentSessionStatus.EXPIRED
                payment_session.is_active = False
                await self.db.commit()
                return Reconciliation(
                    result=ReconciliationResult.EXPIRED,
                    event_type=event.event_type,
                    payment_session=payment_session,
                    booking=booking,
                )

            return await self._apply_payment(event, payment_session, booking)

    async def _apply_failure(
        self,
        event: ProviderEvent,
        payment_session: PaymentSession,
        booking: Booking,
    ) -> Reconciliation:
        payment_session.status = PaymentSessionStatus.FAILED
        payment_session.failure_code = event.failure_code

        # The hold stays so the renter can retry with a new session
        if BookingStatus(booking.status) == BookingStatus.HELD and booking.is_expired_hold(self.clock()):
            transition(booking, BookingEvent.PAYMENT_FAILED, self.clock)

        await self.db.commit()

        logger.warning(
            "Checkout payment failed",
            extra={
                "session_id": payment_session.id,
                "booking_id": str(booking.id),
                "failure_code": event.failure_code,
                "booking_status": BookingStatus(booking.status).value,
            }
        )
        return Reconciliation(
            result=ReconciliationResult.FAILED,
            event_type=event.event_type,
            payment_session=payment_session,
            booking=booking,
        )

    async def _apply_payment(
        self,
        event: ProviderEvent,
        payment_session: PaymentSession,
        booking: Booking,
    ) -> Reconciliation:
        if event.amount_total is not None and event.amount_total != payment_session.amount:
            return await self._flag_for_review(payment_session, booking, event, "amount_mismatch")

        status = BookingStatus(booking.status)
        if status != BookingStatus.HELD:
            return await self._flag_for_review(
                payment_session, booking, event, f"booking_{status.value.lower()}"
            )

        if booking.is_expired_hold(self.clock()) and not await self.availability.is_range_free(
            booking.listing_id, booking.start_date, booking.end_date, exclude_booking_id=booking.id
        ):
            return await self._flag_for_review(payment_session, booking, event, "hold_expired_range_taken")

        transition(booking, BookingEvent.PAYMENT_CONFIRMED, self.clock)
        payment_session.status = PaymentSessionStatus.PAID
        provider_reference = event.provider_reference or payment_session.id
        session_id = payment_session.id

        transaction = Transaction(
            booking_id=booking.id,
            provider_reference=provider_reference,
            payment_session_id=payment_session.id,
            amount=payment_session.amount,
            base_amount=booking.base_cost,
            service_fee=payment_session.service_fee,
            currency=payment_session.currency,
            status=TransactionStatus.CONFIRMED,
        )
        self.db.add(transaction)

        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent reconciliation of the same payment committed first
            await self.db.rollback()
            existing = await self._transaction_by_reference(provider_reference)
            if existing is None:
                raise
            booking = await self._get_booking_or_raise(existing.booking_id)
            logger.info(
                "Payment already reconciled by concurrent delivery",
                extra={"provider_reference": existing.provider_reference}
            )
            return Reconciliation(
                result=ReconciliationResult.ALREADY_RECONCILED,
                event_type=event.event_type,
                payment_session=await self.db.get(PaymentSession, session_id, populate_existing=True),
                booking=booking,
                transaction=existing,
            )

        logger.info(
            "Booking confirmed",
            extra={
                "booking_id": str(booking.id),
                "transaction_id": str(transaction.id),
                "provider_reference": transaction.provider_reference,
                "amount": transaction.amount,
                "service_fee": transaction.service_fee,
            }
        )
        return Reconciliation(
            result=ReconciliationResult.CONFIRMED,
            event_type=event.event_type,
            payment_session=payment_session,
            booking=booking,
            transaction=transaction,
        )

    async def handle_webhook(self, payload: bytes, signature: Optional[str]) -> Reconciliation:
        """
        Verify and reconcile a provider webhook delivery.

        Raises:
            WebhookSignatureError: If the signature does not verify; nothing is changed
        """
        event = self.provider.parse_webhook(payload, signature)

        if event.event_type not in HANDLED_EVENT_TYPES:
            logger.info(
                "Ignoring unhandled webhook event type",
                extra={"event_type": event.event_type, "event_id": event.event_id}
            )
            metrics_collector.record_reconciliation("webhook", ReconciliationResult.IGNORED.value)
            return Reconciliation(result=ReconciliationResult.IGNORED, event_type=event.event_type)

        return await self.reconcile(event, source="webhook")

    async def poll_session(self, session_id: str, renter_id: str) -> Reconciliation:
        """
        Actively fetch a session from the provider and reconcile it.

        Used by the checkout success page; races with the webhook are safe.
        """
        payment_session = await self.db.get(PaymentSession, session_id)
        if payment_session is None:
            raise NotFoundError(resource_type="payment session", resource_id=session_id)

        booking = await self._get_booking_or_raise(payment_session.booking_id)
        if booking.renter_id != renter_id:
            raise AuthorizationError(detail="Only the renter can view this payment session")

        event = await self.provider.retrieve_session(session_id)
        return await self.reconcile(event, source="poll")

    async def refund_booking(self, booking_id: UUID) -> Optional[RefundResult]:
        """
        Refund the captured payment of a cancelled booking.

        The provider idempotency key is fixed per booking, so retries after
        a lost response return the original refund instead of a second one.

        Returns:
            RefundResult, or None when there is nothing to refund

        Raises:
            PaymentProviderError: If the provider call fails; ``refund_pending`` stays set
        """
        booking = await self._get_booking_or_raise(booking_id)
        charge = await self._confirmed_transaction(booking.id)

        refunded_stmt = select(Transaction.id).where(
            Transaction.booking_id == booking.id,
            Transaction.status == TransactionStatus.REFUNDED.value,
        )
        already_refunded = (await self.db.execute(refunded_stmt)).first() is not None

        if charge is None or already_refunded:
            booking.refund_pending = False
            await self.db.commit()
            return None

        result = await self.provider.refund(
            charge.provider_reference, charge.amount, idempotency_key=f"refund-{booking.id}"
        )

        self.db.add(Transaction(
            booking_id=booking.id,
            provider_reference=result.refund_id,
            payment_session_id=charge.payment_session_id,
            amount=result.amount,
            base_amount=charge.base_amount,
            service_fee=charge.service_fee,
            currency=charge.currency,
            status=TransactionStatus.REFUNDED,
        ))
        booking.refund_pending = False

        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            booking = await self._get_booking_or_raise(booking_id)
            booking.refund_pending = False
            await self.db.commit()

        logger.info(
            "Booking refunded",
            extra={
                "booking_id": str(booking.id),
                "refund_id": result.refund_id,
                "amount": result.amount,
                "refund_status": result.status,
            }
        )
        return result

    async def retry_pending_refunds(self, batch_size: int = 50) -> int:
        """Retry refunds flagged on cancelled bookings. Returns the number completed."""
        stmt = (
            select(Booking.id)
            .where(Booking.refund_pending.is_(True))
            .order_by(Booking.cancelled_at)
            .limit(batch_size)
        )
        booking_ids = list((await self.db.execute(stmt)).scalars())

        refunded = 0
        for booking_id in booking_ids:
            try:
                await self.refund_booking(booking_id)
            except PaymentProviderError as exc:
                logger.warning(
                    "Refund retry failed",
                    extra={"booking_id": str(booking_id), "code": exc.code, "error": exc.message}
                )
                continue
            refunded += 1

        count_stmt = select(func.count()).select_from(Booking).where(Booking.refund_pending.is_(True))
        metrics_collector.set_refunds_pending((await self.db.execute(count_stmt)).scalar_one())

        return refunded
