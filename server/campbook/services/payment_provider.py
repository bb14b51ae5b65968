"""Payment provider boundary.

``PaymentProvider`` is the interface the orchestrator depends on;
``StripePaymentProvider`` implements it with Stripe Checkout. Every
outbound call runs in a worker thread with a per-attempt timeout, is
retried for transient failures and goes through a circuit breaker.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Optional

import stripe

from ..core.config import settings
from ..core.exceptions import PROBLEM_BASE_URI, ProblemDetailsException
from ..core.observability import metrics_collector
from ..core.resilience import CircuitBreaker, CircuitOpenError, retry_async
from ..models.payment import PaymentSessionStatus

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
CHECKOUT_ASYNC_SUCCEEDED = "checkout.session.async_payment_succeeded"
CHECKOUT_ASYNC_FAILED = "checkout.session.async_payment_failed"
CHECKOUT_EXPIRED = "checkout.session.expired"
SESSION_POLL = "session.poll"

HANDLED_EVENT_TYPES = frozenset({
    CHECKOUT_COMPLETED,
    CHECKOUT_ASYNC_SUCCEEDED,
    CHECKOUT_ASYNC_FAILED,
    CHECKOUT_EXPIRED,
})

METADATA_KEYS = (
    "booking_id",
    "listing_id",
    "renter_id",
    "start",
    "end",
    "guest_count",
    "base_cost",
    "service_fee",
)


class PaymentProviderError(ProblemDetailsException):
    """Base class for payment provider failures surfaced to API callers."""

    status_code_default = 502
    code_default = "PAYMENT_PROVIDER_ERROR"
    title_default = "Payment Provider Error"
    message_default = "An error occurred while processing your payment."
    retryable_default = False

    def __init__(
        self,
        detail: Optional[str] = None,
        provider_code: Optional[str] = None,
        extensions: Optional[dict[str, Any]] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        self.provider_code = provider_code
        extra = dict(extensions or {})
        if provider_code:
            extra["provider_code"] = provider_code

        super().__init__(
            status_code=self.status_code_default,
            title=self.title_default,
            detail=detail or self.message_default,
            code=self.code_default,
            retryable=self.retryable_default,
            type_uri=f"{PROBLEM_BASE_URI}/{self.code_default.lower().replace('_', '-')}",
            extensions=extra,
            headers=headers,
        )


class CardDeclinedError(PaymentProviderError):
    status_code_default = 402
    code_default = "CARD_DECLINED"
    title_default = "Card Declined"
    message_default = "Your card was declined. Please check your card details and try again."


class PaymentInvalidRequestError(PaymentProviderError):
    status_code_default = 400
    code_default = "PAYMENT_INVALID_REQUEST"
    title_default = "Invalid Payment Request"
    message_default = "Invalid payment request. Please check your details and try again."


class PaymentAuthError(PaymentProviderError):
    status_code_default = 401
    code_default = "PAYMENT_AUTH_FAILURE"
    title_default = "Payment Authentication Failed"
    message_default = "Payment authentication failed. Please contact support."


class PaymentRateLimitedError(PaymentProviderError):
    status_code_default = 429
    code_default = "PAYMENT_RATE_LIMITED"
    title_default = "Payment Rate Limited"
    message_default = "Too many payment attempts. Please wait a moment and try again."
    retryable_default = True


class PaymentProviderUnavailableError(PaymentProviderError):
    status_code_default = 503
    code_default = "PAYMENT_PROVIDER_UNAVAILABLE"
    title_default = "Payment Provider Unavailable"
    message_default = (
        "Our payment service is temporarily unavailable. Please try again in a few moments."
    )
    retryable_default = True

    def __init__(self, detail: Optional[str] = None, retry_after_seconds: Optional[float] = None):
        extensions = {}
        headers = None
        if retry_after_seconds is not None:
            seconds = max(1, int(round(retry_after_seconds)))
            extensions["retry_after_seconds"] = seconds
            headers = {"Retry-After": str(seconds)}
        super().__init__(detail=detail, extensions=extensions, headers=headers)


class WebhookSignatureError(PaymentProviderError):
    status_code_default = 400
    code_default = "WEBHOOK_SIGNATURE_INVALID"
    title_default = "Invalid Webhook Signature"
    message_default = "Webhook signature verification failed"


def is_transient(exc: BaseException) -> bool:
    """Failures worth retrying and counting against the circuit."""
    return isinstance(exc, PaymentProviderError) and exc.retryable


@dataclass(frozen=True)
class CheckoutSession:
    """A provider-hosted checkout session."""

    session_id: str
    url: str


@dataclass(frozen=True)
class ProviderEvent:
    """
    Provider-reported state of a checkout session.

    Produced from a verified webhook or an active poll; both feed the
    same reconciliation.
    """

    event_type: str
    session_id: Optional[str] = None
    status: PaymentSessionStatus = PaymentSessionStatus.PENDING
    provider_reference: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)
    failure_code: Optional[str] = None
    event_id: Optional[str] = None

    @property
    def booking_id(self) -> Optional[str]:
        return self.metadata.get("booking_id")


@dataclass(frozen=True)
class RefundResult:
    refund_id: str
    status: str
    amount: int


class PaymentProvider(ABC):
    """Interface to an external payment provider."""

    @abstractmethod
    async def create_checkout_session(
        self,
        *,
        line_item_name: str,
        amount: int,
        currency: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> CheckoutSession:
        """Open a hosted checkout session charging ``amount`` minor units."""

    @abstractmethod
    async def retrieve_session(self, session_id: str) -> ProviderEvent:
        """Fetch the current state of a checkout session."""

    @abstractmethod
    async def expire_session(self, session_id: str) -> None:
        """Invalidate an open checkout session."""

    @abstractmethod
    async def refund(self, provider_reference: str, amount: int, idempotency_key: str) -> RefundResult:
        """Refund ``amount`` of a captured payment."""

    @abstractmethod
    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> ProviderEvent:
        """Verify a webhook signature and translate the event."""


def _field(obj: Any, key: str) -> Any:
    """Read a field from a Stripe object or plain mapping, None when absent."""
    if obj is None:
        return None
    try:
        return obj[key]
    except (KeyError, TypeError):
        return None


def _object_id(value: Any) -> Optional[str]:
    """IDs of expandable fields arrive either as a string or an object."""
    if value is None or isinstance(value, str):
        return value
    return _field(value, "id")


def _translate_session(session: Any, event_type: str, event_id: Optional[str] = None) -> ProviderEvent:
    payment_status = _field(session, "payment_status")
    session_status = _field(session, "status")
    payment_intent = _field(session, "payment_intent")
    failure_code = None

    if event_type == CHECKOUT_ASYNC_FAILED:
        status = PaymentSessionStatus.FAILED
        failure_code = "payment_failed"
    elif payment_status in ("paid", "no_payment_required"):
        status = PaymentSessionStatus.PAID
    elif session_status == "expired" or event_type == CHECKOUT_EXPIRED:
        status = PaymentSessionStatus.EXPIRED
    else:
        status = PaymentSessionStatus.PENDING
        last_error = _field(payment_intent, "last_payment_error")
        if last_error is not None:
            # Declined attempt; the customer may still retry on the hosted page
            status = PaymentSessionStatus.FAILED
            failure_code = _field(last_error, "decline_code") or _field(last_error, "code")

    metadata = _field(session, "metadata")
    session_id = _field(session, "id")
    return ProviderEvent(
        event_type=event_type,
        event_id=event_id,
        session_id=session_id,
        status=status,
        provider_reference=_object_id(payment_intent) or session_id,
        amount_total=_field(session, "amount_total"),
        currency=_field(session, "currency"),
        metadata={
            key: str(value)
            for key in METADATA_KEYS
            if (value := _field(metadata, key)) is not None
        },
        failure_code=failure_code,
    )


class StripePaymentProvider(PaymentProvider):
    """Stripe Checkout implementation of the payment provider boundary."""

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        timeout_seconds: float = 10.0,
        max_attempts: int = 3,
        backoff_base_seconds: float = 0.5,
        backoff_max_seconds: float = 8.0,
        breaker: Optional[CircuitBreaker] = None,
    ):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.timeout_seconds = timeout_seconds
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.breaker = breaker or CircuitBreaker(
            name="stripe",
            failure_threshold=settings.circuit_failure_threshold,
            cooldown_seconds=settings.circuit_cooldown_seconds,
            is_failure=is_transient,
        )

    def _translate_error(self, exc: stripe.StripeError) -> PaymentProviderError:
        provider_code = getattr(exc, "code", None)
        if isinstance(exc, stripe.CardError):
            return CardDeclinedError(provider_code=provider_code)
        if isinstance(exc, stripe.InvalidRequestError):
            return PaymentInvalidRequestError(provider_code=provider_code)
        if isinstance(exc, stripe.AuthenticationError):
            return PaymentAuthError(provider_code=provider_code)
        if isinstance(exc, stripe.RateLimitError):
            return PaymentRateLimitedError(provider_code=provider_code)
        if isinstance(exc, stripe.APIConnectionError):
            return PaymentProviderUnavailableError(
                detail="Could not connect to payment service. Please try again shortly."
            )
        return PaymentProviderUnavailableError()

    async def _call(self, operation: str, func: Callable[..., Any], *args: Any, **params: Any) -> Any:
        """Run a blocking Stripe SDK call with timeout, retries and the circuit breaker."""
        request = partial(func, *args, api_key=self.api_key, **params)

        async def attempt() -> Any:
            try:
                return await asyncio.wait_for(
                    asyncio.to_thread(request), timeout=self.timeout_seconds
                )
            except asyncio.TimeoutError as exc:
                raise PaymentProviderUnavailableError(
                    detail="The payment provider did not respond in time"
                ) from exc
            except stripe.StripeError as exc:
                raise self._translate_error(exc) from exc

        try:
            result = await retry_async(
                lambda: self.breaker.call(attempt),
                operation=operation,
                max_attempts=self.max_attempts,
                backoff_base=self.backoff_base_seconds,
                backoff_max=self.backoff_max_seconds,
                should_retry=is_transient,
            )
        except CircuitOpenError as exc:
            metrics_collector.record_provider_call(operation, "circuit_open")
            logger.warning(
                "Payment provider circuit open - failing fast",
                extra={"operation": operation, "retry_after": round(exc.retry_after, 1)}
            )
            raise PaymentProviderUnavailableError(retry_after_seconds=exc.retry_after) from exc
        except PaymentProviderError as exc:
            metrics_collector.record_provider_call(operation, exc.code.lower())
            raise

        metrics_collector.record_provider_call(operation, "success")
        return result

    async def create_checkout_session(
        self,
        *,
        line_item_name: str,
        amount: int,
        currency: str,
        success_url: str,
        cancel_url: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> CheckoutSession:
        session = await self._call(
            "create_session",
            stripe.checkout.Session.create,
            mode="payment",
            line_items=[{
                "price_data": {
                    "currency": currency,
                    "product_data": {"name": line_item_name},
                    "unit_amount": amount,
                },
                "quantity": 1,
            }],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            payment_intent_data={"metadata": metadata},
            idempotency_key=idempotency_key,
        )
        return CheckoutSession(session_id=session["id"], url=session["url"])

    async def retrieve_session(self, session_id: str) -> ProviderEvent:
        session = await self._call(
            "retrieve_session",
            stripe.checkout.Session.retrieve,
            session_id,
            expand=["payment_intent"],
        )
        return _translate_session(session, SESSION_POLL)

    async def expire_session(self, session_id: str) -> None:
        await self._call("expire_session", stripe.checkout.Session.expire, session_id)

    async def refund(self, provider_reference: str, amount: int, idempotency_key: str) -> RefundResult:
        refund = await self._call(
            "refund",
            stripe.Refund.create,
            payment_intent=provider_reference,
            amount=amount,
            idempotency_key=idempotency_key,
        )
        return RefundResult(refund_id=refund["id"], status=refund["status"], amount=refund["amount"])

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> ProviderEvent:
        if not signature:
            raise WebhookSignatureError(detail="Missing Stripe-Signature header")
        if not self.webhook_secret:
            logger.error("Webhook received but no webhook secret is configured")
            raise WebhookSignatureError(detail="Webhook verification is not configured")

        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as exc:
            logger.warning("Webhook signature verification failed", extra={"error": str(exc)})
            raise WebhookSignatureError() from exc
        except ValueError as exc:
            logger.warning("Webhook payload is not valid JSON", extra={"error": str(exc)})
            raise WebhookSignatureError(detail="Webhook payload could not be parsed") from exc

        event_type = event["type"]
        if event_type not in HANDLED_EVENT_TYPES:
            return ProviderEvent(event_type=event_type, event_id=event["id"])

        return _translate_session(event["data"]["object"], event_type, event_id=event["id"])


_provider: Optional[PaymentProvider] = None


def get_payment_provider() -> PaymentProvider:
    """Process-wide provider instance, shared so the circuit state is shared."""
    global _provider
    if _provider is None:
        _provider = StripePaymentProvider(
            api_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            timeout_seconds=settings.provider_timeout_seconds,
            max_attempts=settings.provider_max_attempts,
            backoff_base_seconds=settings.provider_backoff_base_seconds,
            backoff_max_seconds=settings.provider_backoff_max_seconds,
        )
    return _provider
