"""Unit tests for the Stripe provider adapter."""

import hashlib
import hmac
import json
import time

import pytest
import stripe

from campbook.core.resilience import CircuitBreaker
from campbook.models.payment import PaymentSessionStatus
from campbook.services.payment_provider import (
    CHECKOUT_ASYNC_FAILED,
    CHECKOUT_COMPLETED,
    CHECKOUT_EXPIRED,
    SESSION_POLL,
    CardDeclinedError,
    PaymentProviderUnavailableError,
    StripePaymentProvider,
    WebhookSignatureError,
    _translate_session,
    is_transient,
)

WEBHOOK_SECRET = "whsec_test_secret"


def _provider(**kwargs) -> StripePaymentProvider:
    return StripePaymentProvider(
        api_key="sk_test_123",
        webhook_secret=WEBHOOK_SECRET,
        timeout_seconds=5.0,
        max_attempts=3,
        backoff_base_seconds=0.0,
        backoff_max_seconds=0.0,
        **kwargs,
    )


def _sign(payload: bytes, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    signed = f"{timestamp}.{payload.decode()}".encode()
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def _session(**overrides) -> dict:
    session = {
        "id": "cs_test_1",
        "object": "checkout.session",
        "status": "complete",
        "payment_status": "paid",
        "payment_intent": "pi_123",
        "amount_total": 22000,
        "currency": "eur",
        "metadata": {"booking_id": "b-1", "listing_id": "l-1", "unrelated": "x"},
    }
    session.update(overrides)
    return session


def test_translate_paid_session():
    event = _translate_session(_session(), CHECKOUT_COMPLETED, event_id="evt_1")

    assert event.status == PaymentSessionStatus.PAID
    assert event.provider_reference == "pi_123"
    assert event.amount_total == 22000
    assert event.booking_id == "b-1"
    assert "unrelated" not in event.metadata
    assert event.event_id == "evt_1"


def test_translate_expanded_payment_intent():
    event = _translate_session(
        _session(payment_intent={"id": "pi_456", "last_payment_error": None}), SESSION_POLL
    )

    assert event.provider_reference == "pi_456"


def test_translate_declined_attempt():
    """Test an open session whose last attempt was declined reports FAILED."""
    event = _translate_session(
        _session(
            status="open",
            payment_status="unpaid",
            payment_intent={
                "id": "pi_789",
                "last_payment_error": {"code": "card_declined", "decline_code": "insufficient_funds"},
            },
        ),
        SESSION_POLL,
    )

    assert event.status == PaymentSessionStatus.FAILED
    assert event.failure_code == "insufficient_funds"


@pytest.mark.parametrize(
    ("overrides", "event_type", "status"),
    [
        ({"status": "open", "payment_status": "unpaid", "payment_intent": None}, SESSION_POLL,
         PaymentSessionStatus.PENDING),
        ({"status": "expired", "payment_status": "unpaid", "payment_intent": None}, CHECKOUT_EXPIRED,
         PaymentSessionStatus.EXPIRED),
        ({"payment_status": "unpaid"}, CHECKOUT_ASYNC_FAILED, PaymentSessionStatus.FAILED),
        ({"payment_status": "no_payment_required", "payment_intent": None}, CHECKOUT_COMPLETED,
         PaymentSessionStatus.PAID),
    ],
)
def test_translate_session_states(overrides, event_type, status):
    assert _translate_session(_session(**overrides), event_type).status == status


def test_session_without_intent_uses_session_id():
    event = _translate_session(
        _session(payment_status="no_payment_required", payment_intent=None), CHECKOUT_COMPLETED
    )

    assert event.provider_reference == "cs_test_1"


def test_parse_signed_webhook():
    """Test a correctly signed delivery is verified and translated."""
    payload = json.dumps({
        "id": "evt_1",
        "object": "event",
        "type": CHECKOUT_COMPLETED,
        "data": {"object": _session()},
    }).encode()

    event = _provider().parse_webhook(payload, _sign(payload))

    assert event.event_type == CHECKOUT_COMPLETED
    assert event.session_id == "cs_test_1"
    assert event.status == PaymentSessionStatus.PAID
    assert event.provider_reference == "pi_123"


@pytest.mark.parametrize(
    "signature",
    [None, "", "t=1,v1=deadbeef", _sign(b"{}", secret="whsec_other")],
)
def test_parse_webhook_rejects_bad_signatures(signature):
    payload = json.dumps({"id": "evt_1", "type": CHECKOUT_COMPLETED, "data": {"object": _session()}}).encode()

    with pytest.raises(WebhookSignatureError):
        _provider().parse_webhook(payload, signature)


def test_parse_webhook_passes_through_unhandled_types():
    payload = json.dumps({"id": "evt_2", "object": "event", "type": "charge.updated", "data": {"object": {}}}).encode()

    event = _provider().parse_webhook(payload, _sign(payload))

    assert event.event_type == "charge.updated"
    assert event.session_id is None


@pytest.mark.asyncio
async def test_call_passes_api_key():
    calls = []

    def create(**params):
        calls.append(params)
        return {"id": "cs_1", "url": "https://checkout.stripe.com/c/cs_1"}

    result = await _provider()._call("create_session", create, mode="payment")

    assert result["id"] == "cs_1"
    assert calls == [{"api_key": "sk_test_123", "mode": "payment"}]


@pytest.mark.asyncio
async def test_card_error_is_not_retried():
    """Test a declined card surfaces immediately as a 402."""
    calls = []

    def declined(**params):
        calls.append(params)
        raise stripe.CardError("Your card was declined.", None, "card_declined")

    with pytest.raises(CardDeclinedError) as exc_info:
        await _provider()._call("create_session", declined)

    assert len(calls) == 1
    assert exc_info.value.status_code == 402
    assert exc_info.value.problem_details["provider_code"] == "card_declined"
    assert not is_transient(exc_info.value)


@pytest.mark.asyncio
async def test_connection_errors_are_retried():
    calls = []

    def unreachable(**params):
        calls.append(params)
        raise stripe.APIConnectionError("Network is unreachable")

    with pytest.raises(PaymentProviderUnavailableError) as exc_info:
        await _provider()._call("retrieve_session", unreachable)

    assert len(calls) == 3
    assert exc_info.value.status_code == 503
    assert exc_info.value.retryable is True


@pytest.mark.asyncio
async def test_open_circuit_fails_fast():
    """Test the circuit opens during retries and later calls skip the provider."""
    calls = []
    breaker = CircuitBreaker(name="stripe-test", failure_threshold=2, cooldown_seconds=30.0, is_failure=is_transient)
    provider = _provider(breaker=breaker)

    def unreachable(**params):
        calls.append(params)
        raise stripe.APIConnectionError("Network is unreachable")

    with pytest.raises(PaymentProviderUnavailableError) as exc_info:
        await provider._call("create_session", unreachable)

    assert len(calls) == 2
    assert exc_info.value.headers["Retry-After"] == "30"

    with pytest.raises(PaymentProviderUnavailableError):
        await provider._call("create_session", unreachable)
    assert len(calls) == 2
