"""Unit tests for the circuit breaker and retry helper."""

import pytest

from campbook.core.resilience import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    backoff_delay,
    retry_async,
)


class FakeMonotonic:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _breaker(monotonic, **kwargs) -> CircuitBreaker:
    return CircuitBreaker(
        name="test",
        failure_threshold=3,
        cooldown_seconds=30.0,
        is_failure=lambda exc: isinstance(exc, ConnectionError),
        monotonic=monotonic,
        **kwargs,
    )


async def _fail():
    raise ConnectionError("provider down")


async def _ok():
    return "ok"


@pytest.mark.asyncio
async def test_circuit_opens_after_threshold():
    """Test consecutive failures open the circuit and calls fail fast."""
    breaker = _breaker(FakeMonotonic())

    for _ in range(3):
        with pytest.raises(ConnectionError):
            await breaker.call(_fail)

    assert breaker.state == CircuitState.OPEN

    called = []

    async def tracked():
        called.append(True)

    with pytest.raises(CircuitOpenError) as exc_info:
        await breaker.call(tracked)

    assert called == []
    assert exc_info.value.retry_after == pytest.approx(30.0)


@pytest.mark.asyncio
async def test_success_resets_failure_count():
    breaker = _breaker(FakeMonotonic())

    for _ in range(2):
        with pytest.raises(ConnectionError):
            await breaker.call(_fail)
    assert await breaker.call(_ok) == "ok"
    for _ in range(2):
        with pytest.raises(ConnectionError):
            await breaker.call(_fail)

    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_trial_closes_on_success():
    monotonic = FakeMonotonic()
    breaker = _breaker(monotonic)
    for _ in range(3):
        with pytest.raises(ConnectionError):
            await breaker.call(_fail)

    monotonic.now += 30.0

    assert await breaker.call(_ok) == "ok"
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_trial_reopens_on_failure():
    monotonic = FakeMonotonic()
    breaker = _breaker(monotonic)
    for _ in range(3):
        with pytest.raises(ConnectionError):
            await breaker.call(_fail)

    monotonic.now += 31.0
    with pytest.raises(ConnectionError):
        await breaker.call(_fail)

    assert breaker.state == CircuitState.OPEN
    with pytest.raises(CircuitOpenError):
        await breaker.call(_ok)


@pytest.mark.asyncio
async def test_non_failures_do_not_open_circuit():
    """Test errors outside ``is_failure`` pass through without counting."""
    breaker = _breaker(FakeMonotonic())

    async def rejected():
        raise ValueError("card declined")

    for _ in range(5):
        with pytest.raises(ValueError):
            await breaker.call(rejected)

    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_reset_closes_circuit():
    breaker = _breaker(FakeMonotonic())
    for _ in range(3):
        with pytest.raises(ConnectionError):
            await breaker.call(_fail)

    breaker.reset()

    assert breaker.state == CircuitState.CLOSED
    assert await breaker.call(_ok) == "ok"


def test_backoff_delay_bounds():
    for attempt in range(8):
        delay = backoff_delay(attempt, base=0.5, maximum=4.0)
        assert 0 <= delay <= min(4.0, 0.5 * 2 ** attempt)


@pytest.mark.asyncio
async def test_retry_until_success():
    attempts = []
    sleeps = []

    async def flaky():
        attempts.append(True)
        if len(attempts) < 3:
            raise ConnectionError("timeout")
        return "done"

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    result = await retry_async(flaky, operation="test", max_attempts=3, sleep=fake_sleep)

    assert result == "done"
    assert len(attempts) == 3
    assert len(sleeps) == 2


@pytest.mark.asyncio
async def test_retry_stops_on_permanent_error():
    attempts = []

    async def invalid():
        attempts.append(True)
        raise ValueError("bad request")

    async def fake_sleep(seconds):
        pass

    with pytest.raises(ValueError):
        await retry_async(
            invalid,
            operation="test",
            max_attempts=5,
            should_retry=lambda exc: isinstance(exc, ConnectionError),
            sleep=fake_sleep,
        )

    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_retry_exhaustion_raises_last_error():
    attempts = []

    async def down():
        attempts.append(True)
        raise ConnectionError(f"attempt {len(attempts)}")

    async def fake_sleep(seconds):
        pass

    with pytest.raises(ConnectionError, match="attempt 4"):
        await retry_async(down, operation="test", max_attempts=4, sleep=fake_sleep)

    assert len(attempts) == 4
