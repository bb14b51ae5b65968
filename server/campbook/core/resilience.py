"""Circuit breaker and retry helpers for outbound provider calls."""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from .observability import metrics_collector

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject calls
    HALF_OPEN = "half_open"  # One trial call allowed


_STATE_GAUGE = {
    CircuitState.CLOSED: 0,
    CircuitState.OPEN: 1,
    CircuitState.HALF_OPEN: 2,
}


class CircuitOpenError(Exception):
    """Raised instead of calling a provider while its circuit is open."""

    def __init__(self, name: str, retry_after: float):
        super().__init__(f"Circuit {name} is OPEN")
        self.name = name
        self.retry_after = retry_after


@dataclass
class CircuitBreaker:
    """
    Circuit breaker for protecting calls to an external provider.

    Usage:
        breaker = CircuitBreaker(name="stripe", failure_threshold=5)

        try:
            result = await breaker.call(create_session, booking)
        except CircuitOpenError:
            # Fail fast, caller retries later

    Only exceptions accepted by ``is_failure`` count towards opening the
    circuit, so a declined card does not mark the provider as unhealthy.
    """

    name: str
    failure_threshold: int = 5
    cooldown_seconds: float = 30.0
    is_failure: Callable[[BaseException], bool] = lambda exc: True
    monotonic: Callable[[], float] = time.monotonic

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _opened_at: float = field(default=0.0, init=False)
    _trial_in_flight: bool = field(default=False, init=False)

    def __post_init__(self):
        metrics_collector.set_circuit_state(self.name, _STATE_GAUGE[self._state])

    @property
    def state(self) -> CircuitState:
        return self._state

    def _set_state(self, state: CircuitState) -> None:
        previous = self._state
        self._state = state
        metrics_collector.set_circuit_state(self.name, _STATE_GAUGE[state])
        logger.info(
            "Circuit state changed",
            extra={"circuit": self.name, "from_state": previous.value, "to_state": state.value}
        )

    def _before_call(self) -> None:
        if self._state == CircuitState.OPEN:
            elapsed = self.monotonic() - self._opened_at
            if elapsed < self.cooldown_seconds:
                raise CircuitOpenError(self.name, self.cooldown_seconds - elapsed)
            self._set_state(CircuitState.HALF_OPEN)

        if self._state == CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                raise CircuitOpenError(self.name, self.cooldown_seconds)
            self._trial_in_flight = True

    def _record_success(self) -> None:
        self._failure_count = 0
        if self._state != CircuitState.CLOSED:
            self._set_state(CircuitState.CLOSED)

    def _record_failure(self) -> None:
        if self._state == CircuitState.HALF_OPEN:
            self._opened_at = self.monotonic()
            self._set_state(CircuitState.OPEN)
            return

        self._failure_count += 1
        if self._failure_count >= self.failure_threshold:
            self._opened_at = self.monotonic()
            self._set_state(CircuitState.OPEN)
            logger.warning(
                "Circuit opened after consecutive failures",
                extra={"circuit": self.name, "failures": self._failure_count}
            )

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Execute ``func`` through the circuit breaker.

        Raises:
            CircuitOpenError: If the circuit is open and not ready for a trial call
        """
        self._before_call()
        try:
            result = await func(*args, **kwargs)
        except Exception as exc:
            if self.is_failure(exc):
                self._record_failure()
            elif self._state == CircuitState.HALF_OPEN:
                # The provider answered, it is reachable again
                self._record_success()
            raise
        finally:
            self._trial_in_flight = False

        self._record_success()
        return result

    def reset(self) -> None:
        """Manually reset the circuit breaker."""
        self._failure_count = 0
        self._trial_in_flight = False
        if self._state != CircuitState.CLOSED:
            self._set_state(CircuitState.CLOSED)


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Exponential backoff with full jitter for the given zero-based attempt."""
    return random.uniform(0, min(maximum, base * (2 ** attempt)))


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    operation: str,
    max_attempts: int = 3,
    backoff_base: float = 0.5,
    backoff_max: float = 8.0,
    should_retry: Callable[[BaseException], bool] = lambda exc: True,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Call ``func`` until it succeeds, retrying transient failures.

    Args:
        func: Zero-argument coroutine factory; called once per attempt
        operation: Name used in logs
        max_attempts: Total attempts including the first
        backoff_base: Delay cap for the first retry
        backoff_max: Upper bound for any single delay
        should_retry: Predicate selecting which exceptions are transient
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        Result of the first successful attempt

    Raises:
        The last exception once attempts are exhausted, or the first
        non-retryable exception.
    """
    last_exception: Optional[BaseException] = None

    for attempt in range(max_attempts):
        try:
            return await func()
        except Exception as exc:
            last_exception = exc
            if not should_retry(exc) or attempt == max_attempts - 1:
                break
            wait_time = backoff_delay(attempt, backoff_base, backoff_max)
            logger.warning(
                "Provider call failed - retrying",
                extra={
                    "operation": operation,
                    "attempt": attempt + 1,
                    "max_attempts": max_attempts,
                    "wait_seconds": round(wait_time, 3),
                    "error": str(exc),
                }
            )
            await sleep(wait_time)

    logger.error(
        "Provider call failed",
        extra={"operation": operation, "attempts": attempt + 1, "error": str(last_exception)}
    )
    raise last_exception
