"""
Circuit breaker for upstream provider calls.

States:
  CLOSED    normal operation, calls pass through
  OPEN      too many consecutive failures, calls fail fast
  HALF_OPEN after the cooldown, one probe call is let through
"""
from __future__ import annotations

import time
from enum import Enum
from typing import Any, Callable, Coroutine, Optional, TypeVar

from shared.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerOpen(Exception):
    """Raised when the circuit is open and calls are being rejected."""

    def __init__(self, name: str, retry_after: float):
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{name}' is OPEN. Retry after {retry_after:.0f}s.")


class CircuitBreaker:
    """
    Async circuit breaker, one per upstream provider.

    Args:
        name: Identifier for logging.
        failure_threshold: Consecutive failures before opening the circuit.
        recovery_timeout_s: Seconds to wait in OPEN state before probing.
        counts_as_failure: Predicate deciding whether an exception should trip
            the breaker. Defaults to every exception.
        clock: Monotonic seconds source, injectable for tests.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout_s: float = 30.0,
        counts_as_failure: Optional[Callable[[BaseException], bool]] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout_s = recovery_timeout_s
        self._counts_as_failure = counts_as_failure or (lambda exc: True)
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: float = 0.0
        self._probe_in_flight = False

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN:
            if self._clock() - self._last_failure_time >= self.recovery_timeout_s:
                return CircuitState.HALF_OPEN
        return self._state

    @property
    def stats(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "success_count": self._success_count,
        }

    async def call(
        self, func: Callable[..., Coroutine[Any, Any, T]], *args: Any, **kwargs: Any
    ) -> T:
        current_state = self.state

        if current_state == CircuitState.OPEN:
            retry_after = self.recovery_timeout_s - (self._clock() - self._last_failure_time)
            raise CircuitBreakerOpen(self.name, max(retry_after, 1.0))

        trial = False
        if current_state == CircuitState.HALF_OPEN:
            if self._probe_in_flight:
                raise CircuitBreakerOpen(self.name, 1.0)
            self._state = CircuitState.HALF_OPEN
            self._probe_in_flight = trial = True

        try:
            result = await func(*args, **kwargs)
        except CircuitBreakerOpen:
            raise
        except Exception as exc:
            if trial or not self._probe_in_flight:
                if self._counts_as_failure(exc):
                    self._on_failure(exc)
                else:
                    self._on_success()
            raise
        finally:
            # only the half-open trial owns the flag; older calls settle nothing meanwhile
            if trial:
                self._probe_in_flight = False
        if trial or not self._probe_in_flight:
            self._on_success()
        return result

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._probe_in_flight = False

    def _on_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info("circuit_breaker_closed", name=self.name)
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count += 1

    def _on_failure(self, exc: BaseException) -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning("circuit_breaker_reopened", name=self.name, error=str(exc))
        elif self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.warning(
                "circuit_breaker_opened",
                name=self.name,
                failures=self._failure_count,
                error=str(exc),
            )
