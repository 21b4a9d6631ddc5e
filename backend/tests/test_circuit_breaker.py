"""Circuit breaker state transitions."""
from __future__ import annotations

import asyncio

import pytest

from ingest.providers.base import trips_breaker
from shared.errors import UpstreamError
from shared.models.enums import FailureKind
from shared.utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpen, CircuitState


class SecondsClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


async def _fail(kind: FailureKind = FailureKind.TIMEOUT, status: int | None = None) -> None:
    raise UpstreamError(kind, "https://upstream.test", status=status)


async def _ok() -> str:
    return "ok"


@pytest.fixture
def seconds() -> SecondsClock:
    return SecondsClock()


@pytest.fixture
def breaker(seconds: SecondsClock) -> CircuitBreaker:
    return CircuitBreaker(
        "test", failure_threshold=2, recovery_timeout_s=30, counts_as_failure=trips_breaker, clock=seconds
    )


@pytest.mark.asyncio
async def test_opens_after_threshold(breaker: CircuitBreaker) -> None:
    for _ in range(2):
        with pytest.raises(UpstreamError):
            await breaker.call(_fail)
    assert breaker.state == CircuitState.OPEN
    with pytest.raises(CircuitBreakerOpen):
        await breaker.call(_ok)


@pytest.mark.asyncio
async def test_half_open_probe_success_closes(breaker: CircuitBreaker, seconds: SecondsClock) -> None:
    for _ in range(2):
        with pytest.raises(UpstreamError):
            await breaker.call(_fail)
    seconds.now += 30
    assert breaker.state == CircuitState.HALF_OPEN
    assert await breaker.call(_ok) == "ok"
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_probe_failure_reopens(breaker: CircuitBreaker, seconds: SecondsClock) -> None:
    for _ in range(2):
        with pytest.raises(UpstreamError):
            await breaker.call(_fail)
    seconds.now += 31
    with pytest.raises(UpstreamError):
        await breaker.call(_fail)
    assert breaker.state == CircuitState.OPEN


@pytest.mark.asyncio
async def test_client_errors_do_not_trip(breaker: CircuitBreaker) -> None:
    for _ in range(5):
        with pytest.raises(UpstreamError):
            await breaker.call(_fail, FailureKind.HTTP_STATUS, 404)
    assert breaker.state == CircuitState.CLOSED


def test_trips_breaker_classification() -> None:
    assert trips_breaker(UpstreamError(FailureKind.CONNECT, "u"))
    assert trips_breaker(UpstreamError(FailureKind.HTTP_STATUS, "u", status=502))
    assert trips_breaker(UpstreamError(FailureKind.HTTP_STATUS, "u", status=429))
    assert not trips_breaker(UpstreamError(FailureKind.HTTP_STATUS, "u", status=404))
    assert not trips_breaker(UpstreamError(FailureKind.INVALID_PAYLOAD, "u"))
    assert not trips_breaker(ValueError("bug"))


@pytest.mark.asyncio
async def test_stale_call_does_not_release_half_open_slot(breaker: CircuitBreaker, seconds: SecondsClock) -> None:
    release = asyncio.Event()

    async def _slow() -> str:
        await release.wait()
        return "late"

    slow = asyncio.create_task(breaker.call(_slow))
    await asyncio.sleep(0)
    for _ in range(2):
        with pytest.raises(UpstreamError):
            await breaker.call(_fail)
    seconds.now += 30

    trial_gate = asyncio.Event()

    async def _trial() -> str:
        await trial_gate.wait()
        return "ok"

    trial = asyncio.create_task(breaker.call(_trial))
    await asyncio.sleep(0)

    release.set()
    assert await slow == "late"
    with pytest.raises(CircuitBreakerOpen):
        await breaker.call(_ok)

    trial_gate.set()
    assert await trial == "ok"
    assert breaker.state == CircuitState.CLOSED
