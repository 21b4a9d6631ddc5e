"""
Abstract base class for upstream broadcast adapters.
Defines the one contract every adapter implements: fetch a round snapshot.
"""
from __future__ import annotations

import abc
import time
from typing import Any, Callable, Optional

from shared.config import TournamentSource
from shared.errors import UpstreamError
from shared.models.domain import RoundSnapshot, UpstreamFailure
from shared.models.enums import FailureKind, ProviderName
from shared.utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpen
from shared.utils.http_client import FetchedDocument, UpstreamHTTPClient
from shared.utils.logging import get_logger
from shared.utils.metrics import ROUND_FETCH_LATENCY, ROUND_FETCHES

logger = get_logger(__name__)


def wall_clock_ms() -> int:
    return int(time.time() * 1000)


def trips_breaker(exc: BaseException) -> bool:
    """Only upstream-side trouble counts against a provider; 4xx and bad payloads do not."""
    if not isinstance(exc, UpstreamError):
        return False
    if exc.kind == FailureKind.HTTP_STATUS:
        return (exc.status or 0) >= 500 or exc.status == 429
    return exc.kind in (FailureKind.TIMEOUT, FailureKind.CONNECT, FailureKind.TRANSPORT)


class RoundFetchResult:
    """Container for an adapter fetch: a snapshot on success, a typed failure otherwise."""

    def __init__(
        self,
        provider: ProviderName,
        success: bool,
        latency_ms: float,
        snapshot: Optional[RoundSnapshot] = None,
        failure: Optional[UpstreamFailure] = None,
    ) -> None:
        self.provider = provider
        self.success = success
        self.latency_ms = latency_ms
        self.snapshot = snapshot
        self.failure = failure


class BaseAdapter(abc.ABC):
    """
    Base class for the three upstream adapters.

    The base class owns the HTTP lifecycle, the per-provider circuit breaker and
    the never-raise wrapper around ``_fetch_round``.
    """

    def __init__(
        self,
        name: ProviderName,
        http_client: UpstreamHTTPClient,
        breaker: Optional[CircuitBreaker] = None,
        now_ms: Callable[[], int] = wall_clock_ms,
    ) -> None:
        self._name = name
        self._http = http_client
        self._breaker = breaker or CircuitBreaker(name.value, counts_as_failure=trips_breaker)
        self._now_ms = now_ms

    @property
    def name(self) -> ProviderName:
        return self._name

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def start(self) -> None:
        """Initialize the adapter HTTP client."""
        await self._http.start()

    async def close(self) -> None:
        """Shutdown the adapter HTTP client."""
        await self._http.close()

    def validate_source(self, slug: str, source: TournamentSource) -> Optional[str]:
        """Return a reason string when ``source`` lacks what this adapter needs."""
        if not source.upstream_id:
            return f"{self._name.value} requires upstream_id"
        return None

    async def fetch_round_snapshot(
        self,
        slug: str,
        round_no: Optional[int],
        source: TournamentSource,
        *,
        round_id: Optional[str] = None,
    ) -> RoundFetchResult:
        """
        Fetch one round of ``slug``; ``round_no=None`` means the current round.

        Never raises: upstream and unexpected errors come back as a failed
        result carrying an ``UpstreamFailure``.
        """
        start = time.perf_counter()
        try:
            snapshot = await self._fetch_round(slug, round_no, source, round_id)
            latency_ms = (time.perf_counter() - start) * 1000
            ROUND_FETCHES.labels(provider=self._name.value, outcome="success").inc()
            return RoundFetchResult(self._name, True, latency_ms, snapshot=snapshot)
        except UpstreamError as exc:
            latency_ms = (time.perf_counter() - start) * 1000
            ROUND_FETCHES.labels(provider=self._name.value, outcome=exc.kind.value).inc()
            logger.warning(
                "round_fetch_failed",
                provider=self._name.value,
                slug=slug,
                round=round_no,
                kind=exc.kind.value,
                url=exc.url,
                error=exc.message,
            )
            failure = UpstreamFailure(
                kind=exc.kind, message=exc.message, url=exc.url, status=exc.status
            )
            return RoundFetchResult(self._name, False, latency_ms, failure=failure)
        except Exception as exc:
            latency_ms = (time.perf_counter() - start) * 1000
            ROUND_FETCHES.labels(provider=self._name.value, outcome="internal").inc()
            logger.exception(
                "round_fetch_error",
                provider=self._name.value,
                slug=slug,
                round=round_no,
                error=str(exc),
            )
            failure = UpstreamFailure(kind=FailureKind.INTERNAL, message=str(exc))
            return RoundFetchResult(self._name, False, latency_ms, failure=failure)
        finally:
            ROUND_FETCH_LATENCY.labels(provider=self._name.value).observe(
                time.perf_counter() - start
            )

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> FetchedDocument:
        """GET through this provider's circuit breaker."""
        try:
            return await self._breaker.call(self._http.get, path, params)
        except CircuitBreakerOpen as exc:
            raise UpstreamError(
                FailureKind.CIRCUIT_OPEN,
                self._http.url_for(path),
                f"circuit open, retry after {exc.retry_after:.0f}s",
            ) from exc

    # ── Abstract methods (each adapter implements these) ────────────────
    @abc.abstractmethod
    async def _fetch_round(
        self,
        slug: str,
        round_no: Optional[int],
        source: TournamentSource,
        round_id: Optional[str],
    ) -> RoundSnapshot:
        """Adapter-specific round fetch; may raise ``UpstreamError``."""
        ...
