"""
Async HTTP client wrapper for upstream broadcast providers.
Adds a hard timeout, failure classification and per-request metrics.
No retries: the caller's next poll cycle is the retry.
"""
from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from shared.config import get_settings
from shared.errors import UpstreamError
from shared.models.enums import FailureKind
from shared.utils.logging import get_logger
from shared.utils.metrics import UPSTREAM_LATENCY, UPSTREAM_REQUESTS

logger = get_logger(__name__)


@dataclass(frozen=True)
class FetchedDocument:
    """Raw upstream body plus what diagnostics need to know about the call."""

    url: str
    status: int
    elapsed_ms: float
    content: bytes

    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        try:
            return json.loads(self.content)
        except ValueError as exc:
            raise UpstreamError(
                FailureKind.INVALID_PAYLOAD, self.url, f"invalid JSON: {exc}", self.status
            ) from exc


class UpstreamHTTPClient:
    """
    Async HTTP client for one upstream provider.
    Every failure is raised as ``UpstreamError`` with a ``FailureKind`` tag.
    """

    def __init__(
        self,
        provider_name: str,
        base_url: str = "",
        headers: dict[str, str] | None = None,
        timeout_s: float | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        settings = get_settings()
        self._provider = provider_name
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_s or settings.upstream_timeout_s
        self._default_headers = {"User-Agent": settings.user_agent, **(headers or {})}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def provider(self) -> str:
        return self._provider

    async def start(self) -> None:
        """Initialize the underlying httpx client."""
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._default_headers,
            timeout=httpx.Timeout(self._timeout, connect=5.0),
            follow_redirects=True,
            limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
            transport=self._transport,
        )

    async def close(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def url_for(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self._base_url}/{path.lstrip('/')}"

    async def get(self, path: str, params: dict[str, Any] | None = None) -> FetchedDocument:
        """
        GET ``path`` (relative to base_url, or absolute) under a hard timeout.

        Raises:
            UpstreamError: classified as timeout, connect, http_status or transport.
        """
        if not self._client:
            raise RuntimeError("UpstreamHTTPClient not started. Call start() first.")

        url = self.url_for(path)
        start_time = time.perf_counter()
        status = "error"
        try:
            resp = await asyncio.wait_for(
                self._client.get(url, params=params), timeout=self._timeout
            )
            status = str(resp.status_code)
            if resp.status_code >= 400:
                logger.warning(
                    "upstream_http_error",
                    provider=self._provider,
                    url=url,
                    status=resp.status_code,
                )
                raise UpstreamError(
                    FailureKind.HTTP_STATUS, url, f"HTTP {resp.status_code}", resp.status_code
                )
            elapsed_ms = (time.perf_counter() - start_time) * 1000
            logger.debug(
                "upstream_request_success",
                provider=self._provider,
                url=url,
                status=resp.status_code,
                latency_ms=round(elapsed_ms, 2),
            )
            return FetchedDocument(
                url=url, status=resp.status_code, elapsed_ms=elapsed_ms, content=resp.content
            )

        except (asyncio.TimeoutError, httpx.TimeoutException) as exc:
            status = "timeout"
            logger.warning("upstream_timeout", provider=self._provider, url=url)
            raise UpstreamError(FailureKind.TIMEOUT, url, f"timed out after {self._timeout}s") from exc

        except httpx.ConnectError as exc:
            status = "connect"
            logger.warning("upstream_connect_error", provider=self._provider, url=url, error=str(exc))
            raise UpstreamError(FailureKind.CONNECT, url, str(exc) or "connection failed") from exc

        except httpx.HTTPError as exc:
            status = "transport"
            logger.warning("upstream_transport_error", provider=self._provider, url=url, error=str(exc))
            raise UpstreamError(FailureKind.TRANSPORT, url, str(exc) or type(exc).__name__) from exc

        finally:
            UPSTREAM_REQUESTS.labels(provider=self._provider, status=status).inc()
            UPSTREAM_LATENCY.labels(provider=self._provider).observe(time.perf_counter() - start_time)
