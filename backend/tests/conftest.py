"""Shared fixtures: fake clocks, routed mock transports and isolated settings."""
from __future__ import annotations

import json
from typing import Any, Callable, Union

import httpx
import pytest

from shared.config import Settings

Route = Union[Callable[[httpx.Request], httpx.Response], dict[str, Any], str, bytes, int]


class FakeClock:
    """Manually advanced millisecond clock."""

    def __init__(self, now: int = 0) -> None:
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class RoutedTransport:
    """
    ``httpx.MockTransport`` keyed on URL path.

    A route value may be a dict (JSON body), str/bytes (raw body), an int
    (bare status code) or a handler returning an ``httpx.Response``.
    Every request is recorded in ``calls``.
    """

    def __init__(self, routes: dict[str, Route] | None = None) -> None:
        self.routes: dict[str, Route] = dict(routes or {})
        self.calls: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def count(self, path: str) -> int:
        return sum(1 for request in self.calls if request.url.path == path)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        route = self.routes.get(request.url.path)
        if route is None:
            return httpx.Response(404, text="not found")
        if callable(route):
            return route(request)
        if isinstance(route, int):
            return httpx.Response(route)
        if isinstance(route, dict):
            return httpx.Response(200, content=json.dumps(route).encode(), headers={"content-type": "application/json"})
        if isinstance(route, str):
            return httpx.Response(200, text=route)
        return httpx.Response(200, content=route)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(1_000)


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, tournaments={}, live_watch=[])
