"""Upstream HTTP client: failure classification and timeouts."""
from __future__ import annotations

import asyncio

import httpx
import pytest

from shared.errors import UpstreamError
from shared.models.enums import FailureKind
from shared.utils.http_client import UpstreamHTTPClient


async def _client(handler, timeout_s: float = 2.0) -> UpstreamHTTPClient:
    client = UpstreamHTTPClient(
        "test", "https://upstream.test/api", timeout_s=timeout_s, transport=httpx.MockTransport(handler)
    )
    await client.start()
    return client


class TestSuccess:
    @pytest.mark.asyncio
    async def test_returns_document_with_timing(self) -> None:
        client = await _client(lambda request: httpx.Response(200, json={"rounds": []}))
        try:
            doc = await client.get("/broadcast/abc")
        finally:
            await client.close()
        assert doc.url == "https://upstream.test/api/broadcast/abc"
        assert doc.status == 200
        assert doc.elapsed_ms >= 0
        assert doc.json() == {"rounds": []}

    @pytest.mark.asyncio
    async def test_sends_user_agent(self) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("user-agent", ""))
            return httpx.Response(200, text="ok")

        client = await _client(handler)
        try:
            await client.get("ping")
        finally:
            await client.close()
        assert seen and seen[0].startswith("chessview-broadcast")

    def test_absolute_urls_pass_through(self) -> None:
        client = UpstreamHTTPClient("test", "https://upstream.test/api")
        assert client.url_for("https://other.test/x.zip") == "https://other.test/x.zip"
        assert client.url_for("round/1.pgn") == "https://upstream.test/api/round/1.pgn"


class TestFailureClassification:
    @pytest.mark.asyncio
    async def test_http_error_status(self) -> None:
        client = await _client(lambda request: httpx.Response(503))
        try:
            with pytest.raises(UpstreamError) as info:
                await client.get("/x")
        finally:
            await client.close()
        assert info.value.kind == FailureKind.HTTP_STATUS
        assert info.value.status == 503

    @pytest.mark.asyncio
    async def test_connect_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("name resolution failed", request=request)

        client = await _client(handler)
        try:
            with pytest.raises(UpstreamError) as info:
                await client.get("/x")
        finally:
            await client.close()
        assert info.value.kind == FailureKind.CONNECT

    @pytest.mark.asyncio
    async def test_read_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        client = await _client(handler)
        try:
            with pytest.raises(UpstreamError) as info:
                await client.get("/x")
        finally:
            await client.close()
        assert info.value.kind == FailureKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_hard_timeout_aborts_hanging_call(self) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(5)
            return httpx.Response(200)

        client = await _client(handler, timeout_s=0.05)
        try:
            with pytest.raises(UpstreamError) as info:
                await client.get("/x")
        finally:
            await client.close()
        assert info.value.kind == FailureKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_other_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.RemoteProtocolError("peer closed", request=request)

        client = await _client(handler)
        try:
            with pytest.raises(UpstreamError) as info:
                await client.get("/x")
        finally:
            await client.close()
        assert info.value.kind == FailureKind.TRANSPORT

    @pytest.mark.asyncio
    async def test_invalid_json_is_invalid_payload(self) -> None:
        client = await _client(lambda request: httpx.Response(200, text="<html>"))
        try:
            doc = await client.get("/x")
        finally:
            await client.close()
        with pytest.raises(UpstreamError) as info:
            doc.json()
        assert info.value.kind == FailureKind.INVALID_PAYLOAD

    @pytest.mark.asyncio
    async def test_get_before_start_is_a_programming_error(self) -> None:
        client = UpstreamHTTPClient("test", "https://upstream.test")
        with pytest.raises(RuntimeError):
            await client.get("/x")
