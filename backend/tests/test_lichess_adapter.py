"""Broadcast-REST adapter against a mocked Lichess broadcast API."""
from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from ingest.providers.lichess_broadcast import LichessBroadcastAdapter, select_active_round
from shared.config import TournamentSource
from shared.models.domain import RoundMeta
from shared.models.enums import BoardStatus, FailureKind, GameResult, ProviderName, Side
from shared.utils.http_client import UpstreamHTTPClient

from tests.conftest import RoutedTransport

NOW_MS = 1_700_000_200_000

TOURNAMENT = {
    "tour": {"id": "tata26", "name": "Tata Steel Masters 2026", "slug": "tata-steel-masters-2026"},
    "rounds": [
        {"id": "r1", "name": "Round 1", "slug": "round-1", "startsAt": 1_700_000_000_000},
        {"id": "r2", "name": "Round 2", "slug": "round-2", "startsAt": 1_700_000_100_000},
        {"id": "r3", "name": "Round 3", "slug": "round-3", "startsAt": 1_900_000_000_000},
    ],
}

ROUND_2_PGN = """[Event "Tata Steel Masters 2026"]
[Round "2.2"]
[Board "2"]
[White "Giri, Anish"]
[Black "Firouzja, Alireza"]
[WhiteElo "2745"]
[WhiteTitle "GM"]
[Result "*"]

1. d4 {[%clk 1:40:00]} Nf6 {[%clk 1:39:50]} 2. c4 {[%clk 1:39:30]} *

[Event "Tata Steel Masters 2026"]
[Round "2.1"]
[Board "1"]
[White "Gukesh D"]
[Black "Praggnanandhaa R"]
[Result "1-0"]

1. e4 e5 2. Nf3 Nc6 1-0
"""

ROUND_1_PGN = """[Event "Tata Steel Masters 2026"]
[White "Wei, Yi"]
[Black "Abdusattorov, Nodirbek"]
[Result "*"]

*
"""

TOUR_PATH = "/api/broadcast/tata26"
R1_PATH = "/api/broadcast/round/r1.pgn"
R2_PATH = "/api/broadcast/round/r2.pgn"

SOURCE = TournamentSource(provider=ProviderName.LICHESS_BROADCAST, upstream_id="tata26")


@pytest.fixture
def upstream() -> RoutedTransport:
    return RoutedTransport({TOUR_PATH: TOURNAMENT, R1_PATH: ROUND_1_PGN, R2_PATH: ROUND_2_PGN})


@pytest.fixture
def adapter(upstream: RoutedTransport) -> LichessBroadcastAdapter:
    client = UpstreamHTTPClient("lichess_broadcast", "https://lichess.test", transport=upstream.transport)
    return LichessBroadcastAdapter(
        client, tournament_ttl_ms=20_000, round_ttl_ms=4_000, now_ms=lambda: NOW_MS
    )


class TestSelectActiveRound:
    ROUNDS = [
        RoundMeta(round_id="a", starts_at_ms=100),
        RoundMeta(round_id="b", starts_at_ms=200),
        RoundMeta(round_id="c", starts_at_ms=300),
    ]

    def test_latest_started_round(self) -> None:
        assert select_active_round(self.ROUNDS, 250) == ("b", 2)

    def test_first_round_when_nothing_started(self) -> None:
        assert select_active_round(self.ROUNDS, 50) == ("a", 1)

    def test_override_wins(self) -> None:
        assert select_active_round(self.ROUNDS, 250, override="c") == ("c", 3)

    def test_empty_listing(self) -> None:
        assert select_active_round([], 250) == (None, None)


class TestFetchRoundSnapshot:
    @pytest.mark.asyncio
    async def test_current_round_boards(self, adapter: LichessBroadcastAdapter) -> None:
        await adapter.start()
        try:
            result = await adapter.fetch_round_snapshot("tata-steel-2026", None, SOURCE)
        finally:
            await adapter.close()

        assert result.success
        snapshot = result.snapshot
        assert snapshot.round == 2
        assert snapshot.round_id == "r2"
        assert snapshot.round_name == "Round 2"
        assert [b.board_number for b in snapshot.boards] == [1, 2]

        first, second = snapshot.boards
        assert first.white.name == "Gukesh D"
        assert first.status == BoardStatus.FINAL
        assert first.result == GameResult.WHITE_WIN
        assert first.moves == ["e4", "e5", "Nf3", "Nc6"]

        assert second.status == BoardStatus.LIVE
        assert second.white.title == "GM" and second.white.rating == 2745
        assert second.moves == ["d4", "Nf6", "c4"]
        assert second.clock.side_to_move == Side.BLACK
        assert second.clock.white_ms == 5_970_000
        assert second.clock.black_ms == 5_990_000
        assert second.source == ProviderName.LICHESS_BROADCAST

        assert snapshot.diagnostics.counts["boards"] == 2
        assert not snapshot.diagnostics.cache_hit

    @pytest.mark.asyncio
    async def test_second_fetch_is_served_from_cache(
        self, adapter: LichessBroadcastAdapter, upstream: RoutedTransport
    ) -> None:
        await adapter.start()
        try:
            await adapter.fetch_round_snapshot("tata-steel-2026", 2, SOURCE)
            again = await adapter.fetch_round_snapshot("tata-steel-2026", 2, SOURCE)
        finally:
            await adapter.close()
        assert upstream.count(TOUR_PATH) == 1
        assert upstream.count(R2_PATH) == 1
        assert again.snapshot.diagnostics.cache_hit

    @pytest.mark.asyncio
    async def test_concurrent_fetches_share_upstream_calls(self) -> None:
        bodies = {TOUR_PATH: json.dumps(TOURNAMENT), R2_PATH: ROUND_2_PGN}
        hits: dict[str, int] = {}

        async def slow(request: httpx.Request) -> httpx.Response:
            path = request.url.path
            hits[path] = hits.get(path, 0) + 1
            await asyncio.sleep(0.01)
            if path not in bodies:
                return httpx.Response(404)
            return httpx.Response(200, text=bodies[path])

        client = UpstreamHTTPClient(
            "lichess_broadcast", "https://lichess.test", transport=httpx.MockTransport(slow)
        )
        adapter = LichessBroadcastAdapter(
            client, tournament_ttl_ms=20_000, round_ttl_ms=4_000, now_ms=lambda: NOW_MS
        )
        await adapter.start()
        try:
            results = await asyncio.gather(
                *(adapter.fetch_round_snapshot("tata-steel-2026", 2, SOURCE) for _ in range(5))
            )
        finally:
            await adapter.close()

        assert all(r.success and len(r.snapshot.boards) == 2 for r in results)
        assert hits[TOUR_PATH] == 1
        assert hits[R2_PATH] == 1

    @pytest.mark.asyncio
    async def test_round_id_override(self, adapter: LichessBroadcastAdapter) -> None:
        await adapter.start()
        try:
            result = await adapter.fetch_round_snapshot("tata-steel-2026", None, SOURCE, round_id="r1")
        finally:
            await adapter.close()
        snapshot = result.snapshot
        assert snapshot.round == 1
        assert snapshot.round_id == "r1"
        board = snapshot.board(1)
        assert board is not None
        assert board.white.name == "Wei, Yi"
        assert board.moves == []

    @pytest.mark.asyncio
    async def test_unlisted_round_gives_empty_snapshot(self, adapter: LichessBroadcastAdapter) -> None:
        await adapter.start()
        try:
            result = await adapter.fetch_round_snapshot("tata-steel-2026", 9, SOURCE)
        finally:
            await adapter.close()
        assert result.success
        assert result.snapshot.boards == []
        assert "round not listed by upstream" in result.snapshot.diagnostics.notes

    @pytest.mark.asyncio
    async def test_upstream_failure_is_structured(self, upstream: RoutedTransport) -> None:
        upstream.routes[TOUR_PATH] = 502
        client = UpstreamHTTPClient("lichess_broadcast", "https://lichess.test", transport=upstream.transport)
        adapter = LichessBroadcastAdapter(client, now_ms=lambda: NOW_MS)
        await adapter.start()
        try:
            result = await adapter.fetch_round_snapshot("tata-steel-2026", 1, SOURCE)
        finally:
            await adapter.close()
        assert not result.success
        assert result.snapshot is None
        assert result.failure.kind == FailureKind.HTTP_STATUS
        assert result.failure.status == 502

    @pytest.mark.asyncio
    async def test_connection_failure_is_structured(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client = UpstreamHTTPClient(
            "lichess_broadcast", "https://lichess.test", transport=httpx.MockTransport(refuse)
        )
        adapter = LichessBroadcastAdapter(client, now_ms=lambda: NOW_MS)
        await adapter.start()
        try:
            result = await adapter.fetch_round_snapshot("tata-steel-2026", None, SOURCE)
        finally:
            await adapter.close()
        assert result.failure.kind == FailureKind.CONNECT
