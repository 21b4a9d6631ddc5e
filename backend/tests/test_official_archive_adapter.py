"""Archive adapter: round file selection and deterministic board numbering."""
from __future__ import annotations

import io
import zipfile

import pytest

from ingest.providers.official_archive import (
    OfficialArchiveAdapter,
    number_boards,
    pairing_key,
    pick_round_file,
    rounds_in_bundle,
    unpack_bundle,
)
from notation.headers import read_games
from shared.config import TournamentSource
from shared.errors import UpstreamError
from shared.models.enums import BoardStatus, FailureKind, GameResult, ProviderName
from shared.utils.http_client import UpstreamHTTPClient

from tests.conftest import RoutedTransport

ARCHIVE_URL = "https://archive.test/files/cup2025.zip"
PATTERN = r"(?:^|/)round{round}game[^/]*/games\.pgn$"

SOURCE = TournamentSource(provider=ProviderName.OFFICIAL_ARCHIVE, archive_url=ARCHIVE_URL)


def pgn(white: str, black: str, moves: str = "1. e4 e5", result: str = "*") -> str:
    return (
        f'[Event "FIDE World Cup 2025"]\n[White "{white}"]\n[Black "{black}"]\n'
        f'[Result "{result}"]\n\n{moves} {result}\n'
    )


ROUND_1_FULL = "\n".join(
    [
        pgn("Nakamura, Hikaru", "Aronian, Levon", "1. d4 d5 2. c4", "*"),
        pgn("Carlsen, Magnus", "Anand, Viswanathan", "1. e4 e5 2. Nf3 Nc6 3. Bb5", "1-0"),
        pgn("Ding, Liren", "Caruana, Fabiano", "", "*"),
    ]
)
ROUND_1_PARTIAL = pgn("Carlsen, Magnus", "Anand, Viswanathan", "1. e4", "*")
ROUND_2 = pgn("Firouzja, Alireza", "Giri, Anish", "1. c4 e5", "1/2-1/2")


def make_bundle(entries: dict[str, str]) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, text in entries.items():
            archive.writestr(name, text)
    return buffer.getvalue()


BUNDLE = make_bundle(
    {
        "cup2025/round1game1/games.pgn": ROUND_1_PARTIAL,
        "cup2025/round1game2/games.pgn": ROUND_1_FULL,
        "cup2025/round2game1/games.pgn": ROUND_2,
        "cup2025/readme.txt": "FIDE World Cup 2025 games",
    }
)


@pytest.fixture
def upstream() -> RoutedTransport:
    return RoutedTransport({"/files/cup2025.zip": BUNDLE})


def make_adapter(upstream: RoutedTransport) -> OfficialArchiveAdapter:
    return OfficialArchiveAdapter(
        UpstreamHTTPClient("official_archive", transport=upstream.transport),
        bundle_ttl_ms=600_000,
        round_ttl_ms=600_000,
        round_path_pattern=PATTERN,
    )


class TestBundleHelpers:
    def test_pairing_key_is_order_independent(self) -> None:
        assert pairing_key("Carlsen, Magnus", "Anand, Viswanathan") == pairing_key(
            "Anand, Viswanathan", "Carlsen, Magnus"
        )
        assert pairing_key("B", "a") == "a__b"

    def test_rounds_in_bundle(self) -> None:
        bundle = unpack_bundle(BUNDLE, ARCHIVE_URL)
        assert rounds_in_bundle(bundle, PATTERN) == [1, 2]

    def test_most_games_wins(self) -> None:
        bundle = unpack_bundle(BUNDLE, ARCHIVE_URL)
        path, _, candidates = pick_round_file(bundle, 1, PATTERN)
        assert path == "cup2025/round1game2/games.pgn"
        assert candidates == 2

    def test_ties_go_to_smaller_path(self) -> None:
        bundle = unpack_bundle(
            make_bundle(
                {
                    "b/round3gameB/games.pgn": ROUND_2,
                    "a/round3gameA/games.pgn": ROUND_2,
                }
            ),
            ARCHIVE_URL,
        )
        path, _, _ = pick_round_file(bundle, 3, PATTERN)
        assert path == "a/round3gameA/games.pgn"

    def test_round_10_does_not_match_round_1(self) -> None:
        bundle = unpack_bundle(make_bundle({"round10game1/games.pgn": ROUND_2}), ARCHIVE_URL)
        path, _, candidates = pick_round_file(bundle, 1, PATTERN)
        assert path is None and candidates == 0

    def test_numbering_ignores_file_order(self) -> None:
        forward = [g.white.name for _, g in number_boards(read_games(ROUND_1_FULL))]
        reversed_doc = "\n".join(
            [
                pgn("Ding, Liren", "Caruana, Fabiano"),
                pgn("Carlsen, Magnus", "Anand, Viswanathan"),
                pgn("Nakamura, Hikaru", "Aronian, Levon"),
            ]
        )
        backward = [g.white.name for _, g in number_boards(read_games(reversed_doc))]
        assert forward == backward == ["Carlsen, Magnus", "Nakamura, Hikaru", "Ding, Liren"]

    def test_bad_zip_is_invalid_payload(self) -> None:
        with pytest.raises(UpstreamError) as info:
            unpack_bundle(b"not a zip", ARCHIVE_URL)
        assert info.value.kind == FailureKind.INVALID_PAYLOAD


class TestFetchRoundSnapshot:
    @pytest.mark.asyncio
    async def test_round_boards_numbered_by_pairing_key(self, upstream: RoutedTransport) -> None:
        adapter = make_adapter(upstream)
        await adapter.start()
        try:
            result = await adapter.fetch_round_snapshot("worldcup2025", 1, SOURCE)
        finally:
            await adapter.close()

        assert result.success
        snapshot = result.snapshot
        assert snapshot.round_id == "cup2025/round1game2/games.pgn"
        names = [(b.board_number, b.white.name) for b in snapshot.boards]
        assert names == [(1, "Carlsen, Magnus"), (2, "Nakamura, Hikaru"), (3, "Ding, Liren")]

        carlsen, nakamura, ding = snapshot.boards
        assert carlsen.status == BoardStatus.FINAL
        assert carlsen.result == GameResult.WHITE_WIN
        assert carlsen.moves == ["e4", "e5", "Nf3", "Nc6", "Bb5"]
        assert nakamura.status == BoardStatus.LIVE
        assert ding.status == BoardStatus.SCHEDULED
        assert "selected cup2025/round1game2/games.pgn" in snapshot.diagnostics.notes

    @pytest.mark.asyncio
    async def test_numbering_is_stable_across_adapters(self, upstream: RoutedTransport) -> None:
        numbering = []
        for _ in range(2):
            adapter = make_adapter(upstream)
            await adapter.start()
            try:
                result = await adapter.fetch_round_snapshot("worldcup2025", 1, SOURCE)
            finally:
                await adapter.close()
            numbering.append([(b.board_number, b.white.name, b.black.name) for b in result.snapshot.boards])
        assert numbering[0] == numbering[1]

    @pytest.mark.asyncio
    async def test_bundle_downloaded_once_for_many_rounds(self, upstream: RoutedTransport) -> None:
        adapter = make_adapter(upstream)
        await adapter.start()
        try:
            await adapter.fetch_round_snapshot("worldcup2025", 1, SOURCE)
            second = await adapter.fetch_round_snapshot("worldcup2025", 2, SOURCE)
            again = await adapter.fetch_round_snapshot("worldcup2025", 2, SOURCE)
        finally:
            await adapter.close()
        assert upstream.count("/files/cup2025.zip") == 1
        assert second.snapshot.boards[0].result == GameResult.DRAW
        assert not second.snapshot.diagnostics.cache_hit
        assert again.snapshot.diagnostics.cache_hit

    @pytest.mark.asyncio
    async def test_current_round_is_highest_in_bundle(self, upstream: RoutedTransport) -> None:
        adapter = make_adapter(upstream)
        await adapter.start()
        try:
            result = await adapter.fetch_round_snapshot("worldcup2025", None, SOURCE)
        finally:
            await adapter.close()
        assert result.snapshot.round == 2

    @pytest.mark.asyncio
    async def test_missing_round_gives_empty_snapshot(self, upstream: RoutedTransport) -> None:
        adapter = make_adapter(upstream)
        await adapter.start()
        try:
            result = await adapter.fetch_round_snapshot("worldcup2025", 7, SOURCE)
        finally:
            await adapter.close()
        assert result.success
        assert result.snapshot.boards == []
        assert "no games file for round 7 in archive" in result.snapshot.diagnostics.notes

    @pytest.mark.asyncio
    async def test_corrupt_bundle_is_structured_failure(self, upstream: RoutedTransport) -> None:
        upstream.routes["/files/cup2025.zip"] = b"PK-not-really"
        adapter = make_adapter(upstream)
        await adapter.start()
        try:
            result = await adapter.fetch_round_snapshot("worldcup2025", 1, SOURCE)
        finally:
            await adapter.close()
        assert not result.success
        assert result.failure.kind == FailureKind.INVALID_PAYLOAD

    def test_validate_source_requires_archive_url(self, upstream: RoutedTransport) -> None:
        adapter = make_adapter(upstream)
        missing = TournamentSource(provider=ProviderName.OFFICIAL_ARCHIVE)
        assert adapter.validate_source("worldcup2025", missing)
        assert adapter.validate_source("worldcup2025", SOURCE) is None
