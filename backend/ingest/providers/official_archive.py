"""
Archive adapter: one ZIP for the whole event, one ``games.pgn`` per round.

The archive carries no board numbers. Games are ordered by pairing key (both
player names, lower-cased and sorted) and then by position in the file, and
numbered 1..N in that order.
"""
from __future__ import annotations

import hashlib
import io
import re
import zipfile
from dataclasses import dataclass
from typing import Callable, Optional

from ingest.providers.base import BaseAdapter, wall_clock_ms
from notation.headers import ParsedGame, read_games, split_games
from shared.config import TournamentSource, get_settings
from shared.errors import UpstreamError
from shared.models.domain import BoardSnapshot, RoundDiagnostics, RoundSnapshot
from shared.models.enums import BoardStatus, FailureKind, ProviderName
from shared.utils.circuit_breaker import CircuitBreaker
from shared.utils.http_client import UpstreamHTTPClient
from shared.utils.logging import get_logger
from shared.utils.ttl_cache import TTLCache

logger = get_logger(__name__)


@dataclass(frozen=True)
class ArchiveBundle:
    url: str
    digest: str
    entries: dict[str, bytes]
    elapsed_ms: float


@dataclass(frozen=True)
class ArchiveRound:
    round: int
    path: Optional[str]
    candidate_files: int
    games: list[ParsedGame]


def pairing_key(white: str, black: str) -> str:
    names = sorted((name or "?").strip().lower() or "?" for name in (white, black))
    return "__".join(names)


def archive_status(game: ParsedGame) -> BoardStatus:
    if game.result is not None and game.result.is_decided:
        return BoardStatus.FINAL
    return BoardStatus.LIVE if game.outcome.moves else BoardStatus.SCHEDULED


def unpack_bundle(content: bytes, url: str, elapsed_ms: float = 0.0) -> ArchiveBundle:
    try:
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            entries = {
                info.filename.replace("\\", "/"): archive.read(info)
                for info in archive.infolist()
                if not info.is_dir()
            }
    except (zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
        raise UpstreamError(FailureKind.INVALID_PAYLOAD, url, f"bad archive: {exc}") from exc
    return ArchiveBundle(
        url=url,
        digest=hashlib.sha256(content).hexdigest(),
        entries=entries,
        elapsed_ms=elapsed_ms,
    )


def round_pattern(template: str, round_no: Optional[int]) -> re.Pattern[str]:
    fill = str(round_no) if round_no is not None else r"(\d+)"
    return re.compile(template.replace("{round}", fill), re.IGNORECASE)


def rounds_in_bundle(bundle: ArchiveBundle, template: str) -> list[int]:
    pattern = round_pattern(template, None)
    found = set()
    for path in bundle.entries:
        match = pattern.search(path)
        if match:
            found.add(int(match.group(1)))
    return sorted(found)


def pick_round_file(
    bundle: ArchiveBundle, round_no: int, template: str
) -> tuple[Optional[str], str, int]:
    """
    Among entries matching the round, the one with the most games wins;
    equal counts go to the lexicographically smaller path.

    Returns ``(path, text, candidate_count)``; ``path`` is None when nothing matches.
    """
    pattern = round_pattern(template, round_no)
    candidates = sorted(path for path in bundle.entries if pattern.search(path))
    best: Optional[tuple[int, str, str]] = None
    for path in candidates:
        text = bundle.entries[path].decode("utf-8", errors="replace").strip()
        if not text:
            continue
        count = len(split_games(text))
        if best is None or count > best[0]:
            best = (count, path, text)
    if best is None:
        return None, "", len(candidates)
    return best[1], best[2], len(candidates)


def number_boards(games: list[ParsedGame]) -> list[tuple[int, ParsedGame]]:
    ordered = sorted(
        games, key=lambda g: (pairing_key(g.white.name, g.black.name), g.index)
    )
    return [(number, game) for number, game in enumerate(ordered, start=1)]


class OfficialArchiveAdapter(BaseAdapter):
    """Whole-event ZIP download, parsed round by round."""

    def __init__(
        self,
        http_client: UpstreamHTTPClient,
        *,
        bundle_cache: Optional[TTLCache[ArchiveBundle]] = None,
        round_cache: Optional[TTLCache[ArchiveRound]] = None,
        bundle_ttl_ms: Optional[int] = None,
        round_ttl_ms: Optional[int] = None,
        round_path_pattern: Optional[str] = None,
        breaker: Optional[CircuitBreaker] = None,
        now_ms: Callable[[], int] = wall_clock_ms,
    ) -> None:
        super().__init__(ProviderName.OFFICIAL_ARCHIVE, http_client, breaker, now_ms)
        settings = get_settings()
        self._bundle_cache = bundle_cache if bundle_cache is not None else TTLCache("archive_bundle")
        self._round_cache = round_cache if round_cache is not None else TTLCache("archive_round")
        self._bundle_ttl_ms = bundle_ttl_ms or settings.archive_bundle_ttl_ms
        self._round_ttl_ms = round_ttl_ms or settings.archive_round_ttl_ms
        self._pattern = round_path_pattern or settings.archive_round_pattern

    def validate_source(self, slug: str, source: TournamentSource) -> Optional[str]:
        if not source.archive_url:
            return "official_archive requires archive_url"
        return None

    async def _download(self, url: str) -> ArchiveBundle:
        doc = await self._get(url)
        bundle = unpack_bundle(doc.content, doc.url, doc.elapsed_ms)
        logger.info(
            "archive_downloaded",
            url=doc.url,
            entries=len(bundle.entries),
            digest=bundle.digest[:12],
            latency_ms=round(doc.elapsed_ms, 2),
        )
        return bundle

    async def _parse_round(self, bundle: ArchiveBundle, round_no: int) -> ArchiveRound:
        path, text, candidates = pick_round_file(bundle, round_no, self._pattern)
        games = read_games(text) if path else []
        return ArchiveRound(round=round_no, path=path, candidate_files=candidates, games=games)

    async def _fetch_round(
        self,
        slug: str,
        round_no: Optional[int],
        source: TournamentSource,
        round_id: Optional[str],
    ) -> RoundSnapshot:
        url = source.archive_url or ""
        bundle_result = await self._bundle_cache.fetch(
            url, self._bundle_ttl_ms, lambda: self._download(url)
        )
        bundle = bundle_result.value
        if round_no is None:
            available = rounds_in_bundle(bundle, self._pattern)
            round_no = available[-1] if available else 1

        # keyed by digest: a re-downloaded bundle with new bytes is parsed afresh
        round_result = await self._round_cache.fetch(
            (bundle.digest, round_no),
            self._round_ttl_ms,
            lambda: self._parse_round(bundle, round_no),
        )
        parsed = round_result.value

        diagnostics = RoundDiagnostics(
            urls=[bundle.url],
            timings_ms={"bundle": 0.0 if bundle_result.hit else round(bundle.elapsed_ms, 2)},
            counts={"candidate_files": parsed.candidate_files, "games": len(parsed.games)},
            cache_hit=bundle_result.hit and round_result.hit,
            cache_age_ms=bundle_result.age_ms if bundle_result.hit else None,
        )
        if parsed.path is None:
            diagnostics.notes.append(f"no games file for round {round_no} in archive")
        else:
            diagnostics.notes.append(f"selected {parsed.path}")

        fetched_at = self._now_ms()
        boards = [
            BoardSnapshot(
                board_number=number,
                white=game.white,
                black=game.black,
                status=archive_status(game),
                result=game.result,
                moves=game.outcome.san_moves,
                final_position=game.outcome.final_position,
                clock=game.clock,
                source=self.name,
                fetched_at_ms=fetched_at,
                parse_error=game.outcome.error,
            )
            for number, game in number_boards(parsed.games)
        ]
        diagnostics.counts["boards"] = len(boards)
        diagnostics.counts["moves"] = sum(len(b.moves) for b in boards)
        return RoundSnapshot(
            tournament_slug=slug,
            round=round_no,
            round_id=parsed.path,
            source=self.name,
            boards=boards,
            diagnostics=diagnostics,
            fetched_at_ms=fetched_at,
        )
