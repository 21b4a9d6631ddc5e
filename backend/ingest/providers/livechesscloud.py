"""
Polling-Board adapter (LiveChessCloud pool).

tournament.json + round-N/index.json, then one game-K.json per board fetched
by a bounded worker pool. Only the whole probe is cached; individual game
documents are not.
"""
from __future__ import annotations

import asyncio
import re
from typing import Any, Callable, Optional
from urllib.parse import quote

from ingest.providers.base import BaseAdapter, wall_clock_ms
from notation.clocks import extract_latest_clock_pair, resolve_side_to_move
from notation.headers import (
    normalize_federation,
    normalize_rating,
    normalize_result,
    normalize_title,
)
from notation.pgn import replay_san
from shared.config import TournamentSource, get_settings
from shared.errors import UpstreamError
from shared.models.domain import (
    BoardSnapshot,
    ClockPair,
    PlayerInfo,
    RoundDiagnostics,
    RoundSnapshot,
)
from shared.models.enums import BoardStatus, GameResult, ProviderName, Side
from shared.utils.circuit_breaker import CircuitBreaker
from shared.utils.http_client import UpstreamHTTPClient
from shared.utils.logging import get_logger
from shared.utils.ttl_cache import TTLCache
from shared.utils.worker_pool import run_bounded

logger = get_logger(__name__)

GAME_LIST_KEYS = ("games", "pairings", "boards")

_LCC_RESULTS = {
    "WHITEWIN": GameResult.WHITE_WIN,
    "BLACKWIN": GameResult.BLACK_WIN,
    "DRAW": GameResult.DRAW,
}
_FINISHED_WORDS = ("finished", "final", "done", "ended", "over")
_SCHEDULED_WORDS = ("scheduled", "upcoming", "pending", "notstarted", "not started")
_LIVE_WORDS = ("live", "playing", "ongoing", "started", "inprogress", "in progress")

_MOVE_NUMBER_RE = re.compile(r"^\d+\.(\.\.)?")
_TRAILING_CLOCK_RE = re.compile(r"(?:\d+:\d+(?::\d+)?|\d+\.\d+)$")
_PIECE_OR_FILE_RE = re.compile(r"[a-hKQRNBO]")


def _as_list(value: Any) -> Optional[list[Any]]:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        return list(value.values())
    return None


def extract_games_list(index_json: Any) -> list[Any]:
    if not isinstance(index_json, dict):
        return []
    for container in (index_json, index_json.get("round")):
        if not isinstance(container, dict):
            continue
        for key in GAME_LIST_KEYS:
            games = _as_list(container.get(key))
            if games is not None:
                return games
    return []


def player_from_record(value: Any) -> PlayerInfo:
    if isinstance(value, str):
        return PlayerInfo(name=value.strip())
    if not isinstance(value, dict):
        return PlayerInfo()
    name = ""
    for key in ("name", "player", "fullName", "shortName"):
        if isinstance(value.get(key), str) and value[key].strip():
            name = value[key].strip()
            break
    if not name:
        first = value.get("firstName") or value.get("fname") or value.get("givenName") or ""
        last = value.get("lastName") or value.get("lname") or value.get("familyName") or ""
        name = f"{first} {last}".strip()
    return PlayerInfo(
        name=name,
        title=normalize_title(value.get("title")),
        rating=normalize_rating(value.get("rating", value.get("elo"))),
        federation=normalize_federation(
            value.get("federation") or value.get("country") or value.get("fed")
        ),
    )


def normalize_lcc_result(value: Any) -> Optional[GameResult]:
    if not isinstance(value, str) or not value.strip():
        return None
    return _LCC_RESULTS.get(value.strip().upper()) or normalize_result(value)


def board_status(
    status: Optional[str],
    result: Optional[GameResult],
    move_count: int,
    moves_known: bool = True,
) -> BoardStatus:
    """Unknown moves never read as "not started"; only a scheduled status word does."""
    if result is not None and result.is_decided:
        return BoardStatus.FINAL
    word = (status or "").strip().lower()
    if word in _FINISHED_WORDS:
        return BoardStatus.FINAL
    if word in _SCHEDULED_WORDS:
        return BoardStatus.SCHEDULED
    if word in _LIVE_WORDS or not moves_known:
        return BoardStatus.LIVE
    return BoardStatus.LIVE if move_count > 0 else BoardStatus.SCHEDULED


def extract_san_tokens(text: str) -> list[str]:
    """SAN tokens from a move string that may carry clock suffixes like ``e4 5765+12``."""
    cleaned = re.sub(r"\[[^\]]*\]|\{[^}]*\}|\([^)]*\)", " ", text)
    tokens: list[str] = []
    for raw in cleaned.split():
        token = _MOVE_NUMBER_RE.sub("", raw).lstrip(".")
        token = _TRAILING_CLOCK_RE.sub("", token.rstrip("!?"))
        if not token or token in ("1-0", "0-1", "1/2-1/2", "*") or token.isdigit():
            continue
        if token.startswith("0-0"):
            token = token.replace("0-0-0", "O-O-O", 1).replace("0-0", "O-O", 1)
        if not _PIECE_OR_FILE_RE.search(token):
            continue
        tokens.append(token)
    return tokens


def extract_moves(game_json: Any) -> list[str]:
    if not isinstance(game_json, dict):
        return []
    for key in ("moves", "moveList", "pgn", "pgnText", "san"):
        value = game_json.get(key)
        if isinstance(value, str):
            return extract_san_tokens(value)
        if isinstance(value, list):
            moves: list[str] = []
            for item in value:
                if isinstance(item, dict):
                    item = item.get("san") or item.get("move") or item.get("notation")
                if isinstance(item, str):
                    moves.extend(extract_san_tokens(item))
            return moves
    return []


def _clock_value_ms(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    # pool documents report seconds; some mirrors report milliseconds
    return int(value * 1000) if value < 100_000 else int(value)


def clock_from_game(game_json: Any, final_position: Optional[str], move_count: int) -> ClockPair:
    if not isinstance(game_json, dict):
        return ClockPair()
    clock = game_json.get("clock")
    if isinstance(clock, dict) and ("white" in clock or "black" in clock):
        run = str(clock.get("run") or "").lower()
        side = {"white": Side.WHITE, "black": Side.BLACK}.get(run)
        if side is None:
            side = resolve_side_to_move(final_position=final_position, move_count=move_count)
        return ClockPair(
            white_ms=_clock_value_ms(clock.get("white")),
            black_ms=_clock_value_ms(clock.get("black")),
            side_to_move=side,
        )
    text = game_json.get("pgn") if isinstance(game_json.get("pgn"), str) else ""
    return extract_latest_clock_pair(text, final_position=final_position, move_count=move_count)


def current_round_from_tournament(tournament_json: Any) -> int:
    """Last round the pool reports games for; round 1 when nothing is reported."""
    rounds = tournament_json.get("rounds") if isinstance(tournament_json, dict) else None
    current = 1
    for index, entry in enumerate(rounds or []):
        if isinstance(entry, dict) and (entry.get("count") or entry.get("live")):
            current = index + 1
    return current


class LiveChessCloudAdapter(BaseAdapter):
    """Per-board polling with bounded concurrency."""

    def __init__(
        self,
        http_client: UpstreamHTTPClient,
        *,
        probe_cache: Optional[TTLCache[RoundSnapshot]] = None,
        probe_ttl_ms: Optional[int] = None,
        max_concurrency: Optional[int] = None,
        limit: Optional[int] = None,
        breaker: Optional[CircuitBreaker] = None,
        now_ms: Callable[[], int] = wall_clock_ms,
    ) -> None:
        super().__init__(ProviderName.LIVECHESSCLOUD, http_client, breaker, now_ms)
        settings = get_settings()
        self._probe_cache = probe_cache if probe_cache is not None else TTLCache("lcc_probe")
        self._probe_ttl_ms = probe_ttl_ms or settings.lcc_probe_ttl_ms
        self._max_concurrency = max_concurrency or settings.lcc_max_concurrency
        self._limit = limit or settings.lcc_default_limit

    async def _fetch_round(
        self,
        slug: str,
        round_no: Optional[int],
        source: TournamentSource,
        round_id: Optional[str],
    ) -> RoundSnapshot:
        key = (source.upstream_id, round_no, self._limit)
        result = await self._probe_cache.fetch(
            key, self._probe_ttl_ms, lambda: self._probe(slug, round_no, source.upstream_id)
        )
        if not result.hit:
            return result.value
        diagnostics = result.value.diagnostics.model_copy(
            update={"cache_hit": True, "cache_age_ms": result.age_ms}
        )
        return result.value.model_copy(update={"diagnostics": diagnostics})

    async def _probe(self, slug: str, round_no: Optional[int], tournament_id: str) -> RoundSnapshot:
        tid = quote(tournament_id, safe="")
        diagnostics = RoundDiagnostics()
        tournament_path = f"/{tid}/tournament.json"

        if round_no is None:
            tournament_doc = await self._get(tournament_path)
            round_no = current_round_from_tournament(tournament_doc.json())
            diagnostics.urls.append(tournament_doc.url)
            diagnostics.timings_ms["tournament"] = round(tournament_doc.elapsed_ms, 2)
            index_result: Any = await self._safe_get(f"/{tid}/round-{round_no}/index.json")
            tournament_result: Any = tournament_doc
        else:
            tournament_result, index_result = await asyncio.gather(
                self._safe_get(tournament_path),
                self._safe_get(f"/{tid}/round-{round_no}/index.json"),
            )
            if isinstance(tournament_result, UpstreamError) and isinstance(index_result, UpstreamError):
                raise index_result
            if isinstance(tournament_result, UpstreamError):
                diagnostics.notes.append(f"tournament index unavailable: {tournament_result.kind.value}")
            else:
                diagnostics.urls.append(tournament_result.url)
                diagnostics.timings_ms["tournament"] = round(tournament_result.elapsed_ms, 2)

        fetched_at = self._now_ms()
        if isinstance(index_result, UpstreamError):
            diagnostics.notes.append(f"round index unavailable: {index_result.kind.value}")
            return RoundSnapshot(
                tournament_slug=slug,
                round=round_no,
                source=self.name,
                diagnostics=diagnostics,
                fetched_at_ms=fetched_at,
            )

        diagnostics.urls.append(index_result.url)
        diagnostics.timings_ms["round_index"] = round(index_result.elapsed_ms, 2)
        games = extract_games_list(index_result.json())[: max(1, self._limit)]
        descriptors = [self._describe(raw, idx) for idx, raw in enumerate(games)]
        game_timings: list[float] = []
        failures = 0

        async def fetch_board(descriptor: dict[str, Any], idx: int) -> BoardSnapshot:
            nonlocal failures
            path = f"/{tid}/round-{round_no}/game-{quote(descriptor['game_id'], safe='')}.json?poll"
            game_json: Any = None
            try:
                doc = await self._get(path)
                game_timings.append(doc.elapsed_ms)
                game_json = doc.json()
            except UpstreamError as exc:
                failures += 1
                logger.debug("lcc_game_fetch_failed", url=exc.url, kind=exc.kind.value)
            return self._board(descriptor, game_json, fetch_failed=game_json is None)

        boards = await run_bounded(descriptors, self._max_concurrency, fetch_board)

        diagnostics.failures = failures
        diagnostics.timings_ms["games_total"] = round(sum(game_timings), 2)
        diagnostics.timings_ms["games_max"] = round(max(game_timings, default=0.0), 2)
        diagnostics.counts.update(
            games_listed=len(games),
            games_fetched=len(descriptors) - failures,
            games_failed=failures,
            boards=len(boards),
            moves=sum(len(b.moves) for b in boards),
        )
        if failures:
            logger.info("lcc_probe_partial", slug=slug, round=round_no, failed=failures)
        return RoundSnapshot(
            tournament_slug=slug,
            round=round_no,
            round_id=str(round_no),
            source=self.name,
            boards=boards,
            diagnostics=diagnostics,
            fetched_at_ms=fetched_at,
        )

    async def _safe_get(self, path: str) -> Any:
        try:
            return await self._get(path)
        except UpstreamError as exc:
            return exc

    @staticmethod
    def _describe(raw: Any, idx: int) -> dict[str, Any]:
        record = raw if isinstance(raw, dict) else {}
        game_id = record.get("gameId", record.get("id", record.get("game", record.get("no"))))
        board_no = normalize_rating(
            record.get("board", record.get("boardNo", record.get("table", record.get("boardNumber", record.get("no")))))
        )
        return {
            "game_id": str(game_id).strip() if game_id not in (None, "") else str(idx + 1),
            "board_number": board_no or idx + 1,
            "white": player_from_record(record.get("white", record.get("White", record.get("playerWhite")))),
            "black": player_from_record(record.get("black", record.get("Black", record.get("playerBlack")))),
            "status": record.get("status", record.get("state")) or ("live" if record.get("live") else None),
            "result": record.get("result", record.get("score")),
        }

    def _board(self, descriptor: dict[str, Any], game_json: Any, fetch_failed: bool = False) -> BoardSnapshot:
        record = game_json if isinstance(game_json, dict) else {}
        outcome = replay_san(extract_moves(record))
        result = normalize_lcc_result(record.get("result") or descriptor["result"])
        status = record.get("status") or record.get("state") or descriptor["status"]
        final_position = outcome.final_position if outcome.moves else None
        return BoardSnapshot(
            board_number=descriptor["board_number"],
            white=descriptor["white"],
            black=descriptor["black"],
            status=board_status(
                status if isinstance(status, str) else None,
                result,
                len(outcome.moves),
                moves_known=not fetch_failed,
            ),
            result=result,
            moves=outcome.san_moves,
            final_position=final_position,
            clock=clock_from_game(record, final_position, len(outcome.moves)),
            source=self.name,
            fetched_at_ms=self._now_ms(),
            game_id=descriptor["game_id"],
            parse_error=outcome.error if record else None,
            fetch_failed=fetch_failed,
        )
