"""
Broadcast-REST adapter (Lichess broadcast API).

Two upstream calls per round: the tournament document (JSON, rounds and their
start times) and the round PGN (every board of the round in one document).
Both sit behind their own TTL cache with in-flight coalescing.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional
from urllib.parse import quote

from ingest.providers.base import BaseAdapter, wall_clock_ms
from notation.headers import board_number_from_headers, normalize_status, read_games
from shared.config import TournamentSource, get_settings
from shared.models.domain import BoardSnapshot, RoundDiagnostics, RoundMeta, RoundSnapshot
from shared.models.enums import ProviderName
from shared.utils.circuit_breaker import CircuitBreaker
from shared.utils.http_client import FetchedDocument, UpstreamHTTPClient
from shared.utils.logging import get_logger
from shared.utils.ttl_cache import TTLCache

logger = get_logger(__name__)


@dataclass(frozen=True)
class TournamentDocument:
    tournament_id: str
    name: Optional[str]
    slug: Optional[str]
    rounds: list[RoundMeta]
    url: str
    elapsed_ms: float


def _to_epoch_ms(value: Any) -> Optional[int]:
    """Accept ISO strings, epoch seconds or epoch milliseconds."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return int(datetime.fromisoformat(text.replace("Z", "+00:00")).timestamp() * 1000)
        except ValueError:
            try:
                value = float(text)
            except ValueError:
                return None
    if isinstance(value, (int, float)):
        return int(value * 1000) if value < 1e12 else int(value)
    return None


def parse_tournament(payload: Any, fallback_id: str, url: str, elapsed_ms: float) -> TournamentDocument:
    data = payload if isinstance(payload, dict) else {}
    tour = data.get("tour") if isinstance(data.get("tour"), dict) else data
    tour_slug = str(tour.get("slug") or "").strip() or None
    rounds: list[RoundMeta] = []
    for raw in data.get("rounds") or []:
        if not isinstance(raw, dict):
            continue
        round_id = str(raw.get("id") or "").strip()
        if not round_id:
            continue
        round_slug = str(raw.get("slug") or "").strip()
        round_url = str(raw.get("url") or "").strip() or None
        if round_url is None and tour_slug and round_slug:
            round_url = f"https://lichess.org/broadcast/{tour_slug}/{round_slug}/{round_id}"
        rounds.append(
            RoundMeta(
                round_id=round_id,
                name=str(raw.get("name") or "").strip() or f"Round {round_id}",
                starts_at_ms=_to_epoch_ms(
                    raw.get("startsAt", raw.get("startsAtMs", raw.get("startsAtSeconds")))
                ),
                url=round_url,
            )
        )
    return TournamentDocument(
        tournament_id=str(tour.get("id") or "").strip() or fallback_id,
        name=str(tour.get("name") or "").strip() or None,
        slug=tour_slug,
        rounds=rounds,
        url=url,
        elapsed_ms=elapsed_ms,
    )


def select_active_round(
    rounds: list[RoundMeta], now_ms: int, override: Optional[str] = None
) -> tuple[Optional[str], Optional[int]]:
    """
    Pick ``(round_id, 1-based index)``.

    An override wins. Otherwise the latest round that has already started, or the
    first round when none has.
    """
    if override:
        for index, meta in enumerate(rounds):
            if meta.round_id == override:
                return override, index + 1
        return override, None
    if not rounds:
        return None, None
    started = [
        (meta.starts_at_ms, index)
        for index, meta in enumerate(rounds)
        if meta.starts_at_ms is not None and meta.starts_at_ms <= now_ms
    ]
    if not started:
        return rounds[0].round_id, 1
    _, index = max(started)
    return rounds[index].round_id, index + 1


class LichessBroadcastAdapter(BaseAdapter):
    """Tournament JSON + concatenated round PGN."""

    def __init__(
        self,
        http_client: UpstreamHTTPClient,
        *,
        tournament_cache: Optional[TTLCache[TournamentDocument]] = None,
        round_cache: Optional[TTLCache[FetchedDocument]] = None,
        tournament_ttl_ms: Optional[int] = None,
        round_ttl_ms: Optional[int] = None,
        breaker: Optional[CircuitBreaker] = None,
        now_ms: Callable[[], int] = wall_clock_ms,
    ) -> None:
        super().__init__(ProviderName.LICHESS_BROADCAST, http_client, breaker, now_ms)
        settings = get_settings()
        self._tournament_cache = tournament_cache if tournament_cache is not None else TTLCache("rest_tournament")
        self._round_cache = round_cache if round_cache is not None else TTLCache("rest_round_pgn")
        self._tournament_ttl_ms = tournament_ttl_ms or settings.rest_tournament_ttl_ms
        self._round_ttl_ms = round_ttl_ms or settings.rest_round_ttl_ms

    async def _load_tournament(self, tournament_id: str) -> TournamentDocument:
        path = f"/api/broadcast/{quote(tournament_id, safe='')}"
        doc = await self._get(path)
        return parse_tournament(doc.json(), tournament_id, doc.url, doc.elapsed_ms)

    async def _load_round_pgn(self, round_id: str) -> FetchedDocument:
        return await self._get(f"/api/broadcast/round/{quote(round_id, safe='')}.pgn")

    def _pick_round(
        self,
        tournament: TournamentDocument,
        round_no: Optional[int],
        source: TournamentSource,
        round_id: Optional[str],
    ) -> tuple[Optional[str], Optional[int]]:
        override = round_id or (source.round_ids.get(round_no) if round_no else None)
        if override:
            chosen, index = select_active_round(tournament.rounds, self._now_ms(), override)
            return chosen, round_no or index
        if round_no is None:
            return select_active_round(tournament.rounds, self._now_ms())
        if round_no <= len(tournament.rounds):
            return tournament.rounds[round_no - 1].round_id, round_no
        return None, round_no

    async def _fetch_round(
        self,
        slug: str,
        round_no: Optional[int],
        source: TournamentSource,
        round_id: Optional[str],
    ) -> RoundSnapshot:
        diagnostics = RoundDiagnostics()
        tour = await self._tournament_cache.fetch(
            source.upstream_id,
            self._tournament_ttl_ms,
            lambda: self._load_tournament(source.upstream_id),
        )
        tournament = tour.value
        diagnostics.urls.append(tournament.url)
        diagnostics.timings_ms["tournament"] = 0.0 if tour.hit else round(tournament.elapsed_ms, 2)
        diagnostics.counts["rounds"] = len(tournament.rounds)

        chosen_id, resolved_no = self._pick_round(tournament, round_no, source, round_id)
        meta = next((r for r in tournament.rounds if r.round_id == chosen_id), None)
        fetched_at = self._now_ms()
        if chosen_id is None:
            diagnostics.notes.append("round not listed by upstream")
            diagnostics.cache_hit = tour.hit
            diagnostics.cache_age_ms = tour.age_ms if tour.hit else None
            return RoundSnapshot(
                tournament_slug=slug,
                round=resolved_no or 1,
                source=self.name,
                diagnostics=diagnostics,
                fetched_at_ms=fetched_at,
            )

        pgn = await self._round_cache.fetch(
            chosen_id, self._round_ttl_ms, lambda: self._load_round_pgn(chosen_id)
        )
        document = pgn.value
        diagnostics.urls.append(document.url)
        diagnostics.timings_ms["round_pgn"] = 0.0 if pgn.hit else round(document.elapsed_ms, 2)
        diagnostics.cache_hit = tour.hit and pgn.hit
        diagnostics.cache_age_ms = pgn.age_ms if pgn.hit else None

        boards = []
        for game in read_games(document.text()):
            boards.append(
                BoardSnapshot(
                    board_number=board_number_from_headers(game.headers, game.index + 1),
                    white=game.white,
                    black=game.black,
                    status=normalize_status(
                        game.result, game.headers.get("Status"), game.headers.get("Termination")
                    ),
                    result=game.result,
                    moves=game.outcome.san_moves,
                    final_position=game.outcome.final_position,
                    clock=game.clock,
                    source=self.name,
                    fetched_at_ms=fetched_at,
                    parse_error=game.outcome.error,
                )
            )
        diagnostics.counts["boards"] = len(boards)
        diagnostics.counts["moves"] = sum(len(b.moves) for b in boards)
        logger.debug(
            "rest_round_parsed",
            slug=slug,
            round_id=chosen_id,
            boards=len(boards),
            cache_hit=diagnostics.cache_hit,
        )
        return RoundSnapshot(
            tournament_slug=slug,
            round=resolved_no or 1,
            round_id=chosen_id,
            round_name=meta.name if meta else None,
            source=self.name,
            boards=boards,
            diagnostics=diagnostics,
            fetched_at_ms=fetched_at,
        )
