"""
Replay resolution: one deterministic answer per board.

Precedence, first usable source wins:
  1. live snapshot board with moves
  2. manifest entry carrying moves / movetext / a final FEN
  3. movetext sources (file, then demo)
  4. live snapshot board without moves (explicit zero when it is scheduled)

A start position only counts as fresh data when the source explicitly said the
game has no moves. Otherwise a cached non-start position wins, and a cached
start that was never confirmed is evicted before resolving.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

from notation.clocks import extract_latest_clock_pair
from notation.headers import normalize_result, parse_headers, player_from_headers
from notation.pgn import START_FEN, is_start_position, parse_movetext, replay_san
from replay.manifest import Manifest, ManifestGame
from replay.movetext_sources import MovetextSource
from replay.position_cache import CachedPosition, LatestPositionCache
from replay.snapshot_store import SnapshotStore
from shared.config import Settings, get_settings
from shared.models.domain import (
    BoardIdentifier,
    BoardSnapshot,
    ClockPair,
    ParseOutcome,
    PlayerInfo,
    ReplayResolution,
)
from shared.models.enums import BoardStatus, GameResult, ReasonCode, ReplaySource
from shared.utils.logging import get_logger
from shared.utils.metrics import REPLAY_RESOLUTIONS

logger = get_logger(__name__)


@dataclass
class Candidate:
    source: ReplaySource
    fen: Optional[str]
    moves: list[str] = field(default_factory=list)
    explicit_zero: bool = False
    white: Optional[PlayerInfo] = None
    black: Optional[PlayerInfo] = None
    clock: ClockPair = field(default_factory=ClockPair)
    status: Optional[BoardStatus] = None
    result: Optional[GameResult] = None
    error: Optional[str] = None

    @property
    def is_start(self) -> bool:
        return not self.moves and (self.fen is None or is_start_position(self.fen))

    @property
    def parse_failed(self) -> bool:
        return not self.moves and not self.explicit_zero and self.error is not None


def _from_outcome(
    source: ReplaySource,
    outcome: ParseOutcome,
    text: str,
    *,
    white: Optional[PlayerInfo] = None,
    black: Optional[PlayerInfo] = None,
    result: Optional[GameResult] = None,
    status: Optional[BoardStatus] = None,
) -> Candidate:
    clock = extract_latest_clock_pair(
        text, final_position=outcome.final_position, move_count=outcome.applied_move_count
    )
    return Candidate(
        source=source,
        fen=outcome.final_position,
        moves=outcome.san_moves,
        white=white,
        black=black,
        clock=clock,
        result=result,
        status=status,
        error=outcome.error,
    )


class ReplayResolver:
    """Resolve a board id against snapshot, manifest and movetext sources."""

    def __init__(
        self,
        snapshots: SnapshotStore,
        positions: LatestPositionCache,
        manifest: Optional[Manifest] = None,
        movetext_sources: Sequence[MovetextSource] = (),
        settings: Settings | None = None,
    ) -> None:
        self._snapshots = snapshots
        self._positions = positions
        self._manifest = manifest or Manifest()
        self._movetext_sources = list(movetext_sources)
        self._settings = settings or get_settings()

    def normalize(self, board_id: Union[str, BoardIdentifier]) -> BoardIdentifier:
        """Parse (if needed) and apply slug aliases. Raises ``InvalidBoardIdentifier``."""
        bid = BoardIdentifier.parse(board_id) if isinstance(board_id, str) else board_id
        canonical_slug = self._settings.canonical_slug(bid.tournament_slug)
        if canonical_slug != bid.tournament_slug:
            bid = BoardIdentifier(tournament_slug=canonical_slug, round=bid.round, board=bid.board)
        return bid

    async def resolve(self, board_id: Union[str, BoardIdentifier]) -> ReplayResolution:
        bid = self.normalize(board_id)
        key = bid.canonical

        cached = self._positions.get(key)
        blocked = False
        if cached is not None and cached.is_unconfirmed_start:
            self._positions.evict(key)
            cached = None
            blocked = True
            logger.info("replay_cached_start_evicted", board_id=key)

        candidate, failure = self._find_candidate(bid)
        resolution = self._decide(key, candidate, failure, cached)
        if blocked:
            resolution.reason_code = ReasonCode.CACHED_START_BLOCKING_UPGRADE

        REPLAY_RESOLUTIONS.labels(
            reason=resolution.reason_code.value,
            source=resolution.source_used.value if resolution.source_used else "none",
        ).inc()
        logger.debug(
            "replay_resolved",
            board_id=key,
            reason=resolution.reason_code.value,
            source=resolution.source_used.value if resolution.source_used else None,
            moves=len(resolution.moves),
        )
        return resolution

    # ── Source chain ─────────────────────────────────────────────────────
    def _find_candidate(
        self, bid: BoardIdentifier
    ) -> tuple[Optional[Candidate], Optional[Candidate]]:
        """Return ``(usable candidate, first parse failure seen)``."""
        board = self._snapshots.board(bid)
        if board is not None and board.moves:
            return self._from_snapshot(board), None

        failure: Optional[Candidate] = None
        entry = self._manifest.entry(bid)
        if entry is not None and entry.has_move_data:
            candidate = self._from_manifest(entry)
            if not candidate.parse_failed:
                return candidate, None
            failure = candidate

        for source in self._movetext_sources:
            text = source.read(bid)
            if not text:
                continue
            headers = parse_headers(text)
            candidate = _from_outcome(
                source.kind,
                parse_movetext(text),
                text,
                white=player_from_headers(headers, "White") if "White" in headers else None,
                black=player_from_headers(headers, "Black") if "Black" in headers else None,
                result=normalize_result(headers.get("Result")),
            )
            if candidate.moves:
                return candidate, None
            if candidate.parse_failed and failure is None:
                failure = candidate

        if board is not None:
            return self._from_snapshot(board), failure
        return None, failure

    def _from_snapshot(self, board: BoardSnapshot) -> Candidate:
        return Candidate(
            source=ReplaySource.SNAPSHOT,
            fen=board.final_position if board.moves else START_FEN,
            moves=list(board.moves),
            explicit_zero=(
                not board.moves and not board.fetch_failed and board.status == BoardStatus.SCHEDULED
            ),
            white=board.white,
            black=board.black,
            clock=board.clock,
            status=board.status,
            result=board.result,
            error=board.parse_error if not board.moves else None,
        )

    def _from_manifest(self, entry: ManifestGame) -> Candidate:
        result = normalize_result(entry.result)
        if entry.moves is not None and not entry.moves and not entry.movetext:
            return Candidate(
                source=ReplaySource.MANIFEST,
                fen=entry.final_fen or START_FEN,
                explicit_zero=True,
                white=entry.white,
                black=entry.black,
                status=entry.status or BoardStatus.SCHEDULED,
                result=result,
            )
        if entry.moves or entry.movetext:
            text = entry.movetext or ""
            outcome = replay_san(entry.moves) if entry.moves else parse_movetext(text)
            return _from_outcome(
                ReplaySource.MANIFEST,
                outcome,
                text,
                white=entry.white,
                black=entry.black,
                result=result,
                status=entry.status,
            )
        return Candidate(
            source=ReplaySource.MANIFEST,
            fen=entry.final_fen,
            white=entry.white,
            black=entry.black,
            status=entry.status,
            result=result,
        )

    # ── Decision ─────────────────────────────────────────────────────────
    def _decide(
        self,
        key: str,
        candidate: Optional[Candidate],
        failure: Optional[Candidate],
        cached: Optional[CachedPosition],
    ) -> ReplayResolution:
        if candidate is not None and not candidate.is_start:
            self._positions.write(key, candidate.fen, moves=candidate.moves, clock=candidate.clock)
            return self._answer(key, candidate, ReasonCode.RESOLVED_FINAL)

        if candidate is not None and candidate.explicit_zero:
            self._positions.write(key, candidate.fen or START_FEN, explicit_start=True)
            return self._answer(key, candidate, ReasonCode.EXPLICIT_ZERO_MOVES)

        if cached is not None and not cached.is_start:
            return self._from_cache(key, cached, candidate)

        if failure is None and candidate is not None and candidate.parse_failed:
            failure = candidate
        if failure is not None:
            return self._answer(key, failure, ReasonCode.PARSE_FAILED)
        if candidate is not None:
            return self._answer(key, candidate, ReasonCode.MISSING_DATA_PENDING)
        return ReplayResolution(
            found=False, board_id=key, reason_code=ReasonCode.MISSING_DATA_PENDING
        )

    @staticmethod
    def _answer(key: str, candidate: Candidate, reason: ReasonCode) -> ReplayResolution:
        return ReplayResolution(
            found=True,
            board_id=key,
            white=candidate.white,
            black=candidate.black,
            moves=candidate.moves,
            final_position=candidate.fen,
            clock=candidate.clock,
            status=candidate.status,
            result=candidate.result,
            source_used=candidate.source,
            reason_code=reason,
            error=candidate.error,
        )

    @staticmethod
    def _from_cache(
        key: str, cached: CachedPosition, candidate: Optional[Candidate]
    ) -> ReplayResolution:
        return ReplayResolution(
            found=True,
            board_id=key,
            white=candidate.white if candidate else None,
            black=candidate.black if candidate else None,
            moves=list(cached.moves),
            final_position=cached.fen,
            clock=cached.clock,
            status=candidate.status if candidate else None,
            result=candidate.result if candidate else None,
            source_used=ReplaySource.POSITION_CACHE,
            reason_code=ReasonCode.RESOLVED_FINAL,
        )
