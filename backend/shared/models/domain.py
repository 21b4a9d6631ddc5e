"""
Pydantic v2 domain models shared across the api and ingest services.
These are the canonical wire/internal representations of boards, rounds and
replay answers.
"""
from __future__ import annotations

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from shared.errors import InvalidBoardIdentifier
from shared.models.enums import (
    BoardStatus,
    FailureKind,
    GameResult,
    ParseMode,
    ProviderName,
    ReasonCode,
    ReplaySource,
    Side,
)

_BOARD_ID_RE = re.compile(r"^([a-z0-9-]+)-board(\d+)\.(\d+)$")


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Board addressing ────────────────────────────────────────────────────
class BoardIdentifier(DomainModel):
    """(tournament, round, board) triple with one canonical string form."""

    model_config = ConfigDict(frozen=True)

    tournament_slug: str
    round: int = Field(ge=1)
    board: int = Field(ge=1)

    @field_validator("tournament_slug")
    @classmethod
    def _normalize_slug(cls, value: str) -> str:
        slug = value.strip().lower()
        if not slug:
            raise ValueError("tournament slug must not be empty")
        return slug

    @property
    def canonical(self) -> str:
        return f"{self.tournament_slug}-board{self.round}.{self.board}"

    def __str__(self) -> str:
        return self.canonical

    @classmethod
    def parse(cls, raw: str) -> "BoardIdentifier":
        """Parse ``{slug}-board{round}.{board}``; case and surrounding space are ignored."""
        match = _BOARD_ID_RE.match(raw.strip().lower()) if isinstance(raw, str) else None
        if not match:
            raise InvalidBoardIdentifier(str(raw))
        round_no, board_no = int(match.group(2)), int(match.group(3))
        if round_no < 1 or board_no < 1:
            raise InvalidBoardIdentifier(raw)
        return cls(tournament_slug=match.group(1), round=round_no, board=board_no)


# ── Notation ────────────────────────────────────────────────────────────
class Ply(DomainModel):
    san: str
    fen: str
    move_number: int
    side: Side


class ParseOutcome(DomainModel):
    final_position: Optional[str] = None
    moves: list[Ply] = Field(default_factory=list)
    applied_move_count: int = 0
    failed_token: Optional[str] = None
    parse_mode: ParseMode = ParseMode.FULL
    error: Optional[str] = None

    @property
    def san_moves(self) -> list[str]:
        return [ply.san for ply in self.moves]


class ClockPair(DomainModel):
    white_ms: Optional[int] = None
    black_ms: Optional[int] = None
    side_to_move: Optional[Side] = None


# ── Boards and rounds ───────────────────────────────────────────────────
class PlayerInfo(DomainModel):
    name: str = ""
    title: Optional[str] = None
    rating: Optional[int] = None
    federation: Optional[str] = None


class BoardSnapshot(DomainModel):
    """One board as seen by one adapter fetch. Replaced, never mutated."""

    model_config = ConfigDict(frozen=True)

    board_number: int
    white: PlayerInfo = Field(default_factory=PlayerInfo)
    black: PlayerInfo = Field(default_factory=PlayerInfo)
    status: BoardStatus = BoardStatus.SCHEDULED
    result: Optional[GameResult] = None
    moves: list[str] = Field(default_factory=list)
    final_position: Optional[str] = None
    clock: ClockPair = Field(default_factory=ClockPair)
    source: ProviderName
    fetched_at_ms: int
    game_id: Optional[str] = None
    parse_error: Optional[str] = None
    # built from index metadata only: moves are unknown, not zero
    fetch_failed: bool = False


class RoundMeta(DomainModel):
    round_id: str
    name: str = ""
    starts_at_ms: Optional[int] = None
    url: Optional[str] = None


class RoundDiagnostics(DomainModel):
    urls: list[str] = Field(default_factory=list)
    timings_ms: dict[str, float] = Field(default_factory=dict)
    counts: dict[str, int] = Field(default_factory=dict)
    cache_hit: bool = False
    cache_age_ms: Optional[int] = None
    failures: int = 0
    notes: list[str] = Field(default_factory=list)


class RoundSnapshot(DomainModel):
    tournament_slug: str
    round: int
    round_id: Optional[str] = None
    round_name: Optional[str] = None
    source: ProviderName
    boards: list[BoardSnapshot] = Field(default_factory=list)
    diagnostics: RoundDiagnostics = Field(default_factory=RoundDiagnostics)
    fetched_at_ms: int

    @model_validator(mode="after")
    def _sort_boards(self) -> "RoundSnapshot":
        self.boards = sorted(self.boards, key=lambda b: b.board_number)
        return self

    def board(self, number: int) -> Optional[BoardSnapshot]:
        for snapshot in self.boards:
            if snapshot.board_number == number:
                return snapshot
        return None


# ── Failures ────────────────────────────────────────────────────────────
class UpstreamFailure(DomainModel):
    kind: FailureKind
    message: str
    url: Optional[str] = None
    status: Optional[int] = None


# ── Outputs ─────────────────────────────────────────────────────────────
class ReplayResolution(DomainModel):
    found: bool
    board_id: str
    white: Optional[PlayerInfo] = None
    black: Optional[PlayerInfo] = None
    moves: list[str] = Field(default_factory=list)
    final_position: Optional[str] = None
    clock: ClockPair = Field(default_factory=ClockPair)
    status: Optional[BoardStatus] = None
    result: Optional[GameResult] = None
    source_used: Optional[ReplaySource] = None
    reason_code: ReasonCode
    error: Optional[str] = None


class LiveFeedUpdate(DomainModel):
    """What the rendering layer polls: the round plus a change-detection version."""
    tournament_slug: str
    round: int
    version: int
    changed: bool
    snapshot: Optional[RoundSnapshot] = None
    failure: Optional[UpstreamFailure] = None
    polled_at_ms: int
