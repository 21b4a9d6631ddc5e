"""PGN documents: game splitting, header tags, and normalized player/result fields."""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, Optional

from notation.clocks import extract_latest_clock_pair
from notation.pgn import parse_movetext
from shared.models.domain import ClockPair, ParseOutcome, PlayerInfo
from shared.models.enums import BoardStatus, GameResult

FIDE_TITLES = frozenset({"GM", "IM", "FM", "CM", "WGM", "WIM", "WFM", "WCM"})

BOARD_NUMBER_TAGS = ("Board", "BoardNo", "BoardNumber", "Table", "Game")

_HEADER_RE = re.compile(r'^\[([A-Za-z0-9_]+)\s+"(.*)"\]$')
_EVENT_LINE_RE = re.compile(r"^\s*\[Event\s")

_RESULT_MAP = {
    "1-0": GameResult.WHITE_WIN,
    "0-1": GameResult.BLACK_WIN,
    "1/2-1/2": GameResult.DRAW,
    "½-½": GameResult.DRAW,
    "draw": GameResult.DRAW,
    "*": GameResult.UNKNOWN,
    "·": GameResult.UNKNOWN,
}


def split_games(document: str) -> list[str]:
    """Split a multi-game PGN document on ``[Event`` header boundaries."""
    games: list[str] = []
    buffer: list[str] = []
    for line in document.splitlines():
        line = line.lstrip("\ufeff")
        if _EVENT_LINE_RE.match(line) and buffer:
            games.append("\n".join(buffer).strip())
            buffer = []
        if not line.strip() and not buffer:
            continue
        buffer.append(line)
    if buffer:
        games.append("\n".join(buffer).strip())
    return [game for game in games if game]


def parse_headers(game: str) -> dict[str, str]:
    headers: dict[str, str] = {}
    for line in game.splitlines():
        stripped = line.lstrip("\ufeff").strip()
        if not (stripped.startswith("[") and stripped.endswith("]")):
            continue
        match = _HEADER_RE.match(stripped)
        if match:
            headers[match.group(1)] = match.group(2).replace('\\"', '"').strip()
    return headers


def first_header(headers: dict[str, str], keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        value = headers.get(key, "").strip()
        if value:
            return value
    return None


def normalize_result(value: Optional[str]) -> Optional[GameResult]:
    if value is None:
        return None
    trimmed = str(value).strip()
    if not trimmed:
        return None
    return _RESULT_MAP.get(trimmed) or _RESULT_MAP.get(trimmed.lower())


def normalize_title(value: Optional[str]) -> Optional[str]:
    title = (value or "").strip().upper()
    return title if title in FIDE_TITLES else None


def normalize_rating(value: object) -> Optional[int]:
    try:
        rating = int(float(str(value).strip()))
    except (TypeError, ValueError):
        return None
    return rating if rating > 0 else None


def normalize_federation(value: Optional[str]) -> Optional[str]:
    fed = (value or "").strip().upper()
    return fed or None


def normalize_status(
    result: Optional[GameResult],
    status: Optional[str] = None,
    termination: Optional[str] = None,
) -> BoardStatus:
    """Decided result or a real termination is final; scheduling words mean not started."""
    if result is not None and result.is_decided:
        return BoardStatus.FINAL
    term = (termination or "").strip().lower()
    if term and term not in ("unterminated", "in progress"):
        return BoardStatus.FINAL
    if (status or "").strip().lower() in ("scheduled", "upcoming", "pending"):
        return BoardStatus.SCHEDULED
    return BoardStatus.LIVE


def board_number_from_headers(headers: dict[str, str], fallback: int) -> int:
    for tag in BOARD_NUMBER_TAGS:
        number = normalize_rating(headers.get(tag))
        if number is not None:
            return number
    return fallback


def player_from_headers(headers: dict[str, str], color: str) -> PlayerInfo:
    """``color`` is the tag prefix: ``White`` or ``Black``."""
    name = first_header(headers, (color, f"{color}Name", f"{color}Player")) or "?"
    return PlayerInfo(
        name=name,
        title=normalize_title(
            first_header(headers, (f"{color}Title", f"{color}FideTitle", f"{color}TitleFide"))
        ),
        rating=normalize_rating(
            first_header(
                headers,
                (f"{color}Elo", f"{color}Rating", f"{color}FideElo", f"{color}EloFide"),
            )
        ),
        federation=normalize_federation(
            first_header(headers, (f"{color}Country", f"{color}Federation", f"{color}Fed"))
        ),
    )


@dataclass(frozen=True)
class ParsedGame:
    """One game chunk of a PGN document, fully read."""

    index: int
    headers: dict[str, str]
    white: PlayerInfo
    black: PlayerInfo
    result: Optional[GameResult]
    outcome: ParseOutcome
    clock: ClockPair


def read_game(chunk: str, index: int = 0) -> ParsedGame:
    headers = parse_headers(chunk)
    outcome = parse_movetext(chunk)
    clock = extract_latest_clock_pair(
        chunk,
        final_position=outcome.final_position,
        move_count=outcome.applied_move_count,
    )
    return ParsedGame(
        index=index,
        headers=headers,
        white=player_from_headers(headers, "White"),
        black=player_from_headers(headers, "Black"),
        result=normalize_result(headers.get("Result")),
        outcome=outcome,
        clock=clock,
    )


def read_games(document: str) -> list[ParsedGame]:
    return [read_game(chunk, index) for index, chunk in enumerate(split_games(document))]
