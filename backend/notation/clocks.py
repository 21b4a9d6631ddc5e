"""Remaining-time annotations (``[%clk h:mm:ss]``) and their side attribution."""
from __future__ import annotations

import re
from typing import Optional, Union

from notation.pgn import side_to_move_from_fen
from shared.models.domain import ClockPair
from shared.models.enums import Side

CLOCK_RE = re.compile(r"\[%clk\s+([0-9:.]+)\]", re.IGNORECASE)

SideHint = Union[Side, str, None]


def clock_token_to_ms(value: Optional[str]) -> Optional[int]:
    """``h:mm:ss`` or ``m:ss`` (fractional seconds allowed) to milliseconds."""
    if not value or not value.strip():
        return None
    parts = [part.strip() for part in value.strip().split(":")]
    if len(parts) not in (2, 3) or any(not part for part in parts):
        return None
    try:
        numbers = [float(part) for part in parts]
    except ValueError:
        return None
    if len(numbers) == 3:
        hours, minutes, seconds = numbers
        if minutes >= 60:
            return None
    else:
        hours, (minutes, seconds) = 0.0, numbers
    if min(hours, minutes, seconds) < 0 or seconds >= 60:
        return None
    return max(0, int((hours * 3600 + minutes * 60 + seconds) * 1000))


def _coerce_side(value: SideHint) -> Optional[Side]:
    if isinstance(value, Side):
        return value
    if value in ("white", "w"):
        return Side.WHITE
    if value in ("black", "b"):
        return Side.BLACK
    return None


def resolve_side_to_move(
    *,
    side_to_move: SideHint = None,
    final_position: Optional[str] = None,
    move_count: Optional[int] = None,
    annotation_count: Optional[int] = None,
) -> Optional[Side]:
    """Explicit hint, then FEN, then ply-count parity, then annotation-count parity."""
    side = _coerce_side(side_to_move) or side_to_move_from_fen(final_position)
    if side is None and move_count is not None:
        side = Side.WHITE if max(0, int(move_count)) % 2 == 0 else Side.BLACK
    if side is None and annotation_count:
        side = Side.WHITE if annotation_count % 2 == 0 else Side.BLACK
    return side


def extract_latest_clock_pair(
    text: Optional[str],
    *,
    side_to_move: SideHint = None,
    final_position: Optional[str] = None,
    move_count: Optional[int] = None,
) -> ClockPair:
    """
    Remaining time for both sides from the last two clock annotations.

    Annotations follow move order, so when black is to move the newest reading
    belongs to white (who just moved) and the one before it to black. When white
    is to move the mapping flips.
    """
    if not text or not text.strip():
        return ClockPair()

    readings = CLOCK_RE.findall(text)
    side = resolve_side_to_move(
        side_to_move=side_to_move,
        final_position=final_position,
        move_count=move_count,
        annotation_count=len(readings),
    )
    if not readings:
        return ClockPair(side_to_move=side)

    last = clock_token_to_ms(readings[-1])
    previous = clock_token_to_ms(readings[-2]) if len(readings) > 1 else None
    if side == Side.BLACK:
        return ClockPair(white_ms=last, black_ms=previous, side_to_move=side)
    return ClockPair(white_ms=previous, black_ms=last, side_to_move=side)
