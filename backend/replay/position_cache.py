"""Latest known position per board, with a no-downgrade write rule."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Optional

from notation.pgn import is_start_position
from shared.models.domain import ClockPair
from shared.utils.logging import get_logger
from shared.utils.ttl_cache import monotonic_ms

logger = get_logger(__name__)


@dataclass(frozen=True)
class CachedPosition:
    fen: str
    explicit_start: bool
    updated_at_ms: int
    expires_at_ms: int
    moves: list[str] = field(default_factory=list)
    clock: ClockPair = field(default_factory=ClockPair)

    @property
    def is_start(self) -> bool:
        return not self.moves and is_start_position(self.fen)

    @property
    def is_unconfirmed_start(self) -> bool:
        return self.is_start and not self.explicit_start


class LatestPositionCache:
    """
    Short-TTL map of board id -> last position.

    Write rule:
      * a non-start position always replaces the entry;
      * an explicit start (source said "no moves yet") always replaces it;
      * an unconfirmed start is stored only when no live entry exists.
    """

    def __init__(self, ttl_ms: int, clock: Callable[[], int] = monotonic_ms) -> None:
        if ttl_ms <= 0:
            raise ValueError(f"ttl_ms must be positive, got {ttl_ms}")
        self._ttl_ms = ttl_ms
        self._clock = clock
        self._entries: dict[str, CachedPosition] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, board_id: str) -> Optional[CachedPosition]:
        entry = self._entries.get(board_id)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at_ms:
            del self._entries[board_id]
            return None
        return entry

    def evict(self, board_id: str) -> None:
        self._entries.pop(board_id, None)

    def clear(self) -> None:
        self._entries.clear()

    def write(
        self,
        board_id: str,
        fen: Optional[str],
        *,
        explicit_start: bool = False,
        moves: Optional[list[str]] = None,
        clock: Optional[ClockPair] = None,
    ) -> bool:
        """Store ``fen`` if the write rule allows it; returns whether it was stored."""
        if not fen:
            return False
        # a game that walked back to the initial layout has still started
        start = not moves and is_start_position(fen)
        if start and not explicit_start and self.get(board_id) is not None:
            logger.debug("position_write_skipped", board_id=board_id, reason="unconfirmed_start")
            return False
        now = self._clock()
        self._entries[board_id] = CachedPosition(
            fen=fen,
            explicit_start=start and explicit_start,
            updated_at_ms=now,
            expires_at_ms=now + self._ttl_ms,
            moves=list(moves or []),
            clock=clock or ClockPair(),
        )
        return True
