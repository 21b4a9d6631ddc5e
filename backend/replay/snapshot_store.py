"""Most recent round snapshots published by the live feed."""
from __future__ import annotations

from typing import Optional

from shared.models.domain import BoardIdentifier, BoardSnapshot, RoundSnapshot


class SnapshotStore:
    def __init__(self) -> None:
        self._rounds: dict[tuple[str, int], RoundSnapshot] = {}

    def publish(self, snapshot: RoundSnapshot) -> None:
        self._rounds[(snapshot.tournament_slug, snapshot.round)] = snapshot

    def round(self, slug: str, round_no: int) -> Optional[RoundSnapshot]:
        return self._rounds.get((slug, round_no))

    def board(self, board_id: BoardIdentifier) -> Optional[BoardSnapshot]:
        snapshot = self.round(board_id.tournament_slug, board_id.round)
        return snapshot.board(board_id.board) if snapshot else None

    def clear(self) -> None:
        self._rounds.clear()
