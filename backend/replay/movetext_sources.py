"""Movetext fallbacks for replay: PGN files on disk, then embedded demo games."""
from __future__ import annotations

from pathlib import Path
from typing import Optional, Protocol, Union

from replay.demo_pgns import DEMO_PGNS
from shared.models.domain import BoardIdentifier
from shared.models.enums import ReplaySource
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class MovetextSource(Protocol):
    kind: ReplaySource

    def read(self, board_id: BoardIdentifier) -> Optional[str]:
        ...


class FileMovetextSource:
    """``{root}/{slug}/pgn/{board_id}.pgn``"""

    kind = ReplaySource.FILE

    def __init__(self, root: Union[str, Path]) -> None:
        self._root = Path(root)

    def path_for(self, board_id: BoardIdentifier) -> Path:
        return self._root / board_id.tournament_slug / "pgn" / f"{board_id.canonical}.pgn"

    def read(self, board_id: BoardIdentifier) -> Optional[str]:
        path = self.path_for(board_id)
        try:
            text = path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("movetext_file_unreadable", path=str(path), error=str(exc))
            return None
        return text or None


class DemoMovetextSource:
    kind = ReplaySource.DEMO

    def __init__(self, games: Optional[dict[str, dict[int, str]]] = None) -> None:
        self._games = DEMO_PGNS if games is None else games

    def read(self, board_id: BoardIdentifier) -> Optional[str]:
        text = self._games.get(board_id.tournament_slug, {}).get(board_id.board)
        if text:
            logger.info("movetext_demo_fallback", board_id=board_id.canonical)
        return text or None
