"""
Static tournament manifest: per-board overrides loaded from a JSON file.

    {"tournaments": {"<slug>": {"games": [
        {"round": 1, "board": 1, "white": "Name", "black": {"name": "...", "rating": 2700},
         "moves": ["e4", "e5"], "final_fen": null, "result": "1-0", "status": "final"}
    ]}}}

``moves: []`` states that the game has no moves yet; omitting ``moves`` (and
``movetext``) means the manifest knows nothing about the moves.
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import Field, field_validator

from shared.models.domain import BoardIdentifier, DomainModel, PlayerInfo
from shared.models.enums import BoardStatus
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class ManifestGame(DomainModel):
    round: int = Field(ge=1)
    board: int = Field(ge=1)
    white: PlayerInfo = Field(default_factory=PlayerInfo)
    black: PlayerInfo = Field(default_factory=PlayerInfo)
    moves: Optional[list[str]] = None
    movetext: Optional[str] = None
    final_fen: Optional[str] = None
    result: Optional[str] = None
    status: Optional[BoardStatus] = None

    @field_validator("white", "black", mode="before")
    @classmethod
    def _player_from_name(cls, value: Any) -> Any:
        if isinstance(value, str):
            return {"name": value}
        return value

    @property
    def has_move_data(self) -> bool:
        return self.moves is not None or bool(self.movetext) or bool(self.final_fen)


class TournamentManifest(DomainModel):
    games: list[ManifestGame] = Field(default_factory=list)


class Manifest(DomainModel):
    tournaments: dict[str, TournamentManifest] = Field(default_factory=dict)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "Manifest":
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        manifest = cls.model_validate(data)
        logger.info(
            "manifest_loaded",
            path=str(path),
            tournaments=len(manifest.tournaments),
            games=sum(len(t.games) for t in manifest.tournaments.values()),
        )
        return manifest

    def entry(self, board_id: BoardIdentifier) -> Optional[ManifestGame]:
        tournament = self.tournaments.get(board_id.tournament_slug)
        if tournament is None:
            return None
        for game in tournament.games:
            if game.round == board_id.round and game.board == board_id.board:
                return game
        return None
