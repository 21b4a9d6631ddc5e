"""
Replay endpoint.

GET /v1/replay/{board_id}  - Moves, final position and clocks for one board.

``board_id`` looks like ``worldcup2025-board3.12``; a malformed id is a 400.
A board with no data yet is still a 200 with ``found: false``.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends

from shared.models.domain import ReplayResolution

from api.dependencies import get_resolver
from replay.resolver import ReplayResolver

router = APIRouter(prefix="/v1/replay", tags=["replay"])


@router.get("/{board_id}", response_model=ReplayResolution)
async def replay_board(
    board_id: str,
    resolver: ReplayResolver = Depends(get_resolver),
) -> ReplayResolution:
    return await resolver.resolve(board_id)
