"""
Live round endpoints.

GET /v1/tournaments/{slug}/live                  - Current round, as the provider reports it.
GET /v1/tournaments/{slug}/rounds/{round}/live   - A specific round.

Both poll the configured adapter through the live feed and carry the feed
version as a weak ETag, so an unchanged round answers 304.
"""
from __future__ import annotations

from typing import Optional, Union

from fastapi import APIRouter, Depends, Path, Query, Request, Response

from shared.models.domain import LiveFeedUpdate
from shared.utils.logging import get_logger

from api.dependencies import get_live_feed
from ingest.service import LiveFeedService

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/tournaments", tags=["live"])


def _feed_etag(update: LiveFeedUpdate) -> str:
    return f'W/"{update.tournament_slug}:{update.round}:{update.version}"'


def _respond(
    update: LiveFeedUpdate, request: Request, response: Response
) -> Union[LiveFeedUpdate, Response]:
    if update.failure is not None:
        logger.warning(
            "live_round_stale",
            slug=update.tournament_slug,
            round=update.round,
            failure=update.failure.kind.value,
            has_snapshot=update.snapshot is not None,
        )
    etag = _feed_etag(update)
    headers = {"ETag": etag, "X-Feed-Version": str(update.version), "Cache-Control": "no-cache"}
    if update.version and request.headers.get("if-none-match") == etag:
        return Response(status_code=304, headers=headers)
    response.headers.update(headers)
    return update


@router.get("/{slug}/live", response_model=None)
async def current_round(
    request: Request,
    response: Response,
    slug: str,
    live_feed: LiveFeedService = Depends(get_live_feed),
) -> Union[LiveFeedUpdate, Response]:
    update = await live_feed.poll(slug)
    return _respond(update, request, response)


@router.get("/{slug}/rounds/{round_no}/live", response_model=None)
async def round_live(
    request: Request,
    response: Response,
    slug: str,
    round_no: int = Path(ge=1),
    round_id: Optional[str] = Query(default=None, description="Upstream round id override"),
    live_feed: LiveFeedService = Depends(get_live_feed),
) -> Union[LiveFeedUpdate, Response]:
    """
    Poll one round.

    Upstream failures are not HTTP errors: the body carries the last good
    snapshot (if any) plus a structured ``failure``.
    """
    update = await live_feed.poll(slug, round_no, round_id=round_id)
    return _respond(update, request, response)
