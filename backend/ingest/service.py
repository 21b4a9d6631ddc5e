"""
Live feed service.

Polls one tournament round through its configured adapter, versions the
result so callers can detect "no change" cheaply, and publishes successful
rounds to the replay snapshot store and latest-position cache.
"""
from __future__ import annotations

import asyncio
import hashlib
import json
from typing import Optional, Sequence

from shared.config import Settings, get_settings
from shared.errors import ProviderNotConfigured
from shared.models.domain import BoardIdentifier, LiveFeedUpdate, RoundSnapshot
from shared.models.enums import BoardStatus
from shared.utils.logging import get_logger, round_context
from shared.utils.metrics import LIVE_FEED_VERSION_BUMPS

from ingest.providers.base import wall_clock_ms
from ingest.providers.registry import ProviderRegistry
from notation.pgn import START_FEN
from replay.position_cache import LatestPositionCache
from replay.snapshot_store import SnapshotStore

logger = get_logger(__name__)

FeedKey = tuple[str, Optional[int]]


def fingerprint(snapshot: RoundSnapshot) -> str:
    """Digest of everything a viewer renders; fetch times and diagnostics excluded."""
    payload = {
        "round": snapshot.round,
        "round_id": snapshot.round_id,
        "boards": [
            board.model_dump(mode="json", exclude={"fetched_at_ms"}) for board in snapshot.boards
        ],
    }
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha1(encoded).hexdigest()


class LiveFeedService:
    """
    Caller-driven polling of tournament rounds.

    ``poll`` never raises on upstream trouble; only an unknown tournament
    (``ProviderNotConfigured``) propagates.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        snapshots: SnapshotStore,
        positions: LatestPositionCache,
        settings: Settings | None = None,
    ) -> None:
        self._registry = registry
        self._snapshots = snapshots
        self._positions = positions
        self._settings = settings or get_settings()
        self._versions: dict[FeedKey, int] = {}
        self._fingerprints: dict[FeedKey, str] = {}
        self._last: dict[FeedKey, RoundSnapshot] = {}
        self._shutdown = asyncio.Event()

    def version(self, slug: str, round_no: Optional[int]) -> int:
        return self._versions.get((self._settings.canonical_slug(slug), round_no), 0)

    async def poll(
        self, slug: str, round_no: Optional[int] = None, round_id: Optional[str] = None
    ) -> LiveFeedUpdate:
        canonical, source, adapter = self._registry.resolve(slug)
        key: FeedKey = (canonical, round_no)
        with round_context(canonical, round_no):
            result = await adapter.fetch_round_snapshot(canonical, round_no, source, round_id=round_id)
        now = wall_clock_ms()

        if not result.success or result.snapshot is None:
            return LiveFeedUpdate(
                tournament_slug=canonical,
                round=round_no or 0,
                version=self._versions.get(key, 0),
                changed=False,
                snapshot=self._last.get(key),
                failure=result.failure,
                polled_at_ms=now,
            )

        snapshot = result.snapshot
        digest = fingerprint(snapshot)
        changed = self._fingerprints.get(key) != digest
        if changed:
            self._fingerprints[key] = digest
            self._versions[key] = self._versions.get(key, 0) + 1
            LIVE_FEED_VERSION_BUMPS.labels(provider=adapter.name.value).inc()
            logger.info(
                "live_feed_changed",
                slug=canonical,
                round=snapshot.round,
                version=self._versions[key],
                boards=len(snapshot.boards),
            )
        self._last[key] = snapshot
        self._publish(snapshot)
        return LiveFeedUpdate(
            tournament_slug=canonical,
            round=snapshot.round,
            version=self._versions[key],
            changed=changed,
            snapshot=snapshot,
            polled_at_ms=now,
        )

    def _publish(self, snapshot: RoundSnapshot) -> None:
        self._snapshots.publish(snapshot)
        for board in snapshot.boards:
            board_id = BoardIdentifier(
                tournament_slug=snapshot.tournament_slug,
                round=snapshot.round,
                board=board.board_number,
            ).canonical
            if board.moves:
                self._positions.write(
                    board_id, board.final_position, moves=board.moves, clock=board.clock
                )
            elif not board.fetch_failed:
                self._positions.write(
                    board_id,
                    START_FEN,
                    explicit_start=board.status == BoardStatus.SCHEDULED,
                )

    async def refresh_forever(self, slugs: Sequence[str], interval_s: float) -> None:
        """Keep the current round of ``slugs`` warm until ``request_shutdown``."""
        logger.info("live_feed_refresh_started", slugs=list(slugs), interval_s=interval_s)
        while not self._shutdown.is_set():
            for slug in slugs:
                try:
                    await self.poll(slug)
                except ProviderNotConfigured as exc:
                    logger.error("live_feed_refresh_unconfigured", slug=slug, error=str(exc))
            try:
                await asyncio.wait_for(self._shutdown.wait(), timeout=interval_s)
            except asyncio.TimeoutError:
                continue
        logger.info("live_feed_refresh_stopped")

    def request_shutdown(self) -> None:
        self._shutdown.set()
