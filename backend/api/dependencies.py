"""
Dependency injection for the API service.
Provides the provider registry, live feed and replay resolver to route handlers.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import httpx

from shared.config import Settings, get_settings
from shared.utils.logging import get_logger

from ingest.providers.registry import ProviderRegistry, build_registry
from ingest.service import LiveFeedService
from replay.manifest import Manifest
from replay.movetext_sources import DemoMovetextSource, FileMovetextSource, MovetextSource
from replay.position_cache import LatestPositionCache
from replay.resolver import ReplayResolver
from replay.snapshot_store import SnapshotStore

logger = get_logger(__name__)

# Module-level singletons, initialized at startup
_registry: ProviderRegistry | None = None
_live_feed: LiveFeedService | None = None
_resolver: ReplayResolver | None = None


@dataclass
class Engine:
    registry: ProviderRegistry
    snapshots: SnapshotStore
    positions: LatestPositionCache
    live_feed: LiveFeedService
    resolver: ReplayResolver


def build_engine(
    settings: Settings | None = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Engine:
    """Wire registry, stores and services from settings. Nothing is started here."""
    settings = settings or get_settings()
    registry = build_registry(settings, transport)
    snapshots = SnapshotStore()
    positions = LatestPositionCache(settings.replay_position_ttl_ms)

    manifest = Manifest.load(settings.manifest_path) if settings.manifest_path else Manifest()
    sources: list[MovetextSource] = [FileMovetextSource(settings.pgn_root)]
    if settings.demo_fallback_enabled:
        sources.append(DemoMovetextSource())

    logger.info(
        "engine_built",
        tournaments=len(settings.tournaments),
        manifest_games=sum(len(t.games) for t in manifest.tournaments.values()),
        movetext_sources=[s.kind.value for s in sources],
    )
    return Engine(
        registry=registry,
        snapshots=snapshots,
        positions=positions,
        live_feed=LiveFeedService(registry, snapshots, positions, settings),
        resolver=ReplayResolver(snapshots, positions, manifest, sources, settings),
    )


def init_dependencies(
    registry: ProviderRegistry, live_feed: LiveFeedService, resolver: ReplayResolver
) -> None:
    """Initialize module-level singletons. Called once at startup."""
    global _registry, _live_feed, _resolver
    _registry = registry
    _live_feed = live_feed
    _resolver = resolver


def get_registry() -> ProviderRegistry:
    """FastAPI dependency: returns the shared ProviderRegistry."""
    if _registry is None:
        raise RuntimeError("ProviderRegistry not initialized, call init_dependencies first")
    return _registry


def get_live_feed() -> LiveFeedService:
    """FastAPI dependency: returns the shared LiveFeedService."""
    if _live_feed is None:
        raise RuntimeError("LiveFeedService not initialized, call init_dependencies first")
    return _live_feed


def get_resolver() -> ReplayResolver:
    if _resolver is None:
        raise RuntimeError("ReplayResolver not initialized, call init_dependencies first")
    return _resolver
