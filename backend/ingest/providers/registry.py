"""
Adapter registry: tournament slug -> configured provider -> adapter instance.
Selection is a table lookup on configuration, never on payload shape.
"""
from __future__ import annotations

from typing import Optional

import httpx

from shared.config import Settings, TournamentSource, get_settings
from shared.errors import ProviderNotConfigured
from shared.models.enums import ProviderName
from shared.utils.circuit_breaker import CircuitBreaker
from shared.utils.http_client import UpstreamHTTPClient
from shared.utils.logging import get_logger

from ingest.providers.base import BaseAdapter, trips_breaker
from ingest.providers.lichess_broadcast import LichessBroadcastAdapter
from ingest.providers.livechesscloud import LiveChessCloudAdapter
from ingest.providers.official_archive import OfficialArchiveAdapter

logger = get_logger(__name__)


class ProviderRegistry:
    """
    Owns one adapter per provider and the tournament -> provider table.

    ``validate()`` is meant to run at startup: a tournament pointing at a
    missing or misconfigured provider is the one fatal error class.
    """

    def __init__(
        self,
        adapters: dict[ProviderName, BaseAdapter],
        settings: Settings | None = None,
    ) -> None:
        self._adapters = adapters
        self._settings = settings or get_settings()

    @property
    def adapters(self) -> dict[ProviderName, BaseAdapter]:
        return self._adapters

    @property
    def tournaments(self) -> dict[str, TournamentSource]:
        return self._settings.tournaments

    def source_for(self, slug: str) -> tuple[str, TournamentSource]:
        """Return ``(canonical_slug, source)`` after alias resolution."""
        canonical = self._settings.canonical_slug(slug)
        source = self._settings.tournaments.get(canonical)
        if source is None:
            raise ProviderNotConfigured(canonical)
        return canonical, source

    def adapter_for(self, source: TournamentSource) -> BaseAdapter:
        adapter = self._adapters.get(source.provider)
        if adapter is None:
            raise ProviderNotConfigured(
                source.upstream_id or source.provider.value,
                f"provider {source.provider.value} is not registered",
            )
        return adapter

    def resolve(self, slug: str) -> tuple[str, TournamentSource, BaseAdapter]:
        canonical, source = self.source_for(slug)
        return canonical, source, self.adapter_for(source)

    def validate(self) -> None:
        """Raise ``ProviderNotConfigured`` for the first unusable tournament entry."""
        for slug, source in self._settings.tournaments.items():
            adapter = self._adapters.get(source.provider)
            if adapter is None:
                raise ProviderNotConfigured(slug, f"provider {source.provider.value} is not registered")
            problem = adapter.validate_source(slug, source)
            if problem:
                raise ProviderNotConfigured(slug, problem)
        logger.info(
            "provider_registry_validated",
            tournaments=len(self._settings.tournaments),
            providers=[p.value for p in self._adapters],
        )

    async def start(self) -> None:
        for adapter in self._adapters.values():
            await adapter.start()

    async def close(self) -> None:
        for adapter in self._adapters.values():
            await adapter.close()


def _breaker(name: ProviderName, settings: Settings) -> CircuitBreaker:
    return CircuitBreaker(
        name.value,
        failure_threshold=settings.breaker_failure_threshold,
        recovery_timeout_s=settings.breaker_recovery_timeout_s,
        counts_as_failure=trips_breaker,
    )


def build_registry(
    settings: Settings | None = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderRegistry:
    """Construct the registry with all three adapters and their own caches."""
    settings = settings or get_settings()
    adapters: dict[ProviderName, BaseAdapter] = {
        ProviderName.LICHESS_BROADCAST: LichessBroadcastAdapter(
            UpstreamHTTPClient(
                ProviderName.LICHESS_BROADCAST.value,
                settings.lichess_base_url,
                transport=transport,
            ),
            tournament_ttl_ms=settings.rest_tournament_ttl_ms,
            round_ttl_ms=settings.rest_round_ttl_ms,
            breaker=_breaker(ProviderName.LICHESS_BROADCAST, settings),
        ),
        ProviderName.LIVECHESSCLOUD: LiveChessCloudAdapter(
            UpstreamHTTPClient(
                ProviderName.LIVECHESSCLOUD.value,
                settings.livechesscloud_base_url,
                transport=transport,
            ),
            probe_ttl_ms=settings.lcc_probe_ttl_ms,
            max_concurrency=settings.lcc_max_concurrency,
            limit=settings.lcc_default_limit,
            breaker=_breaker(ProviderName.LIVECHESSCLOUD, settings),
        ),
        ProviderName.OFFICIAL_ARCHIVE: OfficialArchiveAdapter(
            UpstreamHTTPClient(ProviderName.OFFICIAL_ARCHIVE.value, transport=transport),
            bundle_ttl_ms=settings.archive_bundle_ttl_ms,
            round_ttl_ms=settings.archive_round_ttl_ms,
            round_path_pattern=settings.archive_round_pattern,
            breaker=_breaker(ProviderName.OFFICIAL_ARCHIVE, settings),
        ),
    }
    return ProviderRegistry(adapters, settings)
