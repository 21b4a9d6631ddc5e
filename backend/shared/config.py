"""
Central configuration for the broadcast engine services.
Uses pydantic-settings for env-based config with validation.
"""
from __future__ import annotations

from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.models.enums import ProviderName


class Environment(str, Enum):
    DEV = "dev"
    STAGING = "staging"
    PRODUCTION = "production"


class TournamentSource(BaseModel):
    """Which upstream feeds a tournament, and the ids that upstream knows it by."""

    provider: ProviderName
    upstream_id: str = ""
    archive_url: Optional[str] = None
    # Pinned upstream round ids, keyed by round number (Broadcast-REST only).
    round_ids: dict[int, str] = Field(default_factory=dict)


DEFAULT_TOURNAMENTS: dict[str, TournamentSource] = {
    "worldcup2025": TournamentSource(
        provider=ProviderName.OFFICIAL_ARCHIVE,
        archive_url="https://worldcup2025.fide.com/files/cup2025.zip",
    ),
}

DEFAULT_SLUG_ALIASES: dict[str, str] = {
    "worldcup": "worldcup2025",
    "armenian-championship-2026": "armenian-championship-highest-league-2026",
    "tata-steel-masters-2026": "tata-steel-2026",
}


class Settings(BaseSettings):
    """Root settings shared across the api and ingest services."""

    model_config = SettingsConfigDict(
        env_prefix="CV_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── General ──────────────────────────────────────────────
    environment: Environment = Environment.DEV
    debug: bool = False
    log_level: str = "INFO"
    instance_id: str = Field(default="", description="Pod/container ID bound to every log line")

    # ── API ──────────────────────────────────────────────────
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_workers: int = 1
    cors_origins: list[str] = ["*"]

    # ── Upstream HTTP ────────────────────────────────────────
    upstream_timeout_s: float = 10.0
    user_agent: str = "chessview-broadcast/1.0"
    lichess_base_url: str = "https://lichess.org"
    livechesscloud_base_url: str = "https://1.pool.livechesscloud.com/get"

    # ── Cache TTLs ───────────────────────────────────────────
    rest_tournament_ttl_ms: int = 20_000
    rest_round_ttl_ms: int = 4_000
    lcc_probe_ttl_ms: int = 4_000
    archive_bundle_ttl_ms: int = 600_000
    archive_round_ttl_ms: int = 600_000
    replay_position_ttl_ms: int = 30_000

    # ── Adapters ─────────────────────────────────────────────
    lcc_max_concurrency: int = 5
    lcc_default_limit: int = 64
    archive_round_pattern: str = r"(?:^|/)round{round}game[^/]*/games\.pgn$"

    # ── Circuit breaker ──────────────────────────────────────
    breaker_failure_threshold: int = 5
    breaker_recovery_timeout_s: float = 30.0

    # ── Tournaments ──────────────────────────────────────────
    tournaments: dict[str, TournamentSource] = Field(
        default_factory=lambda: dict(DEFAULT_TOURNAMENTS),
        description="Tournament slug -> upstream provider mapping.",
    )
    slug_aliases: dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_SLUG_ALIASES))

    # ── Live feed ────────────────────────────────────────────
    live_watch: list[str] = Field(
        default_factory=list,
        description="Tournament slugs whose current round is refreshed in the background.",
    )
    live_poll_interval_s: float = 20.0

    # ── Replay sources ───────────────────────────────────────
    pgn_root: str = "data/tournaments"
    manifest_path: Optional[str] = None
    demo_fallback_enabled: bool = True

    # ── Observability ────────────────────────────────────────
    metrics_enabled: bool = True

    def canonical_slug(self, slug: str) -> str:
        key = slug.strip().lower()
        return self.slug_aliases.get(key, key)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Singleton access to validated settings."""
    return Settings()
