"""
Prometheus metrics for the broadcast engine.
Collectors are module-level; prometheus_client owns the default registry.
"""
from __future__ import annotations

from prometheus_client import Counter, Histogram, Info

# ── Upstream ────────────────────────────────────────────────────────────
UPSTREAM_REQUESTS = Counter(
    "cv_upstream_requests_total",
    "Total upstream HTTP requests",
    ["provider", "status"],
)
UPSTREAM_LATENCY = Histogram(
    "cv_upstream_latency_seconds",
    "Upstream request latency in seconds",
    ["provider"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
ROUND_FETCHES = Counter(
    "cv_round_fetches_total",
    "Round snapshot fetches by outcome",
    ["provider", "outcome"],
)
ROUND_FETCH_LATENCY = Histogram(
    "cv_round_fetch_seconds",
    "End-to-end round snapshot fetch time",
    ["provider"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

# ── Cache ───────────────────────────────────────────────────────────────
CACHE_LOOKUPS = Counter(
    "cv_cache_lookups_total",
    "TTL cache lookups by result (hit, miss, coalesced)",
    ["cache", "result"],
)

# ── Notation / replay ───────────────────────────────────────────────────
PARSE_OUTCOMES = Counter(
    "cv_parse_outcomes_total",
    "Movetext parse outcomes by mode",
    ["mode"],
)
REPLAY_RESOLUTIONS = Counter(
    "cv_replay_resolutions_total",
    "Replay resolutions by reason code and source",
    ["reason", "source"],
)
LIVE_FEED_VERSION_BUMPS = Counter(
    "cv_live_feed_version_bumps_total",
    "Round versions incremented because the board payload changed",
    ["provider"],
)

# ── API ─────────────────────────────────────────────────────────────────
API_LATENCY = Histogram(
    "cv_api_request_seconds",
    "API request latency",
    ["route", "status"],
    buckets=(0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 10.0),
)

SERVICE_INFO = Info("cv_service", "Service build information")

