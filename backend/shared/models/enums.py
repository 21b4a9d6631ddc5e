"""Domain enumerations for the broadcast engine."""
from __future__ import annotations

from enum import Enum


class ProviderName(str, Enum):
    LICHESS_BROADCAST = "lichess_broadcast"
    LIVECHESSCLOUD = "livechesscloud"
    OFFICIAL_ARCHIVE = "official_archive"


class Side(str, Enum):
    WHITE = "white"
    BLACK = "black"

    @property
    def opponent(self) -> "Side":
        return Side.BLACK if self == Side.WHITE else Side.WHITE


class BoardStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    FINAL = "final"


class GameResult(str, Enum):
    WHITE_WIN = "1-0"
    BLACK_WIN = "0-1"
    DRAW = "draw"
    UNKNOWN = "unknown"

    @property
    def is_decided(self) -> bool:
        return self in (GameResult.WHITE_WIN, GameResult.BLACK_WIN, GameResult.DRAW)


class ParseMode(str, Enum):
    FULL = "full"
    PARTIAL = "partial"


class ReasonCode(str, Enum):
    """Why a replay resolution came out the way it did."""
    RESOLVED_FINAL = "resolved_final"
    EXPLICIT_ZERO_MOVES = "explicit_zero_moves"
    MISSING_DATA_PENDING = "missing_data_pending"
    PARSE_FAILED = "parse_failed"
    CACHED_START_BLOCKING_UPGRADE = "cached_start_blocking_upgrade"


class ReplaySource(str, Enum):
    SNAPSHOT = "snapshot"
    MANIFEST = "manifest"
    FILE = "file"
    DEMO = "demo"
    POSITION_CACHE = "position_cache"


class FailureKind(str, Enum):
    """Classification tag carried by every upstream failure."""
    TIMEOUT = "timeout"
    CONNECT = "connect"
    HTTP_STATUS = "http_status"
    TRANSPORT = "transport"
    INVALID_PAYLOAD = "invalid_payload"
    CIRCUIT_OPEN = "circuit_open"
    INTERNAL = "internal"
