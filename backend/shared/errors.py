"""Typed failures raised inside the engine.

Only ``ProviderNotConfigured`` is allowed to escape to a caller at startup; the
adapters convert ``UpstreamError`` into structured results before returning.
"""
from __future__ import annotations

from typing import Optional

from shared.models.enums import FailureKind


class UpstreamError(Exception):
    """An upstream call failed; ``kind`` says how."""

    def __init__(
        self,
        kind: FailureKind,
        url: str,
        message: str = "",
        status: Optional[int] = None,
    ) -> None:
        self.kind = kind
        self.url = url
        self.status = status
        self.message = message or kind.value
        super().__init__(f"{kind.value}: {self.message} ({url})")


class ProviderNotConfigured(Exception):
    """A tournament has no usable provider configuration."""

    def __init__(self, slug: str, detail: str = "no provider configured") -> None:
        self.slug = slug
        self.detail = detail
        super().__init__(f"{slug}: {detail}")


class InvalidBoardIdentifier(ValueError):
    def __init__(self, raw: str) -> None:
        self.raw = raw
        super().__init__(f"Invalid board identifier: {raw!r}")
