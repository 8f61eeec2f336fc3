"""
Typed views of remote signage-platform payloads.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from screensync.common.exceptions import ErrorCode


@dataclass
class PlatformFailure:
    """Structured failure of one remote call."""

    code: ErrorCode
    message: str
    status: int | None = None
    body: str | None = None

    def __str__(self) -> str:
        if self.status is not None:
            return f"{self.code.value} (HTTP {self.status}): {self.message}"
        return f"{self.code.value}: {self.message}"


@dataclass
class PlatformResult:
    """Outcome of ``PlatformClient.request``; never raised, always returned."""

    ok: bool
    status: int | None = None
    data: Any = None
    error: PlatformFailure | None = None

    @classmethod
    def success(cls, status: int, data: Any) -> "PlatformResult":
        return cls(ok=True, status=status, data=data)

    @classmethod
    def failure(
        cls,
        code: ErrorCode,
        message: str,
        status: int | None = None,
        body: str | None = None,
    ) -> "PlatformResult":
        return cls(
            ok=False,
            status=status,
            error=PlatformFailure(code=code, message=message, status=status, body=body),
        )

    @property
    def code(self) -> ErrorCode | None:
        return self.error.code if self.error else None


@dataclass
class PlaylistItem:
    """One entry of a remote playlist (full-replace PATCH body element)."""

    id: int
    type: str = "media"
    duration: int | None = None
    priority: int | None = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "duration": self.duration,
            "priority": self.priority,
        }


@dataclass
class PlaylistSummary:
    id: str
    name: str


@dataclass
class PlaylistDetail:
    """A playlist read back with its items; ``name`` is None when the payload omits it."""

    name: str | None
    items: list[PlaylistItem]


@dataclass
class ScreenContent:
    """What a remote screen is currently set to play."""

    source_type: str | None
    source_id: str | None
    source_name: str | None = None


@dataclass
class MediaStatus:
    media_id: int
    status: str
    file_size: int | None = None


@dataclass
class MediaCreated:
    media_id: int
    upload_endpoint: str | None = None
    # True when upload_endpoint is already the presigned PUT target
    presigned: bool = False


@dataclass
class ListPage:
    results: list[Any] = field(default_factory=list)
    next: str | None = None
