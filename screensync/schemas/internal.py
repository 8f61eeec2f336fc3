"""
Internal data schemas for reconciliation, upload and publish results.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from screensync.common.exceptions import ErrorCode


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class StepError:
    """Failure of one named engine/pipeline step."""

    step: str
    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "code": self.code.value,
            "message": self.message,
            "details": self.details,
        }

    def __str__(self) -> str:
        return f"{self.step}: {self.code.value}: {self.message}"


@dataclass
class StepRecord:
    """Audit entry for one executed step."""

    name: str
    ok: bool
    duration_ms: float = 0.0
    detail: str | None = None


@dataclass
class VerifyOutcome:
    """Result of the read-after-write check against live remote state."""

    ok: bool
    source_type: str | None = None
    source_id: str | None = None
    expected_source_id: str | None = None
    live_media_ids: list[int] = field(default_factory=list)
    missing_media_ids: list[int] = field(default_factory=list)
    attempts: int = 1
    code: ErrorCode | None = None
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["code"] = self.code.value if self.code else None
        return data


@dataclass
class ReconciliationReport:
    """Per-invocation outcome of reconciling one screen."""

    screen_id: int
    player_id: str | None
    correlation_id: str
    mode: str = "reconcile"     # reconcile | plan | verify_only | health
    ok: bool = False

    playlist_ids: dict[str, str | None] = field(default_factory=dict)

    # Desired state
    desired_media_ids: list[int] = field(default_factory=list)     # ads
    expected_media_ids: list[int] = field(default_factory=list)    # combined
    match_reasons: dict[int, str] = field(default_factory=dict)    # advertiser_id -> reason
    pending_media: list[int] = field(default_factory=list)         # advertiser ids

    # Remote item lists, keyed by playlist role
    before: dict[str, list[int]] = field(default_factory=dict)
    after: dict[str, list[int]] = field(default_factory=dict)

    verify: VerifyOutcome | None = None
    error: StepError | None = None
    errors: list[StepError] = field(default_factory=list)
    steps: list[StepRecord] = field(default_factory=list)

    content_writes: int = 0
    pushed: bool = False
    self_healed: bool = False
    duration_ms: float = 0.0

    @property
    def verified(self) -> bool:
        return self.ok and self.verify is not None and self.verify.ok

    @property
    def missing_media_ids(self) -> list[int]:
        if self.verify and self.verify.missing_media_ids:
            return self.verify.missing_media_ids
        if self.error:
            return list(self.error.details.get("missing_media_ids", []))
        return []

    def fail(self, error: StepError) -> "ReconciliationReport":
        self.ok = False
        self.error = error
        self.errors.append(error)
        return self

    def to_dict(self) -> dict[str, Any]:
        return {
            "screen_id": self.screen_id,
            "player_id": self.player_id,
            "correlation_id": self.correlation_id,
            "mode": self.mode,
            "ok": self.ok,
            "verified": self.verified,
            "playlist_ids": self.playlist_ids,
            "desired_media_ids": self.desired_media_ids,
            "expected_media_ids": self.expected_media_ids,
            "missing_media_ids": self.missing_media_ids,
            "match_reasons": {str(k): v for k, v in self.match_reasons.items()},
            "pending_media": self.pending_media,
            "before": self.before,
            "after": self.after,
            "verify": self.verify.to_dict() if self.verify else None,
            "error": self.error.to_dict() if self.error else None,
            "errors": [e.to_dict() for e in self.errors],
            "steps": [asdict(s) for s in self.steps],
            "content_writes": self.content_writes,
            "pushed": self.pushed,
            "self_healed": self.self_healed,
            "duration_ms": round(self.duration_ms, 1),
        }


@dataclass
class ScreenPublishResult:
    screen_id: int
    player_id: str | None
    verified: bool
    match_reason: str | None = None
    error: StepError | None = None
    report: ReconciliationReport | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "screen_id": self.screen_id,
            "player_id": self.player_id,
            "verified": self.verified,
            "match_reason": self.match_reason,
            "error": self.error.to_dict() if self.error else None,
            "report": self.report.to_dict() if self.report else None,
        }


@dataclass
class PublishResult:
    """Aggregate outcome of publishing one advertiser."""

    advertiser_id: int
    correlation_id: str
    ok: bool = False
    mode: str = "publish"       # publish | verify_only
    asset_id: int | None = None
    media_id: int | None = None
    screens: list[ScreenPublishResult] = field(default_factory=list)
    error: StepError | None = None
    duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "mode": self.mode,
            "advertiser_id": self.advertiser_id,
            "correlation_id": self.correlation_id,
            "asset_id": self.asset_id,
            "media_id": self.media_id,
            "screens": [s.to_dict() for s in self.screens],
            "error": self.error.to_dict() if self.error else None,
            "duration_ms": round(self.duration_ms, 1),
        }


@dataclass
class PlaybackState:
    """Read-only expected-vs-actual view of one screen."""

    screen_id: int
    player_id: str | None
    sync_status: str            # in_sync | out_of_sync | layout_forbidden | unlinked | unprovisioned | unknown
    expected: list[int] = field(default_factory=list)
    actual: list[int] = field(default_factory=list)
    missing_media_ids: list[int] = field(default_factory=list)
    unexpected_media_ids: list[int] = field(default_factory=list)
    source_type: str | None = None
    source_id: str | None = None
    combined_playlist_id: str | None = None
    error: str | None = None
    checked_at: str | None = None
    cached: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PlaybackState":
        return cls(**data)


@dataclass
class UploadOutcome:
    """Result of one UploadJobWorker attempt."""

    job_id: int
    status: str
    attempt: int
    remote_media_id: int | None = None
    error_code: str | None = None
    error: str | None = None
    next_retry_at: datetime | None = None

    @property
    def ready(self) -> bool:
        return self.status == "READY"

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["next_retry_at"] = _iso(self.next_retry_at)
        return data
