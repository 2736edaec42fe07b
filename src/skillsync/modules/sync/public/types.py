from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Literal, Optional

from pydantic import Field, model_validator

from skillsync.shared.types import FrozenModel

SyncFrequency = Literal["daily", "weekly", "manual"]
RunStatus = Literal["running", "success", "failure", "partial"]
SyncPhase = Literal["connecting", "fetching", "comparing", "upserting", "complete"]
HealthStatus = Literal["healthy", "degraded", "unhealthy"]

FREQUENCY_INTERVALS_MS: dict[str, int] = {
    "daily": 24 * 60 * 60 * 1000,
    "weekly": 7 * 24 * 60 * 60 * 1000,
    "manual": 0,
}

# Fields that make up a skill's content identity.
CONTENT_FIELDS = (
    "name",
    "description",
    "author",
    "repo_url",
    "tags",
    "quality_score",
    "trust_tier",
)


def compute_content_hash(data: dict[str, Any]) -> str:
    """sha256 over the canonical JSON of the content fields."""
    payload = {key: data.get(key) for key in CONTENT_FIELDS}
    if payload.get("tags") is not None:
        payload["tags"] = sorted(str(t) for t in payload["tags"])
    canonical = json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)
    return "sha256:" + hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class SyncConfig(FrozenModel):
    """Scheduling preferences (singleton row)."""

    enabled: bool = True
    frequency: SyncFrequency = "daily"
    interval_ms: int = Field(
        default=FREQUENCY_INTERVALS_MS["daily"],
        ge=0,
        description="Derived from frequency; 0 for manual",
    )
    last_sync_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    last_sync_count: int = 0
    last_sync_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SyncCounts(FrozenModel):
    added: int = Field(default=0, ge=0)
    updated: int = Field(default=0, ge=0)
    unchanged: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    removed: int = Field(default=0, ge=0)


class SyncHistoryEntry(FrozenModel):
    """One sync run; finalized once and never changed afterwards."""

    run_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    status: RunStatus = "running"
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    removed: int = 0
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None


class HistoryStats(FrozenModel):
    total_runs: int = 0
    successful_runs: int = 0
    failed_runs: int = 0
    partial_runs: int = 0
    last_success_at: Optional[datetime] = None
    average_duration_ms: Optional[float] = Field(
        default=None, description="Mean duration of finished runs"
    )


class RemoteSkill(FrozenModel):
    """Skill descriptor as served by the registry (read-only)."""

    id: str = Field(..., min_length=1)
    name: str
    description: str = ""
    author: Optional[str] = None
    repo_url: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    quality_score: Optional[float] = None
    trust_tier: Optional[str] = None
    content_hash: str = Field(..., description="Registry hash, or computed from content")
    updated_at: Optional[datetime] = None

    @model_validator(mode="before")
    @classmethod
    def fill_content_hash(cls, data: Any) -> Any:
        if isinstance(data, dict):
            if not data.get("content_hash"):
                data = dict(data)
                data["content_hash"] = data.get("contentHash") or compute_content_hash(data)
            if data.get("tags") is None:
                data = dict(data)
                data["tags"] = []
        return data

    def embedding_text(self) -> str:
        return f"{self.name}: {self.description}".strip() if self.description else self.name


class RegistryPage(FrozenModel):
    items: list[RemoteSkill] = Field(default_factory=list)
    total: int = Field(default=0, ge=0)
    offset: int = 0
    limit: int = 0


class LocalSkill(FrozenModel):
    """Cached skill metadata."""

    id: str
    name: str
    description: str = ""
    author: Optional[str] = None
    repo_url: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    quality_score: Optional[float] = None
    trust_tier: Optional[str] = None
    content_hash: str
    remote_updated_at: Optional[datetime] = None
    synced_at: datetime


class SyncProgress(FrozenModel):
    phase: SyncPhase
    current: int = 0
    total: int = 0
    message: str = ""


@dataclass(frozen=True)
class SyncOptions:
    """Per-run options.

    ``force`` re-applies every descriptor (metadata and embedding) even when
    its hash is unchanged; ``dry_run`` classifies without writing anything.
    """

    force: bool = False
    dry_run: bool = False
    page_size: Optional[int] = None
    on_progress: Optional[Callable[[SyncProgress], None]] = None


class SyncResult(FrozenModel):
    success: bool
    skills_added: int = 0
    skills_updated: int = 0
    skills_unchanged: int = 0
    skills_removed: int = 0
    skills_failed: int = 0
    total_processed: int = Field(default=0, description="Descriptors fetched")
    duration_ms: int = 0
    error: Optional[str] = None
    errors: list[str] = Field(default_factory=list)
    dry_run: bool = False
    run_id: Optional[str] = None


class SyncStatus(FrozenModel):
    config: SyncConfig
    last_run: Optional[SyncHistoryEntry] = None
    is_running: bool = False
    is_due: bool = False


@dataclass(frozen=True)
class BackgroundSyncOptions:
    check_interval_seconds: float = 60.0
    sync_on_start: bool = True
    on_sync_complete: Optional[Callable[[SyncResult], None]] = None
    on_sync_error: Optional[Callable[[Exception], None]] = None


class BackgroundSyncState(FrozenModel):
    """Read-only snapshot of the scheduler."""

    is_started: bool = False
    is_running: bool = False
    last_result: Optional[SyncResult] = None
    last_error: Optional[str] = None
    checks_performed: int = 0
    syncs_triggered: int = 0


__all__ = [
    "BackgroundSyncOptions",
    "BackgroundSyncState",
    "CONTENT_FIELDS",
    "FREQUENCY_INTERVALS_MS",
    "HealthStatus",
    "HistoryStats",
    "LocalSkill",
    "RegistryPage",
    "RemoteSkill",
    "RunStatus",
    "SyncConfig",
    "SyncCounts",
    "SyncFrequency",
    "SyncHistoryEntry",
    "SyncOptions",
    "SyncPhase",
    "SyncProgress",
    "SyncResult",
    "SyncStatus",
    "compute_content_hash",
]
