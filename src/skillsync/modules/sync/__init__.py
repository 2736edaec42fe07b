"""Public API for the sync module."""

from .internal.config_repository import SyncConfigRepository, interval_for
from .internal.history_repository import SyncHistoryRepository
from .internal.registry import RegistryClient, SkillRegistry, parse_page
from .internal.skill_repository import SkillRepository, SkillVersionRepository
from .public.background import (
    BackgroundSyncService,
    SyncRunner,
    create_background_sync_service,
)
from .public.engine import EmbeddingSink, SyncEngine
from .public.types import (
    FREQUENCY_INTERVALS_MS,
    BackgroundSyncOptions,
    BackgroundSyncState,
    HistoryStats,
    LocalSkill,
    RegistryPage,
    RemoteSkill,
    SyncConfig,
    SyncCounts,
    SyncFrequency,
    SyncHistoryEntry,
    SyncOptions,
    SyncProgress,
    SyncResult,
    SyncStatus,
    compute_content_hash,
)

__all__ = [
    "SyncEngine",
    "EmbeddingSink",
    "BackgroundSyncService",
    "SyncRunner",
    "create_background_sync_service",
    "SyncConfigRepository",
    "SyncHistoryRepository",
    "SkillRepository",
    "SkillVersionRepository",
    "RegistryClient",
    "SkillRegistry",
    "parse_page",
    "interval_for",
    "FREQUENCY_INTERVALS_MS",
    "BackgroundSyncOptions",
    "BackgroundSyncState",
    "HistoryStats",
    "LocalSkill",
    "RegistryPage",
    "RemoteSkill",
    "SyncConfig",
    "SyncCounts",
    "SyncFrequency",
    "SyncHistoryEntry",
    "SyncOptions",
    "SyncProgress",
    "SyncResult",
    "SyncStatus",
    "compute_content_hash",
]
