"""Entry points exposed to the discovery/search layer."""

from .service import SkillSyncService, SyncStatusReport

__all__ = ["SkillSyncService", "SyncStatusReport"]
