"""Service object handed to the discovery/search layer.

Owns the database, embedding store, sync engine and background scheduler.
Build it with ``await SkillSyncService.create(config)`` and release it with
``await service.close()`` (or ``async with``).
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional, Sequence

from pydantic import Field

from skillsync.modules.embeddings import (
    EmbedFn,
    HNSWEmbeddingStore,
    SimilarityResult,
    build_embed_fn,
    hnsw_config_from_settings,
)
from skillsync.modules.storage import Database, create_database
from skillsync.modules.sync import (
    BackgroundSyncOptions,
    BackgroundSyncService,
    LocalSkill,
    RegistryClient,
    SkillRegistry,
    SkillRepository,
    SkillVersionRepository,
    SyncConfigRepository,
    SyncEngine,
    SyncHistoryEntry,
    SyncHistoryRepository,
    SyncOptions,
    SyncResult,
)
from skillsync.shared.config import Config
from skillsync.shared.errors import InvalidArgumentError
from skillsync.shared.logging import configure_logging
from skillsync.shared.types import FrozenModel, utc_now

logger = logging.getLogger(__name__)

RECENT_HISTORY_LIMIT = 5


class SyncStatusReport(FrozenModel):
    """Health/diagnostics view of sync."""

    last_sync_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    is_running: bool = False
    is_due: bool = False
    enabled: bool = True
    last_error: Optional[str] = None
    recent_history: list[SyncHistoryEntry] = Field(default_factory=list)


class SkillSyncService:
    def __init__(
        self,
        config: Config,
        database: Database,
        store: HNSWEmbeddingStore,
        skills: SkillRepository,
        config_repo: SyncConfigRepository,
        history: SyncHistoryRepository,
        engine: SyncEngine,
        background: BackgroundSyncService,
        *,
        embed_fn: Optional[EmbedFn] = None,
        registry: Optional[SkillRegistry] = None,
    ):
        self.config = config
        self.database = database
        self.store = store
        self.skills = skills
        self.config_repo = config_repo
        self.history = history
        self.engine = engine
        self.background = background
        self.embed_fn = embed_fn
        self.registry = registry
        self._closed = False

    @classmethod
    async def create(
        cls,
        config: Optional[Config] = None,
        *,
        registry: Optional[SkillRegistry] = None,
        embed_fn: Optional[EmbedFn] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "SkillSyncService":
        """Open storage and wire every component; nothing is started yet."""
        config = config or Config()
        configure_logging(config.log_level)
        database = await asyncio.to_thread(
            create_database,
            config.db_path,
            driver=config.db_driver,
            timeout=config.db_timeout_seconds,
        )
        try:
            store = await HNSWEmbeddingStore.create(
                database=database,
                config=hnsw_config_from_settings(config),
                use_hnsw=config.use_hnsw,
            )
            registry = registry or RegistryClient.from_config(config)
            embed_fn = embed_fn or build_embed_fn(config)

            skills = SkillRepository(database, clock=clock)
            config_repo = SyncConfigRepository(database, clock=clock)
            history = SyncHistoryRepository(database, clock=clock)
            engine = SyncEngine(
                registry,
                skills,
                config_repo,
                history,
                versions=SkillVersionRepository(database, clock=clock),
                embeddings=store,
                embed_fn=embed_fn,
                page_size=config.sync_page_size,
                max_retries=config.sync_max_retries,
                clock=clock,
            )
            background = BackgroundSyncService(
                engine,
                config_repo,
                BackgroundSyncOptions(
                    check_interval_seconds=config.sync_check_interval_seconds,
                    sync_on_start=config.sync_on_start,
                ),
            )
        except BaseException:
            database.close()
            raise

        return cls(
            config,
            database,
            store,
            skills,
            config_repo,
            history,
            engine,
            background,
            embed_fn=embed_fn,
            registry=registry,
        )

    async def start(self) -> None:
        await self.background.start()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            await self.background.stop()
        finally:
            try:
                self.store.close()
            finally:
                self.database.close()
                close = getattr(self.registry, "close", None)
                if callable(close):
                    close()
        logger.info("SkillSync service closed")

    async def __aenter__(self) -> "SkillSyncService":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    # --- search ---
    def search(self, query_vector: Sequence[float], limit: int = 10) -> list[SimilarityResult]:
        return self.store.find_similar(query_vector, limit)

    async def search_text(self, query: str, limit: int = 10) -> list[SimilarityResult]:
        if self.embed_fn is None:
            raise InvalidArgumentError("No embedding provider configured for text search")
        vector = await asyncio.to_thread(self.embed_fn, query)
        if vector is None:
            return []
        return self.search(vector, limit)

    def get_skill(self, skill_id: str) -> Optional[LocalSkill]:
        return self.skills.get(skill_id)

    # --- sync ---
    def get_sync_status(self) -> SyncStatusReport:
        config = self.config_repo.get_config()
        return SyncStatusReport(
            last_sync_at=config.last_sync_at,
            next_sync_at=config.next_sync_at,
            is_running=self.background.is_sync_running() or self.engine.is_running,
            is_due=self.config_repo.is_sync_due(),
            enabled=config.enabled,
            last_error=config.last_sync_error,
            recent_history=self.history.list_recent(RECENT_HISTORY_LIMIT),
        )

    async def trigger_manual_sync(self, options: Optional[SyncOptions] = None) -> SyncResult:
        return await self.background.manual_sync(options)


__all__ = ["SkillSyncService", "SyncStatusReport"]
