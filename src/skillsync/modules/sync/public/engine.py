"""One reconciliation pass against the remote registry."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterable, Optional, Protocol, Sequence

from skillsync.shared.errors import RegistryError, StorageError
from skillsync.shared.types import utc_now

from ..internal.config_repository import SyncConfigRepository
from ..internal.history_repository import SyncHistoryRepository
from ..internal.registry import SkillRegistry
from ..internal.skill_repository import SkillRepository, SkillVersionRepository
from .types import (
    RegistryPage,
    RemoteSkill,
    RunStatus,
    SyncCounts,
    SyncOptions,
    SyncPhase,
    SyncProgress,
    SyncResult,
    SyncStatus,
)

logger = logging.getLogger(__name__)

OFFLINE_ERROR = "Registry client is in offline mode; cannot sync"
UNHEALTHY_ERROR = "Registry is unhealthy; try again later"


class EmbeddingSink(Protocol):
    def batch_insert(self, items: Iterable[tuple[str, Sequence[float], str]]) -> Any:
        """Store items; the result's ``errors`` lists rejected ids."""

    def remove_embedding(self, skill_id: str) -> bool: ...

    def has_embedding(self, skill_id: str) -> bool: ...


EmbedFn = Callable[[str], Optional[Sequence[float]]]


@dataclass
class _RunState:
    added: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    removed: int = 0
    processed: int = 0
    errors: list[str] = field(default_factory=list)

    def counts(self) -> SyncCounts:
        return SyncCounts(
            added=self.added,
            updated=self.updated,
            unchanged=self.unchanged,
            failed=self.failed,
            removed=self.removed,
        )


class SyncEngine:
    """Fetch, diff and apply registry descriptors page by page.

    Each page is committed in its own transaction, so an interrupted run
    keeps what it already applied. Registry failures never raise out of
    ``sync()``; local storage failures do.
    """

    def __init__(
        self,
        registry: SkillRegistry,
        skills: SkillRepository,
        config_repo: SyncConfigRepository,
        history: SyncHistoryRepository,
        *,
        versions: Optional[SkillVersionRepository] = None,
        embeddings: Optional[EmbeddingSink] = None,
        embed_fn: Optional[EmbedFn] = None,
        page_size: int = 100,
        max_retries: int = 2,
        retry_delay: float = 0.5,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.registry = registry
        self.skills = skills
        self.config_repo = config_repo
        self.history = history
        self.versions = versions
        self.embeddings = embeddings
        self.embed_fn = embed_fn
        self.page_size = page_size
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.clock = clock
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def get_status(self) -> SyncStatus:
        recent = self.history.list_recent(1)
        return SyncStatus(
            config=self.config_repo.get_config(),
            last_run=recent[0] if recent else None,
            is_running=self._running,
            is_due=self.config_repo.is_sync_due(),
        )

    async def sync(self, options: Optional[SyncOptions] = None) -> SyncResult:
        options = options or SyncOptions()
        if self._running:
            logger.warning("Sync requested while another run is in progress")
            return SyncResult(
                success=False, error="Sync already in progress", dry_run=options.dry_run
            )
        self._running = True
        try:
            return await self._run(options)
        finally:
            self._running = False

    # --- run ---
    async def _run(self, options: SyncOptions) -> SyncResult:
        started = time.perf_counter()
        state = _RunState()
        report = _ProgressReporter(options.on_progress)
        page_size = options.page_size or self.page_size

        report("connecting", message="Checking registry availability")
        error = await self._preflight()

        run_id: Optional[str] = None
        if not options.dry_run:
            abandoned = self.history.abandon_stale_runs()
            if abandoned:
                logger.warning("Closed %d sync run(s) left open by an earlier process", abandoned)
            run_id = self.history.start_run()

        completed = False
        seen: set[str] = set()
        offset = 0
        total = 0
        while error is None:
            report("fetching", current=offset, total=total, message=f"Fetching from offset {offset}")
            try:
                page = await self._fetch_page(offset, page_size)
            except RegistryError as exc:
                error = f"Failed to fetch skills at offset {offset}: {exc}"
                break

            total = page.total
            fresh: list[RemoteSkill] = []
            for skill in page.items:
                if skill.id not in seen:
                    seen.add(skill.id)
                    fresh.append(skill)
            state.processed += len(fresh)
            if fresh:
                await self._apply_page(fresh, options, state, report, total)

            offset += len(page.items)
            if not page.items or offset >= page.total:
                completed = True

            if completed:
                break

        if completed:
            self._reconcile_removed(seen, options, state)

        return self._finish(state, run_id, options, started, completed, error, report)

    async def _preflight(self) -> Optional[str]:
        if self.registry.is_offline():
            return OFFLINE_ERROR
        health = await asyncio.to_thread(self.registry.check_health)
        if health == "unhealthy":
            return UNHEALTHY_ERROR
        if health == "degraded":
            logger.warning("Registry reports degraded health; syncing anyway")
        return None

    async def _fetch_page(self, offset: int, limit: int) -> RegistryPage:
        attempt = 0
        while True:
            try:
                return await asyncio.to_thread(self.registry.list_skills, offset, limit)
            except RegistryError as exc:
                if attempt >= self.max_retries:
                    raise
                delay = self.retry_delay * (2**attempt)
                attempt += 1
                logger.warning(
                    "Registry fetch failed (attempt %d/%d): %s; retrying in %.1fs",
                    attempt,
                    self.max_retries + 1,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)

    async def _apply_page(
        self,
        items: list[RemoteSkill],
        options: SyncOptions,
        state: _RunState,
        report: "_ProgressReporter",
        total: int,
    ) -> None:
        report("comparing", current=state.processed, total=total)
        local_hashes = self.skills.get_hashes(skill.id for skill in items)

        changed: list[tuple[RemoteSkill, bool]] = []
        backfill: list[RemoteSkill] = []
        for skill in items:
            local_hash = local_hashes.get(skill.id)
            if local_hash is None:
                changed.append((skill, True))
            elif options.force or local_hash != skill.content_hash:
                changed.append((skill, False))
            else:
                if self._embedding_enabled and not self.embeddings.has_embedding(skill.id):
                    backfill.append(skill)
                else:
                    state.unchanged += 1

        if options.dry_run:
            state.added += sum(1 for _, is_new in changed if is_new)
            state.updated += sum(1 for _, is_new in changed if not is_new)
            state.unchanged += len(backfill)
            return

        report("upserting", current=state.processed, total=total)
        embedded = await self._embed_many([*backfill, *(skill for skill, _ in changed)], state)
        state.unchanged += sum(1 for skill in backfill if skill.id in embedded)
        applied = [(skill, is_new) for skill, is_new in changed if skill.id in embedded]

        if not applied:
            return
        with self.skills.db.transaction():
            self.skills.upsert_many(skill for skill, _ in applied)
            if self.versions is not None:
                for skill, _ in applied:
                    self.versions.record_version(skill.id, skill.content_hash)
        state.added += sum(1 for _, is_new in applied if is_new)
        state.updated += sum(1 for _, is_new in applied if not is_new)

    @property
    def _embedding_enabled(self) -> bool:
        return self.embeddings is not None and self.embed_fn is not None

    async def _embed_many(self, skills: list[RemoteSkill], state: _RunState) -> set[str]:
        """Store embeddings before metadata; returns the ids safe to apply.

        Vectors for the page are written in one batch so the store commits
        once per page.
        """
        if not self._embedding_enabled or not skills:
            return {skill.id for skill in skills}
        ok: set[str] = set()
        batch: list[tuple[str, Sequence[float], str]] = []
        for skill in skills:
            text = skill.embedding_text()
            try:
                vector = await asyncio.to_thread(self.embed_fn, text)
            except StorageError:
                raise
            except Exception as exc:
                self._mark_failed(skill.id, exc, state)
                continue
            if vector is None:
                ok.add(skill.id)
            else:
                batch.append((skill.id, vector, text))

        if batch:
            result = self.embeddings.batch_insert(batch)
            rejected = {error.skill_id: error.error for error in result.errors}
            for skill_id, _, _ in batch:
                if skill_id in rejected:
                    self._mark_failed(skill_id, rejected[skill_id], state)
                else:
                    ok.add(skill_id)
        return ok

    @staticmethod
    def _mark_failed(skill_id: str, error: Any, state: _RunState) -> None:
        state.failed += 1
        state.errors.append(f"{skill_id}: {error}")
        logger.warning("Embedding failed for %s: %s", skill_id, error)

    def _reconcile_removed(self, seen: set[str], options: SyncOptions, state: _RunState) -> None:
        missing = sorted(self.skills.list_ids() - seen)
        if not missing:
            return
        state.removed = len(missing)
        if options.dry_run:
            return
        with self.skills.db.transaction():
            self.skills.delete_many(missing)
        if self.embeddings is not None:
            for skill_id in missing:
                self.embeddings.remove_embedding(skill_id)
        logger.info("Removed %d skill(s) no longer in the registry", len(missing))

    def _finish(
        self,
        state: _RunState,
        run_id: Optional[str],
        options: SyncOptions,
        started: float,
        completed: bool,
        error: Optional[str],
        report: "_ProgressReporter",
    ) -> SyncResult:
        status: RunStatus
        if completed:
            status = "success" if state.failed == 0 else "partial"
        else:
            status = "partial" if state.added + state.updated > 0 else "failure"

        message = error
        if message is None and state.failed:
            message = f"{state.failed} skill(s) failed to apply"

        if run_id is not None:
            self.history.complete_run(run_id, state.counts(), status, message)
            if completed:
                self.config_repo.set_last_sync(self.clock(), state.added + state.updated)
                if message:
                    self.config_repo.set_last_sync_error(message)
            else:
                self.config_repo.set_last_sync_error(message or "Sync did not complete")

        duration_ms = int((time.perf_counter() - started) * 1000)
        report("complete", current=state.processed, total=state.processed, message=status)
        logger.info(
            "Sync %s: +%d ~%d =%d -%d !%d in %dms%s",
            status,
            state.added,
            state.updated,
            state.unchanged,
            state.removed,
            state.failed,
            duration_ms,
            " (dry run)" if options.dry_run else "",
        )
        return SyncResult(
            success=completed,
            skills_added=state.added,
            skills_updated=state.updated,
            skills_unchanged=state.unchanged,
            skills_removed=state.removed,
            skills_failed=state.failed,
            total_processed=state.processed,
            duration_ms=duration_ms,
            error=error,
            errors=list(state.errors),
            dry_run=options.dry_run,
            run_id=run_id,
        )


class _ProgressReporter:
    def __init__(self, callback: Optional[Callable[[SyncProgress], Any]]):
        self.callback = callback

    def __call__(
        self, phase: SyncPhase, *, current: int = 0, total: int = 0, message: str = ""
    ) -> None:
        if self.callback is None:
            return
        try:
            self.callback(SyncProgress(phase=phase, current=current, total=total, message=message))
        except Exception:
            logger.exception("Progress callback failed during %s", phase)


__all__ = ["SyncEngine", "EmbeddingSink", "EmbedFn"]
