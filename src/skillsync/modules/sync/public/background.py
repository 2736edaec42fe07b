"""Background scheduler that triggers sync runs when they are due."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Protocol

from skillsync.shared.errors import SyncFailedError, SyncInProgressError

from ..internal.config_repository import SyncConfigRepository
from .types import BackgroundSyncOptions, BackgroundSyncState, SyncOptions, SyncResult

logger = logging.getLogger(__name__)


class SyncRunner(Protocol):
    async def sync(self, options: Optional[SyncOptions] = None) -> SyncResult: ...


class BackgroundSyncService:
    """Periodic due-check on the running event loop.

    At most one sync runs at a time: ticks arriving mid-run are skipped,
    ``manual_sync`` raises ``SyncInProgressError``. Failures are recorded
    and reported through callbacks, never raised out of the tick loop.
    """

    def __init__(
        self,
        engine: SyncRunner,
        config_repo: SyncConfigRepository,
        options: Optional[BackgroundSyncOptions] = None,
    ) -> None:
        self.engine = engine
        self.config_repo = config_repo
        self.options = options or BackgroundSyncOptions()
        self._started = False
        self._running = False
        self._last_result: Optional[SyncResult] = None
        self._last_error: Optional[str] = None
        self._checks_performed = 0
        self._syncs_triggered = 0
        self._loop_task: asyncio.Task[None] | None = None
        self._sync_task: asyncio.Task[Optional[SyncResult]] | None = None

    async def start(self) -> None:
        """Arm the periodic check. No-op when already started or disabled."""
        if self._started:
            logger.info("Background sync already started")
            return

        config = self.config_repo.get_config()
        if not config.enabled:
            logger.info("Auto-sync is disabled; background sync not started")
            return

        self._started = True
        if self.options.sync_on_start and self.should_sync_now():
            logger.info("Sync due on start; triggering")
            self._spawn_sync()

        self._loop_task = asyncio.create_task(self._run_loop(), name="skillsync-background")
        logger.info(
            "Background sync started (check every %.0fs)", self.options.check_interval_seconds
        )

    async def stop(self, *, cancel_running: bool = False) -> None:
        """Cancel the tick loop, then join (or cancel) an in-flight sync."""
        self._started = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        task = self._sync_task
        if task is not None and not task.done():
            if cancel_running:
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._sync_task = None
        logger.info("Background sync stopped")

    def should_sync_now(self) -> bool:
        return self.config_repo.get_config().enabled and self.config_repo.is_sync_due()

    async def manual_sync(self, options: Optional[SyncOptions] = None) -> SyncResult:
        """Run a sync now; raises if one is already running."""
        if self._running:
            raise SyncInProgressError()
        self._running = True
        self._syncs_triggered += 1
        try:
            result = await self.engine.sync(options)
        except Exception as exc:
            self._record_error(exc)
            raise
        finally:
            self._running = False
        self._record_result(result)
        return result

    def get_state(self) -> BackgroundSyncState:
        return BackgroundSyncState(
            is_started=self._started,
            is_running=self._running,
            last_result=self._last_result,
            last_error=self._last_error,
            checks_performed=self._checks_performed,
            syncs_triggered=self._syncs_triggered,
        )

    def is_sync_running(self) -> bool:
        return self._running

    def is_service_started(self) -> bool:
        return self._started

    # --- internals ---
    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self.options.check_interval_seconds)
            try:
                await self._check_and_sync()
            except Exception as e:
                self._last_error = str(e) or type(e).__name__
                logger.error(f"Background sync check failed: {e}", exc_info=True)

    async def _check_and_sync(self) -> None:
        self._checks_performed += 1
        if not self.config_repo.get_config().enabled:
            logger.debug("Auto-sync disabled; skipping check")
            return
        if self._running:
            logger.debug("Sync in progress; skipping check")
            return
        if self.config_repo.is_sync_due():
            task = self._spawn_sync()
            # Shielded so stopping the loop does not cancel the sync itself.
            await asyncio.shield(task)

    def _spawn_sync(self) -> asyncio.Task[Optional[SyncResult]]:
        self._sync_task = asyncio.create_task(self._trigger_sync(), name="skillsync-sync")
        return self._sync_task

    async def _trigger_sync(self) -> Optional[SyncResult]:
        if self._running:
            logger.info("Sync already in progress; skipping trigger")
            return None
        self._running = True
        self._syncs_triggered += 1
        try:
            result = await self.engine.sync()
        except Exception as exc:
            self._record_error(exc)
            return None
        finally:
            self._running = False
        self._record_result(result)
        return result

    def _record_result(self, result: SyncResult) -> None:
        self._last_result = result
        if result.success:
            self._last_error = None
        else:
            self._last_error = result.error or "Sync failed"
        self._invoke("on_sync_complete", result)
        if not result.success:
            self._invoke("on_sync_error", SyncFailedError(self._last_error, result=result))

    def _record_error(self, exc: Exception) -> None:
        self._last_error = str(exc) or type(exc).__name__
        logger.error("Sync failed: %s", exc, exc_info=True)
        self._invoke("on_sync_error", exc)

    def _invoke(self, name: str, arg: Any) -> None:
        callback = getattr(self.options, name)
        if callback is None:
            return
        try:
            callback(arg)
        except Exception:
            logger.exception("%s callback raised", name)


async def create_background_sync_service(
    engine: SyncRunner,
    config_repo: SyncConfigRepository,
    options: Optional[BackgroundSyncOptions] = None,
) -> BackgroundSyncService:
    """Build a service and start it."""
    service = BackgroundSyncService(engine, config_repo, options)
    await service.start()
    return service


__all__ = ["BackgroundSyncService", "SyncRunner", "create_background_sync_service"]
