"""Append-only log of sync runs."""

from __future__ import annotations

import secrets
from datetime import datetime
from typing import Callable, Optional

from skillsync.modules.storage import Database, Row
from skillsync.shared.errors import HistoryEntryFinalizedError
from skillsync.shared.types import from_iso, to_iso, utc_now

from ..public.types import HistoryStats, RunStatus, SyncCounts, SyncHistoryEntry

FINAL_STATUSES = ("success", "failure", "partial")


def generate_run_id(now: datetime) -> str:
    return f"sync-{now.strftime('%Y%m%d%H%M%S')}-{secrets.token_hex(3)}"


class SyncHistoryRepository:
    """Runs are opened by ``start_run`` and finalized exactly once."""

    def __init__(self, db: Database, *, clock: Callable[[], datetime] = utc_now):
        self.db = db
        self.clock = clock

    def start_run(self) -> str:
        now = self.clock()
        run_id = generate_run_id(now)
        self.db.execute(
            "INSERT INTO sync_history (id, started_at, status) VALUES (?, ?, 'running')",
            (run_id, to_iso(now)),
        )
        return run_id

    def complete_run(
        self,
        run_id: str,
        counts: SyncCounts,
        status: RunStatus = "success",
        error_message: Optional[str] = None,
    ) -> SyncHistoryEntry:
        if status not in FINAL_STATUSES:
            raise ValueError(f"Cannot finalize a run with status {status!r}")
        row = self.db.fetch_one(
            "SELECT started_at FROM sync_history WHERE id = ? AND status = 'running'",
            (run_id,),
        )
        if row is None:
            raise HistoryEntryFinalizedError(
                f"Sync run {run_id} does not exist or is already finalized"
            )

        finished = self.clock()
        started = from_iso(row["started_at"])
        duration_ms = max(int((finished - started).total_seconds() * 1000), 0)
        self.db.execute(
            """
            UPDATE sync_history
               SET completed_at = ?, status = ?, skills_added = ?, skills_updated = ?,
                   skills_unchanged = ?, skills_failed = ?, skills_removed = ?,
                   error_message = ?, duration_ms = ?
             WHERE id = ? AND status = 'running'
            """,
            (
                to_iso(finished),
                status,
                counts.added,
                counts.updated,
                counts.unchanged,
                counts.failed,
                counts.removed,
                error_message,
                duration_ms,
                run_id,
            ),
        )
        entry = self.get_by_id(run_id)
        assert entry is not None
        return entry

    def fail_run(
        self, run_id: str, message: str, counts: Optional[SyncCounts] = None
    ) -> SyncHistoryEntry:
        return self.complete_run(run_id, counts or SyncCounts(), "failure", message)

    def record_run(self, entry: SyncHistoryEntry) -> SyncHistoryEntry:
        """Append an entry that is already finished."""
        if entry.status not in FINAL_STATUSES:
            raise ValueError("record_run only accepts finished entries")
        self.db.execute(
            """
            INSERT INTO sync_history (
                id, started_at, completed_at, status, skills_added, skills_updated,
                skills_unchanged, skills_failed, skills_removed, error_message, duration_ms
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.run_id,
                to_iso(entry.started_at),
                to_iso(entry.finished_at or entry.started_at),
                entry.status,
                entry.added,
                entry.updated,
                entry.unchanged,
                entry.failed,
                entry.removed,
                entry.error_message,
                entry.duration_ms,
            ),
        )
        return entry

    def abandon_stale_runs(self, message: str = "Sync interrupted before completion") -> int:
        """Finalize runs left open by a process that went away."""
        stale = self.db.fetch_all("SELECT id FROM sync_history WHERE status = 'running'")
        for row in stale:
            self.fail_run(row["id"], message)
        return len(stale)

    # --- reads ---
    def get_by_id(self, run_id: str) -> Optional[SyncHistoryEntry]:
        row = self.db.fetch_one("SELECT * FROM sync_history WHERE id = ?", (run_id,))
        return self._to_model(row) if row else None

    def list_recent(self, limit: int = 10) -> list[SyncHistoryEntry]:
        rows = self.db.fetch_all(
            "SELECT * FROM sync_history ORDER BY started_at DESC, rowid DESC LIMIT ?",
            (max(limit, 0),),
        )
        return [self._to_model(row) for row in rows]

    def get_last_successful(self) -> Optional[SyncHistoryEntry]:
        row = self.db.fetch_one(
            """
            SELECT * FROM sync_history WHERE status = 'success'
             ORDER BY started_at DESC, rowid DESC LIMIT 1
            """
        )
        return self._to_model(row) if row else None

    def get_running(self) -> Optional[SyncHistoryEntry]:
        row = self.db.fetch_one(
            "SELECT * FROM sync_history WHERE status = 'running' ORDER BY started_at DESC LIMIT 1"
        )
        return self._to_model(row) if row else None

    def is_running(self) -> bool:
        return self.get_running() is not None

    def count(self) -> int:
        row = self.db.fetch_one("SELECT COUNT(*) AS n FROM sync_history")
        return row["n"] if row else 0

    def get_stats(self) -> HistoryStats:
        row = self.db.fetch_one(
            """
            SELECT COUNT(*) AS total,
                   SUM(CASE WHEN status = 'success' THEN 1 ELSE 0 END) AS successful,
                   SUM(CASE WHEN status = 'failure' THEN 1 ELSE 0 END) AS failed,
                   SUM(CASE WHEN status = 'partial' THEN 1 ELSE 0 END) AS partial,
                   AVG(CASE WHEN status != 'running' THEN duration_ms END) AS avg_duration
              FROM sync_history
            """
        )
        last = self.get_last_successful()
        return HistoryStats(
            total_runs=row["total"] or 0,
            successful_runs=row["successful"] or 0,
            failed_runs=row["failed"] or 0,
            partial_runs=row["partial"] or 0,
            last_success_at=last.finished_at if last else None,
            average_duration_ms=row["avg_duration"],
        )

    @staticmethod
    def _to_model(row: Row) -> SyncHistoryEntry:
        return SyncHistoryEntry(
            run_id=row["id"],
            started_at=from_iso(row["started_at"]),
            finished_at=from_iso(row["completed_at"]),
            status=row["status"],
            added=row["skills_added"],
            updated=row["skills_updated"],
            unchanged=row["skills_unchanged"],
            failed=row["skills_failed"],
            removed=row["skills_removed"],
            error_message=row["error_message"],
            duration_ms=row["duration_ms"],
        )
