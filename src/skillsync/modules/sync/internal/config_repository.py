"""Persistence for the singleton sync configuration row."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from skillsync.modules.storage import Database, Row
from skillsync.shared.errors import InvalidArgumentError
from skillsync.shared.types import from_iso, to_iso, utc_now

from ..public.types import FREQUENCY_INTERVALS_MS, SyncConfig, SyncFrequency

CONFIG_ID = "default"

Clock = Callable[[], datetime]


def interval_for(frequency: str) -> int:
    try:
        return FREQUENCY_INTERVALS_MS[frequency]
    except KeyError:
        raise InvalidArgumentError(
            f"Unknown sync frequency: {frequency!r} (expected daily, weekly or manual)"
        ) from None


class SyncConfigRepository:
    """Accessor for sync scheduling preferences.

    No business logic beyond deriving ``interval_ms``/``next_sync_at`` from
    the frequency. ``clock`` is injectable so due-ness can be tested with a
    frozen time.
    """

    def __init__(self, db: Database, *, clock: Clock = utc_now):
        self.db = db
        self.clock = clock

    # --- reads ---
    def get_config(self) -> SyncConfig:
        row = self._row()
        if row is None:
            self._insert_defaults()
            row = self._row()
        return self._to_model(row)

    def calculate_next_sync(self, from_time: Optional[datetime] = None) -> Optional[datetime]:
        config = self._peek()
        if config.frequency == "manual":
            return None
        base = from_time or config.last_sync_at or self.clock()
        return base + timedelta(milliseconds=config.interval_ms)

    def is_sync_due(self, now: Optional[datetime] = None) -> bool:
        """``now >= last_sync_at + interval``; always due before the first sync."""
        config = self._peek()
        if config.last_sync_at is None:
            return True
        if config.frequency == "manual":
            return False
        now = now or self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        return now >= config.last_sync_at + timedelta(milliseconds=config.interval_ms)

    # --- writes ---
    def update_config(
        self,
        *,
        enabled: Optional[bool] = None,
        frequency: Optional[SyncFrequency] = None,
    ) -> SyncConfig:
        current = self.get_config()
        new_enabled = current.enabled if enabled is None else enabled
        new_frequency = current.frequency if frequency is None else frequency
        interval_ms = interval_for(new_frequency)

        next_sync_at = current.next_sync_at
        if frequency is not None and frequency != current.frequency:
            next_sync_at = self._next_from(current.last_sync_at, new_frequency, interval_ms)

        self.db.execute(
            """
            UPDATE sync_config
               SET enabled = ?, frequency = ?, interval_ms = ?, next_sync_at = ?, updated_at = ?
             WHERE id = ?
            """,
            (
                int(new_enabled),
                new_frequency,
                interval_ms,
                to_iso(next_sync_at),
                to_iso(self.clock()),
                CONFIG_ID,
            ),
        )
        return self.get_config()

    def enable(self) -> SyncConfig:
        return self.update_config(enabled=True)

    def disable(self) -> SyncConfig:
        return self.update_config(enabled=False)

    def set_frequency(self, frequency: SyncFrequency) -> SyncConfig:
        return self.update_config(frequency=frequency)

    def set_last_sync(self, timestamp: Optional[datetime] = None, count: int = 0) -> SyncConfig:
        """Record a completed sync; clears any previous error."""
        config = self.get_config()
        timestamp = timestamp or self.clock()
        next_sync_at = self._next_from(timestamp, config.frequency, config.interval_ms)
        self.db.execute(
            """
            UPDATE sync_config
               SET last_sync_at = ?, next_sync_at = ?, last_sync_count = ?,
                   last_sync_error = NULL, updated_at = ?
             WHERE id = ?
            """,
            (to_iso(timestamp), to_iso(next_sync_at), count, to_iso(self.clock()), CONFIG_ID),
        )
        return self.get_config()

    def set_last_sync_error(self, message: str) -> SyncConfig:
        self.get_config()
        self.db.execute(
            "UPDATE sync_config SET last_sync_error = ?, updated_at = ? WHERE id = ?",
            (message, to_iso(self.clock()), CONFIG_ID),
        )
        return self.get_config()

    def clear_error(self) -> SyncConfig:
        self.get_config()
        self.db.execute(
            "UPDATE sync_config SET last_sync_error = NULL, updated_at = ? WHERE id = ?",
            (to_iso(self.clock()), CONFIG_ID),
        )
        return self.get_config()

    def reset(self) -> SyncConfig:
        """Restore defaults in place. The row itself is never deleted."""
        self.get_config()
        self.db.execute(
            """
            UPDATE sync_config
               SET enabled = 1, frequency = 'daily', interval_ms = ?,
                   last_sync_at = NULL, next_sync_at = NULL, last_sync_count = 0,
                   last_sync_error = NULL, updated_at = ?
             WHERE id = ?
            """,
            (interval_for("daily"), to_iso(self.clock()), CONFIG_ID),
        )
        return self.get_config()

    # --- helpers ---
    def _row(self) -> Optional[Row]:
        return self.db.fetch_one("SELECT * FROM sync_config WHERE id = ?", (CONFIG_ID,))

    def _peek(self) -> SyncConfig:
        """Current config without creating the row."""
        row = self._row()
        return self._to_model(row) if row is not None else SyncConfig()

    def _insert_defaults(self) -> None:
        now = to_iso(self.clock())
        self.db.execute(
            """
            INSERT OR IGNORE INTO sync_config (id, enabled, frequency, interval_ms, created_at, updated_at)
            VALUES (?, 1, 'daily', ?, ?, ?)
            """,
            (CONFIG_ID, interval_for("daily"), now, now),
        )

    @staticmethod
    def _next_from(
        base: Optional[datetime], frequency: str, interval_ms: int
    ) -> Optional[datetime]:
        if base is None or frequency == "manual":
            return None
        return base + timedelta(milliseconds=interval_ms)

    @staticmethod
    def _to_model(row: Row) -> SyncConfig:
        return SyncConfig(
            enabled=bool(row["enabled"]),
            frequency=row["frequency"],
            interval_ms=row["interval_ms"],
            last_sync_at=from_iso(row["last_sync_at"]),
            next_sync_at=from_iso(row["next_sync_at"]),
            last_sync_count=row["last_sync_count"],
            last_sync_error=row["last_sync_error"],
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
        )
