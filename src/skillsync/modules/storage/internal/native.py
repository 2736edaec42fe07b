"""File-backed driver on the system SQLite library."""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from skillsync.shared.errors import StorageError

from ..public.types import DatabaseOptions
from .base import SqliteDatabase

logger = logging.getLogger(__name__)


def probe_native() -> tuple[bool, str | None]:
    """WAL journaling needs SQLite >= 3.7.0."""
    if sqlite3.sqlite_version_info < (3, 7, 0):
        return False, f"SQLite {sqlite3.sqlite_version} lacks WAL support"
    return True, None


class NativeDatabase(SqliteDatabase):
    driver = "native"

    def __init__(self, path: str | Path, options: DatabaseOptions | None = None):
        options = options or DatabaseOptions()
        path_str = str(path)
        super().__init__(path_str, options)

        if path_str != ":memory:":
            file_path = Path(path_str)
            if not file_path.exists():
                if options.file_must_exist or options.readonly:
                    raise StorageError(f"Database file does not exist: {path_str}")
                file_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            if options.readonly and path_str != ":memory:":
                uri = f"{Path(path_str).resolve().as_uri()}?mode=ro"
                conn = sqlite3.connect(
                    uri,
                    uri=True,
                    timeout=options.timeout,
                    isolation_level=None,
                    check_same_thread=False,
                )
            else:
                conn = sqlite3.connect(
                    path_str,
                    timeout=options.timeout,
                    isolation_level=None,
                    check_same_thread=False,
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Cannot open database {path_str}: {exc}") from exc

        conn.row_factory = sqlite3.Row
        self._conn = conn
        if not options.readonly:
            self.pragma("journal_mode = WAL")
        self.pragma("foreign_keys = ON")
        logger.debug("Opened native database %s", path_str)
