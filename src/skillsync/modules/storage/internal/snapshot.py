"""Portable driver: the whole database lives in memory.

The file image is loaded once at open and written back atomically after
every committed change and on close. Nothing links against the file while
the process runs, so this works on filesystems where the native driver's
WAL locking does not.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import tempfile
from pathlib import Path

from skillsync.shared.errors import StorageError

from ..public.types import DatabaseOptions
from .base import SqliteDatabase

logger = logging.getLogger(__name__)

# Bytes 18/19 of the header: 1 = rollback journal, 2 = WAL.
_HEADER_VERSION_OFFSET = 18


def probe_snapshot() -> tuple[bool, str | None]:
    if not hasattr(sqlite3.Connection, "serialize") or not hasattr(
        sqlite3.Connection, "deserialize"
    ):
        return False, "sqlite3 serialize/deserialize not available (Python >= 3.11)"
    return True, None


class SnapshotDatabase(SqliteDatabase):
    driver = "snapshot"

    def __init__(self, path: str | Path, options: DatabaseOptions | None = None):
        options = options or DatabaseOptions()
        path_str = str(path)
        super().__init__(path_str, options)
        self._file = None if path_str == ":memory:" else Path(path_str)

        image: bytes | None = None
        if self._file is not None:
            if self._file.exists():
                image = self._file.read_bytes() or None
            elif options.file_must_exist or options.readonly:
                raise StorageError(f"Database file does not exist: {path_str}")

        conn = sqlite3.connect(
            ":memory:",
            timeout=options.timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        if image is not None:
            try:
                conn.deserialize(_as_rollback_journal(image))
            except sqlite3.Error as exc:
                conn.close()
                raise StorageError(f"Cannot load database image {path_str}: {exc}") from exc
        self._conn = conn
        self.pragma("foreign_keys = ON")
        logger.debug(
            "Opened snapshot database %s (%s)",
            path_str,
            "loaded" if image is not None else "new",
        )

    @property
    def memory(self) -> bool:
        return True

    def _after_commit(self) -> None:
        self.persist()
        super()._after_commit()

    def _before_close(self) -> None:
        if self._dirty:
            self.persist()

    def persist(self) -> None:
        """Write the in-memory image to disk via temp file + rename."""
        if self._file is None or self._options.readonly or self._conn is None:
            return
        try:
            # Some SQLite builds refuse to serialize a database with no pages.
            if self._conn.execute("PRAGMA page_count").fetchone()[0] == 0:
                logger.debug("Snapshot database %s is empty; nothing to persist", self._file)
                self._dirty = False
                return
            data = self._conn.serialize()
            self._file.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(
                prefix=f".{self._file.name}.", dir=str(self._file.parent)
            )
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.replace(tmp, self._file)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(f"Failed to persist database {self._file}: {exc}") from exc
        self._dirty = False


def _as_rollback_journal(image: bytes) -> bytes:
    """In-memory databases cannot be in WAL mode; rewrite the header flag."""
    if len(image) < 100:
        return image
    offset = _HEADER_VERSION_OFFSET
    if image[offset] == 2 or image[offset + 1] == 2:
        patched = bytearray(image)
        patched[offset] = 1
        patched[offset + 1] = 1
        return bytes(patched)
    return image
