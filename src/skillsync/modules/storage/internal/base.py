"""sqlite3-backed implementation shared by both drivers."""

from __future__ import annotations

import re
import sqlite3
import threading
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from skillsync.shared.errors import StorageError

from ..public.types import Database, DatabaseOptions, Row, RunResult, Statement

_PRAGMA_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*$")
_DDL_PREFIXES = ("CREATE", "DROP", "ALTER", "VACUUM", "REINDEX")
# Pragmas whose value is stored in the database file; the rest are per-connection.
_IMAGE_PRAGMAS = frozenset(
    {"user_version", "application_id", "auto_vacuum", "page_size", "journal_mode"}
)


def _bind(params: tuple[Any, ...]) -> Any:
    """Accept ``run(a, b)`` as well as ``run((a, b))`` / ``run({...})``."""
    if len(params) == 1 and isinstance(params[0], (tuple, list, dict)):
        return params[0]
    return params


def _is_caller_error(exc: sqlite3.DatabaseError) -> bool:
    # Constraint and syntax errors are bugs in the calling code, not storage faults.
    if isinstance(exc, (sqlite3.IntegrityError, sqlite3.ProgrammingError)):
        return True
    return isinstance(exc, sqlite3.OperationalError) and "syntax error" in str(exc)


class SqliteStatement(Statement):
    def __init__(self, db: "SqliteDatabase", sql: str):
        self._db = db
        self.sql = sql

    def run(self, *params: Any) -> RunResult:
        return self._db.execute(self.sql, _bind(params))

    def get(self, *params: Any) -> Optional[Row]:
        return self._db.fetch_one(self.sql, _bind(params))

    def all(self, *params: Any) -> list[Row]:
        return self._db.fetch_all(self.sql, _bind(params))

    def iterate(self, *params: Any) -> Iterator[Row]:
        # Materialized under the lock; rows are yielded afterwards.
        yield from self._db.fetch_all(self.sql, _bind(params))


class SqliteDatabase(Database):
    """Connection wrapper with a reentrant lock and savepoint nesting.

    Subclasses decide how the connection is opened and whether committed
    changes have to be flushed somewhere (``_after_commit``).
    """

    def __init__(self, path: str, options: DatabaseOptions):
        self._path = path
        self._options = options
        self._lock = threading.RLock()
        self._depth = 0
        self._dirty = False
        self._conn: Optional[sqlite3.Connection] = None

    # --- hooks ---
    def _after_commit(self) -> None:
        """Called once changes are committed outside any transaction."""
        self._dirty = False

    def _before_close(self) -> None:
        """Flush hook for subclasses."""

    # --- properties ---
    @property
    def name(self) -> str:
        return self._path

    @property
    def open(self) -> bool:
        return self._conn is not None

    @property
    def memory(self) -> bool:
        return self._path == ":memory:"

    @property
    def readonly(self) -> bool:
        return self._options.readonly

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StorageError(f"Database is closed: {self._path}")
        return self._conn

    @contextmanager
    def _guard(self, sql: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.DatabaseError as exc:
            if _is_caller_error(exc):
                raise
            raise StorageError(
                f"{self.driver} storage error on {self._path}: {exc} ({sql.strip()[:60]})"
            ) from exc

    # --- execution ---
    def execute(self, sql: str, params: Any = ()) -> RunResult:
        with self._lock, self._guard(sql):
            conn = self.connection
            before = conn.total_changes
            cursor = conn.execute(sql, params)
            result = RunResult(
                changes=max(cursor.rowcount, 0), last_row_id=cursor.lastrowid
            )
            if conn.total_changes != before or sql.lstrip().upper().startswith(_DDL_PREFIXES):
                self._dirty = True
            if self._depth == 0 and self._dirty:
                self._after_commit()
            return result

    def executescript(self, sql: str) -> None:
        with self._lock, self._guard(sql):
            self.connection.executescript(sql)
            self._dirty = True
            if self._depth == 0:
                self._after_commit()

    def prepare(self, sql: str) -> Statement:
        return SqliteStatement(self, sql)

    def fetch_one(self, sql: str, params: Any = ()) -> Optional[Row]:
        with self._lock, self._guard(sql):
            return self.connection.execute(sql, params).fetchone()

    def fetch_all(self, sql: str, params: Any = ()) -> list[Row]:
        with self._lock, self._guard(sql):
            return self.connection.execute(sql, params).fetchall()

    @contextmanager
    def transaction(self) -> Iterator["SqliteDatabase"]:
        with self._lock:
            conn = self.connection
            savepoint = f"sp_{self._depth}"
            with self._guard("BEGIN"):
                if self._depth == 0:
                    conn.execute("BEGIN IMMEDIATE")
                else:
                    conn.execute(f"SAVEPOINT {savepoint}")
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if self._depth == 0:
                    conn.execute("ROLLBACK")
                    self._dirty = False
                else:
                    conn.execute(f"ROLLBACK TO {savepoint}")
                    conn.execute(f"RELEASE {savepoint}")
                raise
            self._depth -= 1
            with self._guard("COMMIT"):
                if self._depth == 0:
                    conn.execute("COMMIT")
                else:
                    conn.execute(f"RELEASE {savepoint}")
            if self._depth == 0 and self._dirty:
                self._after_commit()

    def pragma(self, source: str, *, simple: bool = False) -> Any:
        if "=" in source:
            key, value = (part.strip() for part in source.split("=", 1))
            self._check_pragma_name(key)
            with self._lock:
                self.execute(f"PRAGMA {key} = {value}")
                if key.rsplit(".", 1)[-1].lower() in _IMAGE_PRAGMAS:
                    self._dirty = True
                    if self._depth == 0:
                        self._after_commit()
            return None
        name = source.strip()
        self._check_pragma_name(name)
        rows = self.fetch_all(f"PRAGMA {name}")
        if simple:
            return rows[0][0] if rows else None
        return [dict(row) for row in rows]

    def close(self) -> None:
        with self._lock:
            if self._conn is None:
                return
            try:
                self._before_close()
            finally:
                self._conn.close()
                self._conn = None

    @staticmethod
    def _check_pragma_name(name: str) -> None:
        if not _PRAGMA_NAME.match(name):
            raise ValueError(f"Invalid pragma: {name!r}")
