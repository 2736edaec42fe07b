from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from contextlib import AbstractContextManager
from typing import Any, Iterator, Literal, Optional

from pydantic import Field

from skillsync.shared.types import FrozenModel

DriverType = Literal["native", "snapshot"]
Row = sqlite3.Row


class RunResult(FrozenModel):
    """Outcome of a write statement."""

    changes: int = Field(default=0, ge=0, description="Rows changed")
    last_row_id: Optional[int] = Field(default=None, description="Last inserted rowid")


class DriverInfo(FrozenModel):
    type: DriverType
    available: bool
    reason: Optional[str] = Field(
        default=None, description="Why the driver is unavailable"
    )


class DatabaseOptions(FrozenModel):
    readonly: bool = False
    file_must_exist: bool = False
    timeout: float = Field(default=5.0, gt=0, description="Busy timeout in seconds")


class Statement(ABC):
    """A prepared statement bound to one database."""

    sql: str

    @abstractmethod
    def run(self, *params: Any) -> RunResult: ...

    @abstractmethod
    def get(self, *params: Any) -> Optional[Row]: ...

    @abstractmethod
    def all(self, *params: Any) -> list[Row]: ...

    @abstractmethod
    def iterate(self, *params: Any) -> Iterator[Row]: ...


class Database(ABC):
    """Storage contract shared by every driver.

    The rest of the package only talks to this interface, so native and
    snapshot drivers are interchangeable.
    """

    driver: DriverType

    @property
    @abstractmethod
    def name(self) -> str:
        """Path of the underlying database file (``:memory:`` when none)."""

    @property
    @abstractmethod
    def open(self) -> bool: ...

    @property
    @abstractmethod
    def memory(self) -> bool: ...

    @property
    @abstractmethod
    def readonly(self) -> bool: ...

    @abstractmethod
    def execute(self, sql: str, params: Any = ()) -> RunResult: ...

    @abstractmethod
    def executescript(self, sql: str) -> None: ...

    @abstractmethod
    def prepare(self, sql: str) -> Statement: ...

    @abstractmethod
    def fetch_one(self, sql: str, params: Any = ()) -> Optional[Row]: ...

    @abstractmethod
    def fetch_all(self, sql: str, params: Any = ()) -> list[Row]: ...

    @abstractmethod
    def transaction(self) -> AbstractContextManager["Database"]:
        """Atomic block; nested blocks become savepoints."""

    @abstractmethod
    def pragma(self, source: str, *, simple: bool = False) -> Any: ...

    @abstractmethod
    def close(self) -> None: ...

    def __enter__(self) -> "Database":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


__all__ = [
    "Database",
    "DatabaseOptions",
    "DriverInfo",
    "DriverType",
    "Row",
    "RunResult",
    "Statement",
]
