"""Driver detection and database creation."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Literal

from skillsync.shared.errors import DriverUnavailableError

from ..internal.native import NativeDatabase, probe_native
from ..internal.schema import initialize_schema
from ..internal.snapshot import SnapshotDatabase, probe_snapshot
from .types import Database, DatabaseOptions, DriverInfo, DriverType

logger = logging.getLogger(__name__)

_PROBES = {
    "native": probe_native,
    "snapshot": probe_snapshot,
}
_DRIVERS = {
    "native": NativeDatabase,
    "snapshot": SnapshotDatabase,
}


def detect_available_drivers() -> list[DriverInfo]:
    """Probe each driver once; native first."""
    infos = []
    for driver_type, probe in _PROBES.items():
        available, reason = probe()
        infos.append(DriverInfo(type=driver_type, available=available, reason=reason))
    return infos


def get_best_driver() -> DriverType:
    for info in detect_available_drivers():
        if info.available:
            return info.type
    reasons = "; ".join(f"{i.type}: {i.reason}" for i in detect_available_drivers())
    raise DriverUnavailableError(f"No storage driver available ({reasons})")


def create_database(
    path: str | Path,
    *,
    driver: Literal["auto", "native", "snapshot"] = "auto",
    readonly: bool = False,
    file_must_exist: bool = False,
    timeout: float = 5.0,
    initialize: bool = True,
) -> Database:
    """Open ``path`` with the requested (or best available) driver.

    With ``initialize`` the schema is created when missing.
    """
    options = DatabaseOptions(
        readonly=readonly, file_must_exist=file_must_exist, timeout=timeout
    )
    if driver == "auto":
        chosen = get_best_driver()
    else:
        available, reason = _PROBES[driver]()
        if not available:
            raise DriverUnavailableError(f"Storage driver '{driver}' unavailable: {reason}")
        chosen = driver

    db = _DRIVERS[chosen](path, options)
    logger.info("Opened %s with %s driver", db.name, chosen)
    if initialize:
        try:
            initialize_schema(db)
        except Exception:
            db.close()
            raise
    return db


__all__ = [
    "create_database",
    "detect_available_drivers",
    "get_best_driver",
]
