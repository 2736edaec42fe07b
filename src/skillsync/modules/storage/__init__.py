"""Public API for the storage module."""

from .internal.schema import SCHEMA_VERSION, initialize_schema
from .public.database import create_database, detect_available_drivers, get_best_driver
from .public.types import (
    Database,
    DatabaseOptions,
    DriverInfo,
    DriverType,
    Row,
    RunResult,
    Statement,
)

__all__ = [
    "create_database",
    "detect_available_drivers",
    "get_best_driver",
    "initialize_schema",
    "SCHEMA_VERSION",
    "Database",
    "DatabaseOptions",
    "DriverInfo",
    "DriverType",
    "Row",
    "RunResult",
    "Statement",
]
