"""Exception hierarchy.

Validation errors double as ``ValueError`` so callers that only know the
builtin still catch them.
"""


class SkillSyncError(Exception):
    """Base class for all skillsync errors."""


class DimensionMismatchError(SkillSyncError, ValueError):
    """A vector's length differs from the configured dimension."""

    def __init__(self, message: str, *, got: int | None = None, expected: int | None = None):
        super().__init__(message)
        self.got = got
        self.expected = expected


class InvalidArgumentError(SkillSyncError, ValueError):
    """An argument is outside its accepted range."""


class CapacityExceededError(SkillSyncError, ValueError):
    """The vector index is full."""


class StorageError(SkillSyncError):
    """Local storage failure. Treated as fatal."""


class DriverUnavailableError(StorageError):
    """The requested storage driver cannot be used on this system."""


class RegistryError(SkillSyncError):
    """Transient failure talking to the remote registry."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SyncInProgressError(SkillSyncError, RuntimeError):
    """A sync was requested while another one is running."""

    def __init__(self, message: str = "Sync already in progress"):
        super().__init__(message)


class HistoryEntryFinalizedError(SkillSyncError):
    """A history entry was already finalized or does not exist."""


class SyncFailedError(SkillSyncError):
    """A sync run returned an unsuccessful result."""

    def __init__(self, message: str, *, result=None):
        super().__init__(message)
        self.result = result


__all__ = [
    "SkillSyncError",
    "DimensionMismatchError",
    "InvalidArgumentError",
    "CapacityExceededError",
    "StorageError",
    "DriverUnavailableError",
    "RegistryError",
    "SyncInProgressError",
    "HistoryEntryFinalizedError",
    "SyncFailedError",
]
