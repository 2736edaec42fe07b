"""Base model types shared across modules."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict


class FrozenModel(BaseModel):
    """Immutable result/value object."""

    model_config = ConfigDict(frozen=True)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = ["FrozenModel", "utc_now", "to_iso", "from_iso"]
