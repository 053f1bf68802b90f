"""Time helpers; every stored timestamp is UTC."""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive values read back from backends that drop tzinfo."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def from_millis(value: int | float | None) -> datetime | None:
    """Convert a LINE epoch-milliseconds timestamp."""

    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
