"""Time utilities (UTC now, month boundaries, naive-datetime normalisation)."""
from __future__ import annotations
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def start_of_month(now: datetime | None = None) -> datetime:
    ts = now or utc_now()
    return ts.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


__all__ = ["utc_now", "ensure_aware", "start_of_month"]
