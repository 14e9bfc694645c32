"""Datetime helpers shared by the engines and the store."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_utc(value: Any) -> datetime | None:
    """Coerce a datetime or ISO-8601 string to an aware UTC datetime.

    Naive datetimes are assumed to be UTC (SQLite drops tzinfo on read).
    Returns None for empty or unparseable values.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str):
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def isoformat_utc(value: Any) -> str | None:
    dt = to_utc(value)
    return dt.isoformat() if dt else None
