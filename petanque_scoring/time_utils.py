"""Helpers for working with timezone-aware datetimes."""

from __future__ import annotations

from datetime import datetime, timezone


def coerce_utc(value: datetime | None) -> datetime | None:
    """Return a UTC-normalized datetime, assuming naive values are already UTC."""

    if value is None:
        return None

    if value.tzinfo is None or value.utcoffset() is None:
        return value.replace(tzinfo=timezone.utc)

    return value.astimezone(timezone.utc)


def minutes_between(start: datetime | None, end: datetime | None) -> float | None:
    """Return the number of minutes from ``start`` to ``end``.

    Returns ``None`` when either side is missing or ``end`` precedes ``start``.
    """

    start = coerce_utc(start)
    end = coerce_utc(end)
    if start is None or end is None or end < start:
        return None
    return (end - start).total_seconds() / 60.0
