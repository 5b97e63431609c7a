"""UTC time helpers shared by the window, advantage and settlement services."""

from __future__ import annotations

import math
from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Current timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from stores that drop the offset."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def seconds_until(deadline: datetime, now: datetime | None = None) -> int:
    """Whole seconds until deadline, rounded up, never negative."""
    if now is None:
        now = utcnow()
    remaining = (as_utc(deadline) - now).total_seconds()  # type: ignore[operator]
    return max(0, math.ceil(remaining))


def get_week_iso(dt: datetime | date) -> str:
    """Get ISO week string e.g. '2026-W09'. Uses %G-W%V (ISO year + ISO week)."""
    return dt.strftime("%G-W%V")


def rank_suffix(rank: int) -> str:
    """English ordinal suffix: 1st, 2nd, 3rd, 4th, 11th..."""
    if 11 <= rank % 100 <= 13:
        return "th"
    return {1: "st", 2: "nd", 3: "rd"}.get(rank % 10, "th")
