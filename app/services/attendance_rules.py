"""
Pure attendance rules — hours worked, status classification and date windows.

Nothing here touches the database; every function is deterministic given its
inputs so the session and the endpoints share one definition of each rule.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone
from typing import Any

STATUS_PRESENT = "present"
STATUS_PARTIAL = "partial"
STATUS_ABSENT = "absent"

VALID_STATUSES = (STATUS_PRESENT, STATUS_PARTIAL, STATUS_ABSENT)

FULL_DAY_HOURS = 8.0
PARTIAL_DAY_HOURS = 4.0


def ensure_utc(dt: datetime) -> datetime:
    """Normalise a potentially-naive timestamp to UTC-aware."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def hours_between(start: datetime, end: datetime) -> float:
    """Elapsed wall-clock time in (fractional) hours."""
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / 3600


def classify_hours(hours: float) -> str:
    """Status stored at punch-out for a session of ``hours`` length."""
    if hours >= FULL_DAY_HOURS:
        return STATUS_PRESENT
    if hours >= PARTIAL_DAY_HOURS:
        return STATUS_PARTIAL
    return STATUS_ABSENT


def classify(record: Any | None) -> str:
    """Status to display for today's record (or the lack of one).

    A stored ``present`` / ``partial`` wins; an open session counts as
    present until it is classified at punch-out; anything else is absent.
    """
    if record is None:
        return STATUS_ABSENT
    if record.status in (STATUS_PRESENT, STATUS_PARTIAL):
        return record.status
    if record.punch_in_time is not None and record.punch_out_time is None:
        return STATUS_PRESENT
    return STATUS_ABSENT


def is_open(record: Any | None) -> bool:
    return record is not None and record.punch_out_time is None


def sum_hours(values: Iterable[float | None]) -> float:
    """Sum ``total_hours`` values, treating missing ones as zero."""
    return sum((v or 0.0) for v in values)


# ── Dates ───────────────────────────────────────────────────────────
def parse_offset(tz_offset: str) -> timezone:
    """Turn ``+05:00`` / ``-03:30`` into a fixed-offset timezone."""
    sign = 1 if tz_offset[0] == "+" else -1
    offset_parts = tz_offset[1:].split(":")
    offset_hours = int(offset_parts[0])
    offset_mins = int(offset_parts[1]) if len(offset_parts) > 1 else 0
    return timezone(timedelta(hours=sign * offset_hours, minutes=sign * offset_mins))


def local_today(tz_offset: str, now: datetime | None = None) -> str:
    """Calendar date (YYYY-MM-DD) of ``now`` in the configured local offset."""
    now = ensure_utc(now or datetime.now(timezone.utc))
    return now.astimezone(parse_offset(tz_offset)).strftime("%Y-%m-%d")


def history_start(today: str, days: int) -> str:
    """First date included in the rolling history window ending at ``today``."""
    return (date.fromisoformat(today) - timedelta(days=days)).isoformat()


def month_bounds(today: str) -> tuple[str, str]:
    """First and last calendar day of the month containing ``today``."""
    d = date.fromisoformat(today)
    _, days_in_month = calendar.monthrange(d.year, d.month)
    return (
        f"{d.year:04d}-{d.month:02d}-01",
        f"{d.year:04d}-{d.month:02d}-{days_in_month:02d}",
    )
