"""
ScrapRate — Weekly trigger computation.

The price sheet refreshes once a week at a fixed civil time (Monday 23:59
America/Chicago by default).  Arithmetic is done on wall-clock dates in the
target zone and converted back through UTC, so DST transitions land on the
right local time instead of drifting by an hour.
"""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

_WEEK = timedelta(days=7)


def to_sunday_first(dt: datetime) -> int:
    """Weekday of `dt` with 0=Sunday..6=Saturday."""
    return (dt.weekday() + 1) % 7


def _at_wall_time(day, hour: int, minute: int, tz: ZoneInfo) -> datetime:
    local = datetime.combine(day, time(hour, minute), tzinfo=tz)
    # Round-trip through UTC resolves wall times inside a DST gap.
    return local.astimezone(timezone.utc).astimezone(tz)


def compute_next_occurrence(
    now: datetime,
    target_weekday: int,
    target_hour: int,
    target_minute: int,
    tz: ZoneInfo,
) -> datetime:
    """
    Return the next instant strictly after `now` that falls on
    `target_weekday` (0=Sunday) at `target_hour:target_minute` in `tz`.

    `now` must be timezone-aware.  The result is expressed in `tz`.

    Examples (America/Chicago, target Monday 23:59)::

        Mon 23:58:00 → same day 23:59
        Mon 23:59:30 → following Monday 23:59
    """
    if now.tzinfo is None:
        raise ValueError("now must be timezone-aware")

    local_now = now.astimezone(tz)
    days = (target_weekday - to_sunday_first(local_now) + 7) % 7

    day = local_now.date() + timedelta(days=days)
    candidate = _at_wall_time(day, target_hour, target_minute, tz)

    # Today's window already passed (days == 0), or a DST edge resolved the
    # wall time to an instant that is not in the future: move a week on.
    now_utc = now.astimezone(timezone.utc)
    while candidate.astimezone(timezone.utc) <= now_utc:
        day += _WEEK
        candidate = _at_wall_time(day, target_hour, target_minute, tz)
    return candidate


def describe(dt: datetime, tz: ZoneInfo) -> str:
    """Human-readable rendering used in log lines, e.g. 'Monday, January 08, 2024 11:59 PM CST'."""
    return dt.astimezone(tz).strftime("%A, %B %d, %Y %I:%M %p %Z")
