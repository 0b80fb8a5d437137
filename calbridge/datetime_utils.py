"""
Tool: Date/Time Utilities
Purpose: Zoned parsing, interval arithmetic and working-hours windows

Intervals are (start, end) tuples of timezone-aware datetimes. All
comparisons are on absolute time, so intervals from providers that report
in different zones can be merged directly.

Usage:
    from calbridge.datetime_utils import parse_datetime, merge_intervals, find_gaps

    start = parse_datetime("2026-10-19T09:00:00", "Europe/London")
    gaps = find_gaps(busy, start, end)
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta, timezone as dt_timezone
from typing import TYPE_CHECKING, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from calbridge.errors import InvalidInputError

if TYPE_CHECKING:
    from calbridge.models import WorkingHours

DateTimeLike = Union[datetime, str]
Interval = tuple[datetime, datetime]


# =============================================================================
# Zones and parsing
# =============================================================================


def get_zone(name: str | None = None) -> ZoneInfo:
    """
    Resolve an IANA zone name.

    Args:
        name: Zone name, or None for the configured default

    Returns:
        ZoneInfo

    Raises:
        InvalidInputError: If the zone is unknown
    """
    if not name:
        from calbridge.config import get_default_timezone

        name = get_default_timezone()
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidInputError(f"Unknown timezone: {name}") from e


def zone_name(dt: datetime) -> str:
    """Best-effort IANA name of an aware datetime's zone."""
    tz = dt.tzinfo
    if isinstance(tz, ZoneInfo):
        return tz.key
    if tz is dt_timezone.utc or dt.utcoffset() == timedelta(0):
        return "UTC"
    return str(tz)


def parse_datetime(value: DateTimeLike, timezone: str | None = None) -> datetime:
    """
    Parse an ISO-8601 string into an aware datetime.

    Naive strings are wall-clock time in `timezone` (or the configured
    default zone). Strings carrying an offset keep their instant and are
    converted into `timezone` when one is given. Date-only strings parse to
    midnight.

    Args:
        value: ISO string or datetime
        timezone: IANA zone name

    Returns:
        Timezone-aware datetime

    Raises:
        InvalidInputError: If the value cannot be parsed
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        try:
            dt = datetime.fromisoformat(value.strip())
        except ValueError as e:
            raise InvalidInputError(f"Invalid datetime: {value}") from e
    else:
        raise InvalidInputError(f"Invalid datetime: {value!r}")

    if dt.tzinfo is None:
        return dt.replace(tzinfo=get_zone(timezone))
    if timezone:
        return dt.astimezone(get_zone(timezone))
    return dt


def to_iso(dt: datetime) -> str:
    """ISO string with offset; microseconds appear only when non-zero."""
    return dt.isoformat()


def now(timezone: str | None = None) -> datetime:
    return datetime.now(get_zone(timezone))


def start_of_day(dt: datetime) -> datetime:
    return dt.replace(hour=0, minute=0, second=0, microsecond=0)


def same_day(a: datetime, b: datetime) -> bool:
    """Whether two datetimes fall on the same calendar day in a's zone."""
    return a.date() == b.astimezone(a.tzinfo).date()


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves upward (28.5 -> 29, -28.5 -> -28)."""
    return int(math.floor(value + 0.5))


def duration_minutes(start: DateTimeLike, end: DateTimeLike) -> int:
    """Whole minutes between two instants, halves rounded up."""
    delta = parse_datetime(end) - parse_datetime(start)
    return round_half_up(delta.total_seconds() / 60)


# =============================================================================
# Intervals
# =============================================================================


def ranges_overlap(
    start1: DateTimeLike,
    end1: DateTimeLike,
    start2: DateTimeLike,
    end2: DateTimeLike,
) -> bool:
    """Half-open overlap test: touching ranges do not overlap."""
    s1, e1 = parse_datetime(start1), parse_datetime(end1)
    s2, e2 = parse_datetime(start2), parse_datetime(end2)
    return s1 < e2 and e1 > s2


def merge_intervals(intervals: Iterable[Sequence[datetime]]) -> list[Interval]:
    """
    Coalesce overlapping or abutting intervals.

    Args:
        intervals: (start, end) pairs in any order

    Returns:
        Sorted, non-touching intervals
    """
    ordered = sorted(((s, e) for s, e in intervals if s <= e), key=lambda i: i[0])
    if not ordered:
        return []

    merged: list[Interval] = []
    current_start, current_end = ordered[0]

    for start, end in ordered[1:]:
        if start <= current_end:
            current_end = max(current_end, end)
        else:
            merged.append((current_start, current_end))
            current_start, current_end = start, end

    merged.append((current_start, current_end))
    return merged


def find_gaps(
    intervals: Iterable[Sequence[datetime]],
    range_start: datetime,
    range_end: datetime,
) -> list[Interval]:
    """
    Uncovered stretches of [range_start, range_end).

    Busy intervals are merged and clipped to the range first; intervals
    fully outside the range are ignored.
    """
    gaps: list[Interval] = []
    cursor = range_start

    for start, end in merge_intervals(intervals):
        if end <= range_start:
            continue
        if start >= range_end:
            break

        effective_start = max(start, range_start)
        effective_end = min(end, range_end)

        if cursor < effective_start:
            gaps.append((cursor, effective_start))

        cursor = max(cursor, effective_end)

    if cursor < range_end:
        gaps.append((cursor, range_end))

    return gaps


def clip_intervals(
    intervals: Iterable[Sequence[datetime]],
    range_start: datetime,
    range_end: datetime,
) -> list[Interval]:
    """Merged intervals clipped to the range, dropping empty results."""
    clipped = []
    for start, end in merge_intervals(intervals):
        s, e = max(start, range_start), min(end, range_end)
        if s < e:
            clipped.append((s, e))
    return clipped


# =============================================================================
# Working hours
# =============================================================================


def _parse_hhmm(value: str) -> tuple[int, int]:
    try:
        hour, minute = (int(part) for part in value.split(":"))
    except ValueError as e:
        raise InvalidInputError(f"Invalid time of day (expected HH:MM): {value}") from e
    if not (0 <= hour <= 24 and 0 <= minute < 60):
        raise InvalidInputError(f"Invalid time of day (expected HH:MM): {value}")
    return hour, minute


def _at_time(day: datetime, hhmm: str) -> datetime:
    hour, minute = _parse_hhmm(hhmm)
    base = start_of_day(day)
    if hour == 24:
        return base + timedelta(days=1, minutes=minute)
    return base.replace(hour=hour, minute=minute)


def _resolve_hours(working_hours: WorkingHours | None) -> WorkingHours:
    if working_hours is not None:
        return working_hours
    from calbridge.config import get_default_working_hours
    from calbridge.models import WorkingHours

    config = get_default_working_hours()
    return WorkingHours(start=config.start, end=config.end, days=list(config.days))


def weekday_name(dt: datetime) -> str:
    return dt.strftime("%A").lower()


def get_working_hours_for_day(
    day: DateTimeLike,
    working_hours: WorkingHours | None = None,
) -> Interval | None:
    """
    Working-hours window for the calendar day containing `day`.

    Args:
        day: Any datetime on the day (its zone defines the day)
        working_hours: Window definition (default: configured working hours)

    Returns:
        (start, end) of the window, or None on a non-working day
    """
    dt = parse_datetime(day)
    hours = _resolve_hours(working_hours)

    if weekday_name(dt) not in hours.days:
        return None

    return _at_time(dt, hours.start), _at_time(dt, hours.end)


def is_within_working_hours(
    value: DateTimeLike,
    working_hours: WorkingHours | None = None,
) -> bool:
    dt = parse_datetime(value)
    window = get_working_hours_for_day(dt, working_hours)
    if window is None:
        return False
    return window[0] <= dt <= window[1]


# =============================================================================
# Display
# =============================================================================


def format_date_medium(dt: datetime) -> str:
    """e.g. "Oct 17, 2026"."""
    return f"{dt.strftime('%b')} {dt.day}, {dt.year}"


def format_time(dt: datetime) -> str:
    """e.g. "9:05 AM"."""
    hour = dt.hour % 12 or 12
    return f"{hour}:{dt.minute:02d} {'AM' if dt.hour < 12 else 'PM'}"


def format_time_range(start: DateTimeLike, end: DateTimeLike) -> str:
    """
    Human-readable range.

    Same day: "Oct 17, 2026, 9:00 AM - 10:00 AM"
    Otherwise: "Oct 17, 2026, 11:00 PM - Oct 18, 2026, 1:00 AM"
    """
    s = parse_datetime(start)
    e = parse_datetime(end).astimezone(s.tzinfo)

    if s.date() == e.date():
        return f"{format_date_medium(s)}, {format_time(s)} - {format_time(e)}"
    return f"{format_date_medium(s)}, {format_time(s)} - {format_date_medium(e)}, {format_time(e)}"


def format_duration(minutes: int) -> str:
    """e.g. 90 -> "1 hr, 30 min"."""
    if minutes <= 0:
        return "0 min"

    days, remainder = divmod(minutes, 24 * 60)
    hours, mins = divmod(remainder, 60)

    parts = []
    if days:
        parts.append(f"{days} day" + ("s" if days != 1 else ""))
    if hours:
        parts.append(f"{hours} hr")
    if mins:
        parts.append(f"{mins} min")
    return ", ".join(parts)
