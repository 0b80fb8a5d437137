"""
Unit tests for date/time utilities.

Tests cover:
- Zoned parsing (naive, offset, date-only)
- Interval overlap, merge, gaps and clipping
- Working-hours windows
- Display formatting
"""

import random
from datetime import datetime, timedelta, timezone as dt_timezone

import pytest

from calbridge.datetime_utils import (
    clip_intervals,
    duration_minutes,
    find_gaps,
    format_date_medium,
    format_duration,
    format_time,
    format_time_range,
    get_working_hours_for_day,
    is_within_working_hours,
    merge_intervals,
    parse_datetime,
    ranges_overlap,
    same_day,
    to_iso,
)
from calbridge.errors import InvalidInputError
from calbridge.models import WorkingHours
from tests.conftest import dt


BASE = datetime(2026, 10, 19, tzinfo=dt_timezone.utc)


def random_intervals(rng: random.Random, count: int) -> list[tuple[datetime, datetime]]:
    intervals = []
    for _ in range(count):
        start = BASE + timedelta(minutes=rng.randrange(0, 24 * 60, 15))
        intervals.append((start, start + timedelta(minutes=rng.randrange(15, 240, 15))))
    return intervals


# ============================================================================
# Parsing
# ============================================================================


class TestParseDatetime:
    """Tests for parse_datetime."""

    def test_naive_string_uses_given_zone(self):
        """Naive strings are wall-clock time in the given zone."""
        result = parse_datetime("2026-10-19T09:00:00", "Europe/London")

        assert result.hour == 9
        assert result.utcoffset() == timedelta(hours=1)

    def test_naive_string_uses_default_zone(self):
        """Without a zone the configured default (UTC in tests) applies."""
        result = parse_datetime("2026-10-19T09:00")

        assert result.utcoffset() == timedelta(0)

    def test_offset_string_keeps_instant(self):
        """Strings with an offset keep their instant when converted."""
        result = parse_datetime("2026-10-19T09:00:00+02:00", "UTC")

        assert result.hour == 7
        assert result == datetime(2026, 10, 19, 7, tzinfo=dt_timezone.utc)

    def test_zulu_suffix(self):
        """Trailing Z parses as UTC."""
        assert parse_datetime("2026-10-19T09:00:00Z") == datetime(2026, 10, 19, 9, tzinfo=dt_timezone.utc)

    def test_date_only_is_midnight(self):
        """Date-only strings parse to midnight."""
        result = parse_datetime("2026-10-19", "America/New_York")

        assert (result.hour, result.minute) == (0, 0)

    def test_invalid_string_raises(self):
        """Garbage input raises InvalidInputError."""
        with pytest.raises(InvalidInputError):
            parse_datetime("next tuesday")

    def test_unknown_zone_raises(self):
        """Unknown zone names raise InvalidInputError."""
        with pytest.raises(InvalidInputError):
            parse_datetime("2026-10-19T09:00", "Mars/Olympus_Mons")

    def test_duration_minutes(self):
        """Durations are whole minutes."""
        assert duration_minutes("2026-10-19T09:00", "2026-10-19T10:30") == 90

    def test_duration_half_minute_rounds_up(self):
        start = dt("2026-10-19T09:00")

        assert duration_minutes(start, start + timedelta(minutes=28, seconds=30)) == 29
        assert duration_minutes(start, start + timedelta(minutes=27, seconds=30)) == 28
        assert duration_minutes(start, start + timedelta(minutes=28, seconds=29)) == 28

    def test_same_day_uses_first_zone(self):
        """Day comparison happens in the first value's zone."""
        late_utc = dt("2026-10-19T23:30")
        next_day_tokyo = parse_datetime("2026-10-20T08:00", "Asia/Tokyo")

        assert same_day(late_utc, next_day_tokyo)


# ============================================================================
# Intervals
# ============================================================================


class TestRangesOverlap:
    """Tests for ranges_overlap."""

    def test_overlapping(self):
        """Partially overlapping ranges overlap."""
        assert ranges_overlap(dt("2026-10-19T09:00"), dt("2026-10-19T10:00"),
                              dt("2026-10-19T09:30"), dt("2026-10-19T11:00"))

    def test_touching_ranges_do_not_overlap(self):
        """Ranges are half-open."""
        assert not ranges_overlap(dt("2026-10-19T09:00"), dt("2026-10-19T10:00"),
                                  dt("2026-10-19T10:00"), dt("2026-10-19T11:00"))

    def test_across_zones(self):
        """Comparison is on absolute time."""
        london = parse_datetime("2026-10-19T10:00", "Europe/London")  # 09:00 UTC
        assert ranges_overlap(london, london + timedelta(hours=1),
                              dt("2026-10-19T09:30"), dt("2026-10-19T09:45"))

    def test_symmetry(self):
        """Swapping the two ranges never changes the answer."""
        rng = random.Random(7)
        for _ in range(200):
            (a, b), (c, d) = random_intervals(rng, 2)
            assert ranges_overlap(a, b, c, d) == ranges_overlap(c, d, a, b)


class TestMergeIntervals:
    """Tests for merge_intervals."""

    def test_merges_overlapping_and_abutting(self):
        """Overlapping and touching intervals coalesce."""
        merged = merge_intervals([
            (dt("2026-10-19T11:00"), dt("2026-10-19T12:00")),
            (dt("2026-10-19T09:00"), dt("2026-10-19T10:00")),
            (dt("2026-10-19T10:00"), dt("2026-10-19T10:30")),
            (dt("2026-10-19T11:30"), dt("2026-10-19T11:45")),
        ])

        assert merged == [
            (dt("2026-10-19T09:00"), dt("2026-10-19T10:30")),
            (dt("2026-10-19T11:00"), dt("2026-10-19T12:00")),
        ]

    def test_empty(self):
        assert merge_intervals([]) == []

    def test_idempotent(self):
        """Merging an already merged list changes nothing."""
        rng = random.Random(11)
        for _ in range(100):
            once = merge_intervals(random_intervals(rng, rng.randrange(0, 12)))
            assert merge_intervals(once) == once


class TestFindGaps:
    """Tests for find_gaps and clip_intervals."""

    def test_free_busy_example(self):
        """Busy 09-10 and 10:30-11 in a 09-17 day leaves 10-10:30 and 11-17."""
        gaps = find_gaps(
            [
                (dt("2026-10-19T09:00"), dt("2026-10-19T10:00")),
                (dt("2026-10-19T10:30"), dt("2026-10-19T11:00")),
            ],
            dt("2026-10-19T09:00"),
            dt("2026-10-19T17:00"),
        )

        assert gaps == [
            (dt("2026-10-19T10:00"), dt("2026-10-19T10:30")),
            (dt("2026-10-19T11:00"), dt("2026-10-19T17:00")),
        ]

    def test_no_busy_is_one_gap(self):
        """An empty busy list leaves the whole range free."""
        start, end = dt("2026-10-19T09:00"), dt("2026-10-19T17:00")
        assert find_gaps([], start, end) == [(start, end)]

    def test_busy_outside_range_ignored(self):
        """Busy time outside the range does not produce gaps."""
        start, end = dt("2026-10-19T09:00"), dt("2026-10-19T17:00")
        gaps = find_gaps([(dt("2026-10-19T07:00"), dt("2026-10-19T08:00"))], start, end)

        assert gaps == [(start, end)]

    def test_gaps_and_busy_partition_range(self):
        """Gaps plus clipped busy time cover the range exactly, without overlap."""
        rng = random.Random(3)
        range_start = BASE + timedelta(hours=6)
        range_end = BASE + timedelta(hours=20)

        for _ in range(100):
            busy = random_intervals(rng, rng.randrange(0, 10))
            pieces = sorted(
                find_gaps(busy, range_start, range_end) + clip_intervals(busy, range_start, range_end)
            )

            assert pieces[0][0] == range_start
            assert pieces[-1][1] == range_end
            for (_, prev_end), (next_start, _) in zip(pieces, pieces[1:]):
                assert prev_end == next_start


# ============================================================================
# Working hours
# ============================================================================


class TestWorkingHours:
    """Tests for working-hours windows."""

    def test_window_on_working_day(self):
        """A Monday gets the configured window."""
        hours = WorkingHours(start="09:00", end="18:00")
        window = get_working_hours_for_day(dt("2026-10-19T12:00"), hours)

        assert window == (dt("2026-10-19T09:00"), dt("2026-10-19T18:00"))

    def test_non_working_day(self):
        """Sunday is not in the default working days."""
        assert get_working_hours_for_day(dt("2026-10-18T12:00")) is None

    def test_window_in_local_zone(self):
        """The day and window are taken in the value's own zone."""
        day = parse_datetime("2026-10-19T12:00", "America/New_York")
        start, end = get_working_hours_for_day(day)

        assert start.hour == 9
        assert start.utcoffset() == timedelta(hours=-4)
        assert end.hour == 17

    def test_is_within_working_hours(self):
        assert is_within_working_hours(dt("2026-10-19T10:00"))
        assert not is_within_working_hours(dt("2026-10-19T20:00"))
        assert not is_within_working_hours(dt("2026-10-18T10:00"))

    def test_invalid_time_of_day(self):
        """Malformed HH:MM raises InvalidInputError."""
        with pytest.raises(InvalidInputError):
            get_working_hours_for_day(dt("2026-10-19T10:00"), WorkingHours(start="nine", end="17:00"))


# ============================================================================
# Display
# ============================================================================


class TestFormatting:
    """Tests for display helpers."""

    def test_format_time(self):
        assert format_time(dt("2026-10-19T09:05")) == "9:05 AM"
        assert format_time(dt("2026-10-19T00:30")) == "12:30 AM"
        assert format_time(dt("2026-10-19T13:00")) == "1:00 PM"

    def test_format_date_medium(self):
        assert format_date_medium(dt("2026-10-17T09:00")) == "Oct 17, 2026"

    def test_format_time_range_same_day(self):
        text = format_time_range(dt("2026-10-17T09:00"), dt("2026-10-17T10:00"))
        assert text == "Oct 17, 2026, 9:00 AM - 10:00 AM"

    def test_format_time_range_across_days(self):
        text = format_time_range(dt("2026-10-17T23:00"), dt("2026-10-18T01:00"))
        assert text == "Oct 17, 2026, 11:00 PM - Oct 18, 2026, 1:00 AM"

    def test_format_duration(self):
        assert format_duration(0) == "0 min"
        assert format_duration(45) == "45 min"
        assert format_duration(90) == "1 hr, 30 min"
        assert format_duration(24 * 60 + 60) == "1 day, 1 hr"

    def test_to_iso_keeps_offset(self):
        assert to_iso(dt("2026-10-19T09:00")) == "2026-10-19T09:00:00+00:00"
        assert to_iso(dt("2026-10-19T09:00", "Asia/Tokyo")) == "2026-10-19T09:00:00+09:00"
