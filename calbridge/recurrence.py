"""
Tool: Recurrence Patterns
Purpose: Provider-neutral recurrence rules, RRULE conversion and display text

Usage:
    from calbridge.recurrence import SimpleRecurrence, to_recurrence_pattern

    simple = SimpleRecurrence(type="weekly", days_of_week=["monday", "wednesday"])
    pattern = to_recurrence_pattern(simple, "2026-10-19")
    print(format_recurrence_pattern(pattern))  # Weekly on Mon, Wed
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from icalendar import vRecur

from calbridge.errors import InvalidInputError

RECURRENCE_TYPES = (
    "daily",
    "weekly",
    "absoluteMonthly",
    "relativeMonthly",
    "absoluteYearly",
    "relativeYearly",
)

SIMPLE_TYPES = ("daily", "weekly", "monthly", "yearly")

END_TYPES = ("noEnd", "endDate", "numbered")

WEEK_INDEXES = ("first", "second", "third", "fourth", "last")

RRULE_DAYS = {
    "sunday": "SU",
    "monday": "MO",
    "tuesday": "TU",
    "wednesday": "WE",
    "thursday": "TH",
    "friday": "FR",
    "saturday": "SA",
}
RRULE_DAYS_REVERSE = {v: k for k, v in RRULE_DAYS.items()}

RRULE_FREQ = {
    "daily": "DAILY",
    "weekly": "WEEKLY",
    "monthly": "MONTHLY",
    "yearly": "YEARLY",
}


@dataclass
class RecurrencePattern:
    """
    How an event repeats.

    Weekly patterns use days_of_week; absolute monthly patterns use
    day_of_month; relative monthly patterns use week_index together with
    day_of_week_for_monthly ("third thursday"). The range is start_date plus
    an end condition: no end, an end date, or a number of occurrences.
    """

    type: str
    interval: int = 1
    start_date: str = ""
    end_type: str = "noEnd"
    days_of_week: list[str] = field(default_factory=list)
    first_day_of_week: str | None = None
    day_of_month: int | None = None
    week_index: str | None = None
    day_of_week_for_monthly: str | None = None
    month: int | None = None
    end_date: str | None = None
    number_of_occurrences: int | None = None

    def __post_init__(self):
        if self.type not in RECURRENCE_TYPES:
            raise InvalidInputError(f"Unknown recurrence type: {self.type}")
        if self.end_type not in END_TYPES:
            raise InvalidInputError(f"Unknown recurrence end type: {self.end_type}")
        if self.interval < 1:
            raise InvalidInputError("Recurrence interval must be at least 1")
        if self.week_index is not None and self.week_index not in WEEK_INDEXES:
            raise InvalidInputError(f"Unknown week index: {self.week_index}")

    @property
    def human_readable(self) -> str:
        return format_recurrence_pattern(self)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "type": self.type,
            "interval": self.interval,
            "startDate": self.start_date,
            "endType": self.end_type,
        }
        if self.days_of_week:
            d["daysOfWeek"] = list(self.days_of_week)
        if self.first_day_of_week:
            d["firstDayOfWeek"] = self.first_day_of_week
        if self.day_of_month is not None:
            d["dayOfMonth"] = self.day_of_month
        if self.week_index:
            d["weekIndex"] = self.week_index
        if self.day_of_week_for_monthly:
            d["dayOfWeekForMonthly"] = self.day_of_week_for_monthly
        if self.month is not None:
            d["month"] = self.month
        if self.end_date:
            d["endDate"] = self.end_date
        if self.number_of_occurrences is not None:
            d["numberOfOccurrences"] = self.number_of_occurrences
        d["humanReadable"] = self.human_readable
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecurrencePattern:
        return cls(
            type=data["type"],
            interval=int(data.get("interval", 1)),
            start_date=data.get("startDate", ""),
            end_type=data.get("endType", "noEnd"),
            days_of_week=list(data.get("daysOfWeek") or []),
            first_day_of_week=data.get("firstDayOfWeek"),
            day_of_month=data.get("dayOfMonth"),
            week_index=data.get("weekIndex"),
            day_of_week_for_monthly=data.get("dayOfWeekForMonthly"),
            month=data.get("month"),
            end_date=data.get("endDate"),
            number_of_occurrences=data.get("numberOfOccurrences"),
        )


@dataclass
class SimpleRecurrence:
    """Recurrence as entered by a user when creating an event."""

    type: str
    interval: int = 1
    days_of_week: list[str] = field(default_factory=list)
    day_of_month: int | None = None
    end_date: str | None = None
    occurrences: int | None = None

    def __post_init__(self):
        if self.type not in SIMPLE_TYPES:
            raise InvalidInputError(
                f"Recurrence type must be one of {', '.join(SIMPLE_TYPES)}, got {self.type}"
            )
        unknown = [d for d in self.days_of_week if d not in RRULE_DAYS]
        if unknown:
            raise InvalidInputError(f"Unknown weekday(s): {', '.join(unknown)}")

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"type": self.type, "interval": self.interval}
        if self.days_of_week:
            d["daysOfWeek"] = list(self.days_of_week)
        if self.day_of_month is not None:
            d["dayOfMonth"] = self.day_of_month
        if self.end_date:
            d["endDate"] = self.end_date
        if self.occurrences is not None:
            d["occurrences"] = self.occurrences
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SimpleRecurrence:
        return cls(
            type=data["type"],
            interval=int(data.get("interval") or 1),
            days_of_week=[d.lower() for d in data.get("daysOfWeek") or []],
            day_of_month=data.get("dayOfMonth"),
            end_date=data.get("endDate"),
            occurrences=data.get("occurrences"),
        )


# =============================================================================
# Conversion
# =============================================================================


def to_recurrence_pattern(simple: SimpleRecurrence, start_date: str) -> RecurrencePattern:
    """
    Expand user input into a full recurrence pattern.

    Args:
        simple: Recurrence as entered by the user
        start_date: First occurrence date (YYYY-MM-DD or ISO datetime)

    Returns:
        RecurrencePattern (monthly/yearly become absolute patterns)
    """
    if simple.type == "monthly":
        pattern_type = "absoluteMonthly"
    elif simple.type == "yearly":
        pattern_type = "absoluteYearly"
    else:
        pattern_type = simple.type

    if simple.end_date:
        end_type = "endDate"
    elif simple.occurrences:
        end_type = "numbered"
    else:
        end_type = "noEnd"

    return RecurrencePattern(
        type=pattern_type,
        interval=simple.interval or 1,
        start_date=start_date.split("T")[0],
        end_type=end_type,
        days_of_week=list(simple.days_of_week),
        day_of_month=simple.day_of_month or None,
        end_date=simple.end_date or None,
        number_of_occurrences=simple.occurrences or None,
    )


def format_recurrence_pattern(pattern: RecurrencePattern) -> str:
    """Render a pattern as short English text, e.g. "Every 2 weeks on Mon, Thu"."""
    interval = pattern.interval

    if pattern.type == "daily":
        frequency = "Daily" if interval == 1 else f"Every {interval} days"
    elif pattern.type == "weekly":
        if pattern.days_of_week:
            days = ", ".join(d[:3].capitalize() for d in pattern.days_of_week)
            frequency = f"Weekly on {days}" if interval == 1 else f"Every {interval} weeks on {days}"
        else:
            frequency = "Weekly" if interval == 1 else f"Every {interval} weeks"
    elif pattern.type == "absoluteMonthly":
        day = pattern.day_of_month or 1
        frequency = f"Monthly on day {day}" if interval == 1 else f"Every {interval} months on day {day}"
    elif pattern.type == "relativeMonthly":
        index = pattern.week_index or "first"
        weekday = pattern.day_of_week_for_monthly or "monday"
        frequency = f"Monthly on the {index} {weekday}"
    elif pattern.type in ("absoluteYearly", "relativeYearly"):
        frequency = "Yearly" if interval == 1 else f"Every {interval} years"
    else:
        frequency = "Recurring"

    ending = ""
    if pattern.end_type == "endDate" and pattern.end_date:
        ending = f", until {pattern.end_date}"
    elif pattern.end_type == "numbered" and pattern.number_of_occurrences:
        ending = f", {pattern.number_of_occurrences} occurrences"

    return frequency + ending


# =============================================================================
# RRULE (RFC 5545)
# =============================================================================


def _rrule_date(value: Any) -> str:
    """UNTIL date or datetime -> 2026-12-31"""
    return value.strftime("%Y-%m-%d")


def parse_rrule(rrule: str, start_date: str) -> RecurrencePattern | None:
    """
    Parse an RRULE line into a RecurrencePattern.

    The pattern holds a single day of month and a single month, so
    multi-valued BYMONTHDAY/BYMONTH keep their first value.

    Args:
        rrule: "RRULE:FREQ=WEEKLY;BYDAY=MO,WE" (prefix optional)
        start_date: Date of the first occurrence

    Returns:
        RecurrencePattern, or None for frequencies that have no equivalent

    Raises:
        InvalidInputError: If the rule is malformed
    """
    rule = rrule[len("RRULE:"):] if rrule.startswith("RRULE:") else rrule
    try:
        params = vRecur.from_ical(rule.strip())
    except ValueError as e:
        raise InvalidInputError(f"Invalid recurrence rule: {rrule}") from e

    freq = str(params["FREQ"][0]) if params.get("FREQ") else None
    by_day = [str(token) for token in params.get("BYDAY") or []]
    week_index = None
    weekday_for_monthly = None
    days: list[str] = []

    for token in by_day:
        day = RRULE_DAYS_REVERSE.get(token[-2:].upper())
        if day:
            days.append(day)

    if freq == "DAILY":
        pattern_type = "daily"
    elif freq == "WEEKLY":
        pattern_type = "weekly"
    elif freq == "MONTHLY":
        if by_day:
            pattern_type = "relativeMonthly"
            ordinal = by_day[0][:-2]
            week_index = {"1": "first", "2": "second", "3": "third", "4": "fourth", "-1": "last"}.get(
                ordinal.lstrip("+")
            )
            weekday_for_monthly = days[0] if days else None
            days = []
        else:
            pattern_type = "absoluteMonthly"
    elif freq == "YEARLY":
        pattern_type = "absoluteYearly"
    else:
        return None

    pattern = RecurrencePattern(
        type=pattern_type,
        interval=int(params["INTERVAL"][0]) if params.get("INTERVAL") else 1,
        start_date=start_date.split("T")[0],
        days_of_week=days,
        week_index=week_index,
        day_of_week_for_monthly=weekday_for_monthly,
    )

    if params.get("BYMONTHDAY"):
        pattern.day_of_month = int(params["BYMONTHDAY"][0])
    if params.get("BYMONTH"):
        pattern.month = int(params["BYMONTH"][0])

    if params.get("UNTIL"):
        pattern.end_type = "endDate"
        pattern.end_date = _rrule_date(params["UNTIL"][0])
    elif params.get("COUNT"):
        pattern.end_type = "numbered"
        pattern.number_of_occurrences = int(params["COUNT"][0])

    return pattern


def to_rrule(simple: SimpleRecurrence) -> str:
    """Build an RRULE line from user input."""
    parts = [f"FREQ={RRULE_FREQ[simple.type]}"]

    if simple.interval and simple.interval > 1:
        parts.append(f"INTERVAL={simple.interval}")

    if simple.days_of_week:
        parts.append("BYDAY=" + ",".join(RRULE_DAYS[d] for d in simple.days_of_week))

    if simple.day_of_month:
        parts.append(f"BYMONTHDAY={simple.day_of_month}")

    if simple.end_date:
        parts.append(f"UNTIL={simple.end_date.replace('-', '')}T235959Z")
    elif simple.occurrences:
        parts.append(f"COUNT={simple.occurrences}")

    return "RRULE:" + ";".join(parts)
