"""
Tool: Calendar Models
Purpose: Unified data structures for events, calendars, availability and sync

Usage:
    from calbridge.models import CalendarEvent, EventTime, ProviderType

This module normalizes data across Google Calendar, Microsoft Graph and
Exchange EWS. Every model converts to a JSON-serializable dict with the
camelCase keys used on the wire (showAs, iCalUId, durationMinutes, ...).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from calbridge.datetime_utils import duration_minutes, parse_datetime, to_iso, zone_name
from calbridge.errors import InvalidInputError, ProviderError
from calbridge.recurrence import RecurrencePattern, SimpleRecurrence


# =============================================================================
# Enumerations
# =============================================================================


class ProviderType(str, Enum):
    """Calendar back-ends."""

    GOOGLE = "google"
    MICROSOFT = "microsoft"
    EXCHANGE = "exchange"


class EventStatus(str, Enum):
    CONFIRMED = "confirmed"
    TENTATIVE = "tentative"
    CANCELLED = "cancelled"


class ShowAs(str, Enum):
    """
    Busy classification of an event.

    FREE events never count as busy, for availability or for conflicts.
    """

    FREE = "free"
    BUSY = "busy"
    TENTATIVE = "tentative"
    OOF = "oof"
    WORKING_ELSEWHERE = "workingElsewhere"


class BusyStatus(str, Enum):
    BUSY = "busy"
    TENTATIVE = "tentative"
    OOF = "oof"


class ResponseStatus(str, Enum):
    ACCEPTED = "accepted"
    DECLINED = "declined"
    TENTATIVE = "tentative"
    NEEDS_ACTION = "needsAction"


class ResponseType(str, Enum):
    """Replies a user can send to an invitation."""

    ACCEPTED = "accepted"
    DECLINED = "declined"
    TENTATIVE = "tentative"


class AttendeeType(str, Enum):
    REQUIRED = "required"
    OPTIONAL = "optional"
    RESOURCE = "resource"


class Sensitivity(str, Enum):
    NORMAL = "normal"
    PERSONAL = "personal"
    PRIVATE = "private"
    CONFIDENTIAL = "confidential"


class BodyType(str, Enum):
    TEXT = "text"
    HTML = "html"


class OnlineMeetingProvider(str, Enum):
    TEAMS = "teams"
    MEET = "meet"
    ZOOM = "zoom"
    OTHER = "other"


class ChangeScope(str, Enum):
    """Which occurrences of a recurring event an update or delete applies to."""

    SINGLE = "single"
    THIS_AND_FUTURE = "thisAndFuture"
    ALL = "all"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Minimum score per confidence bucket
CONFIDENCE_FLOORS = {
    Confidence.HIGH: 0.8,
    Confidence.MEDIUM: 0.5,
    Confidence.LOW: 0.3,
}


def confidence_for_score(score: float) -> Confidence:
    if score >= CONFIDENCE_FLOORS[Confidence.HIGH]:
        return Confidence.HIGH
    if score >= CONFIDENCE_FLOORS[Confidence.MEDIUM]:
        return Confidence.MEDIUM
    return Confidence.LOW


def _enum(enum_cls: type[Enum], value: Any, what: str) -> Any:
    if value is None or isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidInputError(f"Invalid {what} '{value}' (expected one of: {allowed})") from e


def parse_provider_type(value: ProviderType | str) -> ProviderType:
    """Provider type from its name; unknown names raise InvalidInputError."""
    if value is None:
        raise InvalidInputError("Provider type is required")
    return _enum(ProviderType, value, "provider")


def _value(member: Enum | None) -> Any:
    return member.value if member is not None else None


def _parse_providers(providers: list[Any] | None) -> list[ProviderType] | None:
    if providers is None:
        return None
    return [_enum(ProviderType, p, "provider") for p in providers]


# =============================================================================
# Events and calendars
# =============================================================================


@dataclass
class EventTime:
    """
    A point in time together with the zone it is expressed in.

    Naive datetimes are wall-clock time in `timezone`; aware datetimes are
    converted into it.
    """

    date_time: datetime
    timezone: str

    def __post_init__(self):
        self.date_time = parse_datetime(self.date_time, self.timezone)

    @classmethod
    def from_datetime(cls, dt: datetime) -> EventTime:
        return cls(date_time=dt, timezone=zone_name(dt))

    def to_dict(self) -> dict[str, Any]:
        return {"dateTime": to_iso(self.date_time), "timezone": self.timezone}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventTime:
        from calbridge.config import get_default_timezone

        return cls(date_time=data["dateTime"], timezone=data.get("timezone") or get_default_timezone())


@dataclass
class Attendee:
    """Event attendee or organizer."""

    email: str
    name: str | None = None
    response: ResponseStatus = ResponseStatus.NEEDS_ACTION
    type: AttendeeType = AttendeeType.REQUIRED
    is_organizer: bool = False

    def __post_init__(self):
        self.response = _enum(ResponseStatus, self.response, "response status")
        self.type = _enum(AttendeeType, self.type, "attendee type")

    def to_dict(self) -> dict[str, Any]:
        return {
            "email": self.email,
            "name": self.name,
            "response": self.response.value,
            "type": self.type.value,
            "isOrganizer": self.is_organizer,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Attendee:
        return cls(
            email=data["email"],
            name=data.get("name"),
            response=data.get("response", ResponseStatus.NEEDS_ACTION),
            type=data.get("type", AttendeeType.REQUIRED),
            is_organizer=bool(data.get("isOrganizer", False)),
        )


@dataclass
class Reminder:
    method: str = "popup"
    minutes: int = 10

    def to_dict(self) -> dict[str, Any]:
        return {"method": self.method, "minutes": self.minutes}


@dataclass
class EventReminders:
    use_default: bool = True
    overrides: list[Reminder] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "useDefault": self.use_default,
            "overrides": [r.to_dict() for r in self.overrides],
        }


@dataclass
class CalendarEvent:
    """
    Normalized calendar event across providers.

    Identity is (provider, calendar_id, id); ids are opaque and only
    meaningful to the provider that issued them. ical_uid, when both sides
    carry one, identifies the same meeting across providers.

    Raises:
        InvalidInputError: If start is not before end
    """

    # Identity
    id: str
    provider: ProviderType
    calendar_id: str
    subject: str
    start: EventTime
    end: EventTime
    calendar_email: str | None = None
    ical_uid: str | None = None

    # Content
    body: str | None = None
    body_type: BodyType | None = None

    # Timing
    is_all_day: bool = False

    # Recurrence
    is_recurring: bool = False
    recurrence: RecurrencePattern | None = None
    series_master_id: str | None = None
    instance_date: str | None = None

    # Location
    location: str | None = None
    is_online_meeting: bool = False
    online_meeting_url: str | None = None
    online_meeting_provider: OnlineMeetingProvider | None = None

    # People
    organizer: Attendee | None = None
    attendees: list[Attendee] = field(default_factory=list)
    is_organizer: bool = False

    # Status
    status: EventStatus = EventStatus.CONFIRMED
    show_as: ShowAs = ShowAs.BUSY
    my_response_status: ResponseStatus | None = None
    sensitivity: Sensitivity = Sensitivity.NORMAL

    # Metadata
    created_at: str | None = None
    updated_at: str | None = None
    web_link: str | None = None
    reminders: EventReminders | None = None

    def __post_init__(self):
        self.provider = _enum(ProviderType, self.provider, "provider")
        self.body_type = _enum(BodyType, self.body_type, "body type")
        self.online_meeting_provider = _enum(
            OnlineMeetingProvider, self.online_meeting_provider, "online meeting provider"
        )
        self.status = _enum(EventStatus, self.status, "event status")
        self.show_as = _enum(ShowAs, self.show_as, "showAs")
        self.my_response_status = _enum(ResponseStatus, self.my_response_status, "response status")
        self.sensitivity = _enum(Sensitivity, self.sensitivity, "sensitivity")

        if self.start.date_time >= self.end.date_time:
            raise InvalidInputError(
                f"Event {self.id} must start before it ends "
                f"({to_iso(self.start.date_time)} >= {to_iso(self.end.date_time)})",
                provider=self.provider.value,
            )

    @property
    def start_dt(self) -> datetime:
        return self.start.date_time

    @property
    def end_dt(self) -> datetime:
        return self.end.date_time

    @property
    def is_busy(self) -> bool:
        return self.show_as != ShowAs.FREE

    @property
    def duration_minutes(self) -> int:
        return duration_minutes(self.start_dt, self.end_dt)

    def to_summary(self) -> dict[str, Any]:
        """Short reference used where the full event would be noise."""
        return {
            "id": self.id,
            "provider": self.provider.value,
            "calendarId": self.calendar_id,
            "subject": self.subject,
            "start": to_iso(self.start_dt),
            "end": to_iso(self.end_dt),
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "id": self.id,
            "provider": self.provider.value,
            "calendarId": self.calendar_id,
            "calendarEmail": self.calendar_email,
            "iCalUId": self.ical_uid,
            "subject": self.subject,
            "body": self.body,
            "bodyType": _value(self.body_type),
            "start": self.start.to_dict(),
            "end": self.end.to_dict(),
            "isAllDay": self.is_all_day,
            "isRecurring": self.is_recurring,
            "recurrence": self.recurrence.to_dict() if self.recurrence else None,
            "seriesMasterId": self.series_master_id,
            "instanceDate": self.instance_date,
            "location": self.location,
            "isOnlineMeeting": self.is_online_meeting,
            "onlineMeetingUrl": self.online_meeting_url,
            "onlineMeetingProvider": _value(self.online_meeting_provider),
            "organizer": self.organizer.to_dict() if self.organizer else None,
            "attendees": [a.to_dict() for a in self.attendees],
            "isOrganizer": self.is_organizer,
            "status": self.status.value,
            "showAs": self.show_as.value,
            "myResponseStatus": _value(self.my_response_status),
            "sensitivity": self.sensitivity.value,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "webLink": self.web_link,
            "reminders": self.reminders.to_dict() if self.reminders else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CalendarEvent:
        """Create from a dict produced by to_dict()."""
        reminders = None
        if data.get("reminders"):
            reminders = EventReminders(
                use_default=data["reminders"].get("useDefault", True),
                overrides=[Reminder(**r) for r in data["reminders"].get("overrides") or []],
            )
        return cls(
            id=data["id"],
            provider=data["provider"],
            calendar_id=data.get("calendarId", ""),
            subject=data.get("subject", ""),
            start=EventTime.from_dict(data["start"]),
            end=EventTime.from_dict(data["end"]),
            calendar_email=data.get("calendarEmail"),
            ical_uid=data.get("iCalUId"),
            body=data.get("body"),
            body_type=data.get("bodyType"),
            is_all_day=bool(data.get("isAllDay", False)),
            is_recurring=bool(data.get("isRecurring", False)),
            recurrence=RecurrencePattern.from_dict(data["recurrence"]) if data.get("recurrence") else None,
            series_master_id=data.get("seriesMasterId"),
            instance_date=data.get("instanceDate"),
            location=data.get("location"),
            is_online_meeting=bool(data.get("isOnlineMeeting", False)),
            online_meeting_url=data.get("onlineMeetingUrl"),
            online_meeting_provider=data.get("onlineMeetingProvider"),
            organizer=Attendee.from_dict(data["organizer"]) if data.get("organizer") else None,
            attendees=[Attendee.from_dict(a) for a in data.get("attendees") or []],
            is_organizer=bool(data.get("isOrganizer", False)),
            status=data.get("status", EventStatus.CONFIRMED),
            show_as=data.get("showAs", ShowAs.BUSY),
            my_response_status=data.get("myResponseStatus"),
            sensitivity=data.get("sensitivity", Sensitivity.NORMAL),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
            web_link=data.get("webLink"),
            reminders=reminders,
        )


@dataclass
class Calendar:
    """A calendar belonging to one provider account."""

    id: str
    provider: ProviderType
    name: str
    email: str = ""
    is_primary: bool = False
    can_edit: bool = False
    color: str | None = None
    description: str | None = None
    timezone: str | None = None
    access_role: str | None = None

    def __post_init__(self):
        self.provider = _enum(ProviderType, self.provider, "provider")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider.value,
            "name": self.name,
            "email": self.email,
            "isPrimary": self.is_primary,
            "canEdit": self.can_edit,
            "color": self.color,
            "description": self.description,
            "timezone": self.timezone,
            "accessRole": self.access_role,
        }


# =============================================================================
# Availability
# =============================================================================


@dataclass
class BusySlot:
    start: datetime
    end: datetime
    status: BusyStatus = BusyStatus.BUSY
    event_subject: str | None = None
    event_id: str | None = None

    def __post_init__(self):
        self.status = _enum(BusyStatus, self.status, "busy status")

    def to_dict(self) -> dict[str, Any]:
        d = {"start": to_iso(self.start), "end": to_iso(self.end), "status": self.status.value}
        if self.event_subject is not None:
            d["eventSubject"] = self.event_subject
        if self.event_id is not None:
            d["eventId"] = self.event_id
        return d


@dataclass
class FreeSlot:
    start: datetime
    end: datetime
    duration_minutes: int | None = None

    def __post_init__(self):
        if self.duration_minutes is None:
            self.duration_minutes = duration_minutes(self.start, self.end)

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": to_iso(self.start),
            "end": to_iso(self.end),
            "durationMinutes": self.duration_minutes,
        }


@dataclass
class WorkingHours:
    """Daily working window ("HH:MM" local time) and the weekdays it applies to."""

    start: str = "09:00"
    end: str = "17:00"
    days: list[str] = field(
        default_factory=lambda: ["monday", "tuesday", "wednesday", "thursday", "friday"]
    )

    def __post_init__(self):
        self.days = [d.strip().lower() for d in self.days]

    def to_dict(self) -> dict[str, Any]:
        return {"start": self.start, "end": self.end, "days": list(self.days)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WorkingHours:
        defaults = cls()
        return cls(
            start=data.get("start", defaults.start),
            end=data.get("end", defaults.end),
            days=list(data.get("days") or defaults.days),
        )


@dataclass
class CalendarFreeBusy:
    """Busy slots reported by one provider."""

    provider: ProviderType
    calendar_id: str
    calendar_name: str
    busy: list[BusySlot] = field(default_factory=list)

    def __post_init__(self):
        self.provider = _enum(ProviderType, self.provider, "provider")

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider.value,
            "calendarId": self.calendar_id,
            "calendarName": self.calendar_name,
            "busy": [b.to_dict() for b in self.busy],
        }


@dataclass
class FreeBusyResult:
    """Availability aggregated across providers."""

    calendars: dict[str, CalendarFreeBusy] = field(default_factory=dict)
    busy: list[BusySlot] = field(default_factory=list)
    free: list[FreeSlot] = field(default_factory=list)
    suggested_slots: list[FreeSlot] | None = None
    errors: list[ProviderError] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "calendars": {k: v.to_dict() for k, v in self.calendars.items()},
            "unified": {
                "busy": [b.to_dict() for b in self.busy],
                "free": [f.to_dict() for f in self.free],
            },
            "partial": self.partial,
        }
        if self.suggested_slots is not None:
            d["suggestedSlots"] = [s.to_dict() for s in self.suggested_slots]
        if self.errors:
            d["errors"] = [e.to_dict() for e in self.errors]
        return d


# =============================================================================
# Queries and parameters
# =============================================================================


@dataclass
class EventQuery:
    """Time-range event query across providers."""

    start_time: datetime
    end_time: datetime
    providers: list[ProviderType] | None = None
    calendar_ids: list[str] | None = None
    search_query: str | None = None
    expand_recurring: bool = True
    max_results: int | None = None
    order_by: str = "start"

    def __post_init__(self):
        self.start_time = parse_datetime(self.start_time)
        self.end_time = parse_datetime(self.end_time)
        self.providers = _parse_providers(self.providers)
        if self.max_results is not None and self.max_results < 1:
            raise InvalidInputError("max_results must be positive")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EventQuery:
        return cls(
            start_time=data["startTime"],
            end_time=data["endTime"],
            providers=data.get("providers"),
            calendar_ids=data.get("calendarIds"),
            search_query=data.get("searchQuery"),
            expand_recurring=data.get("expandRecurring", True),
            max_results=data.get("maxResults"),
            order_by=data.get("orderBy", "start"),
        )


@dataclass
class FreeBusyQuery:
    """Availability query: a range plus optional slot and working-hours options."""

    start_time: datetime
    end_time: datetime
    providers: list[ProviderType] | None = None
    calendar_ids: list[str] | None = None
    slot_duration: int | None = None
    working_hours_only: bool = False
    working_hours: WorkingHours | None = None

    def __post_init__(self):
        self.start_time = parse_datetime(self.start_time)
        self.end_time = parse_datetime(self.end_time)
        self.providers = _parse_providers(self.providers)
        if isinstance(self.working_hours, dict):
            self.working_hours = WorkingHours.from_dict(self.working_hours)
        if self.slot_duration is not None and self.slot_duration <= 0:
            raise InvalidInputError("slot_duration must be a positive number of minutes")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FreeBusyQuery:
        return cls(
            start_time=data["startTime"],
            end_time=data["endTime"],
            providers=data.get("providers"),
            calendar_ids=data.get("calendarIds"),
            slot_duration=data.get("slotDuration"),
            working_hours_only=bool(data.get("workingHoursOnly", False)),
            working_hours=data.get("workingHours"),
        )


@dataclass
class AttendeeInput:
    email: str
    name: str | None = None
    type: AttendeeType = AttendeeType.REQUIRED

    def __post_init__(self):
        self.type = _enum(AttendeeType, self.type, "attendee type")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AttendeeInput:
        return cls(email=data["email"], name=data.get("name"), type=data.get("type", "required"))


def _parse_attendees(attendees: list[Any] | None) -> list[AttendeeInput] | None:
    if attendees is None:
        return None
    return [AttendeeInput.from_dict(a) if isinstance(a, dict) else a for a in attendees]


@dataclass
class CreateEventParams:
    """
    Parameters for creating an event.

    start_time/end_time are parsed in `timezone` (default: the configured
    zone); the zone actually used is stored back on `timezone`.
    """

    subject: str
    start_time: datetime
    end_time: datetime
    timezone: str | None = None
    body: str | None = None
    body_type: BodyType | None = None
    is_all_day: bool = False
    location: str | None = None
    create_online_meeting: bool = False
    online_meeting_provider: OnlineMeetingProvider | None = None
    attendees: list[AttendeeInput] | None = None
    recurrence: SimpleRecurrence | None = None
    show_as: ShowAs | None = None
    sensitivity: Sensitivity | None = None
    send_invites: bool = True
    reminder_minutes: int | None = None

    def __post_init__(self):
        if not self.subject or not self.subject.strip():
            raise InvalidInputError("Event subject is required")
        self.start_time = parse_datetime(self.start_time, self.timezone)
        self.end_time = parse_datetime(self.end_time, self.timezone)
        if self.timezone is None:
            self.timezone = zone_name(self.start_time)
        if self.start_time >= self.end_time:
            raise InvalidInputError("Event end time must be after start time")
        self.body_type = _enum(BodyType, self.body_type, "body type")
        self.online_meeting_provider = _enum(
            OnlineMeetingProvider, self.online_meeting_provider, "online meeting provider"
        )
        self.show_as = _enum(ShowAs, self.show_as, "showAs")
        self.sensitivity = _enum(Sensitivity, self.sensitivity, "sensitivity")
        self.attendees = _parse_attendees(self.attendees)
        if isinstance(self.recurrence, dict):
            self.recurrence = SimpleRecurrence.from_dict(self.recurrence)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CreateEventParams:
        return cls(
            subject=data.get("subject", ""),
            start_time=data["startTime"],
            end_time=data["endTime"],
            timezone=data.get("timezone"),
            body=data.get("body"),
            body_type=data.get("bodyType"),
            is_all_day=bool(data.get("isAllDay", False)),
            location=data.get("location"),
            create_online_meeting=bool(data.get("createOnlineMeeting", False)),
            online_meeting_provider=data.get("onlineMeetingProvider"),
            attendees=data.get("attendees"),
            recurrence=data.get("recurrence"),
            show_as=data.get("showAs"),
            sensitivity=data.get("sensitivity"),
            send_invites=data.get("sendInvites", True),
            reminder_minutes=data.get("reminderMinutes"),
        )


@dataclass
class UpdateEventParams:
    """Partial update; None means "leave unchanged"."""

    subject: str | None = None
    body: str | None = None
    body_type: BodyType | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    timezone: str | None = None
    location: str | None = None
    attendees: list[AttendeeInput] | None = None
    show_as: ShowAs | None = None
    sensitivity: Sensitivity | None = None
    update_scope: ChangeScope = ChangeScope.SINGLE
    send_updates: bool = True

    def __post_init__(self):
        if self.start_time is not None:
            self.start_time = parse_datetime(self.start_time, self.timezone)
        if self.end_time is not None:
            self.end_time = parse_datetime(self.end_time, self.timezone)
        if self.start_time and self.end_time and self.start_time >= self.end_time:
            raise InvalidInputError("Event end time must be after start time")
        if self.timezone is None and self.start_time is not None:
            self.timezone = zone_name(self.start_time)
        self.body_type = _enum(BodyType, self.body_type, "body type")
        self.show_as = _enum(ShowAs, self.show_as, "showAs")
        self.sensitivity = _enum(Sensitivity, self.sensitivity, "sensitivity")
        self.update_scope = _enum(ChangeScope, self.update_scope, "update scope")
        self.attendees = _parse_attendees(self.attendees)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UpdateEventParams:
        return cls(
            subject=data.get("subject"),
            body=data.get("body"),
            body_type=data.get("bodyType"),
            start_time=data.get("startTime"),
            end_time=data.get("endTime"),
            timezone=data.get("timezone"),
            location=data.get("location"),
            attendees=data.get("attendees"),
            show_as=data.get("showAs"),
            sensitivity=data.get("sensitivity"),
            update_scope=data.get("updateScope", ChangeScope.SINGLE),
            send_updates=data.get("sendUpdates", True),
        )


@dataclass
class DeleteOptions:
    delete_scope: ChangeScope = ChangeScope.SINGLE
    send_cancellation: bool = True

    def __post_init__(self):
        self.delete_scope = _enum(ChangeScope, self.delete_scope, "delete scope")


# =============================================================================
# Results
# =============================================================================


@dataclass
class ListEventsResult:
    """Events merged across providers, with any per-provider failures."""

    events: list[CalendarEvent] = field(default_factory=list)
    errors: list[ProviderError] = field(default_factory=list)
    partial_success: bool = False

    def raise_for_errors(self) -> None:
        """Raise the first provider failure, if any."""
        if self.errors:
            raise self.errors[0].to_exception()

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "events": [e.to_dict() for e in self.events],
            "partialSuccess": self.partial_success,
        }
        if self.errors:
            d["errors"] = [e.to_dict() for e in self.errors]
        return d


@dataclass
class ConflictingEvent:
    id: str
    provider: ProviderType
    calendar_id: str
    subject: str
    start: datetime
    end: datetime
    show_as: ShowAs

    @classmethod
    def from_event(cls, event: CalendarEvent) -> ConflictingEvent:
        return cls(
            id=event.id,
            provider=event.provider,
            calendar_id=event.calendar_id,
            subject=event.subject,
            start=event.start_dt,
            end=event.end_dt,
            show_as=event.show_as,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider.value,
            "calendarId": self.calendar_id,
            "subject": self.subject,
            "start": to_iso(self.start),
            "end": to_iso(self.end),
            "showAs": self.show_as.value,
        }


@dataclass
class SlotSuggestion:
    start: datetime
    end: datetime
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"start": to_iso(self.start), "end": to_iso(self.end), "reason": self.reason}


@dataclass
class ConflictCheckResult:
    has_conflict: bool
    conflicts: list[ConflictingEvent] = field(default_factory=list)
    suggestion: SlotSuggestion | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "hasConflict": self.has_conflict,
            "conflicts": [c.to_dict() for c in self.conflicts],
        }
        if self.suggestion:
            d["suggestion"] = self.suggestion.to_dict()
        return d


@dataclass
class MatchFactor:
    factor: str
    weight: int
    matched: bool
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "factor": self.factor,
            "weight": self.weight,
            "matched": self.matched,
            "details": self.details,
        }


@dataclass
class EventMatch:
    """A scored pairing of a source event with a target event."""

    source_event: CalendarEvent
    target_event: CalendarEvent
    score: float
    confidence: Confidence
    factors: list[MatchFactor] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sourceEvent": self.source_event.to_summary(),
            "targetEvent": self.target_event.to_summary(),
            "score": round(self.score, 4),
            "confidence": self.confidence.value,
            "matchFactors": [f.to_dict() for f in self.factors],
        }


@dataclass
class SyncQuery:
    """Two calendars and a time range to compare."""

    source_provider: ProviderType
    target_provider: ProviderType
    start_time: datetime
    end_time: datetime
    source_calendar_id: str | None = None
    target_calendar_id: str | None = None
    min_confidence: Confidence = Confidence.LOW

    def __post_init__(self):
        self.source_provider = _enum(ProviderType, self.source_provider, "provider")
        self.target_provider = _enum(ProviderType, self.target_provider, "provider")
        self.start_time = parse_datetime(self.start_time)
        self.end_time = parse_datetime(self.end_time)
        self.min_confidence = _enum(Confidence, self.min_confidence, "confidence")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SyncQuery:
        return cls(
            source_provider=data["sourceProvider"],
            target_provider=data["targetProvider"],
            start_time=data["startTime"],
            end_time=data["endTime"],
            source_calendar_id=data.get("sourceCalendarId"),
            target_calendar_id=data.get("targetCalendarId"),
            min_confidence=data.get("minConfidence") or Confidence.LOW,
        )


@dataclass
class CalendarComparison:
    source_provider: ProviderType
    target_provider: ProviderType
    source_calendar_id: str
    target_calendar_id: str
    start_time: datetime
    end_time: datetime
    matches: list[EventMatch] = field(default_factory=list)
    source_only: list[CalendarEvent] = field(default_factory=list)
    target_only: list[CalendarEvent] = field(default_factory=list)
    total_source_events: int = 0
    total_target_events: int = 0

    @property
    def statistics(self) -> dict[str, int]:
        return {
            "totalSourceEvents": self.total_source_events,
            "totalTargetEvents": self.total_target_events,
            "matchedCount": len(self.matches),
            "sourceOnlyCount": len(self.source_only),
            "targetOnlyCount": len(self.target_only),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "sourceCalendarId": self.source_calendar_id,
            "targetCalendarId": self.target_calendar_id,
            "sourceProvider": self.source_provider.value,
            "targetProvider": self.target_provider.value,
            "timeRange": {"startTime": to_iso(self.start_time), "endTime": to_iso(self.end_time)},
            "matches": [m.to_dict() for m in self.matches],
            "sourceOnly": [e.to_summary() for e in self.source_only],
            "targetOnly": [e.to_summary() for e in self.target_only],
            "statistics": self.statistics,
        }


@dataclass
class CopyEventRequest:
    source_provider: ProviderType
    source_event_id: str
    target_provider: ProviderType
    source_calendar_id: str | None = None
    target_calendar_id: str | None = None
    include_attendees: bool = False
    include_body: bool = True

    def __post_init__(self):
        self.source_provider = _enum(ProviderType, self.source_provider, "provider")
        self.target_provider = _enum(ProviderType, self.target_provider, "provider")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CopyEventRequest:
        return cls(
            source_provider=data["sourceProvider"],
            source_event_id=data["sourceEventId"],
            target_provider=data["targetProvider"],
            source_calendar_id=data.get("sourceCalendarId"),
            target_calendar_id=data.get("targetCalendarId"),
            include_attendees=bool(data.get("includeAttendees", False)),
            include_body=data.get("includeBody", True) is not False,
        )


@dataclass
class CopyEventResult:
    """Outcome of one copy; failures are reported here, not raised."""

    success: bool
    source_event_id: str
    source_event: CalendarEvent | None = None
    copied_event: CalendarEvent | None = None
    error: str | None = None
    error_kind: str | None = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"success": self.success, "sourceEventId": self.source_event_id}
        if self.source_event:
            d["sourceEvent"] = self.source_event.to_summary()
        if self.copied_event:
            d["copiedEvent"] = self.copied_event.to_dict()
        if self.error:
            d["error"] = self.error
            d["errorKind"] = self.error_kind
        return d


@dataclass
class ProviderHealthStatus:
    provider_id: str
    provider_type: ProviderType
    connected: bool
    last_error: str | None = None
    last_successful_operation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "providerId": self.provider_id,
            "providerType": self.provider_type.value,
            "connected": self.connected,
            "lastError": self.last_error,
            "lastSuccessfulOperation": self.last_successful_operation,
        }
