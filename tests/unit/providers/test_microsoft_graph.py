"""
Unit tests for the Microsoft Graph provider.

Tests cover:
- Mapping Graph event/calendar resources
- Building create/patch bodies (zone handling, all-day, recurrence)
- Provider operations against a mocked HTTP layer
"""

from unittest.mock import AsyncMock

import pytest

from calbridge.config import MicrosoftProviderConfig
from calbridge.models import (
    AttendeeType,
    BusyStatus,
    ChangeScope,
    CreateEventParams,
    DeleteOptions,
    EventQuery,
    EventStatus,
    FreeBusyQuery,
    OnlineMeetingProvider,
    ProviderType,
    ResponseStatus,
    ResponseType,
    ShowAs,
    UpdateEventParams,
)
from calbridge.providers.microsoft_graph import (
    GRAPH_API_BASE,
    MicrosoftGraphProvider,
    map_graph_calendar,
    map_graph_event,
    to_graph_event,
    to_graph_event_patch,
)
from calbridge.recurrence import SimpleRecurrence
from tests.conftest import dt, routed


GRAPH_EVENT = {
    "id": "AAMkAD=",
    "iCalUId": "040000008200E00074C5B7101A82E008",
    "subject": "Quarterly planning",
    "body": {"contentType": "html", "content": "<b>Plan</b>"},
    "start": {"dateTime": "2026-10-19T14:00:00.0000000", "timeZone": "UTC"},
    "end": {"dateTime": "2026-10-19T15:30:00.0000000", "timeZone": "UTC"},
    "isAllDay": False,
    "location": {"displayName": "Board room"},
    "organizer": {"emailAddress": {"name": "Boss", "address": "Boss@Example.com"}},
    "attendees": [
        {"type": "required", "status": {"response": "accepted"},
         "emailAddress": {"name": "Boss", "address": "boss@example.com"}},
        {"type": "optional", "status": {"response": "tentativelyAccepted"},
         "emailAddress": {"name": "Me", "address": "me@example.com"}},
        {"type": "resource", "status": {"response": "none"},
         "emailAddress": {"name": "Room", "address": "room@example.com"}},
    ],
    "isOrganizer": False,
    "showAs": "tentative",
    "sensitivity": "private",
    "responseStatus": {"response": "tentativelyAccepted"},
    "isOnlineMeeting": True,
    "onlineMeeting": {"joinUrl": "https://teams.microsoft.com/l/meetup-join/abc"},
    "recurrence": {
        "pattern": {"type": "relativeMonthly", "interval": 1, "daysOfWeek": ["Thursday"], "index": "third"},
        "range": {"type": "numbered", "startDate": "2026-10-15", "numberOfOccurrences": 6},
    },
    "webLink": "https://outlook.office365.com/owa/?itemid=AAMkAD",
}


def graph_provider(**overrides) -> MicrosoftGraphProvider:
    config = MicrosoftProviderConfig(
        id="ms-test", name="Work", email="me@example.com", access_token="token", **overrides
    )
    return MicrosoftGraphProvider(config)


# ============================================================================
# Incoming mapping
# ============================================================================


class TestMapGraphEvent:
    """Tests for map_graph_event."""

    def test_basic_fields(self):
        event = map_graph_event(GRAPH_EVENT, "primary")

        assert event.provider == ProviderType.MICROSOFT
        assert event.subject == "Quarterly planning"
        assert event.start_dt == dt("2026-10-19T14:00")
        assert event.duration_minutes == 90
        assert event.location == "Board room"
        assert event.body_type.value == "html"
        assert event.show_as == ShowAs.TENTATIVE
        assert event.status == EventStatus.CONFIRMED

    def test_organizer_removed_from_attendees(self):
        """The organizer is matched case-insensitively and listed separately."""
        event = map_graph_event(GRAPH_EVENT, "primary")

        assert event.organizer.email == "Boss@Example.com"
        assert [a.email for a in event.attendees] == ["me@example.com", "room@example.com"]
        assert event.attendees[0].type == AttendeeType.OPTIONAL
        assert event.attendees[0].response == ResponseStatus.TENTATIVE
        assert event.attendees[1].type == AttendeeType.RESOURCE
        assert event.attendees[1].response == ResponseStatus.NEEDS_ACTION
        assert event.my_response_status == ResponseStatus.TENTATIVE

    def test_online_meeting_and_recurrence(self):
        event = map_graph_event(GRAPH_EVENT, "primary")

        assert event.online_meeting_provider == OnlineMeetingProvider.TEAMS
        assert event.online_meeting_url.startswith("https://teams.microsoft.com/")
        assert event.is_recurring
        assert event.recurrence.type == "relativeMonthly"
        assert event.recurrence.week_index == "third"
        assert event.recurrence.day_of_week_for_monthly == "thursday"
        assert event.recurrence.end_type == "numbered"
        assert event.recurrence.number_of_occurrences == 6

    def test_times_land_in_default_zone(self, utc_config):
        utc_config.defaults.timezone = "Europe/Paris"

        event = map_graph_event(GRAPH_EVENT, "primary")

        assert event.start.timezone == "Europe/Paris"
        assert event.start_dt.hour == 16

    def test_windows_zone_treated_as_utc(self):
        data = {**GRAPH_EVENT, "start": {"dateTime": "2026-10-19T14:00:00", "timeZone": "Pacific Standard Time"}}

        assert map_graph_event(data, "primary").start_dt == dt("2026-10-19T14:00")

    def test_unknown_show_as_is_busy(self):
        assert map_graph_event({**GRAPH_EVENT, "showAs": "unknown"}, "c").show_as == ShowAs.BUSY
        assert map_graph_event({**GRAPH_EVENT, "showAs": "workingElsewhere"}, "c").show_as == ShowAs.WORKING_ELSEWHERE

    def test_bad_recurrence_ignored(self):
        data = {**GRAPH_EVENT, "recurrence": {"pattern": {"type": "hourly"}, "range": {"type": "noEnd"}}}

        assert map_graph_event(data, "c").recurrence is None

    def test_calendar(self):
        calendar = map_graph_calendar({
            "id": "AQMk",
            "name": "Calendar",
            "isDefaultCalendar": True,
            "canEdit": True,
            "hexColor": "#ff0000",
            "owner": {"address": "me@example.com"},
        })

        assert calendar.is_primary
        assert calendar.email == "me@example.com"
        assert calendar.access_role == "writer"

    def test_read_only_calendar(self):
        assert map_graph_calendar({"id": "x", "name": "Holidays", "canEdit": False}).access_role == "reader"


# ============================================================================
# Outgoing mapping
# ============================================================================


class TestToGraphEvent:
    """Tests for create/patch bodies."""

    def test_wall_clock_in_event_zone(self):
        body = to_graph_event(CreateEventParams(
            subject="Lunch",
            start_time="2026-10-19T12:00",
            end_time="2026-10-19T13:00",
            timezone="America/Chicago",
            attendees=[{"email": "a@example.com", "type": "optional"}],
            show_as="oof",
            create_online_meeting=True,
        ))

        assert body["start"] == {"dateTime": "2026-10-19T12:00:00", "timeZone": "America/Chicago"}
        assert body["attendees"] == [{"type": "optional", "emailAddress": {"address": "a@example.com"}}]
        assert body["showAs"] == "oof"
        assert body["onlineMeetingProvider"] == "teamsForBusiness"

    def test_all_day(self):
        body = to_graph_event(CreateEventParams(
            subject="Conference",
            start_time="2026-10-20T00:00",
            end_time="2026-10-22T00:00",
            is_all_day=True,
        ))

        assert body["isAllDay"] is True
        assert body["start"]["dateTime"] == "2026-10-20T00:00:00"
        assert body["end"]["dateTime"] == "2026-10-22T00:00:00"

    def test_recurrence(self):
        body = to_graph_event(CreateEventParams(
            subject="Rent",
            start_time="2026-11-01T09:00",
            end_time="2026-11-01T09:30",
            recurrence=SimpleRecurrence(type="monthly", day_of_month=1, end_date="2027-06-01"),
        ))

        assert body["recurrence"]["pattern"] == {"type": "absoluteMonthly", "interval": 1, "dayOfMonth": 1}
        assert body["recurrence"]["range"] == {
            "type": "endDate", "startDate": "2026-11-01", "endDate": "2027-06-01"
        }

    def test_patch(self):
        patch = to_graph_event_patch(UpdateEventParams(
            start_time="2026-10-19T16:00",
            end_time="2026-10-19T17:00",
            location="",
        ))

        assert patch == {
            "start": {"dateTime": "2026-10-19T16:00:00", "timeZone": "UTC"},
            "end": {"dateTime": "2026-10-19T17:00:00", "timeZone": "UTC"},
            "location": {"displayName": ""},
        }


# ============================================================================
# Provider
# ============================================================================


async def connected_graph(routes: dict, **overrides):
    provider = graph_provider(**overrides)
    handler = routed({("GET", "/me"): {"mail": "me@example.com"}, **routes})
    provider._make_request = AsyncMock(side_effect=handler)
    await provider.connect()
    return provider, handler


class TestMicrosoftGraphProvider:
    """Tests for MicrosoftGraphProvider operations."""

    def test_headers_request_utc(self):
        headers = graph_provider()._get_headers()

        assert headers["Authorization"] == "Bearer token"
        assert headers["Prefer"] == 'outlook.timezone="UTC"'

    @pytest.mark.asyncio
    async def test_connect_fills_email(self):
        provider = graph_provider()
        provider.config.email = ""
        provider._make_request = AsyncMock(return_value={"userPrincipalName": "jdoe@contoso.com"})
        await provider.connect()

        assert provider.email == "jdoe@contoso.com"

    @pytest.mark.asyncio
    async def test_list_events_follows_next_link(self):
        """Pagination follows @odata.nextLink; cancelled events are dropped."""
        second = {**GRAPH_EVENT, "id": "second", "start": {"dateTime": "2026-10-19T09:00:00"},
                  "end": {"dateTime": "2026-10-19T09:30:00"}}
        provider, handler = await connected_graph({
            ("GET", "/me/calendarView"): {
                "value": [GRAPH_EVENT, {**GRAPH_EVENT, "id": "gone", "isCancelled": True}],
                "@odata.nextLink": f"{GRAPH_API_BASE}/me/calendarView?$skip=2",
            },
            ("GET", "$skip=2"): {"value": [second]},
        })

        events = await provider.list_events(EventQuery(start_time="2026-10-19", end_time="2026-10-20"))

        assert [e.id for e in events] == ["second", "AAMkAD="]
        assert handler.calls[-1][2]["params"] is None

    @pytest.mark.asyncio
    async def test_search_filters_subject(self):
        provider, _ = await connected_graph({("GET", "/me/calendarView"): {"value": [GRAPH_EVENT]}})

        events = await provider.list_events(
            EventQuery(start_time="2026-10-19", end_time="2026-10-20", search_query="budget")
        )

        assert events == []

    @pytest.mark.asyncio
    async def test_update_all_targets_series_master(self):
        provider, handler = await connected_graph({
            ("GET", "/me/calendar/events/instance-1"): {"id": "instance-1", "seriesMasterId": "master-1"},
            ("PATCH", "/me/calendar/events/master-1"): GRAPH_EVENT,
        })

        await provider.update_event("instance-1", UpdateEventParams(subject="Renamed", update_scope=ChangeScope.ALL))

        method, url, kwargs = handler.calls[-1]
        assert method == "PATCH"
        assert url.endswith("/master-1")
        assert kwargs["json"] == {"subject": "Renamed"}

    @pytest.mark.asyncio
    async def test_delete_as_organizer_cancels(self):
        provider, handler = await connected_graph({
            ("GET", "/me/calendar/events/evt"): {"id": "evt", "isOrganizer": True, "attendees": [{}]},
            ("POST", "/me/calendar/events/evt/cancel"): None,
        })

        await provider.delete_event("evt", DeleteOptions())

        assert handler.calls[-1][0] == "POST"

    @pytest.mark.asyncio
    async def test_delete_without_cancellation(self):
        provider, handler = await connected_graph({("DELETE", "/me/calendar/events/evt"): None})

        await provider.delete_event("evt", DeleteOptions(send_cancellation=False))

        assert [c[0] for c in handler.calls] == ["GET", "DELETE"]

    @pytest.mark.asyncio
    async def test_free_busy_skips_free_items(self):
        provider, handler = await connected_graph({
            ("POST", "/me/calendar/getSchedule"): {"value": [{"scheduleItems": [
                {"status": "busy", "start": {"dateTime": "2026-10-19T09:00:00", "timeZone": "UTC"},
                 "end": {"dateTime": "2026-10-19T10:00:00", "timeZone": "UTC"}},
                {"status": "free", "start": {"dateTime": "2026-10-19T11:00:00", "timeZone": "UTC"},
                 "end": {"dateTime": "2026-10-19T12:00:00", "timeZone": "UTC"}},
                {"status": "oof", "start": {"dateTime": "2026-10-19T13:00:00", "timeZone": "UTC"},
                 "end": {"dateTime": "2026-10-19T14:00:00", "timeZone": "UTC"}},
            ]}]},
            ("GET", "/me/calendars"): {"value": [{"id": "cal-1", "name": "Calendar", "isDefaultCalendar": True}]},
        })

        result = await provider.get_free_busy(FreeBusyQuery(start_time="2026-10-19", end_time="2026-10-20"))

        assert [b.status for b in result.busy] == [BusyStatus.BUSY, BusyStatus.OOF]
        assert result.calendar_id == "cal-1"
        body = next(kwargs["json"] for m, _, kwargs in handler.calls if m == "POST")
        assert body["schedules"] == ["me@example.com"]
        assert body["startTime"] == {"dateTime": "2026-10-19T00:00:00", "timeZone": "UTC"}

    @pytest.mark.asyncio
    async def test_respond_uses_action_endpoint(self):
        provider, handler = await connected_graph({
            ("POST", "/me/calendar/events/evt/tentativelyAccept"): None,
        })

        await provider.respond_to_event("evt", ResponseType.TENTATIVE, message="May be late")

        assert handler.calls[-1][2]["json"] == {"sendResponse": True, "comment": "May be late"}
