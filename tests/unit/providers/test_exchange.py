"""
Unit tests for the Exchange Web Services provider.

Tests cover:
- Mapping t:CalendarItem and t:Recurrence elements
- Building CreateItem/UpdateItem payloads
- ResponseCode to error kind translation
- Provider operations against canned SOAP responses
"""

import base64
import xml.etree.ElementTree as ET
from unittest.mock import AsyncMock

import pytest

from calbridge.config import ExchangeProviderConfig
from calbridge.errors import (
    AuthFailureError,
    InternalError,
    InvalidInputError,
    NotFoundError,
    PermissionDeniedError,
    ProviderUnavailableError,
    RateLimitedError,
)
from calbridge.models import (
    AttendeeInput,
    AttendeeType,
    BodyType,
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
    Sensitivity,
    ShowAs,
    UpdateEventParams,
)
from calbridge.providers.exchange import (
    NS,
    SERVER_VERSION,
    ExchangeProvider,
    build_envelope,
    check_response_messages,
    map_ews_calendar,
    map_ews_event,
    parse_ews_recurrence,
    to_ews_calendar_item,
    to_ews_item_changes,
)
from calbridge.recurrence import SimpleRecurrence
from tests.conftest import dt


XMLNS = (
    'xmlns:s="http://schemas.xmlsoap.org/soap/envelope/" '
    'xmlns:t="http://schemas.microsoft.com/exchange/services/2006/types" '
    'xmlns:m="http://schemas.microsoft.com/exchange/services/2006/messages"'
)

CALENDAR_ITEM = """
<t:CalendarItem {xmlns}>
  <t:ItemId Id="AAMkItem1" ChangeKey="CK1"/>
  <t:Subject>Design review</t:Subject>
  <t:Sensitivity>Private</t:Sensitivity>
  <t:Body BodyType="HTML">&lt;p&gt;Agenda&lt;/p&gt;</t:Body>
  <t:DateTimeCreated>2026-10-01T08:00:00Z</t:DateTimeCreated>
  <t:LastModifiedTime>2026-10-02T08:00:00Z</t:LastModifiedTime>
  <t:UID>040000008200E00074C5B7101A82E008</t:UID>
  <t:Start>2026-10-19T14:00:00Z</t:Start>
  <t:End>2026-10-19T15:00:00Z</t:End>
  <t:IsAllDayEvent>false</t:IsAllDayEvent>
  <t:LegacyFreeBusyStatus>Tentative</t:LegacyFreeBusyStatus>
  <t:Location>Room 4</t:Location>
  <t:IsCancelled>false</t:IsCancelled>
  <t:CalendarItemType>Single</t:CalendarItemType>
  <t:MyResponseType>Accept</t:MyResponseType>
  <t:Organizer><t:Mailbox><t:Name>Boss</t:Name><t:EmailAddress>Boss@Example.com</t:EmailAddress></t:Mailbox></t:Organizer>
  <t:RequiredAttendees>
    <t:Attendee>
      <t:Mailbox><t:Name>Boss</t:Name><t:EmailAddress>boss@example.com</t:EmailAddress></t:Mailbox>
      <t:ResponseType>Organizer</t:ResponseType>
    </t:Attendee>
    <t:Attendee>
      <t:Mailbox><t:Name>Me</t:Name><t:EmailAddress>me@example.com</t:EmailAddress></t:Mailbox>
      <t:ResponseType>Accept</t:ResponseType>
    </t:Attendee>
  </t:RequiredAttendees>
  <t:OptionalAttendees>
    <t:Attendee>
      <t:Mailbox><t:EmailAddress>maybe@example.com</t:EmailAddress></t:Mailbox>
      <t:ResponseType>Unknown</t:ResponseType>
    </t:Attendee>
  </t:OptionalAttendees>
  <t:JoinOnlineMeetingUrl>https://teams.microsoft.com/l/meetup-join/abc</t:JoinOnlineMeetingUrl>
</t:CalendarItem>
"""


def item(replacements: dict[str, str] | None = None) -> ET.Element:
    text = CALENDAR_ITEM.format(xmlns=XMLNS)
    for old, new in (replacements or {}).items():
        text = text.replace(old, new)
    return ET.fromstring(text)


def soap_response(operation: str, *messages: str) -> str:
    """Full SOAP envelope holding one response message per argument."""
    return f"""<?xml version="1.0" encoding="utf-8"?>
<s:Envelope {XMLNS}>
  <s:Body>
    <m:{operation}Response>
      <m:ResponseMessages>{"".join(messages)}</m:ResponseMessages>
    </m:{operation}Response>
  </s:Body>
</s:Envelope>"""


def success(operation: str, inner: str = "") -> str:
    return (
        f'<m:{operation}ResponseMessage ResponseClass="Success">'
        f"<m:ResponseCode>NoError</m:ResponseCode>{inner}"
        f"</m:{operation}ResponseMessage>"
    )


def failure(operation: str, code: str, text: str = "Failed") -> str:
    return (
        f'<m:{operation}ResponseMessage ResponseClass="Error">'
        f"<m:MessageText>{text}</m:MessageText>"
        f"<m:ResponseCode>{code}</m:ResponseCode>"
        f"</m:{operation}ResponseMessage>"
    )


def bare(xml: str) -> str:
    """Strip the namespace declarations from a fixture for embedding."""
    return xml.format(xmlns="")


PRIMARY_FOLDER = (
    '<m:Folders><t:CalendarFolder><t:FolderId Id="cal-primary"/>'
    "<t:DisplayName>Calendar</t:DisplayName></t:CalendarFolder></m:Folders>"
)
CHILD_FOLDERS = (
    '<m:RootFolder><t:Folders><t:CalendarFolder><t:FolderId Id="cal-team"/>'
    "<t:DisplayName>Team</t:DisplayName></t:CalendarFolder></t:Folders></m:RootFolder>"
)


def folder_routes() -> dict[str, str]:
    return {
        "GetFolder": soap_response("GetFolder", success("GetFolder", PRIMARY_FOLDER)),
        "FindFolder": soap_response("FindFolder", success("FindFolder", CHILD_FOLDERS)),
    }


def soap_routed(routes: dict[str, str]):
    """side_effect for a mocked _make_request answering by EWS operation name.

    Every request envelope is recorded on handler.requests as an Element.
    """
    requests = []

    async def handler(method, url, **kwargs):
        assert method == "POST"
        envelope = ET.fromstring(kwargs["data"])
        requests.append(envelope)
        body = envelope.find("s:Body", NS)
        operation = body[0].tag.split("}")[-1]
        if operation not in routes:
            raise AssertionError(f"Unexpected EWS operation {operation}")
        response = routes[operation]
        if isinstance(response, list):
            return response.pop(0)
        return response

    handler.requests = requests
    return handler


def exchange_provider(**overrides) -> ExchangeProvider:
    config = ExchangeProviderConfig(**{
        "ews_url": "https://mail.example.com/EWS/Exchange.asmx",
        "username": "jdoe",
        "password": "secret",
        "domain": "CORP",
        "email": "me@example.com",
        **overrides,
    })
    return ExchangeProvider(config)


async def connected_exchange(routes: dict, **overrides):
    provider = exchange_provider(**overrides)
    handler = soap_routed({**folder_routes(), **routes})
    provider._make_request = AsyncMock(side_effect=handler)
    await provider.connect()
    return provider, handler


def operation_body(handler, operation: str) -> ET.Element:
    for envelope in reversed(handler.requests):
        body = envelope.find("s:Body", NS)[0]
        if body.tag.endswith("}" + operation):
            return body
    raise AssertionError(f"No {operation} request sent")


# ============================================================================
# Mapping
# ============================================================================


class TestMapEwsEvent:
    """Tests for map_ews_event."""

    def test_core_fields(self):
        event = map_ews_event(item(), "cal-primary", "UTC", "me@example.com")

        assert event.id == "AAMkItem1"
        assert event.provider == ProviderType.EXCHANGE
        assert event.calendar_id == "cal-primary"
        assert event.calendar_email == "me@example.com"
        assert event.ical_uid == "040000008200E00074C5B7101A82E008"
        assert event.subject == "Design review"
        assert event.body == "<p>Agenda</p>"
        assert event.body_type == BodyType.HTML
        assert event.start_dt == dt("2026-10-19T14:00")
        assert event.end_dt == dt("2026-10-19T15:00")
        assert event.location == "Room 4"
        assert event.show_as == ShowAs.TENTATIVE
        assert event.sensitivity == Sensitivity.PRIVATE
        assert event.my_response_status == ResponseStatus.ACCEPTED
        assert event.status == EventStatus.CONFIRMED
        assert event.is_recurring is False

    def test_organizer_removed_from_attendees(self):
        event = map_ews_event(item(), "cal", "UTC")

        assert event.organizer.email == "Boss@Example.com"
        assert event.organizer.is_organizer is True
        assert [a.email for a in event.attendees] == ["me@example.com", "maybe@example.com"]
        assert event.attendees[1].type == AttendeeType.OPTIONAL
        assert event.attendees[1].response == ResponseStatus.NEEDS_ACTION

    def test_online_meeting_detected_from_join_url(self):
        event = map_ews_event(item(), "cal", "UTC")

        assert event.is_online_meeting is True
        assert event.online_meeting_provider == OnlineMeetingProvider.TEAMS

    def test_times_expressed_in_mailbox_zone(self):
        event = map_ews_event(item(), "cal", "Europe/Berlin")

        assert event.start.timezone == "Europe/Berlin"
        assert event.start.date_time.hour == 16

    def test_organizer_response_marks_is_organizer(self):
        event = map_ews_event(
            item({"<t:MyResponseType>Accept": "<t:MyResponseType>Organizer"}), "cal", "UTC"
        )

        assert event.is_organizer is True

    def test_defaults_for_missing_fields(self):
        minimal = ET.fromstring(
            f'<t:CalendarItem {XMLNS}><t:ItemId Id="x"/>'
            "<t:Start>2026-10-19T09:00:00Z</t:Start><t:End>2026-10-19T09:30:00Z</t:End>"
            "</t:CalendarItem>"
        )

        event = map_ews_event(minimal, "cal", "UTC")

        assert event.subject == "(No title)"
        assert event.show_as == ShowAs.BUSY
        assert event.sensitivity == Sensitivity.NORMAL
        assert event.attendees == []
        assert event.organizer is None

    def test_missing_start_rejected(self):
        broken = ET.fromstring(f'<t:CalendarItem {XMLNS}><t:ItemId Id="x"/></t:CalendarItem>')

        with pytest.raises(InvalidInputError):
            map_ews_event(broken, "cal", "UTC")

    def test_occurrence_is_recurring(self):
        occurrence = item({
            "<t:CalendarItemType>Single": "<t:CalendarItemType>Occurrence",
            "<t:IsCancelled>": '<t:RecurringMasterId Id="master-1"/><t:IsCancelled>',
        })

        event = map_ews_event(occurrence, "cal", "UTC")

        assert event.is_recurring is True
        assert event.series_master_id == "master-1"

    def test_map_calendar(self):
        folder = ET.fromstring(
            f'<t:CalendarFolder {XMLNS}><t:FolderId Id="f1"/>'
            "<t:DisplayName>Team</t:DisplayName></t:CalendarFolder>"
        )

        calendar = map_ews_calendar(folder, "me@example.com", is_primary=True)

        assert calendar.id == "f1"
        assert calendar.name == "Team"
        assert calendar.is_primary is True
        assert calendar.can_edit is True


class TestParseEwsRecurrence:
    """Tests for parse_ews_recurrence."""

    def test_weekly_numbered(self):
        el = ET.fromstring(
            f"<t:Recurrence {XMLNS}>"
            "<t:WeeklyRecurrence><t:Interval>2</t:Interval>"
            "<t:DaysOfWeek>Monday Wednesday</t:DaysOfWeek>"
            "<t:FirstDayOfWeek>Sunday</t:FirstDayOfWeek></t:WeeklyRecurrence>"
            "<t:NumberedRecurrence><t:StartDate>2026-10-19-07:00</t:StartDate>"
            "<t:NumberOfOccurrences>10</t:NumberOfOccurrences></t:NumberedRecurrence>"
            "</t:Recurrence>"
        )

        pattern = parse_ews_recurrence(el)

        assert pattern.type == "weekly"
        assert pattern.interval == 2
        assert pattern.days_of_week == ["monday", "wednesday"]
        assert pattern.first_day_of_week == "sunday"
        assert pattern.start_date == "2026-10-19"
        assert pattern.end_type == "numbered"
        assert pattern.number_of_occurrences == 10

    def test_relative_monthly(self):
        el = ET.fromstring(
            f"<t:Recurrence {XMLNS}>"
            "<t:RelativeMonthlyRecurrence><t:Interval>1</t:Interval>"
            "<t:DaysOfWeek>Thursday</t:DaysOfWeek><t:DayOfWeekIndex>Third</t:DayOfWeekIndex>"
            "</t:RelativeMonthlyRecurrence>"
            "<t:EndDateRecurrence><t:StartDate>2026-10-15</t:StartDate>"
            "<t:EndDate>2027-06-30Z</t:EndDate></t:EndDateRecurrence>"
            "</t:Recurrence>"
        )

        pattern = parse_ews_recurrence(el)

        assert pattern.type == "relativeMonthly"
        assert pattern.week_index == "third"
        assert pattern.day_of_week_for_monthly == "thursday"
        assert pattern.end_type == "endDate"
        assert pattern.end_date == "2027-06-30"

    def test_absolute_yearly_month(self):
        el = ET.fromstring(
            f"<t:Recurrence {XMLNS}>"
            "<t:AbsoluteYearlyRecurrence><t:DayOfMonth>24</t:DayOfMonth><t:Month>December</t:Month>"
            "</t:AbsoluteYearlyRecurrence>"
            "<t:NoEndRecurrence><t:StartDate>2026-12-24</t:StartDate></t:NoEndRecurrence>"
            "</t:Recurrence>"
        )

        pattern = parse_ews_recurrence(el)

        assert pattern.month == 12
        assert pattern.day_of_month == 24
        assert pattern.end_type == "noEnd"

    def test_missing_range_gives_none(self):
        el = ET.fromstring(
            f"<t:Recurrence {XMLNS}><t:DailyRecurrence><t:Interval>1</t:Interval>"
            "</t:DailyRecurrence></t:Recurrence>"
        )

        assert parse_ews_recurrence(el) is None
        assert parse_ews_recurrence(None) is None


# ============================================================================
# Request building
# ============================================================================


def children(el: ET.Element) -> list[str]:
    return [c.tag.split("}")[-1] for c in el]


class TestToEwsCalendarItem:
    """Tests for CreateItem payload building."""

    def test_schema_order(self):
        element = to_ews_calendar_item(CreateEventParams(
            subject="Planning",
            start_time="2026-10-19T14:00",
            end_time="2026-10-19T15:00",
            body="Notes",
            sensitivity="private",
            reminder_minutes=15,
            show_as="oof",
            location="Room 1",
            attendees=[
                AttendeeInput(email="a@example.com", name="A"),
                AttendeeInput(email="b@example.com", type=AttendeeType.OPTIONAL),
            ],
        ))

        assert children(element) == [
            "Subject", "Sensitivity", "Body", "ReminderIsSet", "ReminderMinutesBeforeStart",
            "Start", "End", "LegacyFreeBusyStatus", "Location",
            "RequiredAttendees", "OptionalAttendees",
        ]
        assert element.find("t:Start", NS).text == "2026-10-19T14:00:00Z"
        assert element.find("t:Body", NS).get("BodyType") == "Text"
        assert element.find("t:LegacyFreeBusyStatus", NS).text == "OOF"
        required = element.findall("t:RequiredAttendees/t:Attendee/t:Mailbox/t:EmailAddress", NS)
        assert [e.text for e in required] == ["a@example.com"]

    def test_all_day_uses_local_midnight(self):
        element = to_ews_calendar_item(CreateEventParams(
            subject="Offsite",
            start_time="2026-10-19T10:00",
            end_time="2026-10-20T10:00",
            timezone="America/New_York",
            is_all_day=True,
        ))

        assert element.find("t:Start", NS).text == "2026-10-19T00:00:00-04:00"
        assert element.find("t:IsAllDayEvent", NS).text == "true"

    def test_working_elsewhere_written_as_busy(self):
        element = to_ews_calendar_item(CreateEventParams(
            subject="Remote", start_time="2026-10-19T09:00", end_time="2026-10-19T17:00",
            show_as="workingElsewhere",
        ))

        assert element.find("t:LegacyFreeBusyStatus", NS).text == "Busy"

    def test_weekly_recurrence_defaults_to_start_day(self):
        element = to_ews_calendar_item(CreateEventParams(
            subject="Standup", start_time="2026-10-19T09:00", end_time="2026-10-19T09:15",
            recurrence=SimpleRecurrence(type="weekly", occurrences=5),
        ))

        recurrence = element.find("t:Recurrence", NS)
        assert children(recurrence) == ["WeeklyRecurrence", "NumberedRecurrence"]
        assert recurrence.find("t:WeeklyRecurrence/t:DaysOfWeek", NS).text == "Monday"
        assert recurrence.find("t:NumberedRecurrence/t:NumberOfOccurrences", NS).text == "5"

    def test_item_changes(self):
        changes = to_ews_item_changes(UpdateEventParams(
            subject="Renamed",
            start_time="2026-10-19T16:00",
            end_time="2026-10-19T17:00",
            attendees=[AttendeeInput(email="a@example.com")],
        ))

        uris = [uri for uri, _ in changes]
        assert uris == [
            "item:Subject", "calendar:Start", "calendar:End",
            "calendar:RequiredAttendees", "calendar:OptionalAttendees",
        ]
        assert changes[1][1].find("t:Start", NS).text == "2026-10-19T16:00:00Z"
        # Emptying the optional list clears it on the server
        assert changes[4][1].find("t:OptionalAttendees", NS) is not None
        assert len(changes[4][1].find("t:OptionalAttendees", NS)) == 0

    def test_envelope_carries_server_version(self):
        text = build_envelope(ET.Element(f"{{{NS['m']}}}GetFolder"))
        root = ET.fromstring(text)

        version = root.find("s:Header/t:RequestServerVersion", NS)
        assert version.get("Version") == SERVER_VERSION
        assert root.find("s:Body/m:GetFolder", NS) is not None


# ============================================================================
# Response errors
# ============================================================================


class TestCheckResponseMessages:
    """Tests for check_response_messages."""

    def test_success_returns_messages(self):
        root = ET.fromstring(soap_response("GetItem", success("GetItem"), success("GetItem")))

        assert len(check_response_messages(root)) == 2

    @pytest.mark.parametrize("code,error_cls", [
        ("ErrorItemNotFound", NotFoundError),
        ("ErrorAccessDenied", PermissionDeniedError),
        ("ErrorServerBusy", RateLimitedError),
        ("ErrorInvalidIdMalformed", InvalidInputError),
        ("ErrorSomethingNew", ProviderUnavailableError),
    ])
    def test_error_codes(self, code, error_cls):
        root = ET.fromstring(soap_response("GetItem", failure("GetItem", code, "Nope")))

        with pytest.raises(error_cls) as exc_info:
            check_response_messages(root, "exchange-primary")

        assert exc_info.value.provider_id == "exchange-primary"
        assert code in exc_info.value.message

    def test_missing_messages_is_internal(self):
        root = ET.fromstring(f"<s:Envelope {XMLNS}><s:Body/></s:Envelope>")

        with pytest.raises(InternalError):
            check_response_messages(root)


# ============================================================================
# Provider
# ============================================================================


class TestExchangeProvider:
    """Tests for ExchangeProvider operations."""

    def test_basic_auth_header_includes_domain(self):
        headers = exchange_provider()._get_headers()

        expected = base64.b64encode(b"CORP\\jdoe:secret").decode()
        assert headers["Authorization"] == f"Basic {expected}"
        assert headers["Content-Type"].startswith("text/xml")

    def test_oauth_header(self):
        headers = exchange_provider(auth_method="oauth", access_token="tok")._get_headers()

        assert headers["Authorization"] == "Bearer tok"

    def test_soap_fault_message(self):
        fault = (
            f"<s:Envelope {XMLNS}><s:Body><s:Fault><faultcode>a:ErrorSchemaValidation</faultcode>"
            "<faultstring>The request failed schema validation</faultstring></s:Fault></s:Body></s:Envelope>"
        )

        message = exchange_provider()._extract_error_message(500, fault)

        assert message == "HTTP 500: The request failed schema validation"

    @pytest.mark.asyncio
    async def test_connect_requires_credentials(self):
        provider = exchange_provider(password=None)

        with pytest.raises(AuthFailureError):
            await provider.connect()
        assert provider.is_connected() is False

    @pytest.mark.asyncio
    async def test_connect_requires_url(self):
        with pytest.raises(InvalidInputError):
            await exchange_provider(ews_url="").connect()

    @pytest.mark.asyncio
    async def test_list_calendars(self):
        provider, _ = await connected_exchange({})

        calendars = await provider.list_calendars()

        assert [(c.id, c.is_primary) for c in calendars] == [("cal-primary", True), ("cal-team", False)]

    @pytest.mark.asyncio
    async def test_list_events_skips_cancelled_and_malformed(self):
        cancelled = bare(CALENDAR_ITEM).replace("AAMkItem1", "gone").replace(
            "<t:IsCancelled>false", "<t:IsCancelled>true"
        )
        malformed = '<t:CalendarItem><t:ItemId Id="bad"/><t:Subject>Design</t:Subject></t:CalendarItem>'
        items = f"<m:RootFolder><t:Items>{bare(CALENDAR_ITEM)}{cancelled}{malformed}</t:Items></m:RootFolder>"
        provider, handler = await connected_exchange({
            "FindItem": soap_response("FindItem", success("FindItem", items)),
        })

        events = await provider.list_events(EventQuery(
            start_time="2026-10-19", end_time="2026-10-20", calendar_ids=["cal-primary"],
        ))

        assert [e.id for e in events] == ["AAMkItem1"]
        view = operation_body(handler, "FindItem").find("m:CalendarView", NS)
        assert view.get("StartDate") == "2026-10-19T00:00:00Z"
        assert view.get("EndDate") == "2026-10-20T00:00:00Z"

    @pytest.mark.asyncio
    async def test_get_event_not_found(self):
        provider, _ = await connected_exchange({
            "GetItem": soap_response("GetItem", failure("GetItem", "ErrorItemNotFound")),
        })

        with pytest.raises(NotFoundError):
            await provider.get_event("missing")

    @pytest.mark.asyncio
    async def test_create_without_attendees_sends_no_invites(self):
        created = '<m:Items><t:CalendarItem><t:ItemId Id="AAMkItem1"/></t:CalendarItem></m:Items>'
        provider, handler = await connected_exchange({
            "CreateItem": soap_response("CreateItem", success("CreateItem", created)),
            "GetItem": soap_response("GetItem", success("GetItem", f"<m:Items>{bare(CALENDAR_ITEM)}</m:Items>")),
        })

        event = await provider.create_event(CreateEventParams(
            subject="Design review", start_time="2026-10-19T14:00", end_time="2026-10-19T15:00",
        ))

        assert event.id == "AAMkItem1"
        create = operation_body(handler, "CreateItem")
        assert create.get("SendMeetingInvitations") == "SendToNone"
        assert create.find("m:SavedItemFolderId/t:FolderId", NS).get("Id") == "cal-primary"

    @pytest.mark.asyncio
    async def test_update_all_uses_recurring_master(self):
        provider, handler = await connected_exchange({
            "UpdateItem": soap_response("UpdateItem", success("UpdateItem")),
            "GetItem": soap_response("GetItem", success("GetItem", f"<m:Items>{bare(CALENDAR_ITEM)}</m:Items>")),
        })

        await provider.update_event(
            "occurrence-1", UpdateEventParams(subject="Renamed", update_scope=ChangeScope.ALL)
        )

        change = operation_body(handler, "UpdateItem").find("m:ItemChanges/t:ItemChange", NS)
        assert change.find("t:RecurringMasterItemId", NS).get("OccurrenceId") == "occurrence-1"
        field = change.find("t:Updates/t:SetItemField/t:FieldURI", NS)
        assert field.get("FieldURI") == "item:Subject"

    @pytest.mark.asyncio
    async def test_update_this_and_future_falls_back_to_single(self):
        provider, handler = await connected_exchange({
            "UpdateItem": soap_response("UpdateItem", success("UpdateItem")),
            "GetItem": soap_response("GetItem", success("GetItem", f"<m:Items>{bare(CALENDAR_ITEM)}</m:Items>")),
        })

        await provider.update_event(
            "occurrence-1",
            UpdateEventParams(subject="Renamed", update_scope=ChangeScope.THIS_AND_FUTURE),
        )

        change = operation_body(handler, "UpdateItem").find("m:ItemChanges/t:ItemChange", NS)
        assert change.find("t:ItemId", NS).get("Id") == "occurrence-1"

    @pytest.mark.asyncio
    async def test_delete_modes(self):
        provider, handler = await connected_exchange({
            "DeleteItem": soap_response("DeleteItem", success("DeleteItem")),
        })

        await provider.delete_event("evt", DeleteOptions(send_cancellation=False))

        delete = operation_body(handler, "DeleteItem")
        assert delete.get("DeleteType") == "HardDelete"
        assert delete.get("SendMeetingCancellations") == "SendToNone"

    @pytest.mark.asyncio
    async def test_free_busy_from_calendar_view(self):
        free = bare(CALENDAR_ITEM).replace("AAMkItem1", "free-1").replace(
            "<t:LegacyFreeBusyStatus>Tentative", "<t:LegacyFreeBusyStatus>Free"
        )
        items = f"<m:RootFolder><t:Items>{bare(CALENDAR_ITEM)}{free}</t:Items></m:RootFolder>"
        provider, _ = await connected_exchange({
            "FindItem": soap_response("FindItem", success("FindItem", items)),
        })

        result = await provider.get_free_busy(FreeBusyQuery(start_time="2026-10-19", end_time="2026-10-20"))

        assert result.calendar_id == "cal-primary"
        assert [(b.event_id, b.status) for b in result.busy] == [("AAMkItem1", BusyStatus.TENTATIVE)]

    @pytest.mark.asyncio
    async def test_respond_builds_response_item(self):
        provider, handler = await connected_exchange({
            "CreateItem": soap_response("CreateItem", success("CreateItem")),
        })

        await provider.respond_to_event("evt", ResponseType.DECLINED, message="Out that week")

        create = operation_body(handler, "CreateItem")
        assert create.get("MessageDisposition") == "SendAndSaveCopy"
        reply = create.find("m:Items/t:DeclineItem", NS)
        assert reply.find("t:ReferenceItemId", NS).get("Id") == "evt"
        assert reply.find("t:Body", NS).text == "Out that week"

    @pytest.mark.asyncio
    async def test_malformed_response_is_internal(self):
        provider, _ = await connected_exchange({})
        provider._make_request = AsyncMock(return_value="<not xml")

        with pytest.raises(InternalError):
            await provider.get_event("evt")
