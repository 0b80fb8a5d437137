"""
Tool: Exchange EWS Provider
Purpose: On-premises Exchange calendar integration via Exchange Web Services

Implements the CalendarProvider interface over raw EWS SOAP requests.
Requests carry UTC timestamps; local times returned without an offset are
read in the account's configured zone (or the default zone).

Authentication is either basic (username/password, optionally with a
domain) or a pre-issued OAuth bearer token.

Usage:
    from calbridge.providers.exchange import ExchangeProvider

    provider = ExchangeProvider(config)
    await provider.connect()
    events = await provider.list_events(query)

Dependencies:
    - aiohttp (pip install aiohttp)
"""

from __future__ import annotations

import asyncio
import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timezone as dt_timezone
from typing import Any

import aiohttp

from calbridge.config import get_default_timezone
from calbridge.datetime_utils import get_zone, parse_datetime
from calbridge.errors import (
    AuthFailureError,
    CalendarError,
    ErrorKind,
    InternalError,
    InvalidInputError,
    error_for_kind,
    wrap_error,
)
from calbridge.models import (
    Attendee,
    AttendeeInput,
    AttendeeType,
    BodyType,
    BusySlot,
    BusyStatus,
    Calendar,
    CalendarEvent,
    CalendarFreeBusy,
    ChangeScope,
    CreateEventParams,
    DeleteOptions,
    EventQuery,
    EventStatus,
    EventTime,
    FreeBusyQuery,
    OnlineMeetingProvider,
    ProviderType,
    ResponseStatus,
    ResponseType,
    Sensitivity,
    ShowAs,
    UpdateEventParams,
)
from calbridge.providers.base import CalendarProvider
from calbridge.recurrence import RecurrencePattern, SimpleRecurrence

logger = logging.getLogger(__name__)

NS = {
    "s": "http://schemas.xmlsoap.org/soap/envelope/",
    "t": "http://schemas.microsoft.com/exchange/services/2006/types",
    "m": "http://schemas.microsoft.com/exchange/services/2006/messages",
}

for _prefix, _uri in NS.items():
    ET.register_namespace(_prefix, _uri)

SERVER_VERSION = "Exchange2016"
MAX_VIEW_ENTRIES = 500

SHOW_AS_TO_EWS = {
    ShowAs.FREE: "Free",
    ShowAs.BUSY: "Busy",
    ShowAs.TENTATIVE: "Tentative",
    ShowAs.OOF: "OOF",
    # Older servers reject WorkingElsewhere on write
    ShowAs.WORKING_ELSEWHERE: "Busy",
}

EWS_TO_SHOW_AS = {
    "Free": ShowAs.FREE,
    "Tentative": ShowAs.TENTATIVE,
    "OOF": ShowAs.OOF,
    "WorkingElsewhere": ShowAs.WORKING_ELSEWHERE,
}

SENSITIVITY_TO_EWS = {
    Sensitivity.NORMAL: "Normal",
    Sensitivity.PERSONAL: "Personal",
    Sensitivity.PRIVATE: "Private",
    Sensitivity.CONFIDENTIAL: "Confidential",
}

EWS_TO_SENSITIVITY = {v: k for k, v in SENSITIVITY_TO_EWS.items()}

EWS_RESPONSES = {
    "Accept": ResponseStatus.ACCEPTED,
    "Decline": ResponseStatus.DECLINED,
    "Tentative": ResponseStatus.TENTATIVE,
    "Organizer": ResponseStatus.ACCEPTED,
}

RESPONSE_ITEMS = {
    ResponseType.ACCEPTED: "AcceptItem",
    ResponseType.DECLINED: "DeclineItem",
    ResponseType.TENTATIVE: "TentativelyAcceptItem",
}

RECURRENCE_ELEMENTS = {
    "DailyRecurrence": "daily",
    "WeeklyRecurrence": "weekly",
    "AbsoluteMonthlyRecurrence": "absoluteMonthly",
    "RelativeMonthlyRecurrence": "relativeMonthly",
    "AbsoluteYearlyRecurrence": "absoluteYearly",
    "RelativeYearlyRecurrence": "relativeYearly",
}

RANGE_ELEMENTS = {
    "NoEndRecurrence": "noEnd",
    "EndDateRecurrence": "endDate",
    "NumberedRecurrence": "numbered",
}

MONTHS = [
    "January", "February", "March", "April", "May", "June", "July",
    "August", "September", "October", "November", "December",
]

# EWS response codes that map to a specific error kind; everything else is
# treated as a transient server-side failure
EWS_ERROR_KINDS = {
    "ErrorAccessDenied": ErrorKind.PERMISSION_DENIED,
    "ErrorItemNotFound": ErrorKind.NOT_FOUND,
    "ErrorFolderNotFound": ErrorKind.NOT_FOUND,
    "ErrorInvalidCredentials": ErrorKind.AUTH_FAILURE,
    "ErrorServerBusy": ErrorKind.RATE_LIMITED,
    "ErrorIrresolvableConflict": ErrorKind.CONFLICT,
    "ErrorCalendarEndDateIsEarlierThanStartDate": ErrorKind.INVALID_INPUT,
    "ErrorInvalidIdMalformed": ErrorKind.INVALID_INPUT,
    "ErrorInvalidRequest": ErrorKind.INVALID_INPUT,
    "ErrorSchemaValidation": ErrorKind.INVALID_INPUT,
}


def _t(tag: str) -> str:
    return f"{{{NS['t']}}}{tag}"


def _m(tag: str) -> str:
    return f"{{{NS['m']}}}{tag}"


def _text(el: ET.Element | None, path: str) -> str | None:
    if el is None:
        return None
    found = el.find(path, NS)
    if found is None or found.text is None:
        return None
    return found.text.strip()


def _bool(el: ET.Element | None, path: str) -> bool:
    return (_text(el, path) or "").lower() == "true"


# =============================================================================
# Request building
# =============================================================================


def build_envelope(body: ET.Element) -> str:
    """Wrap an EWS operation element in a SOAP envelope."""
    envelope = ET.Element(f"{{{NS['s']}}}Envelope")
    header = ET.SubElement(envelope, f"{{{NS['s']}}}Header")
    ET.SubElement(header, _t("RequestServerVersion"), Version=SERVER_VERSION)
    soap_body = ET.SubElement(envelope, f"{{{NS['s']}}}Body")
    soap_body.append(body)
    return ET.tostring(envelope, encoding="unicode", xml_declaration=True)


def _ews_datetime(dt: datetime) -> str:
    return dt.astimezone(dt_timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _folder_id(parent: ET.Element, calendar_id: str | None) -> None:
    if not calendar_id or calendar_id == "calendar":
        ET.SubElement(parent, _t("DistinguishedFolderId"), Id="calendar")
    else:
        ET.SubElement(parent, _t("FolderId"), Id=calendar_id)


def _item_id(parent: ET.Element, event_id: str, scope: ChangeScope = ChangeScope.SINGLE) -> None:
    if scope == ChangeScope.ALL:
        # Resolves an occurrence to its series master on the server
        ET.SubElement(parent, _t("RecurringMasterItemId"), OccurrenceId=event_id)
    else:
        ET.SubElement(parent, _t("ItemId"), Id=event_id)


def _add_text(parent: ET.Element, tag: str, value: Any, **attrs: str) -> ET.Element:
    el = ET.SubElement(parent, _t(tag), **attrs)
    el.text = str(value)
    return el


def _add_attendees(parent: ET.Element, tag: str, attendees: list[AttendeeInput]) -> None:
    container = ET.SubElement(parent, _t(tag))
    for a in attendees:
        mailbox = ET.SubElement(ET.SubElement(container, _t("Attendee")), _t("Mailbox"))
        if a.name:
            _add_text(mailbox, "Name", a.name)
        _add_text(mailbox, "EmailAddress", a.email)


def _split_attendees(attendees: list[AttendeeInput]) -> tuple[list[AttendeeInput], list[AttendeeInput]]:
    required = [a for a in attendees if a.type != AttendeeType.OPTIONAL]
    optional = [a for a in attendees if a.type == AttendeeType.OPTIONAL]
    return required, optional


def _add_recurrence(parent: ET.Element, rec: SimpleRecurrence, start: datetime) -> None:
    recurrence = ET.SubElement(parent, _t("Recurrence"))
    if rec.type == "daily":
        pattern = ET.SubElement(recurrence, _t("DailyRecurrence"))
        _add_text(pattern, "Interval", rec.interval or 1)
    elif rec.type == "weekly":
        pattern = ET.SubElement(recurrence, _t("WeeklyRecurrence"))
        _add_text(pattern, "Interval", rec.interval or 1)
        days = rec.days_of_week or [start.strftime("%A").lower()]
        _add_text(pattern, "DaysOfWeek", " ".join(d.capitalize() for d in days))
    elif rec.type == "monthly":
        pattern = ET.SubElement(recurrence, _t("AbsoluteMonthlyRecurrence"))
        _add_text(pattern, "Interval", rec.interval or 1)
        _add_text(pattern, "DayOfMonth", rec.day_of_month or start.day)
    else:
        pattern = ET.SubElement(recurrence, _t("AbsoluteYearlyRecurrence"))
        _add_text(pattern, "DayOfMonth", rec.day_of_month or start.day)
        _add_text(pattern, "Month", MONTHS[start.month - 1])

    start_date = start.date().isoformat()
    if rec.end_date:
        range_ = ET.SubElement(recurrence, _t("EndDateRecurrence"))
        _add_text(range_, "StartDate", start_date)
        _add_text(range_, "EndDate", rec.end_date)
    elif rec.occurrences:
        range_ = ET.SubElement(recurrence, _t("NumberedRecurrence"))
        _add_text(range_, "StartDate", start_date)
        _add_text(range_, "NumberOfOccurrences", rec.occurrences)
    else:
        range_ = ET.SubElement(recurrence, _t("NoEndRecurrence"))
        _add_text(range_, "StartDate", start_date)


def to_ews_calendar_item(params: CreateEventParams) -> ET.Element:
    """
    Build a t:CalendarItem for CreateItem.

    Child order follows the EWS schema (item fields before calendar fields).
    """
    item = ET.Element(_t("CalendarItem"))
    _add_text(item, "Subject", params.subject)
    if params.sensitivity:
        _add_text(item, "Sensitivity", SENSITIVITY_TO_EWS[params.sensitivity])
    if params.body:
        _add_text(item, "Body", params.body, BodyType="HTML" if params.body_type == BodyType.HTML else "Text")
    if params.reminder_minutes is not None:
        _add_text(item, "ReminderIsSet", "true")
        _add_text(item, "ReminderMinutesBeforeStart", params.reminder_minutes)

    if params.is_all_day:
        zone = get_zone(params.timezone)
        start = params.start_time.astimezone(zone).replace(hour=0, minute=0, second=0, microsecond=0)
        end = params.end_time.astimezone(zone).replace(hour=0, minute=0, second=0, microsecond=0)
        _add_text(item, "Start", start.isoformat())
        _add_text(item, "End", end.isoformat())
        _add_text(item, "IsAllDayEvent", "true")
    else:
        _add_text(item, "Start", _ews_datetime(params.start_time))
        _add_text(item, "End", _ews_datetime(params.end_time))

    if params.show_as:
        _add_text(item, "LegacyFreeBusyStatus", SHOW_AS_TO_EWS[params.show_as])
    if params.location:
        _add_text(item, "Location", params.location)

    if params.attendees:
        required, optional = _split_attendees(params.attendees)
        if required:
            _add_attendees(item, "RequiredAttendees", required)
        if optional:
            _add_attendees(item, "OptionalAttendees", optional)

    if params.recurrence:
        local_start = params.start_time.astimezone(get_zone(params.timezone))
        _add_recurrence(item, params.recurrence, local_start)

    return item


def to_ews_item_changes(updates: UpdateEventParams) -> list[tuple[str, ET.Element]]:
    """
    Build SetItemField updates as (FieldURI, CalendarItem) pairs.

    Each pair carries a CalendarItem holding just the changed field.
    """
    changes: list[tuple[str, ET.Element]] = []

    def field(uri: str, tag: str, value: Any, **attrs: str) -> None:
        item = ET.Element(_t("CalendarItem"))
        _add_text(item, tag, value, **attrs)
        changes.append((uri, item))

    if updates.subject is not None:
        field("item:Subject", "Subject", updates.subject)
    if updates.sensitivity is not None:
        field("item:Sensitivity", "Sensitivity", SENSITIVITY_TO_EWS[updates.sensitivity])
    if updates.body is not None:
        field(
            "item:Body", "Body", updates.body,
            BodyType="HTML" if updates.body_type == BodyType.HTML else "Text",
        )
    if updates.start_time is not None:
        field("calendar:Start", "Start", _ews_datetime(updates.start_time))
    if updates.end_time is not None:
        field("calendar:End", "End", _ews_datetime(updates.end_time))
    if updates.show_as is not None:
        field("calendar:LegacyFreeBusyStatus", "LegacyFreeBusyStatus", SHOW_AS_TO_EWS[updates.show_as])
    if updates.location is not None:
        field("calendar:Location", "Location", updates.location)
    if updates.attendees is not None:
        required, optional = _split_attendees(updates.attendees)
        for uri, tag, group in (
            ("calendar:RequiredAttendees", "RequiredAttendees", required),
            ("calendar:OptionalAttendees", "OptionalAttendees", optional),
        ):
            item = ET.Element(_t("CalendarItem"))
            _add_attendees(item, tag, group)
            changes.append((uri, item))

    return changes


# =============================================================================
# Response mapping (EWS -> unified)
# =============================================================================


def map_ews_calendar(folder: ET.Element, email: str, is_primary: bool = False) -> Calendar:
    folder_id = folder.find("t:FolderId", NS)
    return Calendar(
        id=folder_id.get("Id", "") if folder_id is not None else "",
        provider=ProviderType.EXCHANGE,
        name=_text(folder, "t:DisplayName") or "Calendar",
        email=email,
        is_primary=is_primary,
        can_edit=True,
        access_role="owner",
    )


def _map_time(value: str | None, zone: str) -> EventTime:
    if not value:
        raise InvalidInputError("Event has no start/end time", provider="exchange")
    return EventTime(parse_datetime(value, zone), zone)


def _map_mailbox(el: ET.Element | None) -> tuple[str, str | None]:
    return _text(el, "t:Mailbox/t:EmailAddress") or "", _text(el, "t:Mailbox/t:Name")


def _map_attendees(item: ET.Element, tag: str, type_: AttendeeType) -> list[Attendee]:
    attendees = []
    for att in item.findall(f"t:{tag}/t:Attendee", NS):
        email, name = _map_mailbox(att)
        attendees.append(Attendee(
            email=email,
            name=name,
            response=EWS_RESPONSES.get(_text(att, "t:ResponseType") or "", ResponseStatus.NEEDS_ACTION),
            type=type_,
        ))
    return attendees


def parse_ews_recurrence(el: ET.Element | None) -> RecurrencePattern | None:
    """Parse a t:Recurrence element into a RecurrencePattern."""
    if el is None:
        return None

    pattern_el = range_el = None
    pattern_type = end_type = None
    for child in el:
        local = child.tag.split("}")[-1]
        if local in RECURRENCE_ELEMENTS:
            pattern_el, pattern_type = child, RECURRENCE_ELEMENTS[local]
        elif local in RANGE_ELEMENTS:
            range_el, end_type = child, RANGE_ELEMENTS[local]
    if pattern_el is None or range_el is None:
        return None

    days = [d.lower() for d in (_text(pattern_el, "t:DaysOfWeek") or "").split()]
    month = _text(pattern_el, "t:Month")
    day_of_month = _text(pattern_el, "t:DayOfMonth")
    occurrences = _text(range_el, "t:NumberOfOccurrences")
    week_index = _text(pattern_el, "t:DayOfWeekIndex")

    try:
        return RecurrencePattern(
            type=pattern_type,
            interval=int(_text(pattern_el, "t:Interval") or 1),
            # StartDate/EndDate may carry a zone offset suffix
            start_date=(_text(range_el, "t:StartDate") or "")[:10],
            end_type=end_type,
            days_of_week=days,
            first_day_of_week=(_text(pattern_el, "t:FirstDayOfWeek") or "").lower() or None,
            day_of_month=int(day_of_month) if day_of_month else None,
            week_index=week_index.lower() if week_index else None,
            day_of_week_for_monthly=days[0] if days and week_index else None,
            month=MONTHS.index(month) + 1 if month in MONTHS else None,
            end_date=(_text(range_el, "t:EndDate") or "")[:10] or None,
            number_of_occurrences=int(occurrences) if occurrences else None,
        )
    except InvalidInputError:
        return None


def _detect_meeting_provider(url: str | None) -> OnlineMeetingProvider:
    url = url or ""
    if "meet.google.com" in url:
        return OnlineMeetingProvider.MEET
    if "zoom.us" in url:
        return OnlineMeetingProvider.ZOOM
    return OnlineMeetingProvider.TEAMS


def map_ews_event(
    item: ET.Element,
    calendar_id: str,
    zone: str,
    calendar_email: str | None = None,
) -> CalendarEvent:
    """
    Map a t:CalendarItem element to a CalendarEvent.

    Args:
        item: CalendarItem element from FindItem or GetItem
        calendar_id: Folder the item was read from
        zone: Zone to express times in (and to read offset-less times in)
        calendar_email: Mailbox address that owns the calendar

    Returns:
        CalendarEvent
    """
    item_id = item.find("t:ItemId", NS)

    organizer = None
    if item.find("t:Organizer/t:Mailbox", NS) is not None:
        email, name = _map_mailbox(item.find("t:Organizer", NS))
        organizer = Attendee(email=email, name=name, response=ResponseStatus.ACCEPTED, is_organizer=True)

    attendees = (
        _map_attendees(item, "RequiredAttendees", AttendeeType.REQUIRED)
        + _map_attendees(item, "OptionalAttendees", AttendeeType.OPTIONAL)
        + _map_attendees(item, "Resources", AttendeeType.RESOURCE)
    )
    if organizer:
        attendees = [a for a in attendees if a.email.lower() != organizer.email.lower()]

    recurrence = parse_ews_recurrence(item.find("t:Recurrence", NS))
    master = item.find("t:RecurringMasterId", NS)
    item_type = _text(item, "t:CalendarItemType")
    body = item.find("t:Body", NS)
    join_url = _text(item, "t:JoinOnlineMeetingUrl")
    is_online = _bool(item, "t:IsOnlineMeeting") or bool(join_url)
    my_response = _text(item, "t:MyResponseType")

    return CalendarEvent(
        id=item_id.get("Id", "") if item_id is not None else "",
        provider=ProviderType.EXCHANGE,
        calendar_id=calendar_id,
        calendar_email=calendar_email,
        ical_uid=_text(item, "t:UID"),
        subject=_text(item, "t:Subject") or "(No title)",
        body=body.text if body is not None else None,
        body_type=BodyType.HTML if body is not None and body.get("BodyType") == "HTML" else BodyType.TEXT,
        start=_map_time(_text(item, "t:Start"), zone),
        end=_map_time(_text(item, "t:End"), zone),
        is_all_day=_bool(item, "t:IsAllDayEvent"),
        is_recurring=(
            recurrence is not None
            or master is not None
            or item_type in ("Occurrence", "Exception", "RecurringMaster")
            or _bool(item, "t:IsRecurring")
        ),
        recurrence=recurrence,
        series_master_id=master.get("Id") if master is not None else None,
        instance_date=_text(item, "t:OriginalStart"),
        location=_text(item, "t:Location"),
        is_online_meeting=is_online,
        online_meeting_url=join_url,
        online_meeting_provider=_detect_meeting_provider(join_url) if is_online else None,
        organizer=organizer,
        attendees=attendees,
        is_organizer=my_response == "Organizer",
        status=EventStatus.CANCELLED if _bool(item, "t:IsCancelled") else EventStatus.CONFIRMED,
        show_as=EWS_TO_SHOW_AS.get(_text(item, "t:LegacyFreeBusyStatus") or "", ShowAs.BUSY),
        my_response_status=EWS_RESPONSES.get(my_response or "", ResponseStatus.NEEDS_ACTION),
        sensitivity=EWS_TO_SENSITIVITY.get(_text(item, "t:Sensitivity") or "", Sensitivity.NORMAL),
        created_at=_text(item, "t:DateTimeCreated"),
        updated_at=_text(item, "t:LastModifiedTime"),
        web_link=_text(item, "t:WebClientReadFormQueryString"),
    )


def check_response_messages(root: ET.Element, provider_id: str | None = None) -> list[ET.Element]:
    """
    Return the response message elements, raising on the first error.

    Raises:
        CalendarError: Kind chosen from the EWS ResponseCode
    """
    messages = root.find("s:Body", NS)
    container = messages.find(".//m:ResponseMessages", NS) if messages is not None else None
    if container is None:
        raise InternalError("EWS response has no ResponseMessages", provider="exchange", provider_id=provider_id)

    result = []
    for message in container:
        if message.get("ResponseClass") == "Error":
            code = _text(message, "m:ResponseCode") or "ErrorInternalServerError"
            text = _text(message, "m:MessageText") or code
            kind = EWS_ERROR_KINDS.get(code, ErrorKind.UNAVAILABLE)
            raise error_for_kind(
                kind,
                f"{code}: {text}",
                provider="exchange",
                provider_id=provider_id,
                details={"responseCode": code},
            )
        result.append(message)
    return result


# =============================================================================
# Provider
# =============================================================================


class ExchangeProvider(CalendarProvider):
    """Exchange Web Services provider (basic auth or OAuth bearer)."""

    provider_type = ProviderType.EXCHANGE

    @property
    def zone(self) -> str:
        return self.config.timezone or get_default_timezone()

    def has_credentials(self) -> bool:
        if self.config.auth_method == "oauth":
            return bool(self.config.access_token)
        return bool(self.config.username and self.config.password)

    def _get_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "text/xml; charset=utf-8",
            "Accept": "text/xml",
        }
        if self.config.auth_method == "oauth":
            headers["Authorization"] = f"Bearer {self.config.access_token}"
        else:
            username = self.config.username or ""
            if self.config.domain:
                username = f"{self.config.domain}\\{username}"
            headers["Authorization"] = aiohttp.BasicAuth(username, self.config.password or "").encode()
        return headers

    def _extract_error_message(self, status: int, text: str) -> str:
        try:
            root = ET.fromstring(text)
        except ET.ParseError:
            return super()._extract_error_message(status, text)
        fault = root.find(".//faultstring")
        if fault is not None and fault.text:
            return f"HTTP {status}: {fault.text.strip()}"
        return super()._extract_error_message(status, text)

    async def _soap(self, body: ET.Element) -> list[ET.Element]:
        """POST one EWS operation and return its successful response messages."""
        text = await self._make_request(
            "POST", self.config.ews_url, data=build_envelope(body), expect="text"
        )
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            raise InternalError(
                f"Malformed EWS response: {e}", provider="exchange", provider_id=self.provider_id
            ) from e
        return check_response_messages(root, self.provider_id)

    # =========================================================================
    # Connection
    # =========================================================================

    async def connect(self) -> None:
        logger.info(f"Connecting to Exchange ({self.display_name})...")
        try:
            if not self.config.ews_url:
                raise InvalidInputError("Exchange ews_url is not configured", provider="exchange")
            if not self.has_credentials():
                raise AuthFailureError(
                    "No Exchange credentials available",
                    provider="exchange",
                    provider_id=self.provider_id,
                )
            await self._fetch_calendars()
        except CalendarError:
            self._connected = False
            raise
        except Exception as e:
            self._connected = False
            raise wrap_error(e, provider="exchange", provider_id=self.provider_id, operation="connect") from e

        self._connected = True
        logger.info(f"Connected to Exchange ({self.display_name})")

    async def refresh_auth(self) -> None:
        # Basic credentials and pre-issued bearer tokens have nothing to refresh
        logger.debug("Exchange authentication does not require refresh")

    # =========================================================================
    # Calendars
    # =========================================================================

    async def _fetch_calendars(self) -> list[Calendar]:
        get_folder = ET.Element(_m("GetFolder"))
        shape = ET.SubElement(get_folder, _m("FolderShape"))
        _add_text(shape, "BaseShape", "Default")
        _folder_id(ET.SubElement(get_folder, _m("FolderIds")), None)

        find_folder = ET.Element(_m("FindFolder"), Traversal="Shallow")
        shape = ET.SubElement(find_folder, _m("FolderShape"))
        _add_text(shape, "BaseShape", "Default")
        _folder_id(ET.SubElement(find_folder, _m("ParentFolderIds")), None)

        primary_messages, child_messages = await asyncio.gather(
            self._soap(get_folder), self._soap(find_folder)
        )

        calendars = []
        for message in primary_messages:
            for folder in message.findall("m:Folders/t:CalendarFolder", NS):
                calendars.append(map_ews_calendar(folder, self.email, is_primary=True))
        for message in child_messages:
            for folder in message.findall("m:RootFolder/t:Folders/t:CalendarFolder", NS):
                calendars.append(map_ews_calendar(folder, self.email))
        return calendars

    async def list_calendars(self) -> list[Calendar]:
        return await self.execute_with_error_handling(
            "listCalendars", lambda: self._cached_calendars(self._fetch_calendars)
        )

    async def _target_calendar(self, calendar_id: str | None) -> Calendar | None:
        calendars = await self.list_calendars()
        if calendar_id:
            match = next((c for c in calendars if c.id == calendar_id), None)
            if match:
                return match
        return next((c for c in calendars if c.is_primary), calendars[0] if calendars else None)

    # =========================================================================
    # Events
    # =========================================================================

    async def _find_items(self, calendar: Calendar, start: datetime, end: datetime, limit: int | None) -> list[ET.Element]:
        find = ET.Element(_m("FindItem"), Traversal="Shallow")
        shape = ET.SubElement(find, _m("ItemShape"))
        _add_text(shape, "BaseShape", "AllProperties")
        ET.SubElement(
            find,
            _m("CalendarView"),
            MaxEntriesReturned=str(min(limit or MAX_VIEW_ENTRIES, MAX_VIEW_ENTRIES)),
            StartDate=_ews_datetime(start),
            EndDate=_ews_datetime(end),
        )
        _folder_id(ET.SubElement(find, _m("ParentFolderIds")), calendar.id)

        items = []
        for message in await self._soap(find):
            items.extend(message.findall("m:RootFolder/t:Items/t:CalendarItem", NS))
        return items

    async def _list_calendar_events(self, calendar: Calendar, query: EventQuery) -> list[CalendarEvent]:
        items = await self._find_items(calendar, query.start_time, query.end_time, query.max_results)
        events = []
        for item in items:
            if _bool(item, "t:IsCancelled"):
                continue
            if query.search_query and query.search_query.lower() not in (_text(item, "t:Subject") or "").lower():
                continue
            try:
                events.append(map_ews_event(item, calendar.id, self.zone, calendar.email))
            except (InvalidInputError, ValueError) as e:
                logger.warning(f"Skipping malformed EWS item in {calendar.name}: {e}")
        return events

    async def list_events(self, query: EventQuery) -> list[CalendarEvent]:
        async def run() -> list[CalendarEvent]:
            calendars = await self.list_calendars()
            if query.calendar_ids:
                calendars = [c for c in calendars if c.id in query.calendar_ids]
            if not calendars:
                return []

            batches = await asyncio.gather(
                *(self._list_calendar_events(c, query) for c in calendars)
            )
            events = [e for batch in batches for e in batch]
            events.sort(key=lambda e: e.start_dt)
            if query.max_results:
                events = events[: query.max_results]
            return events

        return await self.execute_with_error_handling("listEvents", run)

    async def _get_item(self, event_id: str) -> ET.Element:
        get = ET.Element(_m("GetItem"))
        shape = ET.SubElement(get, _m("ItemShape"))
        _add_text(shape, "BaseShape", "AllProperties")
        _item_id(ET.SubElement(get, _m("ItemIds")), event_id)

        for message in await self._soap(get):
            item = message.find("m:Items/t:CalendarItem", NS)
            if item is not None:
                return item
        raise error_for_kind(
            ErrorKind.NOT_FOUND,
            f"Item not found: {event_id}",
            provider="exchange",
            provider_id=self.provider_id,
        )

    async def _read_back(self, event_id: str, calendar_id: str | None) -> CalendarEvent:
        item = await self._get_item(event_id)
        calendar = await self._target_calendar(calendar_id)
        return map_ews_event(
            item,
            calendar.id if calendar else calendar_id or "",
            self.zone,
            calendar.email if calendar else self.email,
        )

    async def get_event(self, event_id: str, calendar_id: str | None = None) -> CalendarEvent:
        return await self.execute_with_error_handling(
            "getEvent", lambda: self._read_back(event_id, calendar_id)
        )

    async def create_event(self, params: CreateEventParams, calendar_id: str | None = None) -> CalendarEvent:
        async def run() -> CalendarEvent:
            calendar = await self._target_calendar(calendar_id)
            invites = "SendToAllAndSaveCopy" if params.send_invites and params.attendees else "SendToNone"
            create = ET.Element(_m("CreateItem"), SendMeetingInvitations=invites)
            _folder_id(ET.SubElement(create, _m("SavedItemFolderId")), calendar.id if calendar else None)
            ET.SubElement(create, _m("Items")).append(to_ews_calendar_item(params))

            for message in await self._soap(create):
                item_id = message.find("m:Items/t:CalendarItem/t:ItemId", NS)
                if item_id is not None:
                    return await self._read_back(item_id.get("Id", ""), calendar.id if calendar else None)
            raise InternalError("CreateItem returned no item", provider="exchange", provider_id=self.provider_id)

        return await self.execute_with_error_handling("createEvent", run)

    async def update_event(
        self, event_id: str, updates: UpdateEventParams, calendar_id: str | None = None
    ) -> CalendarEvent:
        async def run() -> CalendarEvent:
            scope = updates.update_scope
            if scope == ChangeScope.THIS_AND_FUTURE:
                logger.warning('Exchange does not support "thisAndFuture" - applying to single instance')
                scope = ChangeScope.SINGLE

            mode = "SendToAllAndSaveCopy" if updates.send_updates else "SendToNone"
            update = ET.Element(
                _m("UpdateItem"),
                ConflictResolution="AlwaysOverwrite",
                SendMeetingInvitationsOrCancellations=mode,
            )
            change = ET.SubElement(ET.SubElement(update, _m("ItemChanges")), _t("ItemChange"))
            _item_id(change, event_id, scope)
            fields = ET.SubElement(change, _t("Updates"))
            for uri, item in to_ews_item_changes(updates):
                set_field = ET.SubElement(fields, _t("SetItemField"))
                ET.SubElement(set_field, _t("FieldURI"), FieldURI=uri)
                set_field.append(item)

            updated_id = event_id
            for message in await self._soap(update):
                item_id = message.find("m:Items/t:CalendarItem/t:ItemId", NS)
                if item_id is not None:
                    updated_id = item_id.get("Id", event_id)
            return await self._read_back(updated_id, calendar_id)

        return await self.execute_with_error_handling("updateEvent", run)

    async def delete_event(
        self, event_id: str, options: DeleteOptions | None = None, calendar_id: str | None = None
    ) -> None:
        options = options or DeleteOptions()

        async def run() -> None:
            scope = options.delete_scope
            if scope == ChangeScope.THIS_AND_FUTURE:
                logger.warning('Exchange does not support "thisAndFuture" - deleting single instance')
                scope = ChangeScope.SINGLE

            delete = ET.Element(
                _m("DeleteItem"),
                DeleteType="MoveToDeletedItems" if options.send_cancellation else "HardDelete",
                SendMeetingCancellations="SendToAllAndSaveCopy" if options.send_cancellation else "SendToNone",
            )
            _item_id(ET.SubElement(delete, _m("ItemIds")), event_id, scope)
            await self._soap(delete)

        await self.execute_with_error_handling("deleteEvent", run)

    # =========================================================================
    # Availability and responses
    # =========================================================================

    async def get_free_busy(self, query: FreeBusyQuery) -> CalendarFreeBusy:
        async def run() -> CalendarFreeBusy:
            calendar = await self._target_calendar(query.calendar_ids[0] if query.calendar_ids else None)
            if calendar is None:
                return CalendarFreeBusy(
                    provider=ProviderType.EXCHANGE,
                    calendar_id="calendar",
                    calendar_name=self.display_name,
                )

            # Busy time is derived from the calendar view rather than GetUserAvailability
            busy = []
            for item in await self._find_items(calendar, query.start_time, query.end_time, MAX_VIEW_ENTRIES):
                status = _text(item, "t:LegacyFreeBusyStatus") or "Busy"
                if status == "Free" or _bool(item, "t:IsCancelled"):
                    continue
                try:
                    event = map_ews_event(item, calendar.id, self.zone)
                except (InvalidInputError, ValueError) as e:
                    logger.warning(f"Skipping malformed EWS item in free/busy: {e}")
                    continue
                busy.append(BusySlot(
                    start=event.start_dt,
                    end=event.end_dt,
                    status={"Tentative": BusyStatus.TENTATIVE, "OOF": BusyStatus.OOF}.get(status, BusyStatus.BUSY),
                    event_subject=event.subject,
                    event_id=event.id,
                ))

            return CalendarFreeBusy(
                provider=ProviderType.EXCHANGE,
                calendar_id=calendar.id,
                calendar_name=calendar.name,
                busy=busy,
            )

        return await self.execute_with_error_handling("getFreeBusy", run)

    async def respond_to_event(
        self,
        event_id: str,
        response: ResponseType,
        calendar_id: str | None = None,
        message: str | None = None,
    ) -> None:
        response = ResponseType(response)

        async def run() -> None:
            create = ET.Element(_m("CreateItem"), MessageDisposition="SendAndSaveCopy")
            reply = ET.SubElement(ET.SubElement(create, _m("Items")), _t(RESPONSE_ITEMS[response]))
            if message:
                _add_text(reply, "Body", message, BodyType="Text")
            ET.SubElement(reply, _t("ReferenceItemId"), Id=event_id)
            await self._soap(create)

        await self.execute_with_error_handling("respondToEvent", run)
