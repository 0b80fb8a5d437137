"""
Tool: Microsoft Graph Provider
Purpose: Microsoft 365 / Outlook calendar integration via Microsoft Graph

Implements the CalendarProvider interface for Microsoft 365 accounts.
Times are requested in UTC (Prefer: outlook.timezone) and converted to the
configured zone, so Windows zone names never reach the unified model.

Usage:
    from calbridge.providers.microsoft_graph import MicrosoftGraphProvider

    provider = MicrosoftGraphProvider(config)
    await provider.connect()
    busy = await provider.get_free_busy(query)

Dependencies:
    - aiohttp (pip install aiohttp)
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Any
from urllib.parse import quote

from calbridge.config import get_default_timezone
from calbridge.datetime_utils import get_zone, parse_datetime, to_iso
from calbridge.errors import AuthFailureError, CalendarError, InvalidInputError, wrap_error
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
from calbridge.providers.oauth import MICROSOFT_SCOPES, MICROSOFT_TOKEN_URL, refresh_access_token
from calbridge.recurrence import RecurrencePattern

logger = logging.getLogger(__name__)

# Microsoft Graph API endpoint
GRAPH_API_BASE = "https://graph.microsoft.com/v1.0"

EVENT_SELECT = ",".join([
    "id", "subject", "body", "start", "end", "isAllDay", "location", "attendees",
    "organizer", "isOrganizer", "showAs", "sensitivity", "iCalUId", "recurrence",
    "seriesMasterId", "originalStart", "isOnlineMeeting", "onlineMeeting",
    "onlineMeetingUrl", "webLink", "createdDateTime", "lastModifiedDateTime",
    "isCancelled", "responseStatus", "type",
])

RESPONSE_ENDPOINTS = {
    ResponseType.ACCEPTED: "accept",
    ResponseType.DECLINED: "decline",
    ResponseType.TENTATIVE: "tentativelyAccept",
}


# =============================================================================
# Incoming mapping (Graph -> unified)
# =============================================================================


def _map_show_as(value: str | None) -> ShowAs:
    try:
        return ShowAs(value)
    except ValueError:
        return ShowAs.BUSY


def _map_sensitivity(value: str | None) -> Sensitivity:
    try:
        return Sensitivity(value)
    except ValueError:
        return Sensitivity.NORMAL


def _map_response_status(value: str | None) -> ResponseStatus:
    if value == "accepted":
        return ResponseStatus.ACCEPTED
    if value == "declined":
        return ResponseStatus.DECLINED
    if value == "tentativelyAccepted":
        return ResponseStatus.TENTATIVE
    return ResponseStatus.NEEDS_ACTION


def _map_attendee_type(value: str | None) -> AttendeeType:
    try:
        return AttendeeType(value)
    except ValueError:
        return AttendeeType.REQUIRED


def _map_time(data: dict[str, Any] | None) -> EventTime:
    """Graph returns naive wall-clock time plus a zone name (UTC when requested)."""
    if not data or not data.get("dateTime"):
        raise InvalidInputError("Event has no start/end time", provider="microsoft")
    source_zone = data.get("timeZone") or "UTC"
    try:
        get_zone(source_zone)
    except InvalidInputError:
        # Windows zone names only appear when the Prefer header was ignored
        source_zone = "UTC"
    return EventTime(parse_datetime(data["dateTime"], source_zone), get_default_timezone())


def _map_recurrence(data: dict[str, Any] | None) -> RecurrencePattern | None:
    if not data or not data.get("pattern") or not data.get("range"):
        return None
    pattern = data["pattern"]
    range_ = data["range"]
    try:
        return RecurrencePattern(
            type=pattern.get("type"),
            interval=pattern.get("interval") or 1,
            start_date=range_.get("startDate") or "",
            end_type=range_.get("type") if range_.get("type") in ("endDate", "numbered") else "noEnd",
            days_of_week=[d.lower() for d in pattern.get("daysOfWeek") or []],
            first_day_of_week=pattern.get("firstDayOfWeek"),
            day_of_month=pattern.get("dayOfMonth") or None,
            week_index=pattern.get("index") if (pattern.get("type") or "").startswith("relative") else None,
            day_of_week_for_monthly=(
                (pattern.get("daysOfWeek") or [""])[0].lower() or None
                if pattern.get("type") == "relativeMonthly" else None
            ),
            month=pattern.get("month") or None,
            end_date=range_.get("endDate") if range_.get("type") == "endDate" else None,
            number_of_occurrences=range_.get("numberOfOccurrences") or None,
        )
    except InvalidInputError:
        return None


def _detect_meeting_provider(data: dict[str, Any]) -> OnlineMeetingProvider | None:
    if not data.get("isOnlineMeeting"):
        return None
    url = data.get("onlineMeetingUrl") or (data.get("onlineMeeting") or {}).get("joinUrl") or ""
    if "meet.google.com" in url:
        return OnlineMeetingProvider.MEET
    if "zoom.us" in url:
        return OnlineMeetingProvider.ZOOM
    return OnlineMeetingProvider.TEAMS


def map_graph_calendar(data: dict[str, Any]) -> Calendar:
    """Map a Graph calendar resource to a Calendar."""
    owner = data.get("owner") or {}
    can_edit = data.get("canEdit") is not False
    return Calendar(
        id=data.get("id", ""),
        provider=ProviderType.MICROSOFT,
        name=data.get("name") or "Unnamed Calendar",
        email=owner.get("address") or "",
        is_primary=data.get("isDefaultCalendar") is True,
        can_edit=can_edit,
        color=data.get("hexColor") or data.get("color"),
        access_role="writer" if can_edit else "reader",
    )


def map_graph_event(data: dict[str, Any], calendar_id: str) -> CalendarEvent:
    """
    Map a Graph event resource to a CalendarEvent.

    Args:
        data: Event resource from Microsoft Graph
        calendar_id: Calendar the event was read from

    Returns:
        CalendarEvent
    """
    organizer = None
    organizer_address = (data.get("organizer") or {}).get("emailAddress")
    if organizer_address:
        organizer = Attendee(
            email=organizer_address.get("address", ""),
            name=organizer_address.get("name"),
            response=ResponseStatus.ACCEPTED,
            is_organizer=True,
        )

    attendees = []
    for att in data.get("attendees") or []:
        address = att.get("emailAddress") or {}
        email = address.get("address", "")
        if organizer and email.lower() == organizer.email.lower():
            continue
        attendees.append(Attendee(
            email=email,
            name=address.get("name"),
            response=_map_response_status((att.get("status") or {}).get("response")),
            type=_map_attendee_type(att.get("type")),
        ))

    recurrence = _map_recurrence(data.get("recurrence"))
    body = data.get("body") or {}
    online_meeting = data.get("onlineMeeting") or {}

    return CalendarEvent(
        id=data.get("id", ""),
        provider=ProviderType.MICROSOFT,
        calendar_id=calendar_id,
        ical_uid=data.get("iCalUId"),
        subject=data.get("subject") or "(No title)",
        body=body.get("content"),
        body_type=BodyType.HTML if body.get("contentType") == "html" else BodyType.TEXT,
        start=_map_time(data.get("start")),
        end=_map_time(data.get("end")),
        is_all_day=data.get("isAllDay") is True,
        is_recurring=recurrence is not None or bool(data.get("seriesMasterId")),
        recurrence=recurrence,
        series_master_id=data.get("seriesMasterId"),
        instance_date=data.get("originalStart"),
        location=(data.get("location") or {}).get("displayName") or None,
        is_online_meeting=data.get("isOnlineMeeting") is True,
        online_meeting_url=data.get("onlineMeetingUrl") or online_meeting.get("joinUrl"),
        online_meeting_provider=_detect_meeting_provider(data),
        organizer=organizer,
        attendees=attendees,
        is_organizer=data.get("isOrganizer") is True,
        status=EventStatus.CANCELLED if data.get("isCancelled") else EventStatus.CONFIRMED,
        show_as=_map_show_as(data.get("showAs")),
        my_response_status=_map_response_status((data.get("responseStatus") or {}).get("response")),
        sensitivity=_map_sensitivity(data.get("sensitivity")),
        created_at=data.get("createdDateTime"),
        updated_at=data.get("lastModifiedDateTime"),
        web_link=data.get("webLink"),
    )


# =============================================================================
# Outgoing mapping (unified -> Graph)
# =============================================================================


def _graph_datetime(dt: datetime, timezone: str) -> dict[str, str]:
    """Graph wants naive wall-clock time plus the zone it is in."""
    local = dt.astimezone(get_zone(timezone)).replace(tzinfo=None)
    return {"dateTime": local.isoformat(), "timeZone": timezone}


def _to_attendees(attendees: list[AttendeeInput]) -> list[dict[str, Any]]:
    result = []
    for a in attendees:
        address: dict[str, str] = {"address": a.email}
        if a.name:
            address["name"] = a.name
        result.append({"type": a.type.value, "emailAddress": address})
    return result


def to_graph_event(params: CreateEventParams) -> dict[str, Any]:
    """Build an event resource for POST /events."""
    timezone = params.timezone or get_default_timezone()
    event: dict[str, Any] = {"subject": params.subject}

    if params.body:
        event["body"] = {
            "contentType": "html" if params.body_type == BodyType.HTML else "text",
            "content": params.body,
        }

    if params.is_all_day:
        event["isAllDay"] = True
        start = params.start_time.astimezone(get_zone(timezone)).date()
        end = params.end_time.astimezone(get_zone(timezone)).date()
        event["start"] = {"dateTime": f"{start.isoformat()}T00:00:00", "timeZone": timezone}
        event["end"] = {"dateTime": f"{end.isoformat()}T00:00:00", "timeZone": timezone}
    else:
        event["start"] = _graph_datetime(params.start_time, timezone)
        event["end"] = _graph_datetime(params.end_time, timezone)

    if params.location:
        event["location"] = {"displayName": params.location}
    if params.attendees:
        event["attendees"] = _to_attendees(params.attendees)
    if params.show_as:
        event["showAs"] = params.show_as.value
    if params.sensitivity:
        event["sensitivity"] = params.sensitivity.value
    if params.create_online_meeting:
        event["isOnlineMeeting"] = True
        event["onlineMeetingProvider"] = "teamsForBusiness"
    if params.reminder_minutes is not None:
        event["isReminderOn"] = True
        event["reminderMinutesBeforeStart"] = params.reminder_minutes

    if params.recurrence:
        rec = params.recurrence
        pattern: dict[str, Any] = {
            "type": {"monthly": "absoluteMonthly", "yearly": "absoluteYearly"}.get(rec.type, rec.type),
            "interval": rec.interval or 1,
        }
        if rec.days_of_week:
            pattern["daysOfWeek"] = list(rec.days_of_week)
        if rec.day_of_month:
            pattern["dayOfMonth"] = rec.day_of_month
        if rec.type == "yearly":
            pattern["month"] = params.start_time.month
            pattern.setdefault("dayOfMonth", params.start_time.day)

        range_: dict[str, Any] = {
            "type": "endDate" if rec.end_date else "numbered" if rec.occurrences else "noEnd",
            "startDate": params.start_time.astimezone(get_zone(timezone)).date().isoformat(),
        }
        if rec.end_date:
            range_["endDate"] = rec.end_date
        if rec.occurrences:
            range_["numberOfOccurrences"] = rec.occurrences
        event["recurrence"] = {"pattern": pattern, "range": range_}

    return event


def to_graph_event_patch(updates: UpdateEventParams) -> dict[str, Any]:
    """Build a partial event resource for PATCH /events/{id}."""
    patch: dict[str, Any] = {}
    timezone = updates.timezone or get_default_timezone()

    if updates.subject is not None:
        patch["subject"] = updates.subject
    if updates.body is not None:
        patch["body"] = {
            "contentType": "html" if updates.body_type == BodyType.HTML else "text",
            "content": updates.body,
        }
    if updates.start_time is not None:
        patch["start"] = _graph_datetime(updates.start_time, timezone)
    if updates.end_time is not None:
        patch["end"] = _graph_datetime(updates.end_time, timezone)
    if updates.location is not None:
        patch["location"] = {"displayName": updates.location}
    if updates.attendees is not None:
        patch["attendees"] = _to_attendees(updates.attendees)
    if updates.show_as is not None:
        patch["showAs"] = updates.show_as.value
    if updates.sensitivity is not None:
        patch["sensitivity"] = updates.sensitivity.value

    return patch


def _busy_status(value: str | None) -> BusyStatus:
    if value == "tentative":
        return BusyStatus.TENTATIVE
    if value == "oof":
        return BusyStatus.OOF
    return BusyStatus.BUSY


# =============================================================================
# Provider
# =============================================================================


class MicrosoftGraphProvider(CalendarProvider):
    """Microsoft 365 provider (Graph v1.0, OAuth bearer tokens)."""

    provider_type = ProviderType.MICROSOFT

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.access_token}",
            "Content-Type": "application/json",
            "Prefer": 'outlook.timezone="UTC"',
        }

    def _extract_error_message(self, status: int, text: str) -> str:
        try:
            return json.loads(text)["error"]["message"]
        except (ValueError, KeyError, TypeError):
            return super()._extract_error_message(status, text)

    @staticmethod
    def _events_path(calendar_id: str | None) -> str:
        if not calendar_id or calendar_id == "primary":
            return f"{GRAPH_API_BASE}/me/calendar/events"
        return f"{GRAPH_API_BASE}/me/calendars/{quote(calendar_id, safe='')}/events"

    # =========================================================================
    # Connection
    # =========================================================================

    async def connect(self) -> None:
        logger.info(f"Connecting to Microsoft 365 ({self.display_name})...")
        try:
            if not self.config.access_token:
                await self.refresh_auth()
            me = await self._make_request("GET", f"{GRAPH_API_BASE}/me") or {}
            if not self.config.email:
                self.config.email = me.get("mail") or me.get("userPrincipalName") or ""
        except CalendarError:
            self._connected = False
            raise
        except Exception as e:
            self._connected = False
            raise wrap_error(e, provider="microsoft", provider_id=self.provider_id, operation="connect") from e

        self._connected = True
        logger.info(f"Connected to Microsoft 365 ({self.display_name})")

    async def refresh_auth(self) -> None:
        if not self.config.refresh_token:
            raise AuthFailureError(
                "No access token or refresh token configured",
                provider="microsoft",
                provider_id=self.provider_id,
            )
        tokens = await refresh_access_token(
            self._get_session(),
            MICROSOFT_TOKEN_URL.format(tenant=self.config.tenant_id),
            self.config.client_id,
            self.config.client_secret,
            self.config.refresh_token,
            provider="microsoft",
            scope=MICROSOFT_SCOPES,
        )
        self.config.access_token = tokens["access_token"]
        if tokens.get("refresh_token"):
            self.config.refresh_token = tokens["refresh_token"]

    # =========================================================================
    # Calendars
    # =========================================================================

    async def _fetch_calendars(self) -> list[Calendar]:
        data = await self._make_request("GET", f"{GRAPH_API_BASE}/me/calendars") or {}
        return [map_graph_calendar(item) for item in data.get("value", [])]

    async def list_calendars(self) -> list[Calendar]:
        return await self.execute_with_error_handling(
            "listCalendars", lambda: self._cached_calendars(self._fetch_calendars)
        )

    async def _target_calendar_ids(self, calendar_ids: list[str] | None) -> list[str]:
        if calendar_ids:
            return list(calendar_ids)
        return ["primary"]

    # =========================================================================
    # Events
    # =========================================================================

    async def _list_calendar_events(self, calendar_id: str, query: EventQuery) -> list[CalendarEvent]:
        if calendar_id == "primary":
            url = f"{GRAPH_API_BASE}/me/calendarView"
        else:
            url = f"{GRAPH_API_BASE}/me/calendars/{quote(calendar_id, safe='')}/calendarView"

        params: dict[str, Any] | None = {
            "startDateTime": to_iso(query.start_time),
            "endDateTime": to_iso(query.end_time),
            "$top": min(query.max_results or 100, 1000),
            "$orderby": "lastModifiedDateTime desc" if query.order_by == "updated" else "start/dateTime",
            "$select": EVENT_SELECT,
        }

        events: list[CalendarEvent] = []
        while url:
            data = await self._make_request("GET", url, params=params) or {}
            for item in data.get("value", []):
                if item.get("isCancelled"):
                    continue
                if query.search_query and query.search_query.lower() not in (item.get("subject") or "").lower():
                    continue
                try:
                    events.append(map_graph_event(item, calendar_id))
                except InvalidInputError as e:
                    logger.warning(f"Skipping malformed Graph event {item.get('id')}: {e.message}")

            if query.max_results and len(events) >= query.max_results:
                break
            # nextLink already carries the query string
            url = data.get("@odata.nextLink")
            params = None

        return events

    async def list_events(self, query: EventQuery) -> list[CalendarEvent]:
        async def run() -> list[CalendarEvent]:
            calendar_ids = await self._target_calendar_ids(query.calendar_ids)
            batches = await asyncio.gather(
                *(self._list_calendar_events(cid, query) for cid in calendar_ids)
            )
            events = [e for batch in batches for e in batch]
            events.sort(key=lambda e: e.start_dt)
            if query.max_results:
                events = events[: query.max_results]
            return events

        return await self.execute_with_error_handling("listEvents", run)

    async def _fetch_event(self, event_id: str, calendar_id: str | None) -> dict[str, Any]:
        return await self._make_request(
            "GET",
            f"{self._events_path(calendar_id)}/{quote(event_id, safe='')}",
            params={"$select": EVENT_SELECT},
        )

    async def get_event(self, event_id: str, calendar_id: str | None = None) -> CalendarEvent:
        async def run() -> CalendarEvent:
            data = await self._fetch_event(event_id, calendar_id)
            return map_graph_event(data, calendar_id or "primary")

        return await self.execute_with_error_handling("getEvent", run)

    async def create_event(self, params: CreateEventParams, calendar_id: str | None = None) -> CalendarEvent:
        async def run() -> CalendarEvent:
            if not params.send_invites and params.attendees:
                logger.debug("Graph sends invitations whenever attendees are set")
            created = await self._make_request(
                "POST", self._events_path(calendar_id), json=to_graph_event(params)
            )
            return map_graph_event(created, calendar_id or "primary")

        return await self.execute_with_error_handling("createEvent", run)

    async def _resolve_scope_target(self, event_id: str, scope: ChangeScope, calendar_id: str | None) -> str:
        if scope == ChangeScope.THIS_AND_FUTURE:
            logger.warning(
                'Microsoft Graph does not support "thisAndFuture" - applying to single instance'
            )
        if scope == ChangeScope.ALL:
            data = await self._fetch_event(event_id, calendar_id)
            if data.get("seriesMasterId"):
                return data["seriesMasterId"]
        return event_id

    async def update_event(
        self, event_id: str, updates: UpdateEventParams, calendar_id: str | None = None
    ) -> CalendarEvent:
        async def run() -> CalendarEvent:
            target = await self._resolve_scope_target(event_id, updates.update_scope, calendar_id)
            data = await self._make_request(
                "PATCH",
                f"{self._events_path(calendar_id)}/{quote(target, safe='')}",
                json=to_graph_event_patch(updates),
            )
            return map_graph_event(data, calendar_id or "primary")

        return await self.execute_with_error_handling("updateEvent", run)

    async def delete_event(
        self, event_id: str, options: DeleteOptions | None = None, calendar_id: str | None = None
    ) -> None:
        options = options or DeleteOptions()

        async def run() -> None:
            target = await self._resolve_scope_target(event_id, options.delete_scope, calendar_id)
            url = f"{self._events_path(calendar_id)}/{quote(target, safe='')}"
            if options.send_cancellation:
                data = await self._fetch_event(target, calendar_id)
                if data.get("isOrganizer") and data.get("attendees"):
                    # cancel notifies attendees and removes the event
                    await self._make_request("POST", f"{url}/cancel", json={})
                    return
            await self._make_request("DELETE", url)

        await self.execute_with_error_handling("deleteEvent", run)

    # =========================================================================
    # Availability and responses
    # =========================================================================

    async def get_free_busy(self, query: FreeBusyQuery) -> CalendarFreeBusy:
        async def run() -> CalendarFreeBusy:
            body = {
                "schedules": [self.email],
                "startTime": _graph_datetime(query.start_time, "UTC"),
                "endTime": _graph_datetime(query.end_time, "UTC"),
                "availabilityViewInterval": 30,
            }
            data = await self._make_request("POST", f"{GRAPH_API_BASE}/me/calendar/getSchedule", json=body) or {}

            busy = []
            for schedule in data.get("value", []):
                for item in schedule.get("scheduleItems", []):
                    if item.get("status") == "free":
                        continue
                    start = (item.get("start") or {}).get("dateTime")
                    end = (item.get("end") or {}).get("dateTime")
                    if start and end:
                        busy.append(BusySlot(
                            start=_map_time(item["start"]).date_time,
                            end=_map_time(item["end"]).date_time,
                            status=_busy_status(item.get("status")),
                            event_subject=item.get("subject"),
                        ))

            calendars = await self.list_calendars()
            primary = next((c for c in calendars if c.is_primary), None)
            return CalendarFreeBusy(
                provider=ProviderType.MICROSOFT,
                calendar_id=primary.id if primary else "primary",
                calendar_name=primary.name if primary else self.display_name,
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
            body: dict[str, Any] = {"sendResponse": True}
            if message:
                body["comment"] = message
            await self._make_request(
                "POST",
                f"{self._events_path(calendar_id)}/{quote(event_id, safe='')}/{RESPONSE_ENDPOINTS[response]}",
                json=body,
            )

        await self.execute_with_error_handling("respondToEvent", run)
