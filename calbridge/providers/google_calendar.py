"""
Tool: Google Calendar Provider
Purpose: Google Calendar integration via the Calendar API v3

Implements the CalendarProvider interface for Google accounts.

Usage:
    from calbridge.providers.google_calendar import GoogleCalendarProvider

    provider = GoogleCalendarProvider(config)
    await provider.connect()
    events = await provider.list_events(query)

Dependencies:
    - aiohttp (pip install aiohttp)
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import timedelta
from typing import Any
from urllib.parse import quote

from calbridge.config import get_default_timezone
from calbridge.datetime_utils import parse_datetime, to_iso
from calbridge.errors import AuthFailureError, CalendarError, InvalidInputError, wrap_error
from calbridge.models import (
    Attendee,
    AttendeeInput,
    AttendeeType,
    BusySlot,
    BusyStatus,
    Calendar,
    CalendarEvent,
    CalendarFreeBusy,
    ChangeScope,
    CreateEventParams,
    DeleteOptions,
    EventQuery,
    EventReminders,
    EventStatus,
    EventTime,
    FreeBusyQuery,
    OnlineMeetingProvider,
    ProviderType,
    Reminder,
    ResponseStatus,
    ResponseType,
    Sensitivity,
    ShowAs,
    UpdateEventParams,
)
from calbridge.providers.base import CalendarProvider
from calbridge.providers.oauth import GOOGLE_TOKEN_URL, refresh_access_token
from calbridge.recurrence import parse_rrule, to_rrule

logger = logging.getLogger(__name__)

# Google Calendar API endpoint
CALENDAR_API_BASE = "https://www.googleapis.com/calendar/v3"

# Page size for events.list
PAGE_SIZE = 250


# =============================================================================
# Incoming mapping (Google -> unified)
# =============================================================================


def _map_response_status(value: str | None) -> ResponseStatus:
    if value in ("accepted", "declined", "tentative"):
        return ResponseStatus(value)
    return ResponseStatus.NEEDS_ACTION


def _map_event_status(value: str | None) -> EventStatus:
    if value in ("confirmed", "tentative", "cancelled"):
        return EventStatus(value)
    return EventStatus.CONFIRMED


def _map_show_as(transparency: str | None, status: str | None) -> ShowAs:
    if status == "tentative":
        return ShowAs.TENTATIVE
    if transparency == "transparent":
        return ShowAs.FREE
    return ShowAs.BUSY


def _map_sensitivity(visibility: str | None) -> Sensitivity:
    if visibility == "private":
        return Sensitivity.PRIVATE
    if visibility == "confidential":
        return Sensitivity.CONFIDENTIAL
    return Sensitivity.NORMAL


def _detect_meeting_provider(conference: dict | None) -> OnlineMeetingProvider | None:
    if not conference:
        return None
    if conference.get("conferenceSolution", {}).get("key", {}).get("type") == "hangoutsMeet":
        return OnlineMeetingProvider.MEET
    for entry in conference.get("entryPoints", []):
        uri = (entry.get("uri") or "").lower()
        if "zoom.us" in uri:
            return OnlineMeetingProvider.ZOOM
        if "teams.microsoft" in uri:
            return OnlineMeetingProvider.TEAMS
    return OnlineMeetingProvider.OTHER


def _meeting_url(conference: dict | None) -> str | None:
    if not conference:
        return None
    for entry in conference.get("entryPoints", []):
        if entry.get("entryPointType") == "video":
            return entry.get("uri")
    return None


def _map_attendee(data: dict[str, Any]) -> Attendee:
    return Attendee(
        email=data.get("email", ""),
        name=data.get("displayName"),
        response=_map_response_status(data.get("responseStatus")),
        type=AttendeeType.RESOURCE if data.get("resource") else (
            AttendeeType.OPTIONAL if data.get("optional") else AttendeeType.REQUIRED
        ),
        is_organizer=data.get("organizer") is True,
    )


def _map_time(data: dict[str, Any]) -> EventTime:
    timezone = data.get("timeZone") or get_default_timezone()
    if data.get("dateTime"):
        return EventTime(data["dateTime"], timezone)
    if data.get("date"):
        # All-day events carry a bare date
        return EventTime(f"{data['date']}T00:00:00", timezone)
    raise InvalidInputError("Event has no start/end time", provider="google")


def map_google_calendar(data: dict[str, Any]) -> Calendar:
    """Map a calendarList entry to a Calendar."""
    calendar_id = data.get("id", "")
    return Calendar(
        id=calendar_id,
        provider=ProviderType.GOOGLE,
        name=data.get("summaryOverride") or data.get("summary") or calendar_id or "Unnamed Calendar",
        email=calendar_id,
        is_primary=data.get("primary") is True,
        can_edit=data.get("accessRole") in ("owner", "writer"),
        color=data.get("backgroundColor"),
        description=data.get("description"),
        timezone=data.get("timeZone"),
        access_role=data.get("accessRole"),
    )


def map_google_event(data: dict[str, Any], calendar_id: str) -> CalendarEvent:
    """
    Map a Google event resource to a CalendarEvent.

    Args:
        data: Event resource from the Calendar API
        calendar_id: Calendar the event was read from

    Returns:
        CalendarEvent
    """
    start = _map_time(data.get("start", {}))
    end = _map_time(data.get("end", {}))

    recurrence = None
    for line in data.get("recurrence") or []:
        if line.startswith("RRULE:"):
            try:
                recurrence = parse_rrule(line, start.date_time.date().isoformat())
            except InvalidInputError as e:
                logger.warning(f"Ignoring recurrence of Google event {data.get('id')}: {e.message}")
            break

    attendees = [_map_attendee(a) for a in data.get("attendees", [])]
    organizer = next((a for a in attendees if a.is_organizer), None)
    if organizer is None and data.get("organizer"):
        organizer = Attendee(
            email=data["organizer"].get("email", ""),
            name=data["organizer"].get("displayName"),
            response=ResponseStatus.ACCEPTED,
            is_organizer=True,
        )

    my_response = None
    self_attendee = next((a for a in data.get("attendees", []) if a.get("self")), None)
    if self_attendee:
        my_response = _map_response_status(self_attendee.get("responseStatus"))
    elif data.get("organizer", {}).get("self"):
        my_response = ResponseStatus.ACCEPTED

    reminders = None
    if data.get("reminders"):
        reminders = EventReminders(
            use_default=data["reminders"].get("useDefault") is True,
            overrides=[
                Reminder(method="email" if r.get("method") == "email" else "popup", minutes=r.get("minutes", 10))
                for r in data["reminders"].get("overrides", [])
            ],
        )

    original_start = data.get("originalStartTime") or {}
    conference = data.get("conferenceData")

    return CalendarEvent(
        id=data.get("id", ""),
        provider=ProviderType.GOOGLE,
        calendar_id=calendar_id,
        ical_uid=data.get("iCalUID"),
        subject=data.get("summary") or "(No title)",
        body=data.get("description"),
        body_type="html",
        start=start,
        end=end,
        is_all_day=not data.get("start", {}).get("dateTime"),
        is_recurring=bool(data.get("recurrence")) or bool(data.get("recurringEventId")),
        recurrence=recurrence,
        series_master_id=data.get("recurringEventId"),
        instance_date=original_start.get("dateTime") or original_start.get("date"),
        location=data.get("location"),
        is_online_meeting=bool(conference or data.get("hangoutLink")),
        online_meeting_url=_meeting_url(conference) or data.get("hangoutLink"),
        online_meeting_provider=_detect_meeting_provider(conference),
        organizer=organizer,
        attendees=[a for a in attendees if not a.is_organizer],
        is_organizer=data.get("organizer", {}).get("self") is True,
        status=_map_event_status(data.get("status")),
        show_as=_map_show_as(data.get("transparency"), data.get("status")),
        my_response_status=my_response,
        sensitivity=_map_sensitivity(data.get("visibility")),
        created_at=data.get("created"),
        updated_at=data.get("updated"),
        web_link=data.get("htmlLink"),
        reminders=reminders,
    )


# =============================================================================
# Outgoing mapping (unified -> Google)
# =============================================================================


def _to_visibility(sensitivity: Sensitivity | None) -> str:
    if sensitivity in (Sensitivity.PRIVATE, Sensitivity.CONFIDENTIAL):
        return sensitivity.value
    return "default"


def _to_transparency(show_as: ShowAs | None) -> str:
    return "transparent" if show_as == ShowAs.FREE else "opaque"


def _to_attendees(attendees: list[AttendeeInput]) -> list[dict[str, Any]]:
    result = []
    for a in attendees:
        entry: dict[str, Any] = {"email": a.email, "optional": a.type == AttendeeType.OPTIONAL}
        if a.name:
            entry["displayName"] = a.name
        if a.type == AttendeeType.RESOURCE:
            entry["resource"] = True
        result.append(entry)
    return result


def to_google_event(params: CreateEventParams) -> dict[str, Any]:
    """Build an event resource for events.insert."""
    event: dict[str, Any] = {
        "summary": params.subject,
        "visibility": _to_visibility(params.sensitivity),
        "transparency": _to_transparency(params.show_as),
    }
    if params.body is not None:
        event["description"] = params.body

    if params.is_all_day:
        start_date = params.start_time.date()
        end_date = params.end_time.date()
        if end_date <= start_date:
            end_date = start_date + timedelta(days=1)
        event["start"] = {"date": start_date.isoformat()}
        event["end"] = {"date": end_date.isoformat()}
    else:
        event["start"] = {"dateTime": to_iso(params.start_time), "timeZone": params.timezone}
        event["end"] = {"dateTime": to_iso(params.end_time), "timeZone": params.timezone}

    if params.location:
        event["location"] = params.location

    if params.attendees:
        event["attendees"] = _to_attendees(params.attendees)

    if params.recurrence:
        event["recurrence"] = [to_rrule(params.recurrence)]

    if params.reminder_minutes is not None:
        event["reminders"] = {
            "useDefault": False,
            "overrides": [{"method": "popup", "minutes": params.reminder_minutes}],
        }

    if params.create_online_meeting and params.online_meeting_provider in (None, OnlineMeetingProvider.MEET):
        event["conferenceData"] = {
            "createRequest": {
                "requestId": uuid.uuid4().hex,
                "conferenceSolutionKey": {"type": "hangoutsMeet"},
            }
        }

    return event


def to_google_event_patch(updates: UpdateEventParams) -> dict[str, Any]:
    """Build a partial event resource for events.patch."""
    patch: dict[str, Any] = {}
    timezone = updates.timezone or get_default_timezone()

    if updates.subject is not None:
        patch["summary"] = updates.subject
    if updates.body is not None:
        patch["description"] = updates.body
    if updates.start_time is not None:
        patch["start"] = {"dateTime": to_iso(updates.start_time), "timeZone": timezone}
    if updates.end_time is not None:
        patch["end"] = {"dateTime": to_iso(updates.end_time), "timeZone": timezone}
    if updates.location is not None:
        patch["location"] = updates.location
    if updates.attendees is not None:
        patch["attendees"] = _to_attendees(updates.attendees)
    if updates.sensitivity is not None:
        patch["visibility"] = _to_visibility(updates.sensitivity)
    if updates.show_as is not None:
        patch["transparency"] = _to_transparency(updates.show_as)

    return patch


# =============================================================================
# Provider
# =============================================================================


class GoogleCalendarProvider(CalendarProvider):
    """Google Calendar provider (Calendar API v3, OAuth bearer tokens)."""

    provider_type = ProviderType.GOOGLE

    def _get_headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.access_token}",
            "Content-Type": "application/json",
        }

    def _extract_error_message(self, status: int, text: str) -> str:
        try:
            return json.loads(text)["error"]["message"]
        except (ValueError, KeyError, TypeError):
            return super()._extract_error_message(status, text)

    @staticmethod
    def _calendar_path(calendar_id: str) -> str:
        return f"{CALENDAR_API_BASE}/calendars/{quote(calendar_id, safe='')}"

    # =========================================================================
    # Connection
    # =========================================================================

    async def connect(self) -> None:
        logger.info(f"Connecting to Google Calendar ({self.display_name})...")
        try:
            if not self.config.access_token:
                await self.refresh_auth()
            # Listing calendars proves the token works
            await self._fetch_calendars()
        except CalendarError:
            self._connected = False
            raise
        except Exception as e:
            self._connected = False
            raise wrap_error(e, provider="google", provider_id=self.provider_id, operation="connect") from e

        self._connected = True
        logger.info(f"Connected to Google Calendar ({self.display_name})")

    async def refresh_auth(self) -> None:
        if not self.config.refresh_token:
            raise AuthFailureError(
                "No access token or refresh token configured",
                provider="google",
                provider_id=self.provider_id,
            )
        tokens = await refresh_access_token(
            self._get_session(),
            GOOGLE_TOKEN_URL,
            self.config.client_id,
            self.config.client_secret,
            self.config.refresh_token,
            provider="google",
        )
        self.config.access_token = tokens["access_token"]

    # =========================================================================
    # Calendars
    # =========================================================================

    async def _fetch_calendars(self) -> list[Calendar]:
        data = await self._make_request("GET", f"{CALENDAR_API_BASE}/users/me/calendarList")
        return [map_google_calendar(item) for item in (data or {}).get("items", [])]

    async def list_calendars(self) -> list[Calendar]:
        return await self.execute_with_error_handling(
            "listCalendars", lambda: self._cached_calendars(self._fetch_calendars)
        )

    async def get_primary_calendar_id(self) -> str:
        calendars = await self.list_calendars()
        return next((c.id for c in calendars if c.is_primary), "primary")

    async def _target_calendars(self, calendar_ids: list[str] | None) -> list[Calendar]:
        calendars = await self.list_calendars()
        if calendar_ids:
            return [c for c in calendars if c.id in calendar_ids]
        return calendars

    # =========================================================================
    # Events
    # =========================================================================

    async def _list_calendar_events(self, calendar_id: str, query: EventQuery) -> list[CalendarEvent]:
        params: dict[str, Any] = {
            "timeMin": to_iso(query.start_time),
            "timeMax": to_iso(query.end_time),
            "singleEvents": "true" if query.expand_recurring else "false",
            "maxResults": min(query.max_results or PAGE_SIZE, PAGE_SIZE),
        }
        if query.expand_recurring:
            params["orderBy"] = "updated" if query.order_by == "updated" else "startTime"
        if query.search_query:
            params["q"] = query.search_query

        events: list[CalendarEvent] = []
        url = f"{self._calendar_path(calendar_id)}/events"
        while True:
            data = await self._make_request("GET", url, params=params) or {}
            for item in data.get("items", []):
                if item.get("status") == "cancelled":
                    continue
                try:
                    events.append(map_google_event(item, calendar_id))
                except InvalidInputError as e:
                    logger.warning(f"Skipping malformed Google event {item.get('id')}: {e.message}")

            token = data.get("nextPageToken")
            if not token or (query.max_results and len(events) >= query.max_results):
                return events
            params["pageToken"] = token

    async def list_events(self, query: EventQuery) -> list[CalendarEvent]:
        async def run() -> list[CalendarEvent]:
            calendars = await self._target_calendars(query.calendar_ids)
            batches = await asyncio.gather(
                *(self._list_calendar_events(c.id, query) for c in calendars)
            )
            events = [e for batch in batches for e in batch]
            events.sort(key=lambda e: e.start_dt)
            if query.max_results:
                events = events[: query.max_results]
            return events

        return await self.execute_with_error_handling("listEvents", run)

    async def get_event(self, event_id: str, calendar_id: str | None = None) -> CalendarEvent:
        target = calendar_id or "primary"

        async def run() -> CalendarEvent:
            data = await self._make_request("GET", f"{self._calendar_path(target)}/events/{quote(event_id, safe='')}")
            return map_google_event(data, target)

        return await self.execute_with_error_handling("getEvent", run)

    async def create_event(self, params: CreateEventParams, calendar_id: str | None = None) -> CalendarEvent:
        target = calendar_id or "primary"

        async def run() -> CalendarEvent:
            query: dict[str, Any] = {"sendUpdates": "all" if params.send_invites else "none"}
            body = to_google_event(params)
            if "conferenceData" in body:
                query["conferenceDataVersion"] = 1
            data = await self._make_request(
                "POST", f"{self._calendar_path(target)}/events", json=body, params=query
            )
            return map_google_event(data, target)

        return await self.execute_with_error_handling("createEvent", run)

    async def update_event(
        self, event_id: str, updates: UpdateEventParams, calendar_id: str | None = None
    ) -> CalendarEvent:
        target = calendar_id or "primary"

        async def run() -> CalendarEvent:
            if updates.update_scope == ChangeScope.THIS_AND_FUTURE:
                logger.warning(
                    'Google Calendar does not natively support "thisAndFuture" - updating single instance'
                )
            data = await self._make_request(
                "PATCH",
                f"{self._calendar_path(target)}/events/{quote(event_id, safe='')}",
                json=to_google_event_patch(updates),
                params={"sendUpdates": "all" if updates.send_updates else "none"},
            )
            return map_google_event(data, target)

        return await self.execute_with_error_handling("updateEvent", run)

    async def delete_event(
        self, event_id: str, options: DeleteOptions | None = None, calendar_id: str | None = None
    ) -> None:
        target = calendar_id or "primary"
        options = options or DeleteOptions()

        async def run() -> None:
            # Instance IDs look like <seriesId>_<timestamp>
            if options.delete_scope == ChangeScope.SINGLE and "_" not in event_id:
                logger.warning("Deleting single instance requires instance ID - deleting entire series")
            await self._make_request(
                "DELETE",
                f"{self._calendar_path(target)}/events/{quote(event_id, safe='')}",
                params={"sendUpdates": "all" if options.send_cancellation else "none"},
            )

        await self.execute_with_error_handling("deleteEvent", run)

    # =========================================================================
    # Availability and responses
    # =========================================================================

    async def get_free_busy(self, query: FreeBusyQuery) -> CalendarFreeBusy:
        async def run() -> CalendarFreeBusy:
            calendars = await self._target_calendars(query.calendar_ids)
            body = {
                "timeMin": to_iso(query.start_time),
                "timeMax": to_iso(query.end_time),
                "items": [{"id": c.id} for c in calendars],
            }
            data = await self._make_request("POST", f"{CALENDAR_API_BASE}/freeBusy", json=body) or {}

            busy = []
            for calendar_data in data.get("calendars", {}).values():
                for slot in calendar_data.get("busy", []):
                    if slot.get("start") and slot.get("end"):
                        busy.append(BusySlot(
                            start=parse_datetime(slot["start"]),
                            end=parse_datetime(slot["end"]),
                            status=BusyStatus.BUSY,
                        ))

            primary = next((c for c in calendars if c.is_primary), None)
            return CalendarFreeBusy(
                provider=ProviderType.GOOGLE,
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
        target = calendar_id or "primary"
        response = ResponseType(response)

        async def run() -> None:
            url = f"{self._calendar_path(target)}/events/{quote(event_id, safe='')}"
            event = await self._make_request("GET", url)
            attendees = event.get("attendees", [])
            me = next((a for a in attendees if a.get("self")), None)
            if me is None:
                raise InvalidInputError("You are not an attendee of this event", provider="google")
            me["responseStatus"] = response.value
            if message:
                me["comment"] = message
            await self._make_request("PATCH", url, json={"attendees": attendees})

        await self.execute_with_error_handling("respondToEvent", run)
