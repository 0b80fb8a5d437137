"""
Tool: Conflict Detector
Purpose: Check a proposed time against every calendar and suggest the next free slot

Usage:
    from calbridge.services.conflicts import ConflictDetector

    detector = ConflictDetector(calendar_service)
    result = await detector.check_conflicts("2026-10-19T14:00", "2026-10-19T15:00")
    if result.has_conflict and result.suggestion:
        print(result.suggestion.reason)
"""

from __future__ import annotations

from datetime import datetime, timedelta

from calbridge.datetime_utils import (
    DateTimeLike,
    Interval,
    format_date_medium,
    parse_datetime,
    ranges_overlap,
    same_day,
)
from calbridge.errors import InvalidInputError
from calbridge.logging_config import get_logger
from calbridge.models import (
    CalendarEvent,
    ConflictCheckResult,
    ConflictingEvent,
    EventQuery,
    ProviderType,
    ShowAs,
    SlotSuggestion,
    parse_provider_type,
)
from calbridge.services.calendar_service import CalendarService

logger = get_logger(__name__)

BUFFER_MINUTES = 60
SEARCH_HORIZON_DAYS = 7


def find_alternative_slot(
    proposed_start: datetime,
    proposed_end: datetime,
    busy: list[Interval],
) -> SlotSuggestion | None:
    """
    Find the next slot of the same length that avoids every busy interval.

    The search walks forward from the proposed start, jumping past each
    busy interval it hits, and gives up after SEARCH_HORIZON_DAYS.

    Args:
        proposed_start: Start of the requested slot
        proposed_end: End of the requested slot
        busy: Busy intervals (sorted or not)

    Returns:
        SlotSuggestion, or None if nothing fits within the horizon
    """
    zone = proposed_start.tzinfo
    duration = proposed_end - proposed_start
    search_end = proposed_start + timedelta(days=SEARCH_HORIZON_DAYS)
    busy = sorted(busy, key=lambda b: b[0])

    cursor = proposed_start
    while cursor < search_end:
        slot_end = cursor + duration

        conflict = False
        for start, end in busy:
            if cursor < end and slot_end > start:
                conflict = True
                cursor = end.astimezone(zone)
                break

        if not conflict:
            if same_day(proposed_start, cursor):
                reason = "Next available slot today"
            else:
                reason = f"Next available slot on {format_date_medium(cursor)}"
            return SlotSuggestion(start=cursor, end=slot_end, reason=reason)

        # Guarantee forward progress
        if cursor <= proposed_start:
            cursor = proposed_end

    return None


class ConflictDetector:
    """Detects overlaps between a proposed time and existing events."""

    def __init__(self, calendar_service: CalendarService):
        self.calendar_service = calendar_service

    async def check_conflicts(
        self,
        start_time: DateTimeLike,
        end_time: DateTimeLike,
        exclude_event_id: str | None = None,
        exclude_provider: ProviderType | str | None = None,
    ) -> ConflictCheckResult:
        """
        Check a proposed time slot against all connected calendars.

        Events shown as free never conflict. When a conflict is found, the
        next free slot of the same length is suggested.

        Args:
            start_time: Proposed start
            end_time: Proposed end
            exclude_event_id: Event to ignore (the one being rescheduled)
            exclude_provider: Only ignore exclude_event_id on this provider

        Returns:
            ConflictCheckResult

        Raises:
            InvalidInputError: start_time is not before end_time
            CalendarError: A provider failed while listing events
        """
        proposed_start = parse_datetime(start_time)
        proposed_end = parse_datetime(end_time)
        if proposed_start >= proposed_end:
            raise InvalidInputError("start_time must be before end_time")
        if exclude_provider is not None:
            exclude_provider = parse_provider_type(exclude_provider)

        listed = await self.calendar_service.list_all_events(EventQuery(
            start_time=proposed_start - timedelta(minutes=BUFFER_MINUTES),
            end_time=proposed_end + timedelta(minutes=BUFFER_MINUTES),
            expand_recurring=True,
        ))
        listed.raise_for_errors()

        candidates = [
            e for e in listed.events
            if not self._is_excluded(e, exclude_event_id, exclude_provider)
            and e.show_as != ShowAs.FREE
        ]
        conflicts = [
            e for e in candidates
            if ranges_overlap(proposed_start, proposed_end, e.start_dt, e.end_dt)
        ]

        result = ConflictCheckResult(
            has_conflict=bool(conflicts),
            conflicts=[ConflictingEvent.from_event(e) for e in conflicts],
        )

        if conflicts:
            result.suggestion = find_alternative_slot(
                proposed_start,
                proposed_end,
                [(e.start_dt, e.end_dt) for e in candidates],
            )
            logger.info(
                "conflicts_found",
                conflicts=len(conflicts),
                suggestion=result.suggestion.start.isoformat() if result.suggestion else None,
            )

        return result

    @staticmethod
    def _is_excluded(
        event: CalendarEvent,
        exclude_event_id: str | None,
        exclude_provider: ProviderType | None,
    ) -> bool:
        if not exclude_event_id or event.id != exclude_event_id:
            return False
        return exclude_provider is None or event.provider == exclude_provider

    async def check_event_conflicts(self, event: CalendarEvent) -> ConflictCheckResult:
        """Check whether an existing event overlaps anything else."""
        return await self.check_conflicts(
            event.start_dt,
            event.end_dt,
            exclude_event_id=event.id,
            exclude_provider=event.provider,
        )

    async def check_reschedule_conflicts(
        self,
        event_id: str,
        provider: ProviderType | str,
        new_start_time: DateTimeLike,
        new_end_time: DateTimeLike,
    ) -> ConflictCheckResult:
        """Check a new time for an event, ignoring the event itself."""
        return await self.check_conflicts(
            new_start_time,
            new_end_time,
            exclude_event_id=event_id,
            exclude_provider=provider,
        )
