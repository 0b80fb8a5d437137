"""
Tool: Sync Service
Purpose: Match, compare and copy events between calendars on different providers

Events are paired by a weighted similarity score (subject, times, location,
all-day flag, iCalendar UID). Comparison assigns pairs greedily: each source
event, in order, takes its best unclaimed target scoring at least 0.5.

Usage:
    from calbridge.services.sync import SyncService

    sync = SyncService(calendar_service)
    comparison = await sync.compare_calendars(SyncQuery(
        source_provider="google", target_provider="microsoft",
        start_time="2026-10-19", end_time="2026-10-26",
    ))
    print(comparison.statistics)
"""

from __future__ import annotations

import asyncio

from calbridge.datetime_utils import round_half_up
from calbridge.errors import wrap_error
from calbridge.logging_config import get_logger
from calbridge.models import (
    CONFIDENCE_FLOORS,
    AttendeeInput,
    CalendarComparison,
    CalendarEvent,
    CopyEventRequest,
    CopyEventResult,
    CreateEventParams,
    EventMatch,
    EventQuery,
    MatchFactor,
    ProviderType,
    SyncQuery,
    confidence_for_score,
)
from calbridge.services.calendar_service import CalendarService

logger = get_logger(__name__)

# Factor weights
SUBJECT_WEIGHT = 30
START_WEIGHT = 25
END_WEIGHT = 20
LOCATION_WEIGHT = 10
ALL_DAY_WEIGHT = 10
ICAL_UID_WEIGHT = 5

EXACT_TIME_SECONDS = 60
NEAR_TIME_SECONDS = 300
FUZZY_MATCH_THRESHOLD = 0.8
COMPARE_MIN_SCORE = 0.5


def levenshtein(a: str, b: str) -> int:
    """Edit distance (insert, delete, substitute) between two strings."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


def fuzzy_match(first: str | None, second: str | None) -> float:
    """
    Similarity in [0, 1] from normalized edit distance.

    Two empty values are identical; one empty value matches nothing.
    Comparison ignores case and surrounding whitespace.
    """
    if not first and not second:
        return 1.0
    if not first or not second:
        return 0.0

    s1 = first.lower().strip()
    s2 = second.lower().strip()
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0

    return 1 - levenshtein(s1, s2) / max(len(s1), len(s2))


def _time_factor(name: str, weight: int, source_dt, target_dt) -> tuple[MatchFactor, float]:
    diff = abs((source_dt - target_dt).total_seconds())
    matched = diff <= EXACT_TIME_SECONDS
    score = 1.0 if matched else 0.5 if diff <= NEAR_TIME_SECONDS else 0.0
    details = "exact" if matched else f"{round_half_up(diff / 60)}min difference"
    return MatchFactor(factor=name, weight=weight, matched=matched, details=details), score


def calculate_match(source: CalendarEvent, target: CalendarEvent) -> EventMatch:
    """
    Score how likely two events are the same meeting.

    score = sum(weight * factor score) / sum(weight) over the factors that
    apply. Location only counts when either event has one; the iCalendar
    UID only when both have one.

    Args:
        source: Event from the source calendar
        target: Event from the target calendar

    Returns:
        EventMatch with score, confidence and per-factor breakdown
    """
    factors: list[MatchFactor] = []
    total_weight = 0
    matched_weight = 0.0

    def add(factor: MatchFactor, score: float) -> None:
        nonlocal total_weight, matched_weight
        factors.append(factor)
        total_weight += factor.weight
        matched_weight += factor.weight * score

    subject = fuzzy_match(source.subject, target.subject)
    add(MatchFactor(
        factor="subject",
        weight=SUBJECT_WEIGHT,
        matched=subject >= FUZZY_MATCH_THRESHOLD,
        details=f"{round_half_up(subject * 100)}% similar",
    ), subject)

    add(*_time_factor("startTime", START_WEIGHT, source.start_dt, target.start_dt))
    add(*_time_factor("endTime", END_WEIGHT, source.end_dt, target.end_dt))

    if source.location or target.location:
        location = fuzzy_match(source.location, target.location)
        add(MatchFactor(
            factor="location",
            weight=LOCATION_WEIGHT,
            matched=location >= FUZZY_MATCH_THRESHOLD,
            details=(
                f"{round_half_up(location * 100)}% similar"
                if source.location and target.location else "one or both missing"
            ),
        ), location)

    all_day = source.is_all_day == target.is_all_day
    add(MatchFactor(
        factor="isAllDay",
        weight=ALL_DAY_WEIGHT,
        matched=all_day,
        details="same" if all_day else "different",
    ), 1.0 if all_day else 0.0)

    if source.ical_uid and target.ical_uid:
        same_uid = source.ical_uid == target.ical_uid
        add(MatchFactor(
            factor="iCalUId",
            weight=ICAL_UID_WEIGHT,
            matched=same_uid,
            details="exact match" if same_uid else "different",
        ), 1.0 if same_uid else 0.0)

    score = matched_weight / total_weight if total_weight else 0.0
    return EventMatch(
        source_event=source,
        target_event=target,
        score=score,
        confidence=confidence_for_score(score),
        factors=factors,
    )


class SyncService:
    """Cross-provider event matching, comparison and copying."""

    def __init__(self, calendar_service: CalendarService):
        self.calendar_service = calendar_service

    calculate_match = staticmethod(calculate_match)
    fuzzy_match = staticmethod(fuzzy_match)

    async def _list_side(
        self, provider: ProviderType, calendar_id: str | None, query: SyncQuery
    ) -> list[CalendarEvent]:
        result = await self.calendar_service.list_all_events(EventQuery(
            start_time=query.start_time,
            end_time=query.end_time,
            providers=[provider],
            calendar_ids=[calendar_id] if calendar_id else None,
        ))
        result.raise_for_errors()
        return result.events

    async def _list_both(self, query: SyncQuery) -> tuple[list[CalendarEvent], list[CalendarEvent]]:
        source, target = await asyncio.gather(
            self._list_side(query.source_provider, query.source_calendar_id, query),
            self._list_side(query.target_provider, query.target_calendar_id, query),
        )
        return source, target

    async def find_matching_events(self, query: SyncQuery) -> list[EventMatch]:
        """
        Score every source/target pair and keep those above a confidence floor.

        Args:
            query: Both calendars, the range and min_confidence
                   (high 0.8, medium 0.5, low 0.3)

        Returns:
            EventMatches sorted by score, best first

        Raises:
            CalendarError: Listing either side failed
        """
        source_events, target_events = await self._list_both(query)
        floor = CONFIDENCE_FLOORS[query.min_confidence]

        matches = []
        for source in source_events:
            for target in target_events:
                match = calculate_match(source, target)
                if match.score >= floor:
                    matches.append(match)

        matches.sort(key=lambda m: m.score, reverse=True)
        logger.info(
            "events_matched",
            source=len(source_events),
            target=len(target_events),
            matches=len(matches),
            min_confidence=query.min_confidence.value,
        )
        return matches

    async def compare_calendars(self, query: SyncQuery) -> CalendarComparison:
        """
        Pair up events between two calendars and report the leftovers.

        Assignment is greedy and order-dependent: source events are visited
        in listing order and each claims its best unclaimed target scoring
        at least 0.5. Ties keep the earlier target.

        Raises:
            CalendarError: Listing either side failed
        """
        source_events, target_events = await self._list_both(query)

        matches: list[EventMatch] = []
        matched_sources: set[int] = set()
        claimed_targets: set[int] = set()

        for i, source in enumerate(source_events):
            best: EventMatch | None = None
            best_index = -1
            for j, target in enumerate(target_events):
                if j in claimed_targets:
                    continue
                match = calculate_match(source, target)
                if match.score >= COMPARE_MIN_SCORE and (best is None or match.score > best.score):
                    best, best_index = match, j
            if best is not None:
                matches.append(best)
                matched_sources.add(i)
                claimed_targets.add(best_index)

        comparison = CalendarComparison(
            source_provider=query.source_provider,
            target_provider=query.target_provider,
            source_calendar_id=query.source_calendar_id or "primary",
            target_calendar_id=query.target_calendar_id or "primary",
            start_time=query.start_time,
            end_time=query.end_time,
            matches=matches,
            source_only=[e for i, e in enumerate(source_events) if i not in matched_sources],
            target_only=[e for j, e in enumerate(target_events) if j not in claimed_targets],
            total_source_events=len(source_events),
            total_target_events=len(target_events),
        )
        logger.info("calendars_compared", **comparison.statistics)
        return comparison

    async def copy_event(self, request: CopyEventRequest) -> CopyEventResult:
        """
        Copy one event to a calendar on another provider.

        Attendees are copied only when requested and no invitations are
        sent. Failures are returned in the result, never raised.
        """
        source_event = None
        try:
            source_event = await self.calendar_service.get_event(
                request.source_provider, request.source_event_id, request.source_calendar_id
            )

            attendees = None
            if request.include_attendees and source_event.attendees:
                attendees = [
                    AttendeeInput(email=a.email, name=a.name, type=a.type)
                    for a in source_event.attendees
                ]

            params = CreateEventParams(
                subject=source_event.subject,
                start_time=source_event.start_dt,
                end_time=source_event.end_dt,
                timezone=source_event.start.timezone,
                is_all_day=source_event.is_all_day,
                location=source_event.location,
                body=source_event.body if request.include_body else None,
                body_type=source_event.body_type,
                attendees=attendees,
                show_as=source_event.show_as,
                sensitivity=source_event.sensitivity,
                send_invites=False,
            )

            copied = await self.calendar_service.create_event(
                request.target_provider, params, request.target_calendar_id
            )
        except Exception as e:
            error = wrap_error(e, operation="copyEvent")
            logger.warning(
                "event_copy_failed",
                source_event_id=request.source_event_id,
                target_provider=request.target_provider.value,
                kind=error.kind.value,
                error=error.message,
            )
            return CopyEventResult(
                success=False,
                source_event_id=request.source_event_id,
                source_event=source_event,
                error=error.message,
                error_kind=error.kind.value,
            )

        logger.info(
            "event_copied",
            source_event_id=request.source_event_id,
            copied_event_id=copied.id,
            target_provider=request.target_provider.value,
        )
        return CopyEventResult(
            success=True,
            source_event_id=request.source_event_id,
            source_event=source_event,
            copied_event=copied,
        )
