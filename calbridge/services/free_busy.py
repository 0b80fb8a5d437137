"""
Tool: Free/Busy Service
Purpose: Aggregate availability across every connected calendar provider

Busy time from all providers is merged into one timeline; free time is
whatever the range leaves uncovered. Optionally the free time is clipped to
working hours and the first few slots that fit a meeting are suggested.

Usage:
    from calbridge.services.free_busy import FreeBusyService

    service = FreeBusyService(registry)
    result = await service.get_aggregated_free_busy(
        FreeBusyQuery(start_time="2026-10-19T09:00", end_time="2026-10-19T17:00", slot_duration=30)
    )
    for slot in result.suggested_slots or []:
        print(slot.start, slot.end)
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

from calbridge.datetime_utils import find_gaps, get_working_hours_for_day, start_of_day
from calbridge.errors import ProviderError
from calbridge.logging_config import get_logger
from calbridge.models import (
    BusySlot,
    BusyStatus,
    FreeBusyQuery,
    FreeBusyResult,
    FreeSlot,
    WorkingHours,
    parse_provider_type,
)
from calbridge.providers import ProviderRegistry

logger = get_logger(__name__)

MAX_SUGGESTIONS = 5


def merge_busy_slots(slots: list[BusySlot]) -> list[BusySlot]:
    """
    Merge overlapping or abutting busy slots into one timeline.

    When slots coalesce, a busy side wins; otherwise the later slot's status
    is carried (tentative then oof gives oof).

    Args:
        slots: Busy slots from any number of providers, in any order

    Returns:
        Sorted, non-overlapping BusySlots
    """
    if not slots:
        return []

    ordered = sorted(slots, key=lambda s: s.start)
    merged: list[BusySlot] = []
    current = BusySlot(start=ordered[0].start, end=ordered[0].end, status=ordered[0].status)

    for slot in ordered[1:]:
        if slot.start <= current.end:
            if slot.end > current.end:
                current.end = slot.end
            if slot.status == BusyStatus.BUSY or current.status != BusyStatus.BUSY:
                current.status = slot.status
        else:
            merged.append(current)
            current = BusySlot(start=slot.start, end=slot.end, status=slot.status)

    merged.append(current)
    return merged


def compute_free_slots(busy: list[BusySlot], range_start: datetime, range_end: datetime) -> list[FreeSlot]:
    """Gaps in the busy timeline, expressed in the zone of range_start."""
    zone = range_start.tzinfo
    gaps = find_gaps(((b.start, b.end) for b in busy), range_start, range_end)
    return [FreeSlot(start=s.astimezone(zone), end=e.astimezone(zone)) for s, e in gaps]


def filter_to_working_hours(
    free_slots: list[FreeSlot],
    working_hours: WorkingHours | None = None,
) -> list[FreeSlot]:
    """
    Clip free slots to working hours, one calendar day at a time.

    Non-working days contribute nothing. A slot spanning several days can
    yield one piece per working day.
    """
    result: list[FreeSlot] = []

    for slot in free_slots:
        cursor = start_of_day(slot.start)
        while cursor < slot.end:
            window = get_working_hours_for_day(cursor, working_hours)
            if window is not None:
                effective_start = max(slot.start, window[0])
                effective_end = min(slot.end, window[1])
                if effective_start < effective_end:
                    result.append(FreeSlot(start=effective_start, end=effective_end))
            cursor = cursor + timedelta(days=1)

    return result


class FreeBusyService:
    """Aggregated availability across providers."""

    def __init__(self, registry: ProviderRegistry):
        self.registry = registry

    async def get_aggregated_free_busy(self, query: FreeBusyQuery) -> FreeBusyResult:
        """
        Get merged busy/free time across every matching connected provider.

        Args:
            query: Range, provider filter, optional working-hours clip and
                   optional slot duration (minutes) for suggestions

        Returns:
            FreeBusyResult. Provider failures are listed in errors; the
            remaining providers still contribute.
        """
        providers = self.registry.get_connected()
        if query.providers:
            wanted = {parse_provider_type(p) for p in query.providers}
            providers = [p for p in providers if p.provider_type in wanted]

        if not providers:
            return FreeBusyResult()

        results = await asyncio.gather(
            *(p.get_free_busy(query) for p in providers), return_exceptions=True
        )

        result = FreeBusyResult()
        all_busy: list[BusySlot] = []
        for provider, outcome in zip(providers, results):
            if isinstance(outcome, BaseException):
                error = ProviderError.from_exception(
                    outcome, provider=provider.provider_type.value, provider_id=provider.provider_id
                )
                logger.warning(
                    "free_busy_provider_failed",
                    provider=error.provider,
                    provider_id=error.provider_id,
                    kind=error.kind.value,
                    error=error.message,
                )
                result.errors.append(error)
                continue
            # Calendar ids such as "primary" repeat across accounts
            result.calendars[provider.provider_id] = outcome
            all_busy.extend(outcome.busy)

        result.busy = merge_busy_slots(all_busy)
        free = compute_free_slots(result.busy, query.start_time, query.end_time)

        if query.working_hours_only:
            free = filter_to_working_hours(free, query.working_hours)
        result.free = free

        if query.slot_duration:
            result.suggested_slots = self.find_suggested_slots(free, query.slot_duration)

        logger.info(
            "free_busy_aggregated",
            providers=len(providers),
            busy_slots=len(result.busy),
            free_slots=len(result.free),
            errors=len(result.errors),
        )
        return result

    def find_suggested_slots(
        self,
        free_slots: list[FreeSlot],
        duration: int,
        max_suggestions: int = MAX_SUGGESTIONS,
    ) -> list[FreeSlot]:
        """
        Suggest meeting slots: the start of each free slot long enough.

        Args:
            free_slots: Free slots in chronological order
            duration: Meeting length in minutes
            max_suggestions: Cap on the number of suggestions

        Returns:
            Up to max_suggestions FreeSlots of exactly `duration` minutes
        """
        suggested: list[FreeSlot] = []
        for slot in free_slots:
            if slot.duration_minutes < duration:
                continue
            suggested.append(FreeSlot(
                start=slot.start,
                end=slot.start + timedelta(minutes=duration),
                duration_minutes=duration,
            ))
            if len(suggested) >= max_suggestions:
                break
        return suggested
