#!/usr/bin/env python3
"""
calbridge Command Line Interface

Main entry point for the `calbridge` command. Every command builds the
provider registry from configuration, connects, runs one operation, prints
JSON and disconnects.

Usage:
    calbridge calendars
    calbridge events --start 2026-10-19 --end 2026-10-26 --provider google
    calbridge free-busy --start 2026-10-19T09:00 --end 2026-10-19T17:00 --duration 30
    calbridge conflicts --start 2026-10-19T14:00 --end 2026-10-19T15:00
    calbridge match --source google --target microsoft --start 2026-10-19 --end 2026-10-26
    calbridge compare --source google --target microsoft --start 2026-10-19 --end 2026-10-26
    calbridge copy --source google --target exchange --event-id abc123
    calbridge health
    calbridge --version
"""

import argparse
import asyncio
import json
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

from calbridge import __version__
from calbridge.config import get_config, load_config, set_config
from calbridge.errors import CalendarError, format_error
from calbridge.logging_config import get_logger, setup_logging
from calbridge.models import (
    CopyEventRequest,
    EventQuery,
    FreeBusyQuery,
    SyncQuery,
    WorkingHours,
)
from calbridge.providers import ProviderRegistry, build_registry
from calbridge.services import CalendarService, ConflictDetector, FreeBusyService, SyncService

logger = get_logger(__name__)

PROVIDER_CHOICES = ["google", "microsoft", "exchange"]


class Services:
    """The registry plus one instance of each service, wired together."""

    def __init__(self, registry: ProviderRegistry):
        self.registry = registry
        self.calendar = CalendarService(registry)
        self.free_busy = FreeBusyService(registry)
        self.conflicts = ConflictDetector(self.calendar)
        self.sync = SyncService(self.calendar)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


async def _run(operation: Callable[[Services], Awaitable[Any]], connect: bool = True) -> Any:
    registry = build_registry(get_config())
    try:
        if connect:
            summary = await registry.connect_all()
            if summary["failed"]:
                logger.warning("providers_unavailable", failed=summary["failed"])
        return await operation(Services(registry))
    finally:
        await registry.disconnect_all()


def _execute(operation: Callable[[Services], Awaitable[Any]], connect: bool = True) -> int:
    """Run an operation and print its result; returns the process exit code."""
    try:
        result = asyncio.run(_run(operation, connect))
    except CalendarError as e:
        print(format_error(e), file=sys.stderr)
        _print_json(e.to_dict())
        return 1

    _print_json(result)
    if isinstance(result, dict) and result.get("success") is False:
        return 1
    return 0


# =============================================================================
# Commands
# =============================================================================


def cmd_calendars(args):
    """List calendars across connected providers."""

    async def op(services: Services) -> dict[str, Any]:
        result = await services.calendar.list_all_calendars(args.provider)
        return {
            "calendars": [c.to_dict() for c in result["calendars"]],
            "errors": [e.to_dict() for e in result["errors"]],
        }

    return _execute(op)


def cmd_events(args):
    """List events in a time range."""
    query = EventQuery(
        start_time=args.start,
        end_time=args.end,
        providers=args.provider,
        calendar_ids=args.calendar,
        search_query=args.search,
        max_results=args.limit,
    )

    async def op(services: Services) -> dict[str, Any]:
        result = await services.calendar.list_all_events(query)
        return result.to_dict()

    return _execute(op)


def cmd_free_busy(args):
    """Aggregated availability, optionally with meeting slot suggestions."""
    working_hours = None
    if args.work_start or args.work_end:
        defaults = WorkingHours()
        working_hours = WorkingHours(
            start=args.work_start or defaults.start,
            end=args.work_end or defaults.end,
        )
    query = FreeBusyQuery(
        start_time=args.start,
        end_time=args.end,
        providers=args.provider,
        slot_duration=args.duration,
        working_hours_only=args.working_hours_only,
        working_hours=working_hours,
    )

    async def op(services: Services) -> dict[str, Any]:
        result = await services.free_busy.get_aggregated_free_busy(query)
        return result.to_dict()

    return _execute(op)


def cmd_conflicts(args):
    """Check a proposed time for conflicts."""

    async def op(services: Services) -> dict[str, Any]:
        result = await services.conflicts.check_conflicts(
            args.start,
            args.end,
            exclude_event_id=args.exclude_event,
            exclude_provider=args.exclude_provider,
        )
        return result.to_dict()

    return _execute(op)


def _sync_query(args) -> SyncQuery:
    return SyncQuery(
        source_provider=args.source,
        target_provider=args.target,
        start_time=args.start,
        end_time=args.end,
        source_calendar_id=args.source_calendar,
        target_calendar_id=args.target_calendar,
        min_confidence=getattr(args, "min_confidence", None) or "low",
    )


def cmd_match(args):
    """Find likely duplicate events between two providers."""
    query = _sync_query(args)

    async def op(services: Services) -> dict[str, Any]:
        matches = await services.sync.find_matching_events(query)
        return {"count": len(matches), "matches": [m.to_dict() for m in matches]}

    return _execute(op)


def cmd_compare(args):
    """Compare two calendars."""
    query = _sync_query(args)

    async def op(services: Services) -> dict[str, Any]:
        comparison = await services.sync.compare_calendars(query)
        return comparison.to_dict()

    return _execute(op)


def cmd_copy(args):
    """Copy one event to another provider."""
    request = CopyEventRequest(
        source_provider=args.source,
        source_event_id=args.event_id,
        target_provider=args.target,
        source_calendar_id=args.source_calendar,
        target_calendar_id=args.target_calendar,
        include_attendees=args.include_attendees,
        include_body=not args.no_body,
    )

    async def op(services: Services) -> dict[str, Any]:
        result = await services.sync.copy_event(request)
        return result.to_dict()

    return _execute(op)


def cmd_health(args):
    """Connect every configured provider and report its status."""

    async def op(services: Services) -> dict[str, Any]:
        statuses = services.registry.get_health_status()
        return {
            "providers": [s.to_dict() for s in statuses],
            "connected": sum(1 for s in statuses if s.connected),
            "total": len(statuses),
        }

    return _execute(op)


# =============================================================================
# Entry point
# =============================================================================


def _add_range(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--start", required=True, help="Range start (ISO 8601)")
    parser.add_argument("--end", required=True, help="Range end (ISO 8601)")


def _add_sync_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--source", required=True, choices=PROVIDER_CHOICES, help="Source provider")
    parser.add_argument("--target", required=True, choices=PROVIDER_CHOICES, help="Target provider")
    parser.add_argument("--source-calendar", help="Source calendar ID")
    parser.add_argument("--target-calendar", help="Target calendar ID")


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="calbridge",
        description="calbridge - one interface over Google, Microsoft 365 and Exchange calendars",
    )
    parser.add_argument("--version", "-V", action="store_true", help="Show version and exit")
    parser.add_argument("--config", type=Path, help="Config file (default: args/calbridge.yaml)")
    parser.add_argument("--log-level", help="Log level (default: CALBRIDGE_LOG_LEVEL or INFO)")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # calendars
    calendars_parser = subparsers.add_parser("calendars", help="List calendars")
    calendars_parser.add_argument(
        "--provider", action="append", choices=PROVIDER_CHOICES, help="Restrict to provider (repeatable)"
    )
    calendars_parser.set_defaults(func=cmd_calendars)

    # events
    events_parser = subparsers.add_parser("events", help="List events in a time range")
    _add_range(events_parser)
    events_parser.add_argument(
        "--provider", action="append", choices=PROVIDER_CHOICES, help="Restrict to provider (repeatable)"
    )
    events_parser.add_argument("--calendar", action="append", help="Restrict to calendar ID (repeatable)")
    events_parser.add_argument("--search", help="Subject search text")
    events_parser.add_argument("--limit", type=int, help="Maximum events")
    events_parser.set_defaults(func=cmd_events)

    # free-busy
    free_busy_parser = subparsers.add_parser("free-busy", help="Aggregated availability")
    _add_range(free_busy_parser)
    free_busy_parser.add_argument(
        "--provider", action="append", choices=PROVIDER_CHOICES, help="Restrict to provider (repeatable)"
    )
    free_busy_parser.add_argument("--duration", type=int, help="Suggest slots of this many minutes")
    free_busy_parser.add_argument(
        "--working-hours-only", action="store_true", help="Clip free time to working hours"
    )
    free_busy_parser.add_argument("--work-start", help="Working hours start (HH:MM)")
    free_busy_parser.add_argument("--work-end", help="Working hours end (HH:MM)")
    free_busy_parser.set_defaults(func=cmd_free_busy)

    # conflicts
    conflicts_parser = subparsers.add_parser("conflicts", help="Check a proposed time for conflicts")
    _add_range(conflicts_parser)
    conflicts_parser.add_argument("--exclude-event", help="Event ID to ignore (rescheduling)")
    conflicts_parser.add_argument(
        "--exclude-provider", choices=PROVIDER_CHOICES, help="Provider of the excluded event"
    )
    conflicts_parser.set_defaults(func=cmd_conflicts)

    # match
    match_parser = subparsers.add_parser("match", help="Find matching events across providers")
    _add_sync_args(match_parser)
    _add_range(match_parser)
    match_parser.add_argument(
        "--min-confidence", choices=["high", "medium", "low"], default="low", help="Confidence floor"
    )
    match_parser.set_defaults(func=cmd_match)

    # compare
    compare_parser = subparsers.add_parser("compare", help="Compare two calendars")
    _add_sync_args(compare_parser)
    _add_range(compare_parser)
    compare_parser.set_defaults(func=cmd_compare)

    # copy
    copy_parser = subparsers.add_parser("copy", help="Copy an event to another provider")
    _add_sync_args(copy_parser)
    copy_parser.add_argument("--event-id", required=True, help="Source event ID")
    copy_parser.add_argument("--include-attendees", action="store_true", help="Copy attendees too")
    copy_parser.add_argument("--no-body", action="store_true", help="Do not copy the description")
    copy_parser.set_defaults(func=cmd_copy)

    # health
    health_parser = subparsers.add_parser("health", help="Provider connection status")
    health_parser.set_defaults(func=cmd_health)

    args = parser.parse_args()

    if args.version:
        print(f"calbridge {__version__}")
        return

    if not args.command:
        parser.print_help()
        return

    setup_logging(level=args.log_level)
    if args.config:
        set_config(load_config(args.config))

    try:
        result = args.func(args)
    except CalendarError as e:
        # Argument parsing into models (bad dates, zones)
        print(format_error(e), file=sys.stderr)
        result = 1

    if isinstance(result, int) and result != 0:
        sys.exit(result)


if __name__ == "__main__":
    main()
