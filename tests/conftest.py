"""Shared test fixtures for calbridge tests.

This module provides common fixtures used across all test modules:
- A configuration pinned to UTC with default working hours
- An in-memory FakeProvider implementing the provider interface
- Event factories

Usage:
    async def test_something(registry):
        provider = FakeProvider(events=[make_event("e1", "Standup", "2026-10-19T09:00", "2026-10-19T09:15")])
        registry.register(provider)
        await provider.connect()
"""

from __future__ import annotations

import itertools
from types import SimpleNamespace

import pytest

from calbridge.config import CalbridgeConfig, DefaultsConfig, reset_config, set_config
from calbridge.datetime_utils import parse_datetime, ranges_overlap
from calbridge.errors import NotFoundError
from calbridge.models import (
    Attendee,
    BusySlot,
    BusyStatus,
    Calendar,
    CalendarEvent,
    CalendarFreeBusy,
    EventTime,
    ProviderType,
    ResponseType,
    ShowAs,
)
from calbridge.providers import CalendarProvider, ProviderRegistry


# ─────────────────────────────────────────────────────────────────────────────
# Configuration
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def utc_config():
    """Pin the default zone to UTC so expected instants are easy to read."""
    config = CalbridgeConfig(defaults=DefaultsConfig(timezone="UTC"))
    set_config(config)
    yield config
    reset_config()


# ─────────────────────────────────────────────────────────────────────────────
# Event factories
# ─────────────────────────────────────────────────────────────────────────────


_ids = itertools.count(1)


def make_event(
    event_id: str | None = None,
    subject: str = "Meeting",
    start: str = "2026-10-19T14:00",
    end: str = "2026-10-19T15:00",
    provider: ProviderType | str = ProviderType.GOOGLE,
    timezone: str = "UTC",
    **kwargs,
) -> CalendarEvent:
    """Build a CalendarEvent from short ISO strings (wall-clock in `timezone`)."""
    return CalendarEvent(
        id=event_id or f"evt-{next(_ids)}",
        provider=provider,
        calendar_id=kwargs.pop("calendar_id", "primary"),
        subject=subject,
        start=EventTime(date_time=start, timezone=timezone),
        end=EventTime(date_time=end, timezone=timezone),
        **kwargs,
    )


def dt(value: str, timezone: str = "UTC"):
    return parse_datetime(value, timezone)


# ─────────────────────────────────────────────────────────────────────────────
# Fake provider
# ─────────────────────────────────────────────────────────────────────────────


class FakeProvider(CalendarProvider):
    """In-memory provider: events live in a list, failures are injected."""

    def __init__(
        self,
        provider_type: ProviderType | str = ProviderType.GOOGLE,
        provider_id: str | None = None,
        events: list[CalendarEvent] | None = None,
        fail_with: Exception | None = None,
    ):
        provider_type = ProviderType(provider_type)
        super().__init__(SimpleNamespace(
            id=provider_id or f"{provider_type.value}-test",
            name=f"Fake {provider_type.value}",
            email="me@example.com",
        ))
        self.provider_type = provider_type
        self.events = list(events or [])
        self.fail_with = fail_with
        self.responses: list[tuple[str, ResponseType, str | None]] = []
        self.deleted: list[str] = []

    def _maybe_fail(self) -> None:
        if self.fail_with is not None:
            raise self.fail_with

    async def connect(self) -> None:
        self._maybe_fail()
        self._connected = True

    async def refresh_auth(self) -> None:
        pass

    async def list_calendars(self) -> list[Calendar]:
        self._maybe_fail()
        return [Calendar(
            id="primary",
            provider=self.provider_type,
            name=self.display_name,
            email=self.email,
            is_primary=True,
            can_edit=True,
        )]

    async def list_events(self, query) -> list[CalendarEvent]:
        self._maybe_fail()
        return [
            e for e in self.events
            if ranges_overlap(query.start_time, query.end_time, e.start_dt, e.end_dt)
            and (not query.calendar_ids or e.calendar_id in query.calendar_ids)
        ]

    async def get_event(self, event_id, calendar_id=None) -> CalendarEvent:
        self._maybe_fail()
        for event in self.events:
            if event.id == event_id:
                return event
        raise NotFoundError(f"Event not found: {event_id}", provider=self.provider_type.value)

    async def create_event(self, params, calendar_id=None) -> CalendarEvent:
        self._maybe_fail()
        event = CalendarEvent(
            id=f"{self.provider_type.value}-created-{len(self.events) + 1}",
            provider=self.provider_type,
            calendar_id=calendar_id or "primary",
            subject=params.subject,
            start=EventTime(date_time=params.start_time, timezone=params.timezone),
            end=EventTime(date_time=params.end_time, timezone=params.timezone),
            body=params.body,
            is_all_day=params.is_all_day,
            location=params.location,
            attendees=[Attendee(email=a.email, name=a.name, type=a.type) for a in params.attendees or []],
            show_as=params.show_as or ShowAs.BUSY,
        )
        self.events.append(event)
        self.last_create_params = params
        return event

    async def update_event(self, event_id, updates, calendar_id=None) -> CalendarEvent:
        event = await self.get_event(event_id, calendar_id)
        if updates.subject is not None:
            event.subject = updates.subject
        return event

    async def delete_event(self, event_id, options=None, calendar_id=None) -> None:
        event = await self.get_event(event_id, calendar_id)
        self.events.remove(event)
        self.deleted.append(event_id)

    async def get_free_busy(self, query) -> CalendarFreeBusy:
        self._maybe_fail()
        busy = []
        for event in await self.list_events(query):
            if event.show_as == ShowAs.FREE:
                continue
            status = {
                ShowAs.TENTATIVE: BusyStatus.TENTATIVE,
                ShowAs.OOF: BusyStatus.OOF,
            }.get(event.show_as, BusyStatus.BUSY)
            busy.append(BusySlot(start=event.start_dt, end=event.end_dt, status=status))
        return CalendarFreeBusy(
            provider=self.provider_type,
            calendar_id="primary",
            calendar_name=self.display_name,
            busy=busy,
        )

    async def respond_to_event(self, event_id, response, calendar_id=None, message=None) -> None:
        self._maybe_fail()
        self.responses.append((event_id, response, message))


@pytest.fixture
def registry() -> ProviderRegistry:
    """Empty provider registry."""
    return ProviderRegistry()


async def connected(*providers: FakeProvider) -> ProviderRegistry:
    """Registry holding the given providers, all connected."""
    registry = ProviderRegistry()
    for provider in providers:
        registry.register(provider)
        await provider.connect()
    return registry


# ─────────────────────────────────────────────────────────────────────────────
# HTTP stubs
# ─────────────────────────────────────────────────────────────────────────────


def routed(routes: dict):
    """side_effect for a mocked _make_request that answers by (method, url suffix).

    Responses that are exceptions are raised. Every call is recorded on
    handler.calls as (method, url, kwargs).
    """
    calls = []

    async def handler(method, url, **kwargs):
        calls.append((method, url, kwargs))
        for (route_method, suffix), response in routes.items():
            if method == route_method and url.endswith(suffix):
                if isinstance(response, Exception):
                    raise response
                return response
        raise AssertionError(f"Unexpected request {method} {url}")

    handler.calls = calls
    return handler
