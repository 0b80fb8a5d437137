"""
Tool: Calendar Service
Purpose: Run calendar operations across every connected provider

Fan-out reads (calendars, events) query providers concurrently and report
per-provider failures next to whatever succeeded. Single-event operations
route to the first connected provider of the requested type.

Usage:
    from calbridge.services.calendar_service import CalendarService

    service = CalendarService(registry)
    result = await service.list_all_events(EventQuery(start_time=..., end_time=...))
    if result.partial_success:
        ...
"""

from __future__ import annotations

import asyncio
from typing import Any

from calbridge.errors import NotFoundError, ProviderError
from calbridge.logging_config import get_logger
from calbridge.models import (
    Calendar,
    CalendarEvent,
    CreateEventParams,
    DeleteOptions,
    EventQuery,
    ListEventsResult,
    ProviderType,
    ResponseType,
    UpdateEventParams,
    parse_provider_type,
)
from calbridge.providers import CalendarProvider, ProviderRegistry

logger = get_logger(__name__)


class CalendarService:
    """Orchestrates calendar operations across providers."""

    def __init__(self, registry: ProviderRegistry):
        self.registry = registry

    # =========================================================================
    # Provider lookup
    # =========================================================================

    def _filter_providers(self, provider_filter: list[ProviderType] | None) -> list[CalendarProvider]:
        providers = self.registry.get_connected()
        if provider_filter:
            wanted = {parse_provider_type(p) for p in provider_filter}
            providers = [p for p in providers if p.provider_type in wanted]
        return providers

    def get_provider_by_type(self, provider_type: ProviderType | str) -> CalendarProvider:
        """
        First connected provider of a type.

        Raises:
            NotFoundError: No connected provider of that type
        """
        provider_type = parse_provider_type(provider_type)
        for provider in self.registry.get_by_type(provider_type):
            if provider.is_connected():
                return provider
        raise NotFoundError(
            f"No connected {provider_type.value} provider",
            provider=provider_type.value,
        )

    def get_provider_by_id(self, provider_id: str) -> CalendarProvider:
        return self.registry.get_or_raise(provider_id)

    def has_connected_providers(self) -> bool:
        return bool(self.registry.get_connected())

    def get_connected_provider_types(self) -> list[ProviderType]:
        types: list[ProviderType] = []
        for provider in self.registry.get_connected():
            if provider.provider_type not in types:
                types.append(provider.provider_type)
        return types

    # =========================================================================
    # Fan-out reads
    # =========================================================================

    async def list_all_calendars(
        self, provider_filter: list[ProviderType] | None = None
    ) -> dict[str, Any]:
        """
        List calendars from every connected provider.

        Args:
            provider_filter: Restrict to these provider types

        Returns:
            {"calendars": [Calendar], "errors": [ProviderError]}
        """
        providers = self._filter_providers(provider_filter)
        results = await asyncio.gather(
            *(p.list_calendars() for p in providers), return_exceptions=True
        )

        calendars: list[Calendar] = []
        errors: list[ProviderError] = []
        for provider, result in zip(providers, results):
            if isinstance(result, BaseException):
                errors.append(self._record_failure(provider, result, "list_calendars"))
            else:
                calendars.extend(result)

        return {"calendars": calendars, "errors": errors}

    async def list_all_events(self, query: EventQuery) -> ListEventsResult:
        """
        List events from every matching connected provider.

        Events are merged, sorted by start and then truncated to
        query.max_results. A provider failure does not fail the call.

        Args:
            query: Time range plus optional provider/calendar filters

        Returns:
            ListEventsResult with events, per-provider errors and a
            partial_success flag (some errors, some events)
        """
        providers = self._filter_providers(query.providers)
        if not providers:
            return ListEventsResult()

        results = await asyncio.gather(
            *(p.list_events(query) for p in providers), return_exceptions=True
        )

        events: list[CalendarEvent] = []
        errors: list[ProviderError] = []
        for provider, result in zip(providers, results):
            if isinstance(result, BaseException):
                errors.append(self._record_failure(provider, result, "list_events"))
            else:
                events.extend(result)

        events.sort(key=lambda e: e.start_dt)
        if query.max_results:
            events = events[: query.max_results]

        logger.debug(
            "events_listed",
            providers=len(providers),
            events=len(events),
            errors=len(errors),
        )
        return ListEventsResult(
            events=events,
            errors=errors,
            partial_success=bool(errors) and bool(events),
        )

    def _record_failure(
        self, provider: CalendarProvider, error: BaseException, operation: str
    ) -> ProviderError:
        record = ProviderError.from_exception(
            error, provider=provider.provider_type.value, provider_id=provider.provider_id
        )
        logger.warning(
            "provider_operation_failed",
            provider=record.provider,
            provider_id=record.provider_id,
            operation=operation,
            kind=record.kind.value,
            error=record.message,
        )
        return record

    # =========================================================================
    # Single-event operations
    # =========================================================================

    async def get_event(
        self, provider_type: ProviderType | str, event_id: str, calendar_id: str | None = None
    ) -> CalendarEvent:
        provider = self.get_provider_by_type(provider_type)
        return await provider.get_event(event_id, calendar_id)

    async def create_event(
        self,
        provider_type: ProviderType | str,
        params: CreateEventParams,
        calendar_id: str | None = None,
    ) -> CalendarEvent:
        provider = self.get_provider_by_type(provider_type)
        event = await provider.create_event(params, calendar_id)
        logger.info("event_created", provider=provider.provider_id, event_id=event.id)
        return event

    async def update_event(
        self,
        provider_type: ProviderType | str,
        event_id: str,
        updates: UpdateEventParams,
        calendar_id: str | None = None,
    ) -> CalendarEvent:
        provider = self.get_provider_by_type(provider_type)
        event = await provider.update_event(event_id, updates, calendar_id)
        logger.info("event_updated", provider=provider.provider_id, event_id=event.id)
        return event

    async def delete_event(
        self,
        provider_type: ProviderType | str,
        event_id: str,
        options: DeleteOptions | None = None,
        calendar_id: str | None = None,
    ) -> None:
        provider = self.get_provider_by_type(provider_type)
        await provider.delete_event(event_id, options, calendar_id)
        logger.info("event_deleted", provider=provider.provider_id, event_id=event_id)

    async def respond_to_event(
        self,
        provider_type: ProviderType | str,
        event_id: str,
        response: ResponseType | str,
        calendar_id: str | None = None,
        message: str | None = None,
    ) -> None:
        provider = self.get_provider_by_type(provider_type)
        await provider.respond_to_event(event_id, ResponseType(response), calendar_id, message)
        logger.info(
            "event_response_sent",
            provider=provider.provider_id,
            event_id=event_id,
            response=ResponseType(response).value,
        )
