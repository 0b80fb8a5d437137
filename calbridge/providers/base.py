"""
Tool: Calendar Provider Base
Purpose: Abstract capability interface that every calendar back-end implements

Defines the common interface for Google Calendar, Microsoft Graph and
Exchange EWS. Services only ever talk to providers through this class.

Every operation either returns normalized models or raises a CalendarError
subclass; provider-specific error payloads never leave the adapter.

Usage:
    from calbridge.providers.base import CalendarProvider
    from calbridge.providers.google_calendar import GoogleCalendarProvider

    provider = GoogleCalendarProvider(config)
    await provider.connect()
    events = await provider.list_events(query)
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import aiohttp

from calbridge.config import get_config
from calbridge.errors import (
    CalendarError,
    NotFoundError,
    ProviderUnavailableError,
    error_from_status,
    wrap_error,
)
from calbridge.models import (
    Calendar,
    CalendarEvent,
    CalendarFreeBusy,
    CreateEventParams,
    DeleteOptions,
    EventQuery,
    FreeBusyQuery,
    ProviderHealthStatus,
    ProviderType,
    ResponseType,
    UpdateEventParams,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CalendarProvider(ABC):
    """
    Abstract base class for calendar providers.

    One instance per configured account. Subclasses implement the wire
    protocol; this class owns the connection flag, error wrapping, the
    shared aiohttp session and the short-lived calendar-list cache.
    """

    provider_type: ProviderType

    def __init__(self, config: Any, session: aiohttp.ClientSession | None = None):
        """
        Initialize provider with its account configuration.

        Args:
            config: Provider config model (id, name, email, credentials)
            session: Optional pre-built HTTP session (owned by the caller)
        """
        self.config = config
        self._connected = False
        self._session = session
        self._owns_session = session is None
        self._calendar_cache: list[Calendar] | None = None
        self._calendar_cache_at = 0.0
        self.last_error: str | None = None
        self.last_successful_operation: str | None = None

        request_config = get_config().request
        self.timeout = request_config.timeout_seconds
        self.cache_ttl = request_config.calendar_cache_ttl_seconds

    # =========================================================================
    # Identity
    # =========================================================================

    @property
    def provider_id(self) -> str:
        return self.config.id

    @property
    def display_name(self) -> str:
        return self.config.name

    @property
    def email(self) -> str:
        return self.config.email

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.provider_id} connected={self._connected}>"

    # =========================================================================
    # Connection lifecycle
    # =========================================================================

    @abstractmethod
    async def connect(self) -> None:
        """Verify credentials and mark the provider connected."""

    async def disconnect(self) -> None:
        self._connected = False
        self._calendar_cache = None
        if self._session is not None and self._owns_session:
            await self._session.close()
            self._session = None
        logger.info(f"Disconnected from {self.display_name}")

    def is_connected(self) -> bool:
        return self._connected

    @abstractmethod
    async def refresh_auth(self) -> None:
        """Refresh credentials (token refresh where the provider supports it)."""

    def ensure_connected(self) -> None:
        if not self._connected:
            raise ProviderUnavailableError(
                f"Provider {self.display_name} is not connected",
                provider=self.provider_type.value,
                provider_id=self.provider_id,
                retryable=False,
            )

    def health(self) -> ProviderHealthStatus:
        return ProviderHealthStatus(
            provider_id=self.provider_id,
            provider_type=self.provider_type,
            connected=self._connected,
            last_error=self.last_error,
            last_successful_operation=self.last_successful_operation,
        )

    # =========================================================================
    # Calendar operations
    # =========================================================================

    @abstractmethod
    async def list_calendars(self) -> list[Calendar]:
        """
        List calendars visible to the account.

        Returns:
            list of Calendar (served from a short-lived cache when fresh)
        """

    async def get_primary_calendar_id(self) -> str:
        calendars = await self.list_calendars()
        for calendar in calendars:
            if calendar.is_primary:
                return calendar.id
        raise NotFoundError(
            "No primary calendar found",
            provider=self.provider_type.value,
            provider_id=self.provider_id,
        )

    # =========================================================================
    # Event operations
    # =========================================================================

    @abstractmethod
    async def list_events(self, query: EventQuery) -> list[CalendarEvent]:
        """
        List events overlapping the query range.

        Args:
            query: Range plus optional calendar filter, search text, limit

        Returns:
            list of CalendarEvent, recurring series expanded to instances
        """

    @abstractmethod
    async def get_event(self, event_id: str, calendar_id: str | None = None) -> CalendarEvent:
        """Get one event by its provider ID."""

    @abstractmethod
    async def create_event(
        self, params: CreateEventParams, calendar_id: str | None = None
    ) -> CalendarEvent:
        """Create an event and return it as stored by the provider."""

    @abstractmethod
    async def update_event(
        self,
        event_id: str,
        updates: UpdateEventParams,
        calendar_id: str | None = None,
    ) -> CalendarEvent:
        """Apply a partial update and return the updated event."""

    @abstractmethod
    async def delete_event(
        self,
        event_id: str,
        options: DeleteOptions | None = None,
        calendar_id: str | None = None,
    ) -> None:
        """Delete an event (or series, per options.delete_scope)."""

    # =========================================================================
    # Availability and responses
    # =========================================================================

    @abstractmethod
    async def get_free_busy(self, query: FreeBusyQuery) -> CalendarFreeBusy:
        """Busy slots for the account across the query range."""

    @abstractmethod
    async def respond_to_event(
        self,
        event_id: str,
        response: ResponseType,
        calendar_id: str | None = None,
        message: str | None = None,
    ) -> None:
        """Accept, decline or tentatively accept an invitation."""

    # =========================================================================
    # Helpers
    # =========================================================================

    async def execute_with_error_handling(
        self, operation: str, fn: Callable[[], Awaitable[T]]
    ) -> T:
        """
        Run one provider operation with connection check and error wrapping.

        Args:
            operation: Operation name (used in wrapped error messages)
            fn: Zero-argument coroutine factory doing the actual work

        Returns:
            Whatever fn returns

        Raises:
            CalendarError: Any failure, tagged with this provider's identity
        """
        self.ensure_connected()
        try:
            result = await fn()
        except Exception as e:
            wrapped = wrap_error(
                e,
                provider=self.provider_type.value,
                provider_id=self.provider_id,
                operation=operation,
            )
            self.last_error = wrapped.message
            logger.debug(f"{self.provider_id}: {operation} failed: {wrapped.message}")
            if wrapped is e:
                raise
            raise wrapped from e

        self.last_successful_operation = operation
        return result

    async def _cached_calendars(
        self, loader: Callable[[], Awaitable[list[Calendar]]]
    ) -> list[Calendar]:
        """Serve the calendar list from cache while it is fresh."""
        age = time.monotonic() - self._calendar_cache_at
        if self._calendar_cache is not None and age < self.cache_ttl:
            logger.debug(f"{self.provider_id}: calendar list cache hit ({age:.0f}s old)")
            return self._calendar_cache

        calendars = await loader()
        self._calendar_cache = calendars
        self._calendar_cache_at = time.monotonic()
        return calendars

    def _invalidate_calendar_cache(self) -> None:
        self._calendar_cache = None

    def _get_headers(self) -> dict[str, str]:
        """Authorization headers for API requests."""
        return {"Content-Type": "application/json"}

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
            self._owns_session = True
        return self._session

    async def _make_request(
        self,
        method: str,
        url: str,
        json: dict[str, Any] | None = None,
        params: dict[str, Any] | None = None,
        data: str | None = None,
        headers: dict[str, str] | None = None,
        expect: str = "json",
    ) -> Any:
        """
        Make an authenticated API request.

        Args:
            method: HTTP method
            url: Full API URL
            json: JSON request body
            params: Query parameters
            data: Raw request body (SOAP envelopes)
            headers: Extra headers merged over the auth headers
            expect: "json" or "text"

        Returns:
            Decoded JSON (None for empty responses) or response text

        Raises:
            CalendarError: Mapped from the HTTP status or network failure
        """
        request_headers = self._get_headers()
        if headers:
            request_headers.update(headers)

        session = self._get_session()
        try:
            async with session.request(
                method, url, json=json, params=params, data=data, headers=request_headers
            ) as resp:
                return await self._handle_response(resp, expect)
        except CalendarError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ProviderUnavailableError(
                f"Request to {self.display_name} failed: {e!s}",
                provider=self.provider_type.value,
                provider_id=self.provider_id,
            ) from e

    async def _handle_response(self, resp: aiohttp.ClientResponse, expect: str = "json") -> Any:
        """Decode a response, raising a CalendarError for non-2xx statuses."""
        if resp.status == 204:
            return None

        text = await resp.text()

        if 200 <= resp.status < 300:
            if expect == "text":
                return text
            if not text:
                return None
            return await resp.json(content_type=None)

        retry_after = None
        header = resp.headers.get("Retry-After")
        if header and header.isdigit():
            retry_after = int(header)

        raise error_from_status(
            resp.status,
            self._extract_error_message(resp.status, text),
            provider=self.provider_type.value,
            provider_id=self.provider_id,
            retry_after=retry_after,
        )

    def _extract_error_message(self, status: int, text: str) -> str:
        """Pull a readable message out of an error body."""
        return f"HTTP {status}: {text[:200]}" if text else f"HTTP {status}"
