"""
Tool: Calendar Errors
Purpose: Typed error taxonomy shared by providers and services

Every provider call either returns data or raises a CalendarError subclass.
The kind, provider, retryable flag and retry-after hint travel with the
error so callers can render a useful message without inspecting
provider-specific payloads.

Usage:
    from calbridge.errors import NotFoundError, wrap_error

    raise NotFoundError("Event not found: abc", provider="google")

    try:
        ...
    except Exception as e:
        raise wrap_error(e, provider="google", operation="listEvents")
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Error kinds, independent of any provider's error shape."""

    AUTH_FAILURE = "auth_failure"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    RATE_LIMITED = "rate_limited"
    CONFLICT = "conflict"
    UNAVAILABLE = "unavailable"
    INVALID_INPUT = "invalid_input"
    INTERNAL = "internal"


# Kinds that are worth retrying by default
RETRYABLE_KINDS = {ErrorKind.RATE_LIMITED, ErrorKind.UNAVAILABLE}

ERROR_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.AUTH_FAILURE: "Authentication failed or expired. Please re-authenticate.",
    ErrorKind.NOT_FOUND: "The requested event or calendar was not found.",
    ErrorKind.PERMISSION_DENIED: "Permission denied for this operation.",
    ErrorKind.RATE_LIMITED: "Too many requests. Please try again later.",
    ErrorKind.CONFLICT: "The provider rejected the change because of a conflicting write.",
    ErrorKind.UNAVAILABLE: "The calendar provider is currently unavailable.",
    ErrorKind.INVALID_INPUT: "Invalid input provided.",
    ErrorKind.INTERNAL: "An internal error occurred.",
}


class CalendarError(Exception):
    """
    Base error for all calendar operations.

    Attributes:
        kind: Error kind (see ErrorKind)
        provider: Provider type ('google', 'microsoft', 'exchange') if known
        provider_id: Provider instance ID if known
        retryable: Whether retrying the same call may succeed
        retry_after: Suggested wait in seconds before retrying
        details: Extra structured context
    """

    kind: ErrorKind = ErrorKind.INTERNAL
    default_retryable: bool = False
    default_retry_after: int | None = None

    def __init__(
        self,
        message: str,
        kind: ErrorKind | None = None,
        *,
        provider: str | None = None,
        provider_id: str | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind
        self.provider = provider
        self.provider_id = provider_id
        if retryable is None:
            retryable = self.default_retryable or self.kind in RETRYABLE_KINDS
        self.retryable = retryable
        self.retry_after = retry_after if retry_after is not None else self.default_retry_after
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "error": True,
            "kind": self.kind.value,
            "message": self.message,
            "provider": self.provider,
            "providerId": self.provider_id,
            "retryable": self.retryable,
            "retryAfter": self.retry_after,
            "details": self.details,
        }

    def to_user_message(self) -> str:
        """Format as a short user-facing message."""
        prefix = f"[{self.provider}] " if self.provider else ""
        return f"{prefix}{self.message}"


class AuthFailureError(CalendarError):
    kind = ErrorKind.AUTH_FAILURE


class NotFoundError(CalendarError):
    kind = ErrorKind.NOT_FOUND


class PermissionDeniedError(CalendarError):
    kind = ErrorKind.PERMISSION_DENIED


class RateLimitedError(CalendarError):
    kind = ErrorKind.RATE_LIMITED
    default_retryable = True
    default_retry_after = 60


class ConflictError(CalendarError):
    kind = ErrorKind.CONFLICT


class ProviderUnavailableError(CalendarError):
    kind = ErrorKind.UNAVAILABLE
    default_retryable = True
    default_retry_after = 30


class InvalidInputError(CalendarError, ValueError):
    kind = ErrorKind.INVALID_INPUT


class InternalError(CalendarError):
    kind = ErrorKind.INTERNAL


_KIND_TO_CLASS: dict[ErrorKind, type[CalendarError]] = {
    ErrorKind.AUTH_FAILURE: AuthFailureError,
    ErrorKind.NOT_FOUND: NotFoundError,
    ErrorKind.PERMISSION_DENIED: PermissionDeniedError,
    ErrorKind.RATE_LIMITED: RateLimitedError,
    ErrorKind.CONFLICT: ConflictError,
    ErrorKind.UNAVAILABLE: ProviderUnavailableError,
    ErrorKind.INVALID_INPUT: InvalidInputError,
    ErrorKind.INTERNAL: InternalError,
}


def error_for_kind(kind: ErrorKind, message: str, **kwargs: Any) -> CalendarError:
    """Instantiate the CalendarError subclass matching an error kind."""
    return _KIND_TO_CLASS[kind](message, **kwargs)


def error_from_status(
    status: int,
    message: str,
    *,
    provider: str | None = None,
    provider_id: str | None = None,
    retry_after: int | None = None,
) -> CalendarError:
    """
    Map an HTTP status code to a CalendarError.

    Args:
        status: HTTP status code returned by the provider
        message: Provider error message (already extracted from the body)
        provider: Provider type
        provider_id: Provider instance ID
        retry_after: Value of the Retry-After header in seconds, if any

    Returns:
        CalendarError subclass instance (not raised)
    """
    if status == 401:
        kind = ErrorKind.AUTH_FAILURE
    elif status == 403:
        kind = ErrorKind.PERMISSION_DENIED
    elif status in (404, 410):
        kind = ErrorKind.NOT_FOUND
    elif status in (409, 412):
        kind = ErrorKind.CONFLICT
    elif status == 429:
        kind = ErrorKind.RATE_LIMITED
    elif status in (400, 422):
        kind = ErrorKind.INVALID_INPUT
    elif status >= 500:
        kind = ErrorKind.UNAVAILABLE
    else:
        kind = ErrorKind.INTERNAL

    return error_for_kind(
        kind,
        message or f"HTTP {status}",
        provider=provider,
        provider_id=provider_id,
        retry_after=retry_after,
        details={"status": status},
    )


def wrap_error(
    error: BaseException,
    *,
    provider: str | None = None,
    provider_id: str | None = None,
    operation: str | None = None,
) -> CalendarError:
    """
    Wrap an arbitrary exception as a CalendarError.

    CalendarErrors pass through unchanged, except that missing provider
    context is filled in.
    """
    if isinstance(error, CalendarError):
        if error.provider is None:
            error.provider = provider
        if error.provider_id is None:
            error.provider_id = provider_id
        return error

    message = str(error) or error.__class__.__name__
    if operation:
        message = f"{operation}: {message}"

    wrapped = InternalError(message, provider=provider, provider_id=provider_id)
    wrapped.__cause__ = error
    return wrapped


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, CalendarError):
        return error.retryable
    return False


def format_error(error: CalendarError) -> str:
    """Format a CalendarError as multi-line text for presentation layers."""
    lines = [f"Error: {error.message}", f"Kind: {error.kind.value}"]

    if error.provider:
        lines.append(f"Provider: {error.provider}")

    if error.retryable:
        lines.append("This error is retryable.")
        if error.retry_after:
            lines.append(f"Retry after: {error.retry_after} seconds")

    if error.details:
        lines.append(f"Details: {json.dumps(error.details, default=str)}")

    return "\n".join(lines)


@dataclass
class ProviderError:
    """
    A per-provider failure captured during a fan-out request.

    The original exception is kept (not serialized) so callers that need
    whole-operation failure semantics can re-raise it.
    """

    kind: ErrorKind
    provider: str
    provider_id: str
    message: str
    retryable: bool = False
    retry_after: int | None = None
    exception: CalendarError | None = field(default=None, repr=False, compare=False)

    @classmethod
    def from_exception(
        cls,
        error: BaseException,
        provider: str,
        provider_id: str,
    ) -> ProviderError:
        wrapped = wrap_error(error, provider=provider, provider_id=provider_id)
        return cls(
            kind=wrapped.kind,
            provider=provider,
            provider_id=provider_id,
            message=wrapped.message,
            retryable=wrapped.retryable,
            retry_after=wrapped.retry_after,
            exception=wrapped,
        )

    def to_exception(self) -> CalendarError:
        if self.exception is not None:
            return self.exception
        return error_for_kind(
            self.kind,
            self.message,
            provider=self.provider,
            provider_id=self.provider_id,
            retryable=self.retryable,
            retry_after=self.retry_after,
        )

    def to_dict(self) -> dict[str, Any]:
        d = {
            "kind": self.kind.value,
            "provider": self.provider,
            "providerId": self.provider_id,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            d["retryAfter"] = self.retry_after
        return d
