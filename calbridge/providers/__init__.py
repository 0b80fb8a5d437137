"""
Calendar Provider Package

Provider adapters for the supported calendar back-ends, plus the registry
that owns one adapter instance per configured account.

Architecture:
    Services -> ProviderRegistry -> CalendarProvider (abstract)
                                          |
                        +-----------------+-----------------+
                        |                 |                 |
               GoogleCalendar     MicrosoftGraph        Exchange
                 (REST v3)          (Graph v1.0)        (EWS SOAP)

Usage:
    from calbridge.providers import build_registry

    registry = build_registry(get_config())
    await registry.connect_all()
    for provider in registry.get_connected():
        ...
    await registry.disconnect_all()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from calbridge.errors import InvalidInputError, NotFoundError
from calbridge.models import ProviderHealthStatus, ProviderType, parse_provider_type
from calbridge.providers.base import CalendarProvider

logger = logging.getLogger(__name__)

__all__ = [
    "CalendarProvider",
    "ProviderRegistry",
    "build_registry",
    "create_provider",
]


def create_provider(config: Any) -> CalendarProvider:
    """
    Create a provider instance from its account configuration.

    Args:
        config: GoogleProviderConfig, MicrosoftProviderConfig or ExchangeProviderConfig

    Returns:
        CalendarProvider instance (not yet connected)

    Raises:
        InvalidInputError: If the provider type is unknown
    """
    provider_type = getattr(config, "type", None)

    if provider_type == ProviderType.GOOGLE.value:
        from calbridge.providers.google_calendar import GoogleCalendarProvider

        return GoogleCalendarProvider(config)

    elif provider_type == ProviderType.MICROSOFT.value:
        from calbridge.providers.microsoft_graph import MicrosoftGraphProvider

        return MicrosoftGraphProvider(config)

    elif provider_type == ProviderType.EXCHANGE.value:
        from calbridge.providers.exchange import ExchangeProvider

        return ExchangeProvider(config)

    else:
        raise InvalidInputError(
            f"Unknown provider type: {provider_type}. Available providers: google, microsoft, exchange"
        )


class ProviderRegistry:
    """
    Holds the provider instances for the configured accounts, keyed by ID.

    Insertion order is kept, so "first provider of a type" is stable.
    """

    def __init__(self):
        self._providers: dict[str, CalendarProvider] = {}

    def __len__(self) -> int:
        return len(self._providers)

    def __contains__(self, provider_id: str) -> bool:
        return provider_id in self._providers

    def register(self, provider: CalendarProvider) -> None:
        if provider.provider_id in self._providers:
            logger.warning(f"Replacing registered provider {provider.provider_id}")
        self._providers[provider.provider_id] = provider
        logger.debug(f"Registered provider {provider.provider_id} ({provider.provider_type.value})")

    def create_provider(self, config: Any) -> CalendarProvider:
        """Create a provider from config and register it."""
        provider = create_provider(config)
        self.register(provider)
        return provider

    def get(self, provider_id: str) -> CalendarProvider | None:
        return self._providers.get(provider_id)

    def get_or_raise(self, provider_id: str) -> CalendarProvider:
        provider = self._providers.get(provider_id)
        if provider is None:
            raise NotFoundError(f"Provider not found: {provider_id}", provider_id=provider_id)
        return provider

    def get_by_type(self, provider_type: ProviderType | str) -> list[CalendarProvider]:
        provider_type = parse_provider_type(provider_type)
        return [p for p in self._providers.values() if p.provider_type == provider_type]

    def get_all(self) -> list[CalendarProvider]:
        return list(self._providers.values())

    def get_connected(self) -> list[CalendarProvider]:
        return [p for p in self._providers.values() if p.is_connected()]

    async def remove(self, provider_id: str) -> bool:
        """Disconnect (if needed) and unregister a provider."""
        provider = self._providers.pop(provider_id, None)
        if provider is None:
            return False
        if provider.is_connected():
            await provider.disconnect()
        return True

    async def connect_all(self) -> dict[str, list[str]]:
        """
        Connect every registered provider concurrently.

        Returns:
            {"success": [provider ids], "failed": [provider ids]}
        """
        providers = self.get_all()
        results = await asyncio.gather(
            *(p.connect() for p in providers), return_exceptions=True
        )

        summary: dict[str, list[str]] = {"success": [], "failed": []}
        for provider, result in zip(providers, results):
            if isinstance(result, Exception):
                provider.last_error = str(result)
                logger.warning(f"Failed to connect {provider.provider_id}: {result}")
                summary["failed"].append(provider.provider_id)
            else:
                summary["success"].append(provider.provider_id)

        logger.info(
            f"Connected {len(summary['success'])}/{len(providers)} providers"
        )
        return summary

    async def disconnect_all(self) -> None:
        await asyncio.gather(
            *(p.disconnect() for p in self._providers.values()), return_exceptions=True
        )

    def get_health_status(self) -> list[ProviderHealthStatus]:
        return [p.health() for p in self._providers.values()]

    async def clear(self) -> None:
        await self.disconnect_all()
        self._providers.clear()


def build_registry(config: Any) -> ProviderRegistry:
    """
    Build a registry holding one provider per enabled account.

    Args:
        config: CalbridgeConfig

    Returns:
        ProviderRegistry (providers registered, not connected)
    """
    registry = ProviderRegistry()
    for provider_config in config.enabled_providers():
        registry.create_provider(provider_config)
    return registry
