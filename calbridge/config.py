"""
Tool: Calendar Configuration
Purpose: Validated configuration for defaults, requests and provider accounts

Configuration is read from args/calbridge.yaml (if present) and then
overridden from environment variables (a .env file is loaded first).
Invalid files never stop the process: a warning is logged and defaults
are used.

Usage:
    from calbridge.config import get_config, get_default_timezone

    config = get_config()
    for provider_config in config.enabled_providers():
        ...
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Literal, Optional, Union

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from calbridge import ARGS_DIR

logger = logging.getLogger(__name__)

CONFIG_PATH = ARGS_DIR / "calbridge.yaml"

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]


# =============================================================================
# Defaults
# =============================================================================


class WorkingHoursConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    start: str = Field(default="09:00", pattern=r"^\d{2}:\d{2}$")
    end: str = Field(default="17:00", pattern=r"^\d{2}:\d{2}$")
    days: list[str] = Field(default_factory=lambda: WEEKDAYS[:5])

    @field_validator("days")
    @classmethod
    def _normalize_days(cls, value: list[str]) -> list[str]:
        days = [d.strip().lower() for d in value if d.strip()]
        unknown = [d for d in days if d not in WEEKDAYS]
        if unknown:
            raise ValueError(f"Unknown weekday(s): {unknown}")
        return days


class DefaultsConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    timezone: str = Field(default="America/New_York")
    working_hours: WorkingHoursConfig = Field(default_factory=WorkingHoursConfig)


class ServerSettings(BaseModel):
    model_config = ConfigDict(extra="allow")
    name: str = Field(default="calbridge")
    log_level: str = Field(default="INFO")


class RequestConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    timeout_seconds: float = Field(default=30.0, gt=0)
    calendar_cache_ttl_seconds: int = Field(default=300, ge=0)


# =============================================================================
# Provider accounts
# =============================================================================


class BaseProviderConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    id: str
    name: str
    email: str = ""
    enabled: bool = True


class GoogleProviderConfig(BaseProviderConfig):
    type: Literal["google"] = "google"
    id: str = "google-primary"
    name: str = "Google Calendar"
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None


class MicrosoftProviderConfig(BaseProviderConfig):
    type: Literal["microsoft"] = "microsoft"
    id: str = "microsoft-primary"
    name: str = "Microsoft 365"
    tenant_id: str = "common"
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None


class ExchangeProviderConfig(BaseProviderConfig):
    type: Literal["exchange"] = "exchange"
    id: str = "exchange-primary"
    name: str = "Exchange"
    ews_url: str = ""
    auth_method: Literal["basic", "oauth"] = "basic"
    username: Optional[str] = None
    password: Optional[str] = None
    domain: Optional[str] = None
    access_token: Optional[str] = None
    # Zone for EWS local times that carry no offset
    timezone: Optional[str] = None


ProviderConfig = Union[GoogleProviderConfig, MicrosoftProviderConfig, ExchangeProviderConfig]


class CalbridgeConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    server: ServerSettings = Field(default_factory=ServerSettings)
    defaults: DefaultsConfig = Field(default_factory=DefaultsConfig)
    request: RequestConfig = Field(default_factory=RequestConfig)
    google: Optional[GoogleProviderConfig] = None
    microsoft: Optional[MicrosoftProviderConfig] = None
    exchange: Optional[ExchangeProviderConfig] = None

    def enabled_providers(self) -> list[ProviderConfig]:
        """Provider configs that are present and enabled."""
        configs = [self.google, self.microsoft, self.exchange]
        return [c for c in configs if c is not None and c.enabled]


# =============================================================================
# Environment overrides
# =============================================================================


def _env_bool(key: str, default: bool = False) -> bool:
    value = os.environ.get(key)
    if not value:
        return default
    return value.lower() in ("true", "1", "yes")


def _env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variables on top of the raw YAML mapping."""
    data = dict(raw)

    defaults = dict(data.get("defaults") or {})
    if os.environ.get("DEFAULT_TIMEZONE"):
        defaults["timezone"] = os.environ["DEFAULT_TIMEZONE"]

    working_hours = dict(defaults.get("working_hours") or {})
    if os.environ.get("DEFAULT_WORKING_HOURS_START"):
        working_hours["start"] = os.environ["DEFAULT_WORKING_HOURS_START"]
    if os.environ.get("DEFAULT_WORKING_HOURS_END"):
        working_hours["end"] = os.environ["DEFAULT_WORKING_HOURS_END"]
    if os.environ.get("DEFAULT_WORKING_DAYS"):
        working_hours["days"] = os.environ["DEFAULT_WORKING_DAYS"].split(",")
    if working_hours:
        defaults["working_hours"] = working_hours
    if defaults:
        data["defaults"] = defaults

    if os.environ.get("REQUEST_TIMEOUT"):
        request = dict(data.get("request") or {})
        # Milliseconds, matching the other tooling that shares this .env
        request["timeout_seconds"] = int(os.environ["REQUEST_TIMEOUT"]) / 1000
        data["request"] = request

    if _env_bool("GOOGLE_ENABLED"):
        google = dict(data.get("google") or {})
        google.update(_prefixed_env("GOOGLE", [
            "provider_id", "provider_name", "email", "access_token",
            "refresh_token", "client_id", "client_secret",
        ]))
        data["google"] = _rename_identity(google)

    if _env_bool("MICROSOFT_ENABLED"):
        microsoft = dict(data.get("microsoft") or {})
        microsoft.update(_prefixed_env("MICROSOFT", [
            "provider_id", "provider_name", "email", "tenant_id", "access_token",
            "refresh_token", "client_id", "client_secret",
        ]))
        data["microsoft"] = _rename_identity(microsoft)

    if _env_bool("EXCHANGE_ENABLED"):
        exchange = dict(data.get("exchange") or {})
        exchange.update(_prefixed_env("EXCHANGE", [
            "provider_id", "provider_name", "email", "ews_url", "auth_method",
            "username", "password", "domain", "access_token", "timezone",
        ]))
        data["exchange"] = _rename_identity(exchange)

    return data


def _prefixed_env(prefix: str, keys: list[str]) -> dict[str, str]:
    values = {}
    for key in keys:
        value = os.environ.get(f"{prefix}_{key.upper()}")
        if value:
            values[key] = value
    return values


def _rename_identity(data: dict[str, Any]) -> dict[str, Any]:
    if "provider_id" in data:
        data["id"] = data.pop("provider_id")
    if "provider_name" in data:
        data["name"] = data.pop("provider_name")
    data["enabled"] = True
    return data


# =============================================================================
# Loading
# =============================================================================


def load_config(path: Path | None = None) -> CalbridgeConfig:
    """
    Load and validate configuration.

    Args:
        path: YAML file to read (default: args/calbridge.yaml)

    Returns:
        CalbridgeConfig (defaults if the file is missing or invalid)
    """
    load_dotenv()
    yaml_path = path or CONFIG_PATH

    try:
        if yaml_path.exists():
            with open(yaml_path) as f:
                raw = yaml.safe_load(f) or {}
        else:
            raw = {}

        return CalbridgeConfig.model_validate(_env_overrides(raw))
    except Exception as e:
        logger.warning(f"Config validation failed for {yaml_path}: {e}, using defaults")
        return CalbridgeConfig()


_config: CalbridgeConfig | None = None


def get_config() -> CalbridgeConfig:
    """Get the loaded configuration (loads once)."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: CalbridgeConfig) -> None:
    """Install an explicit configuration (CLI flags, tests)."""
    global _config
    _config = config


def reset_config() -> None:
    """Forget the loaded configuration."""
    global _config
    _config = None


def get_default_timezone() -> str:
    return get_config().defaults.timezone


def get_default_working_hours() -> WorkingHoursConfig:
    return get_config().defaults.working_hours
