"""
Tool: Logging Setup
Purpose: Route structlog events through stdlib logging to stderr

Console rendering is the default; set CALBRIDGE_LOG_FORMAT=json for one JSON
object per line. stdout is left alone so CLI output stays parseable.

Usage:
    from calbridge.logging_config import get_logger, setup_logging

    setup_logging("DEBUG")
    logger = get_logger(__name__)
    logger.info("free_busy_aggregated", providers=3, busy_slots=12)
"""

from __future__ import annotations

import logging
import os
import sys

import structlog

LEVEL_ENV = "CALBRIDGE_LOG_LEVEL"
FORMAT_ENV = "CALBRIDGE_LOG_FORMAT"

# Third-party loggers that are chatty at DEBUG
QUIET_LOGGERS = ("aiohttp.access", "aiohttp.client", "asyncio")


def _resolve_level(level: str | None) -> int:
    name = (level or os.environ.get(LEVEL_ENV) or "INFO").upper()
    resolved = logging.getLevelName(name)
    return resolved if isinstance(resolved, int) else logging.INFO


def _pick_renderer(json_output: bool | None) -> structlog.types.Processor:
    if json_output is None:
        json_output = os.environ.get(FORMAT_ENV, "").strip().lower() == "json"
    if json_output:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def setup_logging(level: str | None = None, json_output: bool | None = None) -> None:
    """
    Configure structlog and the root logger.

    Args:
        level: Level name; falls back to CALBRIDGE_LOG_LEVEL, then INFO
        json_output: Force JSON (True) or console (False) rendering
    """
    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    structlog.configure(
        processors=pre_chain + [
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _pick_renderer(json_output),
            ],
        )
    )

    numeric_level = _resolve_level(level)
    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(numeric_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


__all__ = ["get_logger", "setup_logging"]
