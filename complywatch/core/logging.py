"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import sys
from enum import Enum
from pathlib import Path
from typing import Any, TextIO

import structlog

from complywatch.core.config import get_settings

ALERT_LOG = "alert_log"

# Third-party loggers that are too chatty at INFO.
_QUIET_LOGGERS = ("aiohttp.access", "asyncio")


def _render_enums(
    _logger: Any, _method: str, event_dict: structlog.types.EventDict,
) -> structlog.types.EventDict:
    """Log enum members by name (``critical``) rather than by value (``3``)."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.name.lower()
    return event_dict


def _formatter(renderer: structlog.types.Processor) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def _alert_log_handler(path: str) -> logging.Handler:
    """JSON-lines audit trail of alert state transitions."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(target, encoding="utf-8")
    handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    return handler


def setup_logging(
    level: str | None = None,
    fmt: str | None = None,
    stream: TextIO | None = None,
    alert_log_path: str | None = None,
) -> None:
    """Configure structlog over stdlib logging.

    Args:
        level: Log level override (e.g. "DEBUG"). Uses config if None.
        fmt: Renderer format override ("json" or "console"). Uses config if None.
        stream: Output stream, stderr by default.
        alert_log_path: File that also receives every ``alert_log`` event
            as one JSON object per line. Uses config if None; empty disables.
    """
    settings = get_settings()
    log_level = getattr(logging, (level or settings.logging.level).upper(), logging.INFO)
    log_format = fmt or settings.logging.format
    audit_path = settings.logging.alert_log_path if alert_log_path is None else alert_log_path

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _render_enums,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    renderer: structlog.types.Processor
    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    console = logging.StreamHandler(stream or sys.stderr)
    console.setFormatter(_formatter(renderer))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(console)
    root_logger.setLevel(log_level)

    alert_logger = logging.getLogger(ALERT_LOG)
    for old in alert_logger.handlers:
        old.close()
    alert_logger.handlers.clear()
    if audit_path:
        alert_logger.addHandler(_alert_log_handler(audit_path))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))
