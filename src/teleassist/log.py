"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import re
import sys
from typing import Any

import structlog

REDACTED = "***"
_SECRET_FIELDS = frozenset({"api_key", "authorization", "token"})
_SECRET_VALUE_RE = re.compile(r"\bsk-[A-Za-z0-9_\-]{6,}")


def redact_secrets(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Mask API keys in event fields so they never reach the log sink."""
    for key, value in event_dict.items():
        if key in _SECRET_FIELDS and value:
            event_dict[key] = REDACTED
        elif isinstance(value, str) and "sk-" in value:
            event_dict[key] = _SECRET_VALUE_RE.sub(REDACTED, value)
    return event_dict


def setup_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure structlog with console (or JSON) output on stderr."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    renderer: structlog.types.Processor
    if json_logs:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            redact_secrets,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
