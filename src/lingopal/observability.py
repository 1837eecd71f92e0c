"""Structured logging configuration using structlog.

Console rendering for interactive use, JSON rendering for log collection.
Credential-like keys are redacted before rendering.
"""

import sys
from typing import Dict, FrozenSet, cast

import structlog
from structlog.types import EventDict, WrappedLogger

SENSITIVE_KEYS: FrozenSet[str] = frozenset(
    {
        "api_key",
        "apikey",
        "token",
        "access_token",
        "secret",
        "password",
        "authorization",
        "credential",
        "credentials",
    }
)

LEVELS: Dict[str, int] = {
    "DEBUG": 10,
    "INFO": 20,
    "WARNING": 30,
    "ERROR": 40,
    "CRITICAL": 50,
}


def redact_secrets(
    _logger: WrappedLogger, _method_name: str, event_dict: EventDict
) -> EventDict:
    """Processor that masks values stored under sensitive keys."""
    for key in list(event_dict):
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = "[REDACTED]"
    return event_dict


def setup_logging(level: str = "INFO", format: str = "console") -> None:
    """Configure structured logging.

    Args:
        level: Minimum log level (DEBUG, INFO, WARNING, ERROR)
        format: "console" for humans, "json" for machines
    """
    processors: list = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
    ]
    if format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            LEVELS.get(level.upper(), 20)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger bound to the given name (usually ``__name__``)."""
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))
