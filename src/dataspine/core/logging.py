"""
Structured logging for dataspine.

Thin configuration layer over structlog so every engine event is emitted as
a structured record (``sync_completed``, ``row_rejected``, ...) carrying the
dataset, container and operation that produced it.

Architecture:
    ::

        configure_logging(level="INFO", json_format=True, service="orders-app")
            ↓
        structlog processor chain:
          1. TimeStamper(iso)
          2. merge_contextvars      ← bind_context() / LogContext
          3. add_log_level / add_logger_name
          4. add_service_metadata
          5. render_row_keys        ← composite keys as "a|b"
          6. elasticsearch_compatible (JSON only: @timestamp, log.level,
             dataspine.dataset / container / operation / table)
          7. JSONRenderer (or ConsoleRenderer for dev)

Examples:
    >>> from dataspine.core.logging import configure_logging, get_logger
    >>> configure_logging(level="INFO", json_format=True, service="orders-app")
    >>> logger = get_logger(__name__)
    >>> with LogContext(dataset="orders", operation="sync_all"):
    ...     logger.info("sync_completed", inserted=3)

Tags:
    logging, structlog, observability, dataspine
"""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# Service name stamped on every record
_SERVICE_NAME = "dataspine"

# Context bound by the engine; grouped under "dataspine." in JSON output
SYNC_CONTEXT_KEYS = ("dataset", "container", "operation", "table")

# Driver loggers that echo every statement at INFO
_DRIVER_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool")


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _render_row_keys(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Row keys may be composite tuples or Decimals; log them as plain strings."""
    key = event_dict.get("key")
    if isinstance(key, tuple):
        event_dict["key"] = "|".join(str(part) for part in key)
    elif key is not None and not isinstance(key, (int, str)):
        event_dict["key"] = str(key)
    return event_dict


def _elasticsearch_compatible(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """ECS field names, with synchronization context under ``dataspine.*``."""
    renames = {"timestamp": "@timestamp", "level": "log.level", "logger": "log.logger"}
    for name, ecs_name in renames.items():
        if name in event_dict:
            event_dict[ecs_name] = event_dict.pop(name)
    for name in SYNC_CONTEXT_KEYS:
        if name in event_dict:
            event_dict[f"dataspine.{name}"] = event_dict.pop(name)
    return event_dict


def _processors(json_format: bool, add_timestamp: bool) -> list[Processor]:
    chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
        _render_row_keys,
    ]
    if add_timestamp:
        chain.insert(0, structlog.processors.TimeStamper(fmt="iso"))
    if json_format:
        chain += [_elasticsearch_compatible, structlog.processors.JSONRenderer()]
    else:
        chain.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return chain


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "dataspine",
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        add_timestamp: Include ISO timestamp in logs

    SQLAlchemy's statement and pool loggers are held at WARNING unless
    *level* is DEBUG.
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()
    numeric = getattr(logging, level.upper())

    structlog.configure(
        processors=_processors(json_format, add_timestamp),
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=numeric)
    for name in _DRIVER_LOGGERS:
        logging.getLogger(name).setLevel(numeric if numeric <= logging.DEBUG else logging.WARNING)


def configure_from_settings(settings: Any) -> None:
    """Configure logging from a :class:`~dataspine.core.settings.DataSpineSettings`."""
    configure_logging(
        level=settings.log_level,
        json_format=settings.log_format == "json",
        service=settings.service_name,
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        with LogContext(dataset="orders", operation="sync_all"):
            logger.info("sync_started")
        # Context cleared here
    """

    def __init__(self, **kwargs: Any):
        self._context = {k: v for k, v in kwargs.items() if v is not None}

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args: object) -> None:
        unbind_context(*self._context.keys())


__all__ = [
    "configure_logging",
    "configure_from_settings",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
]
