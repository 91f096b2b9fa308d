"""
Structured logging for entityspine.

Manifesto:
    A governance decision is only useful if it can be traced afterwards.
    Every write and every admission rule that fires is one structlog event
    named for what happened, with the record's family, kind and id carried
    as fields instead of being formatted into a sentence.

    - **Events, not prose:** ``record_created``, ``admission_limit_exceeded``
    - **Request-scoped fields:** ``LogContext(request_id=...)`` tags every
      event logged inside the block, across awaits
    - **Two renderers:** JSON with ECS field names for log aggregation,
      console output for people at a terminal

Architecture:
    ::

        configure_logging(level, json_format, service)
            │
            ▼
        TimeStamper(iso, utc) ─► merge_contextvars ─► add_log_level
            ─► stack / exc info ─► enum values ─► service.name
            ─► JSON:    ECS renames (@timestamp, log.level) ─► JSONRenderer
               console: ConsoleRenderer

Examples:
    >>> from entityspine.core.enums import RecordFamily
    >>> from entityspine.core.logging import LogContext, configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> with LogContext(request_id="r-1"):
    ...     logger.info("record_created", family=RecordFamily.ENTITY, kind="book")

Tags:
    logging, structlog, observability, entityspine
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Mapping
from contextvars import Token
from enum import Enum
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from entityspine.core.errors import ConfigError

DEFAULT_SERVICE = "entityspine"

_ECS_RENAMES = {"timestamp": "@timestamp", "level": "log.level"}


# -- Processors -------------------------------------------------------------


class _ServiceName:
    """Stamp ``service.name`` on every event."""

    def __init__(self, service: str) -> None:
        self.service = service

    def __call__(self, logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service.name", self.service)
        return event_dict


def _enum_values(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    # family=RecordFamily.LIST renders as "list"
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
    return event_dict


def _ecs_field_names(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for plain, ecs in _ECS_RENAMES.items():
        if plain in event_dict:
            event_dict[ecs] = event_dict.pop(plain)
    return event_dict


def build_processors(*, json_format: bool, service: str = DEFAULT_SERVICE) -> list[Processor]:
    """Processor chain used by :func:`configure_logging`."""
    processors: list[Processor] = [
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _enum_values,
        _ServiceName(service),
    ]
    if json_format:
        processors += [
            _ecs_field_names,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


# -- Setup ------------------------------------------------------------------


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = DEFAULT_SERVICE,
) -> None:
    """Configure structlog for the process.

    Args:
        level: Level name (DEBUG, INFO, WARNING, ERROR).
        json_format: JSON when True, console when False, JSON unless
            stdout is a terminal when None.
        service: Value of the ``service.name`` field.

    Raises:
        ConfigError: ``level`` is not a known level name.
    """
    threshold = logging.getLevelNamesMapping().get(level.upper())
    if threshold is None:
        raise ConfigError(f"Unknown log level {level!r}.")
    if json_format is None:
        json_format = not sys.stdout.isatty()

    structlog.configure(
        processors=build_processors(json_format=json_format, service=service),
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        # configure_logging runs again on every CLI invocation
        cache_logger_on_first_use=False,
    )


def get_logger(name: str | None = None) -> Any:
    """Structured logger, usually ``get_logger(__name__)``."""
    return structlog.get_logger(name)


# -- Context ----------------------------------------------------------------


def bind_context(**fields: Any) -> Mapping[str, Token[Any]]:
    """Add ``fields`` to every later event of the current task."""
    return structlog.contextvars.bind_contextvars(**fields)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Bind fields for the duration of a ``with`` / ``async with`` block.

    Leaving the block restores whatever the fields were bound to before,
    so contexts nest.
    """

    def __init__(self, **fields: Any) -> None:
        self._fields = fields
        self._tokens: Mapping[str, Token[Any]] = {}

    def __enter__(self) -> LogContext:
        self._tokens = bind_context(**self._fields)
        return self

    def __exit__(self, *exc_info: object) -> None:
        structlog.contextvars.reset_contextvars(**self._tokens)

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, *exc_info: object) -> None:
        self.__exit__(*exc_info)


__all__ = [
    "DEFAULT_SERVICE",
    "build_processors",
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "LogContext",
]
