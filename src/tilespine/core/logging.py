"""
Structured logging for tilespine.

Every module logs through structlog with event-style keys
(``unit.execute.cache_hit``, ``scheduler.stage.start``) and keyword
context, so a run can be followed unit by unit in either a developer
console or a JSON log pipeline.

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, service="tilespine")
            ↓
        processor chain:
          1. TimeStamper (ISO)
          2. merge_contextvars    (run_id bound by LogContext)
          3. add_log_level        (logger_name is bound by get_logger)
          4. service name, *_ms values rounded to microseconds
          5. JSON: ECS field names + JSONRenderer
             console: ConsoleRenderer

Examples:
    >>> from tilespine.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", service="dashboard")
    >>> logger = get_logger(__name__)
    >>> logger.info("unit.execute.success", unit_id="net_liquidity", duration_ms=12.5)

Tags:
    logging, structlog, observability, tilespine

Doc-Types:
    - API Reference
    - Observability Guide
"""

from __future__ import annotations

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

_service = "tilespine"

# ECS names for the JSON output
_RENAMED_FIELDS = {"timestamp": "@timestamp", "level": "log.level"}


def _stamp_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service.name", _service)
    return event_dict


def _round_timings(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Round float ``*_ms`` values to microseconds."""
    for key, value in event_dict.items():
        if key.endswith("_ms") and isinstance(value, float):
            event_dict[key] = round(value, 3)
    return event_dict


def _ecs_names(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    for source, target in _RENAMED_FIELDS.items():
        if source in event_dict:
            event_dict[target] = event_dict.pop(source)
    return event_dict


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "tilespine",
    add_timestamp: bool = True,
    stream: TextIO | None = None,
    cache_loggers: bool = False,
) -> None:
    """Configure structlog (and the stdlib root logger) for tilespine.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR)
        json_format: JSON lines when True, coloured console when False,
            JSON unless stdout is a terminal when None
        service: Value of the ``service.name`` field
        add_timestamp: Prepend an ISO timestamp to every record
        stream: Destination (defaults to stdout)
        cache_loggers: Freeze each logger on first use; faster, but
            later ``configure_logging`` calls no longer reach it
    """
    global _service
    _service = service
    output = stream or sys.stdout
    threshold = getattr(logging, level.upper())

    if json_format is None:
        json_format = not sys.stdout.isatty()

    processors: list[Processor] = []
    if add_timestamp:
        processors.append(structlog.processors.TimeStamper(fmt="iso"))
    processors += [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _stamp_service,
        _round_timings,
    ]

    if json_format:
        processors += [
            _ecs_names,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=output.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(threshold),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=output),
        cache_logger_on_first_use=cache_loggers,
    )
    logging.basicConfig(format="%(message)s", stream=output, level=threshold)


def get_logger(name: str | None = None) -> Any:
    """Return a structlog logger; ``name`` is bound as the ``logger_name`` field."""
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(logger_name=name)


class LogContext:
    """Bind context variables (e.g. ``run_id``) for the duration of a block.

    Values bound by an enclosing block are restored on exit.

    Example:
        with LogContext(run_id="run-1a2b"):
            logger.info("scheduler.stage.start")
    """

    def __init__(self, **values: Any):
        self._values = values
        self._scope: AbstractContextManager[None] | None = None

    def __enter__(self) -> LogContext:
        self._scope = structlog.contextvars.bound_contextvars(**self._values)
        self._scope.__enter__()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self._scope is not None:
            self._scope.__exit__(*exc_info)
            self._scope = None


__all__ = [
    "LogContext",
    "configure_logging",
    "get_logger",
]
