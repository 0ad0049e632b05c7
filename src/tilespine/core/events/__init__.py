"""Observable lifecycle events published by the execution core.

Why This Package Exists
-----------------------
Callers outside the core (dashboards, monitors, tests) want to know when
a run starts, when a unit succeeds or degrades, and how long it took,
without the wrapper or scheduler importing them. An explicit, runtime
agnostic bus decouples producers from consumers.

Event types::

    run:start        run:complete
    unit:start       unit:success    unit:error    unit:degraded
    unit:registered  unit:unregistered

Every ``unit:*`` payload carries ``unit_id``; execution events also carry
``duration_ms``.

Usage::

    from tilespine.core.events import Event
    from tilespine.core.events.memory import InMemoryEventBus

    bus = InMemoryEventBus()
    sub_id = bus.subscribe("unit:*", lambda event: print(event.event_type))
    bus.publish(Event(event_type="unit:success", source="wrapper", payload={"unit_id": "x"}))

Modules
-------
memory      InMemoryEventBus -- synchronous, thread-safe, single process
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from tilespine.core.models import utcnow

__all__ = [
    "Event",
    "EventBus",
    "EventHandler",
    "RUN_START",
    "RUN_COMPLETE",
    "UNIT_START",
    "UNIT_SUCCESS",
    "UNIT_ERROR",
    "UNIT_DEGRADED",
    "UNIT_REGISTERED",
    "UNIT_UNREGISTERED",
    "SYSTEM_HEALTH_UPDATE",
]

RUN_START = "run:start"
RUN_COMPLETE = "run:complete"
UNIT_START = "unit:start"
UNIT_SUCCESS = "unit:success"
UNIT_ERROR = "unit:error"
UNIT_DEGRADED = "unit:degraded"
UNIT_REGISTERED = "unit:registered"
UNIT_UNREGISTERED = "unit:unregistered"
SYSTEM_HEALTH_UPDATE = "system:health-update"


# ── Event Model ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Event:
    """Immutable lifecycle event.

    Attributes:
        event_type: Colon-separated type (e.g., ``unit:success``)
        source: Emitting component
        payload: Event-specific data
        timestamp: When the event occurred (UTC)
        correlation_id: Run id linking events of one run
        event_id: Unique event identifier
    """

    event_type: str
    source: str
    payload: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
    correlation_id: str | None = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def matches(self, pattern: str) -> bool:
        """Match ``*`` (anything), ``unit:*`` (one namespace) or an exact type."""
        if pattern == "*":
            return True
        namespace, sep, rest = pattern.partition(":")
        if sep and rest == "*":
            return self.event_type.split(":", 1)[0] == namespace and ":" in self.event_type
        return self.event_type == pattern


# ── Type Aliases ─────────────────────────────────────────────────────────

EventHandler = Callable[[Event], None]


# ── EventBus Protocol ────────────────────────────────────────────────────


@runtime_checkable
class EventBus(Protocol):
    """Publish/subscribe with wildcard patterns."""

    def publish(self, event: Event) -> None:
        ...

    def subscribe(self, event_type: str, handler: EventHandler) -> str:
        ...

    def unsubscribe(self, subscription_id: str) -> None:
        ...

    def close(self) -> None:
        ...
