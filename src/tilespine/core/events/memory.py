"""
In-memory event bus.

Manifesto:
    Run and unit lifecycle events are consumed inside the same process
    (dashboards, the CLI, tests). They need an event bus that delivers
    immediately, without external infrastructure or a particular event loop.

Handlers run synchronously on the publishing thread, which for ``unit:*``
events is a scheduler worker. A handler that raises is logged and
skipped; the remaining handlers still receive the event. The last
``history_size`` events are kept for inspection via :meth:`recent`.

Tags:
    tilespine, events, in-memory, testing, single-node

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from itertools import count

from tilespine.core.events import Event, EventHandler
from tilespine.core.logging import get_logger

__all__ = ["InMemoryEventBus"]

logger = get_logger(__name__)


@dataclass(frozen=True)
class _Subscription:
    id: str
    pattern: str
    handler: EventHandler


class InMemoryEventBus:
    """Synchronous, thread-safe, in-process event bus.

    Example::

        bus = InMemoryEventBus()
        bus.subscribe("run:*", lambda event: print(event.event_type))
        bus.publish(Event(event_type="run:start", source="example"))
        # Output: run:start
    """

    def __init__(self, history_size: int = 256) -> None:
        self._subscriptions: dict[str, _Subscription] = {}
        self._history: deque[Event] = deque(maxlen=history_size)
        self._ids = count(1)
        self._lock = threading.Lock()
        self._closed = False

    def publish(self, event: Event) -> None:
        """Record ``event`` and hand it to every subscriber whose pattern matches."""
        with self._lock:
            if self._closed:
                return
            self._history.append(event)
            targets = [sub for sub in self._subscriptions.values() if event.matches(sub.pattern)]

        for sub in targets:
            try:
                sub.handler(event)
            except Exception as e:
                logger.warning(
                    "events.handler_error",
                    subscription_id=sub.id,
                    pattern=sub.pattern,
                    event_type=event.event_type,
                    error=str(e),
                )

    def subscribe(self, event_type: str, handler: EventHandler) -> str:
        """Register ``handler`` for events matching ``event_type``.

        ``event_type`` is an exact type, a ``prefix:*`` pattern or ``*``.
        Returns the id to pass to :meth:`unsubscribe`.
        """
        with self._lock:
            sub_id = f"sub-{next(self._ids)}"
            self._subscriptions[sub_id] = _Subscription(sub_id, event_type, handler)
        return sub_id

    def unsubscribe(self, subscription_id: str) -> None:
        """Remove a subscription. Unknown ids are ignored."""
        with self._lock:
            self._subscriptions.pop(subscription_id, None)

    def recent(self, pattern: str = "*", limit: int | None = None) -> list[Event]:
        """Most recent published events matching ``pattern``, oldest first."""
        with self._lock:
            matched = [event for event in self._history if event.matches(pattern)]
        return matched[-limit:] if limit else matched

    def close(self) -> None:
        """Drop every subscription; later publishes are ignored."""
        with self._lock:
            self._closed = True
            self._subscriptions.clear()

    @property
    def subscription_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)
