"""Subscription Bus: per-unit report listeners.

The orchestrator publishes a unit's report here only after the report
is in its latest-results map, so a listener that reads the orchestrator
from inside its callback sees state consistent with the notification.

Delivery rules::

    publish(unit_id, report, sequence)
      ├─ per-unit lock: deliveries for one id never overlap or reorder
      ├─ sequence not above the last delivered one for that id → dropped
      ├─ listener list snapshotted before delivery
      └─ each callback isolated: exceptions are logged, delivery continues

``sequence`` is the completion order of the unit's executions, assigned
by the publisher when it records the report. Report timestamps come
from the engines and are never used for ordering. Without a sequence
the bus numbers publishes in call order.

Callbacks that are bound methods are held through ``weakref.WeakMethod``:
once their object is garbage collected they silently drop out. Plain
functions and lambdas are held strongly; release them with the
unsubscribe handle.

Example::

    bus = SubscriptionBus()
    unsubscribe = bus.subscribe("net_liquidity", tile.on_report)
    ...
    unsubscribe()
    unsubscribe()  # no-op
"""

from __future__ import annotations

import threading
import weakref
from collections.abc import Callable
from dataclasses import dataclass
from itertools import count
from types import MethodType

from tilespine.core.logging import get_logger
from tilespine.core.models import Report

logger = get_logger(__name__)

ReportCallback = Callable[[str, Report], None]


@dataclass
class _Listener:
    token: int
    ref: Callable[[], ReportCallback | None]
    name: str

    def resolve(self) -> ReportCallback | None:
        return self.ref()


class Unsubscribe:
    """Handle returned by :meth:`SubscriptionBus.subscribe`. Idempotent."""

    def __init__(self, bus: SubscriptionBus, unit_id: str, token: int):
        self._bus = bus
        self._unit_id = unit_id
        self._token = token
        self._done = False

    @property
    def active(self) -> bool:
        return not self._done

    def __call__(self) -> bool:
        """Remove the listener; returns ``False`` if it was already removed."""
        if self._done:
            return False
        self._done = True
        return self._bus._remove(self._unit_id, self._token)


def _reference(callback: ReportCallback) -> Callable[[], ReportCallback | None]:
    if isinstance(callback, MethodType):
        return weakref.WeakMethod(callback)
    return lambda: callback


class SubscriptionBus:
    """Thread-safe per-unit callback registry with ordered delivery."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[_Listener]] = {}
        self._delivery_locks: dict[str, threading.Lock] = {}
        self._last_delivered: dict[str, int] = {}
        self._lock = threading.Lock()
        self._tokens = count(1)

    def subscribe(self, unit_id: str, callback: ReportCallback) -> Unsubscribe:
        """Register ``callback(unit_id, report)`` for one unit's reports."""
        if not callable(callback):
            raise TypeError("callback must be callable")
        listener = _Listener(
            token=next(self._tokens),
            ref=_reference(callback),
            name=getattr(callback, "__qualname__", type(callback).__name__),
        )
        with self._lock:
            self._listeners.setdefault(unit_id, []).append(listener)
        logger.debug("subscriptions.subscribe", unit_id=unit_id, callback=listener.name)
        return Unsubscribe(self, unit_id, listener.token)

    def _remove(self, unit_id: str, token: int) -> bool:
        with self._lock:
            listeners = self._listeners.get(unit_id)
            if not listeners:
                return False
            remaining = [item for item in listeners if item.token != token]
            if len(remaining) == len(listeners):
                return False
            if remaining:
                self._listeners[unit_id] = remaining
            else:
                del self._listeners[unit_id]
        return True

    def _delivery_lock(self, unit_id: str) -> threading.Lock:
        with self._lock:
            return self._delivery_locks.setdefault(unit_id, threading.Lock())

    def publish(self, unit_id: str, report: Report, sequence: int | None = None) -> int:
        """Deliver a report to the unit's listeners.

        Args:
            unit_id: Unit the report belongs to
            report: Report to deliver
            sequence: Completion order of the execution that produced
                ``report``; a publish whose sequence is not above the last
                delivered one for ``unit_id`` is dropped

        Returns:
            Number of callbacks that completed without raising
        """
        delivered = 0
        with self._delivery_lock(unit_id):
            with self._lock:
                last = self._last_delivered.get(unit_id, 0)
                if sequence is None:
                    sequence = last + 1
                elif sequence <= last:
                    logger.debug("subscriptions.publish.stale", unit_id=unit_id, sequence=sequence, last=last)
                    return 0
                self._last_delivered[unit_id] = sequence
                snapshot = list(self._listeners.get(unit_id, ()))

            dead: list[int] = []
            for listener in snapshot:
                callback = listener.resolve()
                if callback is None:
                    dead.append(listener.token)
                    continue
                try:
                    callback(unit_id, report)
                    delivered += 1
                except Exception as e:
                    logger.warning(
                        "subscriptions.callback_error",
                        unit_id=unit_id,
                        callback=listener.name,
                        error=str(e),
                    )

            for token in dead:
                self._remove(unit_id, token)
        return delivered

    def clear(self, unit_id: str | None = None) -> None:
        """Drop the listeners of one unit, or of all units."""
        with self._lock:
            if unit_id is None:
                self._listeners.clear()
                self._last_delivered.clear()
            else:
                self._listeners.pop(unit_id, None)
                self._last_delivered.pop(unit_id, None)

    def subscriber_count(self, unit_id: str | None = None) -> int:
        with self._lock:
            if unit_id is not None:
                return len(self._listeners.get(unit_id, ()))
            return sum(len(items) for items in self._listeners.values())


__all__ = ["ReportCallback", "SubscriptionBus", "Unsubscribe"]
