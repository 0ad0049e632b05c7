"""Periodic refresh: re-run every unit on a daemon thread.

┌──────────────────────────────────────────────────────────────────────┐
│  RefreshLoop(orchestrator, interval_seconds=None)                    │
│                                                                      │
│   start()                                                            │
│      └─ daemon thread:                                               │
│           run_all()  (immediately, unless run_immediately=False)     │
│           while not stop_event.wait(interval):                       │
│               tick_count += 1; last_tick = now()                     │
│               orchestrator.run_all()                                 │
│               publish system:health-update (orchestrator.health())   │
│                                                                      │
│   stop()  → stop_event.set(); thread.join(timeout)                   │
│                                                                      │
│  The interval defaults to the smallest refresh_interval_ms among     │
│  registered units, or the settings default when none are            │
│  registered. A failing tick is logged; the loop keeps going.         │
└──────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import threading
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from tilespine.core.events import SYSTEM_HEALTH_UPDATE, Event
from tilespine.core.logging import get_logger
from tilespine.core.settings import get_settings

if TYPE_CHECKING:
    from tilespine.orchestration.scheduler import Orchestrator

logger = get_logger(__name__)


class RefreshLoop:
    """Re-trigger ``Orchestrator.run_all()`` at a fixed interval.

    Example:
        >>> loop = RefreshLoop(orchestrator, interval_seconds=30)
        >>> loop.start()
        >>> # ... later ...
        >>> loop.stop()
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        interval_seconds: float | None = None,
        *,
        run_immediately: bool = True,
        join_timeout: float = 5.0,
    ):
        if interval_seconds is not None and interval_seconds <= 0:
            raise ValueError(f"interval_seconds must be positive, got {interval_seconds}")
        self._orchestrator = orchestrator
        self._interval_override = interval_seconds
        self._run_immediately = run_immediately
        self._join_timeout = join_timeout

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._tick_count = 0
        self._failed_ticks = 0
        self._last_tick: datetime | None = None
        self._last_error: str | None = None
        self._started = False

    @property
    def interval_seconds(self) -> float:
        if self._interval_override is not None:
            return self._interval_override
        intervals = [entry.config.refresh_interval_seconds for entry in self._orchestrator.registry.query_units()]
        if intervals:
            return min(intervals)
        return get_settings().refresh_interval_ms / 1000.0

    def start(self) -> None:
        """Start the refresh loop in a daemon thread."""
        if self._started:
            logger.warning("refresh.already_started")
            return

        interval = self.interval_seconds
        self._stop_event.clear()

        def _loop() -> None:
            logger.info("refresh.started", interval_seconds=interval)
            if self._run_immediately:
                self._tick()
            while not self._stop_event.wait(interval):
                self._tick()
            logger.info("refresh.stopped", tick_count=self._tick_count)

        self._thread = threading.Thread(target=_loop, daemon=True, name="tilespine-refresh")
        self._started = True
        self._thread.start()

    def _tick(self) -> None:
        with self._lock:
            self._tick_count += 1
            self._last_tick = datetime.now(UTC)
        try:
            self._orchestrator.run_all()
        except Exception as e:
            with self._lock:
                self._failed_ticks += 1
                self._last_error = str(e)
            logger.exception("refresh.tick_failed", error=str(e))
        self._publish_health()

    def _publish_health(self) -> None:
        try:
            health = self._orchestrator.health()
            self._orchestrator.event_bus.publish(
                Event(
                    event_type=SYSTEM_HEALTH_UPDATE,
                    source="refresh",
                    payload=health.model_dump(mode="json"),
                )
            )
        except Exception as e:
            logger.warning("refresh.health_update_failed", error=str(e))

    def stop(self) -> None:
        """Stop the loop, waiting up to ``join_timeout`` for the current tick."""
        if not self._started:
            return

        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=self._join_timeout)
            if self._thread.is_alive():
                logger.warning("refresh.thread_did_not_stop")

        self._started = False

    @property
    def is_running(self) -> bool:
        return self._started and self._thread is not None and self._thread.is_alive()

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick

    def health(self) -> dict[str, Any]:
        """Return loop health status."""
        return {
            "healthy": self.is_running and self._last_error is None,
            "running": self.is_running,
            "tick_count": self._tick_count,
            "failed_ticks": self._failed_ticks,
            "last_tick": self._last_tick.isoformat() if self._last_tick else None,
            "last_error": self._last_error,
            "interval_seconds": self.interval_seconds,
        }


__all__ = ["RefreshLoop"]
