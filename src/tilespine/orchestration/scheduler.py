"""Orchestrator: runs registered units stage by stage with bounded concurrency.

Manifesto:
    One slow or failing engine must never stall or abort the others.
    Stages run strictly in sequence so a dependency always has a
    terminal report before its dependents start; inside a stage every
    unit runs on a bounded worker pool, and each unit's failure stays
    inside that unit's report. A run always completes and always
    returns a full result map.

ARCHITECTURE
────────────
::

    run_all() / run_phase(phase) / run_units(ids)
      │
      ├─ build_plan(registry)                → stages of unit ids
      ├─ run:start
      ├─ for each stage (sequential):
      │     ThreadPoolExecutor(max_concurrency)
      │       └─ executor.execute(deadline)  per unit, contextvars copied
      │     as_completed(timeout=deadline.remaining())
      │       ├─ record(report)  → run map + latest map + sequence, then publish
      │       └─ still pending at deadline → executor.expire() (degrade / error)
      └─ run:complete, RunSummary

    run_unit(id)  → same wrapper, same single-flight; no stage machinery

Guardrails:
    - The per-run map and the latest-results map are written under one
      lock; subscribers are notified only after the write.
    - A unit unregistered before its turn is skipped. A unit
      unregistered while running keeps its report in that run's map but
      is not merged into the latest results.
    - The pool is shut down without waiting, so a stuck worker never
      holds the run past its deadline.

Example::

    orchestrator = Orchestrator(registry, max_concurrency=4)
    results = orchestrator.run_all(deadline_seconds=30)
    print(orchestrator.last_run.counts)

Tags:
    tilespine, orchestration, scheduler, thread-pool, deadline, fault-isolation

Doc-Types:
    api-reference
"""

from __future__ import annotations

import contextvars
import threading
import time
import uuid
from collections import Counter
from collections.abc import Callable, Iterable
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from datetime import datetime
from itertools import count
from typing import Any

from tilespine.core.errors import ConfigurationError
from tilespine.core.events import RUN_COMPLETE, RUN_START, UNIT_UNREGISTERED, Event, EventBus
from tilespine.core.logging import LogContext, get_logger
from tilespine.core.models import Phase, Report, UnitState, utcnow
from tilespine.core.settings import get_settings
from tilespine.execution.timeout import Deadline
from tilespine.execution.wrapper import DEADLINE_EXCEEDED
from tilespine.orchestration.health import SystemHealth, assess_health
from tilespine.orchestration.planner import ExecutionPlan, PlanStage, build_plan
from tilespine.orchestration.registry import RegisteredUnit, UnitRegistry
from tilespine.orchestration.subscriptions import SubscriptionBus

logger = get_logger(__name__)


@dataclass(frozen=True)
class RunSummary:
    """Outcome of one ``run_all`` / ``run_phase`` / ``run_units`` call."""

    run_id: str
    scope: str
    started_at: datetime
    duration_ms: float
    unit_count: int
    counts: dict[str, int] = field(default_factory=dict)
    timed_out: tuple[str, ...] = ()
    skipped: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "scope": self.scope,
            "started_at": self.started_at.isoformat(),
            "duration_ms": round(self.duration_ms, 3),
            "unit_count": self.unit_count,
            "counts": dict(self.counts),
            "timed_out": list(self.timed_out),
            "skipped": list(self.skipped),
        }


@dataclass
class _RunState:
    run_id: str
    deadline: Deadline | None
    results: dict[str, Report] = field(default_factory=dict)
    timed_out: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class Orchestrator:
    """Plans and runs the units of a :class:`UnitRegistry`.

    Args:
        registry: Units to run
        max_concurrency: Worker pool size per stage (settings default)
        run_timeout_seconds: Default run deadline (settings default; ``None`` = no deadline)
        subscriptions: Bus notified of each success or degraded report
        event_bus: Receives ``run:*`` events (defaults to the registry's bus)
        clock: Monotonic clock for deadlines and durations
    """

    def __init__(
        self,
        registry: UnitRegistry,
        *,
        max_concurrency: int | None = None,
        run_timeout_seconds: float | None = None,
        subscriptions: SubscriptionBus | None = None,
        event_bus: EventBus | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        settings = get_settings()
        self._max_concurrency = max_concurrency if max_concurrency is not None else settings.max_concurrency
        if self._max_concurrency < 1:
            raise ConfigurationError(
                f"max_concurrency must be >= 1, got {self._max_concurrency}", field="max_concurrency"
            )
        self._run_timeout_seconds = (
            run_timeout_seconds if run_timeout_seconds is not None else settings.run_timeout_seconds
        )
        if self._run_timeout_seconds is not None and self._run_timeout_seconds <= 0:
            raise ConfigurationError("run_timeout_seconds must be positive", field="run_timeout_seconds")

        self._registry = registry
        self._subscriptions = subscriptions or SubscriptionBus()
        self._event_bus = event_bus or registry.event_bus
        self._clock = clock

        self._lock = threading.Lock()
        self._latest: dict[str, Report] = {}
        self._running: Counter[str] = Counter()
        self._last_run: RunSummary | None = None
        self._sequence = count(1)

        self._unregister_sub = registry.event_bus.subscribe(UNIT_UNREGISTERED, self._on_unregistered)

    # ── Properties ───────────────────────────────────────────────

    @property
    def registry(self) -> UnitRegistry:
        return self._registry

    @property
    def subscriptions(self) -> SubscriptionBus:
        return self._subscriptions

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def max_concurrency(self) -> int:
        return self._max_concurrency

    @property
    def last_run(self) -> RunSummary | None:
        return self._last_run

    def subscribe(self, unit_id: str, callback: Callable[[str, Report], None]):
        """Shortcut for ``subscriptions.subscribe``."""
        return self._subscriptions.subscribe(unit_id, callback)

    def close(self) -> None:
        """Stop reacting to registry events."""
        self._registry.event_bus.unsubscribe(self._unregister_sub)

    # ── Planning ─────────────────────────────────────────────────

    def plan(
        self,
        phase: Phase | None = None,
        *,
        tags: Iterable[str] | None = None,
        unit_ids: Iterable[str] | None = None,
    ) -> ExecutionPlan:
        """Build the plan a run would execute, without running it."""
        return build_plan(self._registry, phase, tags=tags, unit_ids=unit_ids)

    # ── Runs ─────────────────────────────────────────────────────

    def run_all(
        self,
        *,
        deadline_seconds: float | None = None,
        tags: Iterable[str] | None = None,
    ) -> dict[str, Report]:
        """Run every enabled unit, stage by stage."""
        return self._execute(self.plan(tags=tags), "all", deadline_seconds)

    def run_phase(self, phase: Phase, *, deadline_seconds: float | None = None) -> dict[str, Report]:
        """Run the enabled units of one phase.

        Dependencies are not run first; a dependency with no latest
        report is logged as a warning.
        """
        phase = Phase(phase)
        plan = self.plan(phase)

        with self._lock:
            known = set(self._latest)
        for uid in plan.unit_ids:
            entry = self._registry.find(uid)
            if entry is None:
                continue
            missing = sorted(entry.descriptor.dependencies - known)
            if missing:
                logger.warning("scheduler.run_phase.dependency_without_report", unit_id=uid, dependencies=missing)

        return self._execute(plan, phase.value, deadline_seconds)

    def run_units(self, unit_ids: Iterable[str], *, deadline_seconds: float | None = None) -> dict[str, Report]:
        """Run a chosen subset of units through the staged plan.

        Each unit keeps its stage and its priority order. Ids that are not
        registered, or disabled, are skipped with a warning.
        """
        requested = list(dict.fromkeys(unit_ids))
        plan = self.plan(unit_ids=requested)
        planned = set(plan.unit_ids)
        ignored = [uid for uid in requested if uid not in planned]
        if ignored:
            logger.warning("scheduler.run_units.ignored", unit_ids=ignored)
        return self._execute(plan, "units", deadline_seconds)

    def run_unit(self, unit_id: str) -> dict[str, Report]:
        """Run one unit on the calling thread.

        Concurrent calls for the same id share one computation and return
        the same ``Report`` instance.

        Raises:
            UnknownUnitError: No unit with that id is registered
        """
        entry = self._registry.get(unit_id)
        deadline = Deadline.after(self._run_timeout_seconds, clock=self._clock) if self._run_timeout_seconds else None
        results: dict[str, Report] = {}
        try:
            report = self._execute_entry(entry, deadline)
        except Exception as e:
            report = self._crash_report(entry, e)
        self._record(entry, report, results)
        return results

    def _execute(self, plan: ExecutionPlan, scope: str, deadline_seconds: float | None) -> dict[str, Report]:
        seconds = deadline_seconds if deadline_seconds is not None else self._run_timeout_seconds
        state = _RunState(
            run_id=uuid.uuid4().hex[:12],
            deadline=Deadline.after(seconds, clock=self._clock) if seconds else None,
        )
        started_at = utcnow()
        start = self._clock()

        self._emit(RUN_START, run_id=state.run_id, scope=scope, unit_count=len(plan), stage_count=len(plan.stages))
        with LogContext(run_id=state.run_id):
            logger.info(
                "scheduler.run.start",
                scope=scope,
                unit_count=len(plan),
                stage_count=len(plan.stages),
                deadline_seconds=seconds,
            )
            for stage in plan.stages:
                self._run_stage(stage, state)

            duration_ms = (self._clock() - start) * 1000.0
            counts = Counter(report.state.value for report in state.results.values())
            summary = RunSummary(
                run_id=state.run_id,
                scope=scope,
                started_at=started_at,
                duration_ms=duration_ms,
                unit_count=len(state.results),
                counts={s.value: counts.get(s.value, 0) for s in (UnitState.SUCCESS, UnitState.DEGRADED, UnitState.ERROR)},
                timed_out=tuple(state.timed_out),
                skipped=tuple(state.skipped),
            )
            self._last_run = summary
            logger.info("scheduler.run.complete", **summary.to_dict())

        self._emit(RUN_COMPLETE, **summary.to_dict())
        return dict(state.results)

    def _run_stage(self, stage: PlanStage, state: _RunState) -> None:
        entries: list[RegisteredUnit] = []
        for uid in stage.unit_ids:
            entry = self._registry.find(uid)
            if entry is None:
                state.skipped.append(uid)
                logger.info("scheduler.unit.skipped", unit_id=uid, reason="unregistered")
                continue
            entries.append(entry)
        if not entries:
            return

        if state.deadline is not None and state.deadline.is_expired():
            logger.warning("scheduler.stage.deadline_passed", stage=stage.index, pending=[e.id for e in entries])
            for entry in entries:
                self._expire(entry, state)
            return

        logger.info(
            "scheduler.stage.start",
            stage=stage.index,
            phases=sorted(p.value for p in stage.phases),
            unit_ids=[e.id for e in entries],
        )

        pool = ThreadPoolExecutor(
            max_workers=min(self._max_concurrency, len(entries)),
            thread_name_prefix=f"tilespine-stage{stage.index}",
        )
        futures: dict[Future[Report], RegisteredUnit] = {}
        collected: set[Future[Report]] = set()
        try:
            for entry in entries:
                ctx = contextvars.copy_context()
                futures[pool.submit(ctx.run, self._execute_entry, entry, state.deadline)] = entry

            timeout = None if state.deadline is None else max(state.deadline.remaining(), 0.0)
            try:
                for future in as_completed(futures, timeout=timeout):
                    collected.add(future)
                    self._collect(futures[future], future, state)
            except FuturesTimeout:
                logger.warning(
                    "scheduler.stage.deadline",
                    stage=stage.index,
                    pending=sorted(futures[f].id for f in futures if f not in collected),
                )

            for future, entry in futures.items():
                if future in collected:
                    continue
                if future.done():
                    self._collect(entry, future, state)
                    continue
                future.cancel()
                self._expire(entry, state)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        logger.info("scheduler.stage.complete", stage=stage.index)

    def _execute_entry(self, entry: RegisteredUnit, deadline: Deadline | None) -> Report:
        with self._lock:
            self._running[entry.id] += 1
        try:
            return entry.executor.execute(deadline=deadline)
        finally:
            with self._lock:
                self._running[entry.id] -= 1
                if self._running[entry.id] <= 0:
                    del self._running[entry.id]

    def _collect(self, entry: RegisteredUnit, future: Future[Report], state: _RunState) -> None:
        try:
            report = future.result()
        except Exception as e:
            report = self._crash_report(entry, e)
        self._record(entry, report, state.results)

    def _expire(self, entry: RegisteredUnit, state: _RunState) -> None:
        state.timed_out.append(entry.id)
        self._record(entry, entry.executor.expire(DEADLINE_EXCEEDED), state.results)

    def _crash_report(self, entry: RegisteredUnit, error: Exception) -> Report:
        logger.error("scheduler.unit.crashed", unit_id=entry.id, error=str(error), exc_info=True)
        return Report.failure(f"internal error: {error}").stamped(unit_id=entry.id)

    def _record(self, entry: RegisteredUnit, report: Report, results: dict[str, Report]) -> None:
        """Write a report into the run map and the latest map, then notify."""
        with self._lock:
            results[entry.id] = report
            current = self._registry.find(entry.id) is entry
            fresh = self._latest.get(entry.id) is not report
            if current:
                self._latest[entry.id] = report
            sequence = next(self._sequence)

        if not current:
            logger.info("scheduler.unit.unregistered_during_run", unit_id=entry.id)
            return
        if not (fresh and report.success):
            return
        try:
            self._subscriptions.publish(entry.id, report, sequence)
        except Exception as e:
            logger.error("scheduler.unit.publish_failed", unit_id=entry.id, error=str(e), exc_info=True)

    def _on_unregistered(self, event: Event) -> None:
        unit_id = event.payload.get("unit_id")
        with self._lock:
            self._latest.pop(unit_id, None)
        self._subscriptions.clear(unit_id)

    def _emit(self, event_type: str, **payload: Any) -> None:
        self._event_bus.publish(
            Event(
                event_type=event_type,
                source="orchestrator",
                payload=payload,
                correlation_id=payload.get("run_id"),
            )
        )

    # ── Observability ────────────────────────────────────────────

    def results(self) -> dict[str, Report]:
        """Copy of the latest report per registered unit."""
        with self._lock:
            return dict(self._latest)

    def latest(self, unit_id: str) -> Report | None:
        with self._lock:
            return self._latest.get(unit_id)

    def clear_results(self) -> None:
        """Forget every latest report. Unit caches and subscribers are kept."""
        with self._lock:
            self._latest.clear()
        logger.info("scheduler.results.cleared")

    def execution_status(self) -> dict[str, int]:
        """Unit counts by latest outcome."""
        with self._lock:
            latest = list(self._latest.values())
            running = len(self._running)
        return {
            "total": len(self._registry),
            "running": running,
            "completed": sum(1 for r in latest if r.success and not r.degraded),
            "failed": sum(1 for r in latest if not r.success),
            "degraded": sum(1 for r in latest if r.degraded),
        }

    def health(self) -> SystemHealth:
        statuses = [entry.executor.status() for entry in self._registry.query_units()]
        with self._lock:
            latest = dict(self._latest)
            running = len(self._running)
        return assess_health(statuses, latest, running=running, max_concurrency=self._max_concurrency)


__all__ = ["Orchestrator", "RunSummary"]
