"""Unit Registry: the descriptor table every run is planned from.

Manifesto:
    Dozens of engines are defined in many modules. The registry is the
    single table the orchestrator plans from, and it refuses structurally
    broken graphs at registration time so a run never discovers a cycle
    or a backwards dependency halfway through.

ARCHITECTURE
────────────
::

    register(unit, descriptor, config)
      ├─ 1. phase in layout?                 else PhaseOrderError
      ├─ 2. DFS over prospective graph       else CycleDetectedError(cycle)
      ├─ 3. every known edge crosses stages  else PhaseOrderError
      └─ 4. commit: RegisteredUnit(descriptor, ResilientExecutor)  → unit:registered

    unregister(id)   → executor.reset(), drop entry  → unit:unregistered
    get(id)          → RegisteredUnit or UnknownUnitError
    query(phase, tags, enabled, predicate)  → descriptors sorted by (priority, id)

BEST PRACTICES
──────────────
- Registration is last-writer-wins by id; the replaced unit's wrapper is
  reset.
- Dependencies on ids that are not registered yet are accepted and
  listed by ``missing_dependencies()``; they are validated when the
  dependency arrives.

Example::

    registry = UnitRegistry()
    registry.register(
        LiquidityEngine(),
        UnitDescriptor(id="net_liquidity", phase=Phase.FOUNDATION, priority=10),
    )
    registry.query(phase=Phase.FOUNDATION)

Tags:
    tilespine, orchestration, registry, dependency-graph, validation

Doc-Types:
    api-reference
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime

from tilespine.core.errors import ConfigurationError
from tilespine.core.events import UNIT_REGISTERED, UNIT_UNREGISTERED, Event, EventBus
from tilespine.core.events.memory import InMemoryEventBus
from tilespine.core.logging import get_logger
from tilespine.core.models import DEFAULT_LAYOUT, Phase, PhaseLayout, UnitDescriptor, utcnow
from tilespine.execution.config import UnitConfig
from tilespine.execution.wrapper import ComputeFn, Engine, ResilientExecutor, resolve_compute
from tilespine.orchestration.exceptions import (
    CycleDetectedError,
    PhaseOrderError,
    UnknownUnitError,
)

logger = get_logger(__name__)


@dataclass
class RegisteredUnit:
    """A registered unit: its descriptor, the engine, and the wrapper it holds."""

    descriptor: UnitDescriptor
    unit: Engine | ComputeFn
    executor: ResilientExecutor
    config: UnitConfig
    registered_at: datetime = field(default_factory=utcnow)

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def phase(self) -> Phase:
        return self.descriptor.phase


def _validate_layout(layout: PhaseLayout) -> dict[Phase, int]:
    if not layout:
        raise ConfigurationError("Phase layout must contain at least one stage", field="layout")
    index: dict[Phase, int] = {}
    for position, stage in enumerate(layout):
        if not stage:
            raise ConfigurationError(f"Stage {position} of the phase layout is empty", field="layout")
        for phase in stage:
            if phase in index:
                raise ConfigurationError(f"Phase '{phase.value}' appears in more than one stage", field="layout")
            index[phase] = position
    return index


def find_cycle(graph: dict[str, Iterable[str]]) -> list[str] | None:
    """Return one dependency cycle in ``graph`` (first id repeated last), or ``None``.

    Uses depth-first search with three-color marking:
    - WHITE (0): Unvisited
    - GRAY (1): Currently visiting (on current path)
    - BLACK (2): Finished visiting

    Meeting a GRAY node closes a cycle. Edges to ids outside ``graph``
    are ignored.
    """
    WHITE, GRAY, BLACK = 0, 1, 2

    color = {node: WHITE for node in graph}
    path: list[str] = []

    def dfs(node: str) -> list[str] | None:
        color[node] = GRAY
        path.append(node)

        for neighbor in sorted(graph[node]):
            if neighbor not in color:
                continue
            if color[neighbor] == GRAY:
                cycle_start = path.index(neighbor)
                return path[cycle_start:] + [neighbor]
            if color[neighbor] == WHITE:
                result = dfs(neighbor)
                if result:
                    return result

        color[node] = BLACK
        path.pop()
        return None

    for node in sorted(graph):
        if color[node] == WHITE:
            cycle = dfs(node)
            if cycle:
                return cycle
    return None


class UnitRegistry:
    """Thread-safe table of registered units.

    Args:
        layout: Ordered stages of phases; dependencies must sit in an earlier stage
        defaults: Config applied to units registered without their own
        event_bus: Receives ``unit:registered`` / ``unit:unregistered`` and,
            through each wrapper, the ``unit:*`` execution events
    """

    def __init__(
        self,
        layout: PhaseLayout = DEFAULT_LAYOUT,
        *,
        defaults: UnitConfig | None = None,
        event_bus: EventBus | None = None,
    ):
        self._stage_index = _validate_layout(layout)
        self._layout = layout
        self._defaults = defaults
        self._event_bus: EventBus = event_bus if event_bus is not None else InMemoryEventBus()
        self._units: dict[str, RegisteredUnit] = {}
        self._lock = threading.RLock()

    # ── Properties ───────────────────────────────────────────────

    @property
    def layout(self) -> PhaseLayout:
        return self._layout

    @property
    def defaults(self) -> UnitConfig:
        if self._defaults is None:
            self._defaults = UnitConfig.from_settings()
        return self._defaults

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    def stage_of(self, phase: Phase) -> int:
        """Index of the stage ``phase`` belongs to."""
        try:
            return self._stage_index[Phase(phase)]
        except KeyError:
            raise ConfigurationError(f"Phase '{Phase(phase).value}' is not part of the layout", field="phase") from None

    # ── Registration ─────────────────────────────────────────────

    def register(
        self,
        unit: Engine | ComputeFn,
        descriptor: UnitDescriptor,
        config: UnitConfig | None = None,
    ) -> RegisteredUnit:
        """Validate and register a unit.

        Raises:
            PhaseOrderError: Phase outside the layout, or a dependency edge
                that does not point to an earlier stage
            CycleDetectedError: The registration would close a cycle
            TypeError: ``unit`` has no ``compute()`` and is not callable
        """
        compute = resolve_compute(unit)
        config = config or self.defaults

        with self._lock:
            if descriptor.phase not in self._stage_index:
                raise PhaseOrderError.outside_layout(descriptor.id, descriptor.phase.value)

            graph = {uid: entry.descriptor.dependencies for uid, entry in self._units.items()}
            graph[descriptor.id] = descriptor.dependencies
            cycle = find_cycle(graph)
            if cycle:
                logger.warning("registry.register.cycle", unit_id=descriptor.id, cycle=cycle)
                raise CycleDetectedError(cycle, unit_id=descriptor.id)

            self._check_phase_order(descriptor)

            previous = self._units.get(descriptor.id)
            if previous is not None:
                previous.executor.reset()

            executor = ResilientExecutor(
                descriptor.id,
                compute,
                config,
                event_bus=self._event_bus,
            )
            entry = RegisteredUnit(descriptor=descriptor, unit=unit, executor=executor, config=config)
            self._units[descriptor.id] = entry

        logger.info(
            "registry.register",
            unit_id=descriptor.id,
            phase=descriptor.phase.value,
            priority=descriptor.priority,
            dependencies=sorted(descriptor.dependencies),
            replaced=previous is not None,
        )
        self._emit(UNIT_REGISTERED, descriptor)
        return entry

    def _check_phase_order(self, descriptor: UnitDescriptor) -> None:
        """Every edge between known units must point to a strictly earlier stage."""
        stage = self._stage_index[descriptor.phase]

        for dep_id in sorted(descriptor.dependencies):
            dep = self._units.get(dep_id)
            if dep is None or dep_id == descriptor.id:
                continue
            if self._stage_index[dep.phase] >= stage:
                raise PhaseOrderError(descriptor.id, dep_id, descriptor.phase.value, dep.phase.value)

        for other in sorted(self._units.values(), key=lambda e: e.id):
            if other.id == descriptor.id or descriptor.id not in other.descriptor.dependencies:
                continue
            if stage >= self._stage_index[other.phase]:
                raise PhaseOrderError(other.id, descriptor.id, other.phase.value, descriptor.phase.value)

    def unregister(self, unit_id: str) -> bool:
        """Remove a unit; returns ``False`` if it was not registered."""
        with self._lock:
            entry = self._units.pop(unit_id, None)
        if entry is None:
            return False

        entry.executor.reset()
        logger.info("registry.unregister", unit_id=unit_id)
        self._emit(UNIT_UNREGISTERED, entry.descriptor)
        return True

    def clear(self) -> None:
        """Unregister every unit (for tests)."""
        for unit_id in self.ids():
            self.unregister(unit_id)

    def _emit(self, event_type: str, descriptor: UnitDescriptor) -> None:
        self._event_bus.publish(
            Event(
                event_type=event_type,
                source="registry",
                payload={"unit_id": descriptor.id, "phase": descriptor.phase.value},
            )
        )

    # ── Lookup ───────────────────────────────────────────────────

    def get(self, unit_id: str) -> RegisteredUnit:
        with self._lock:
            entry = self._units.get(unit_id)
        if entry is None:
            raise UnknownUnitError(unit_id)
        return entry

    def find(self, unit_id: str) -> RegisteredUnit | None:
        with self._lock:
            return self._units.get(unit_id)

    def __contains__(self, unit_id: object) -> bool:
        with self._lock:
            return unit_id in self._units

    def __len__(self) -> int:
        with self._lock:
            return len(self._units)

    def ids(self) -> list[str]:
        with self._lock:
            return sorted(self._units)

    def query_units(
        self,
        phase: Phase | None = None,
        tags: Iterable[str] | None = None,
        enabled: bool | None = None,
        predicate: Callable[[UnitDescriptor], bool] | None = None,
    ) -> list[RegisteredUnit]:
        """Registered units matching every given filter, sorted by ``(priority, id)``.

        A ``tags`` filter matches units carrying any of the given tags.
        """
        wanted = frozenset(tags) if tags is not None else None
        with self._lock:
            entries = list(self._units.values())

        matched = []
        for entry in entries:
            d = entry.descriptor
            if phase is not None and d.phase != Phase(phase):
                continue
            if wanted is not None and not (d.tags & wanted):
                continue
            if enabled is not None and d.enabled != enabled:
                continue
            if predicate is not None and not predicate(d):
                continue
            matched.append(entry)
        return sorted(matched, key=lambda e: e.descriptor.sort_key)

    def query(
        self,
        phase: Phase | None = None,
        tags: Iterable[str] | None = None,
        enabled: bool | None = None,
        predicate: Callable[[UnitDescriptor], bool] | None = None,
    ) -> list[UnitDescriptor]:
        """Descriptors matching every given filter, sorted by ``(priority, id)``."""
        return [e.descriptor for e in self.query_units(phase, tags, enabled, predicate)]

    def all_descriptors(self) -> list[UnitDescriptor]:
        return self.query()

    def missing_dependencies(self) -> dict[str, list[str]]:
        """Declared dependencies that are not registered, per unit id."""
        with self._lock:
            known = set(self._units)
            missing = {
                uid: sorted(entry.descriptor.dependencies - known)
                for uid, entry in self._units.items()
            }
        return {uid: deps for uid, deps in sorted(missing.items()) if deps}


__all__ = ["RegisteredUnit", "UnitRegistry", "find_cycle"]
