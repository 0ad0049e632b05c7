"""Execution planning: registry + layout → ordered stages of unit ids.

A plan is built fresh for every run from the registry's current
contents. Stages follow the phase layout; inside a stage, unit ids are
listed in ``(priority, id)`` order, which is also their submission order
to the worker pool.

Example::

    plan = build_plan(registry)
    for stage in plan.stages:
        print(stage.index, sorted(p.value for p in stage.phases), stage.unit_ids)
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from tilespine.core.logging import get_logger
from tilespine.core.models import Phase, utcnow

if TYPE_CHECKING:
    from tilespine.orchestration.registry import UnitRegistry

logger = get_logger(__name__)


@dataclass(frozen=True)
class PlanStage:
    """Units that may run concurrently once every earlier stage has finished."""

    index: int
    phases: frozenset[Phase]
    unit_ids: tuple[str, ...]
    estimated_duration_ms: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "phases": sorted(p.value for p in self.phases),
            "unit_ids": list(self.unit_ids),
            "estimated_duration_ms": self.estimated_duration_ms,
        }


@dataclass(frozen=True)
class ExecutionPlan:
    """Ordered stages for one run."""

    stages: tuple[PlanStage, ...]
    plan_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_at: datetime = field(default_factory=utcnow)

    @property
    def unit_ids(self) -> tuple[str, ...]:
        return tuple(uid for stage in self.stages for uid in stage.unit_ids)

    @property
    def estimated_duration_ms(self) -> float:
        """Stages run back to back; a stage lasts as long as its slowest unit."""
        return sum(stage.estimated_duration_ms for stage in self.stages)

    def __len__(self) -> int:
        return len(self.unit_ids)

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "created_at": self.created_at.isoformat(),
            "unit_count": len(self),
            "estimated_duration_ms": self.estimated_duration_ms,
            "stages": [stage.to_dict() for stage in self.stages],
        }


def build_plan(
    registry: UnitRegistry,
    phase: Phase | None = None,
    *,
    tags: Iterable[str] | None = None,
    unit_ids: Iterable[str] | None = None,
) -> ExecutionPlan:
    """Plan every enabled unit, or only those of one phase.

    ``unit_ids`` narrows the plan to the named units; they keep their
    stage and their place in it. Ids that are not registered are ignored.

    Raises:
        ConfigurationError: ``phase`` is not part of the registry's layout
    """
    if phase is not None:
        phase = Phase(phase)
        registry.stage_of(phase)
    wanted = frozenset(tags) if tags is not None else None
    chosen = frozenset(unit_ids) if unit_ids is not None else None

    stages: list[PlanStage] = []
    for index, stage_phases in enumerate(registry.layout):
        phases = stage_phases if phase is None else stage_phases & {phase}
        if not phases:
            continue

        entries = registry.query_units(
            tags=wanted,
            enabled=True,
            predicate=lambda d, phases=phases: d.phase in phases and (chosen is None or d.id in chosen),
        )
        if not entries:
            continue

        stages.append(
            PlanStage(
                index=index,
                phases=frozenset(phases),
                unit_ids=tuple(e.id for e in entries),
                estimated_duration_ms=max(e.descriptor.estimated_duration_ms for e in entries),
            )
        )

    plan = ExecutionPlan(stages=tuple(stages))
    logger.debug(
        "planner.built",
        plan_id=plan.plan_id,
        phase=phase.value if phase is not None else None,
        stage_count=len(plan.stages),
        unit_count=len(plan),
    )
    return plan


__all__ = ["ExecutionPlan", "PlanStage", "build_plan"]
