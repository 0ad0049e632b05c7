"""System health rollup over every registered unit.

``SystemHealth`` is the response envelope returned by
``Orchestrator.health()`` and printed by the CLI. The overall status is
derived from two ratios:

=========  ======================  ======================
status     healthy-unit ratio      average confidence
=========  ======================  ======================
healthy    >= 0.8                  >= 0.7
degraded   >= 0.5                  >= 0.4
critical   otherwise (or no units)
=========  ======================  ======================
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

from tilespine.core.models import Report, UnitState, UnitStatus

HEALTHY_RATIO = 0.8
HEALTHY_CONFIDENCE = 0.7
DEGRADED_RATIO = 0.5
DEGRADED_CONFIDENCE = 0.4

HealthLevel = Literal["healthy", "degraded", "critical"]


class SystemHealth(BaseModel):
    """Aggregate health of the orchestrated units."""

    status: HealthLevel
    total_units: int = 0
    healthy_units: int = 0
    degraded_units: int = 0
    failed_units: int = 0
    running_units: int = 0
    average_confidence: float = 0.0
    load: float = Field(default=0.0, description="Running units / max concurrency")
    checked_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def healthy_ratio(self) -> float:
        if self.total_units == 0:
            return 0.0
        return self.healthy_units / self.total_units


def classify(healthy_ratio: float, average_confidence: float) -> HealthLevel:
    if healthy_ratio >= HEALTHY_RATIO and average_confidence >= HEALTHY_CONFIDENCE:
        return "healthy"
    if healthy_ratio >= DEGRADED_RATIO and average_confidence >= DEGRADED_CONFIDENCE:
        return "degraded"
    return "critical"


def assess_health(
    statuses: Iterable[UnitStatus],
    latest: Mapping[str, Report],
    *,
    running: int = 0,
    max_concurrency: int = 1,
) -> SystemHealth:
    """Roll unit statuses and their latest reports up into a ``SystemHealth``.

    A unit counts as healthy when its wrapper is neither failing nor
    degraded. Average confidence is taken over units that have a latest
    report.
    """
    statuses = list(statuses)
    total = len(statuses)
    healthy = degraded = failed = 0
    for status in statuses:
        report = latest.get(status.unit_id)
        if status.state == UnitState.DEGRADED or (report is not None and report.degraded):
            degraded += 1
        elif status.consecutive_failures > 0 or (report is not None and not report.success):
            failed += 1
        else:
            healthy += 1

    confidences = [latest[s.unit_id].confidence for s in statuses if s.unit_id in latest]
    average = sum(confidences) / len(confidences) if confidences else 0.0
    ratio = healthy / total if total else 0.0

    return SystemHealth(
        status=classify(ratio, average) if total else "critical",
        total_units=total,
        healthy_units=healthy,
        degraded_units=degraded,
        failed_units=failed,
        running_units=running,
        average_confidence=round(average, 4),
        load=running / max_concurrency if max_concurrency else 0.0,
    )


__all__ = ["SystemHealth", "assess_health", "classify"]
