"""
CLI utility helpers: target loading and output formatting.
"""

from __future__ import annotations

import importlib
import json
from collections.abc import Mapping
from typing import Any

import typer
from rich.console import Console
from rich.table import Table

from tilespine.core.errors import ConfigurationError, TilespineError
from tilespine.core.models import Report
from tilespine.orchestration.health import SystemHealth
from tilespine.orchestration.planner import ExecutionPlan
from tilespine.orchestration.registry import UnitRegistry
from tilespine.orchestration.scheduler import RunSummary

console = Console()
err_console = Console(stderr=True)

_STATE_STYLES = {
    "success": "green",
    "degraded": "yellow",
    "error": "red",
}


# ── Target loading ───────────────────────────────────────────────────────


def load_registry(target: str) -> UnitRegistry:
    """Resolve ``module:attribute`` to a registry.

    The attribute may be a ``UnitRegistry`` or a zero-argument factory
    returning one. Dotted attributes (``module:obj.registry``) are followed.

    Raises:
        ConfigurationError: The target cannot be imported or is not a registry
    """
    module_name, sep, attr_path = target.partition(":")
    if not sep or not module_name or not attr_path:
        raise ConfigurationError(f"Target must look like 'module:attribute', got {target!r}", field="target")

    try:
        obj: Any = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import module {module_name!r}: {e}", field="target", cause=e) from e

    for part in attr_path.split("."):
        try:
            obj = getattr(obj, part)
        except AttributeError as e:
            raise ConfigurationError(f"{module_name!r} has no attribute {attr_path!r}", field="target", cause=e) from e

    if not isinstance(obj, UnitRegistry) and callable(obj):
        obj = obj()
    if not isinstance(obj, UnitRegistry):
        raise ConfigurationError(
            f"Target {target!r} resolved to {type(obj).__name__}, expected a UnitRegistry",
            field="target",
        )
    return obj


def fail(error: TilespineError | str) -> None:
    """Print an error and exit with status 1."""
    message = error.message if isinstance(error, TilespineError) else error
    err_console.print(f"[bold red]Error[/bold red]: {message}")
    raise typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


def print_json(payload: Any) -> None:
    console.print_json(json.dumps(payload, default=str))


def print_plan(plan: ExecutionPlan) -> None:
    if not plan.stages:
        console.print("[dim]No units to run.[/dim]")
        return

    table = Table(title=f"Plan {plan.plan_id}")
    table.add_column("Stage", justify="right")
    table.add_column("Phases")
    table.add_column("Units")
    table.add_column("Est. ms", justify="right")
    for stage in plan.stages:
        table.add_row(
            str(stage.index),
            ", ".join(sorted(p.value for p in stage.phases)),
            ", ".join(stage.unit_ids),
            f"{stage.estimated_duration_ms:.0f}",
        )
    console.print(table)
    console.print(f"[dim]{len(plan)} units, estimated {plan.estimated_duration_ms:.0f} ms[/dim]")


def print_reports(results: Mapping[str, Report], *, title: str = "Results") -> None:
    if not results:
        console.print("[dim]No reports.[/dim]")
        return

    table = Table(title=title)
    table.add_column("Unit")
    table.add_column("State")
    table.add_column("Confidence", justify="right")
    table.add_column("Signal")
    table.add_column("ms", justify="right")
    table.add_column("Errors")
    for unit_id, report in results.items():
        state = report.state.value
        style = _STATE_STYLES.get(state, "")
        table.add_row(
            unit_id,
            f"[{style}]{state}[/{style}]" if style else state,
            f"{report.confidence:.2f}",
            report.signal.value,
            f"{report.duration_ms:.1f}" if report.duration_ms is not None else "-",
            "; ".join(report.errors),
        )
    console.print(table)


def print_summary(summary: RunSummary | None, health: SystemHealth) -> None:
    if summary is not None:
        counts = ", ".join(f"{k}={v}" for k, v in summary.counts.items())
        console.print(f"[dim]run {summary.run_id}: {summary.unit_count} units in {summary.duration_ms:.0f} ms ({counts})[/dim]")
    console.print(
        f"health: [bold]{health.status}[/bold] "
        f"({health.healthy_units}/{health.total_units} healthy, avg confidence {health.average_confidence:.2f})"
    )
