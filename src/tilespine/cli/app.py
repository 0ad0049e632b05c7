"""
Root Typer application for the tilespine CLI.

``TARGET`` is ``module:attribute`` naming a ``UnitRegistry`` or a
zero-argument factory that returns one::

    tilespine plan dashboard.units:build_registry
    tilespine run dashboard.units:registry --phase foundation --json
    tilespine run dashboard.units:registry --unit net_liquidity
"""

from __future__ import annotations

import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version

import typer
from typer import Typer

from tilespine.cli.utils import (
    console,
    fail,
    load_registry,
    print_json,
    print_plan,
    print_reports,
    print_summary,
)
from tilespine.core.errors import TilespineError
from tilespine.core.logging import configure_logging
from tilespine.core.models import Phase
from tilespine.core.settings import get_settings
from tilespine.orchestration.scheduler import Orchestrator

app = Typer(
    name="tilespine",
    help="tilespine: resilient, phased execution of analytic units.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        try:
            v = pkg_version("tilespine")
        except PackageNotFoundError:
            from tilespine import __version__ as v
        typer.echo(f"tilespine {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="Log level (default from settings)."),
) -> None:
    """tilespine CLI: plan and run registered units."""
    settings = get_settings()
    configure_logging(
        level=log_level or settings.log_level,
        json_format=settings.log_format == "json",
        stream=sys.stderr,
    )


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("plan")
def plan_units(
    target: str = typer.Argument(..., help="module:attribute of a UnitRegistry or factory"),
    phase: Phase | None = typer.Option(None, "--phase", "-p", help="Only plan this phase."),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the stages a run would execute."""
    try:
        registry = load_registry(target)
        orchestrator = Orchestrator(registry)
        plan = orchestrator.plan(phase)
    except TilespineError as e:
        fail(e)

    if json_out:
        print_json(plan.to_dict())
        return
    print_plan(plan)
    missing = registry.missing_dependencies()
    for unit_id, deps in missing.items():
        console.print(f"[yellow]warning[/yellow]: {unit_id} depends on unregistered {', '.join(deps)}")


@app.command("run")
def run_units(
    target: str = typer.Argument(..., help="module:attribute of a UnitRegistry or factory"),
    phase: Phase | None = typer.Option(None, "--phase", "-p", help="Run only this phase."),
    unit: str | None = typer.Option(None, "--unit", "-u", help="Run a single unit."),
    deadline: float | None = typer.Option(None, "--deadline", help="Run deadline in seconds."),
    concurrency: int | None = typer.Option(None, "--concurrency", "-c", help="Workers per stage."),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Run all units, one phase, or one unit, and print their reports."""
    if phase is not None and unit is not None:
        fail("--phase and --unit are mutually exclusive")
    if deadline is not None and deadline <= 0:
        fail("--deadline must be positive")

    try:
        registry = load_registry(target)
        orchestrator = Orchestrator(registry, max_concurrency=concurrency)
        if unit is not None:
            results = orchestrator.run_unit(unit)
        elif phase is not None:
            results = orchestrator.run_phase(phase, deadline_seconds=deadline)
        else:
            results = orchestrator.run_all(deadline_seconds=deadline)
    except TilespineError as e:
        fail(e)

    summary = orchestrator.last_run if unit is None else None
    health = orchestrator.health()

    if json_out:
        print_json(
            {
                "run": summary.to_dict() if summary else None,
                "results": {uid: report.to_dict() for uid, report in results.items()},
                "health": health.model_dump(mode="json"),
            }
        )
        return
    print_reports(results)
    print_summary(summary, health)
