"""Shared Rich rendering and failure reporting for CLI commands.

Each error class maps to its own exit code so automation can tell a
rejected configuration from a build failure or a determinism incident.
"""

from __future__ import annotations

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from novahub.config import HubSettings
from novahub.core.orchestrator import failure_category
from novahub.core.production_guard import ProductionConfigError
from novahub.core.run_ledger import LedgerIntegrityError
from novahub.core.stage_machine import InvalidTransitionError, PrerequisiteNotMetError
from novahub.errors import (
    ConfigurationError,
    DeterminismViolation,
    HandoffError,
    NovaHubError,
    PipelineTimeoutError,
    PublishConflict,
    ResolutionError,
    StageExecutionError,
)
from novahub.models.build import MeasurementSet
from novahub.models.stages import PIPELINE_STAGES, StageState
from novahub.models.validation import ValidationReport

console = Console()

# Errors a command reports and exits on; anything else is a bug and propagates.
HANDLED_ERRORS: tuple[type[BaseException], ...] = (
    NovaHubError,
    ProductionConfigError,
    LedgerIntegrityError,
    InvalidTransitionError,
    PrerequisiteNotMetError,
)

EXIT_CODES: dict[type[BaseException], int] = {
    ConfigurationError: 10,
    ResolutionError: 11,
    StageExecutionError: 12,
    PipelineTimeoutError: 13,
    DeterminismViolation: 14,
    PublishConflict: 15,
    HandoffError: 16,
    ProductionConfigError: 17,
    LedgerIntegrityError: 18,
    InvalidTransitionError: 19,
    PrerequisiteNotMetError: 19,
}

# Invalid settings share the production guard's code: the deployment is misconfigured.
SETTINGS_EXIT_CODE = EXIT_CODES[ProductionConfigError]

_DIAGNOSTIC_TAIL = 40

_STATE_ICONS: dict[StageState, str] = {
    StageState.PASSED: "[green]PASSED[/green]",
    StageState.FAILED: "[bold red]FAILED[/bold red]",
    StageState.RUNNING: "[yellow]RUNNING[/yellow]",
    StageState.NOT_STARTED: "[dim]NOT STARTED[/dim]",
    StageState.BLOCKED: "[bold red]BLOCKED[/bold red]",
}


def category_for(exc: BaseException) -> str:
    if isinstance(exc, ProductionConfigError):
        return "production_config"
    if isinstance(exc, LedgerIntegrityError):
        return "ledger_integrity"
    if isinstance(exc, (InvalidTransitionError, PrerequisiteNotMetError)):
        return "stage_order"
    return failure_category(exc)


def exit_code_for(exc: BaseException) -> int:
    for cls in type(exc).__mro__:
        if cls in EXIT_CODES:
            return EXIT_CODES[cls]
    return 1


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


def print_report(report: ValidationReport) -> None:
    """Print one file's validation result with every error and warning."""
    if report.ok:
        console.print(f"[bold green]OK[/bold green]   {escape(report.source)}")
    else:
        console.print(
            f"[bold red]FAIL[/bold red] {escape(report.source)} "
            f"({len(report.errors)} error(s))"
        )
    for issue in report.errors:
        field = f" [dim]({escape(issue.field)})[/dim]" if issue.field else ""
        console.print(f"    [red]{issue.code.value}[/red]: {escape(issue.message)}{field}")
    for issue in report.warnings:
        console.print(f"    [yellow]warning[/yellow]: {escape(issue.message)}")


def print_measurements(measurements: MeasurementSet, *, title: str = "Measurements") -> None:
    table = Table(title=f"{title} ({measurements.hash_algorithm})")
    table.add_column("Register", style="cyan")
    table.add_column("Value", overflow="fold")
    for name, value in measurements.registers.items():
        table.add_row(name, value)
    console.print(table)
    if measurements.debug_mode:
        console.print(
            "[bold yellow]Debug mode enabled:[/bold yellow] these values are not "
            "those of a production enclave."
        )


def print_states(run_id: str, states: dict[str, StageState]) -> None:
    table = Table(title=f"Run {run_id}")
    table.add_column("Stage", style="cyan")
    table.add_column("State", justify="center")
    for sd in PIPELINE_STAGES:
        state = states.get(sd.stage_id, StageState.NOT_STARTED)
        table.add_row(sd.display_name, _STATE_ICONS[state])
    console.print(table)


# ---------------------------------------------------------------------------
# Failure reporting
# ---------------------------------------------------------------------------


def fail(exc: BaseException, *, log_ref: str = "") -> typer.Exit:
    """Render ``exc`` for the user and return the ``typer.Exit`` to raise."""
    category = category_for(exc)

    if isinstance(exc, ConfigurationError):
        print_report(exc.report)
    elif isinstance(exc, DeterminismViolation):
        table = Table(title="Determinism violation")
        table.add_column("Register", style="cyan")
        table.add_column("Expected", overflow="fold")
        table.add_column("Observed", overflow="fold")
        for name in exc.mismatched_registers:
            table.add_row(name, exc.expected.get(name, "-"), exc.observed.get(name, "-"))
        console.print(table)
    elif isinstance(exc, PublishConflict):
        console.print(
            f"[bold]Mismatched:[/bold] {escape(', '.join(exc.mismatched_fields))}"
        )

    lines = [f"[bold]Category:[/bold] {category}", "", escape(str(exc))]
    if isinstance(exc, StageExecutionError):
        log_ref = exc.log_ref or log_ref
        if exc.diagnostics:
            tail = exc.diagnostics.splitlines()[-_DIAGNOSTIC_TAIL:]
            lines += ["", "[dim]" + escape("\n".join(tail)) + "[/dim]"]
    if log_ref:
        lines += ["", f"[bold]Build log:[/bold] {escape(log_ref)}"]

    console.print(
        Panel(
            "\n".join(lines),
            title="[bold red]Pipeline failed[/bold red]",
            border_style="red",
            padding=(1, 2),
        )
    )
    return typer.Exit(code=exit_code_for(exc))


def load_settings() -> HubSettings:
    """Build ``HubSettings`` from the environment, exiting cleanly if invalid."""
    try:
        return HubSettings()
    except ValidationError as exc:
        lines = ["[bold]Category:[/bold] settings", ""]
        for err in exc.errors():
            name = ".".join(str(part) for part in err["loc"])
            lines.append(escape(f"NOVAHUB_{name.upper()}: {err['msg']}"))
        console.print(
            Panel(
                "\n".join(lines),
                title="[bold red]Invalid settings[/bold red]",
                border_style="red",
                padding=(1, 2),
            )
        )
        raise typer.Exit(code=SETTINGS_EXIT_CODE) from exc
