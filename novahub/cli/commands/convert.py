"""``novahub convert HANDOFF --out DIR`` — stage two in its own environment."""

from __future__ import annotations

import json
from pathlib import Path

import typer
from pydantic import ValidationError
from rich.panel import Panel

from novahub.cli.output import (
    HANDLED_ERRORS,
    console,
    fail,
    load_settings,
    print_measurements,
)
from novahub.core.handoff import STAGE_TWO_FILE
from novahub.core.orchestrator import Orchestrator
from novahub.models.build import MeasurementSet


def _load_expected(path: Path) -> MeasurementSet:
    try:
        registers = json.loads(path.read_text(encoding="utf-8"))
        return MeasurementSet(registers=registers)
    except (OSError, ValueError, ValidationError) as exc:
        console.print(f"[bold red]Unreadable expected measurements {path}:[/bold red] {exc}")
        raise typer.Exit(code=2) from exc


def convert_cmd(
    handoff: Path = typer.Argument(
        ..., help="Stage-one hand-off document, or the directory holding it."
    ),
    out: Path = typer.Option(
        ...,
        "--out",
        "-o",
        help="Directory for the enclave image, build log, and stage-two hand-off.",
    ),
    expect: Path = typer.Option(
        None,
        "--expect",
        help="pcr.json of a previous conversion of the same image to compare against.",
    ),
) -> None:
    """Convert the pushed image into a measured enclave image (stage two)."""
    settings = load_settings()
    expected = _load_expected(expect) if expect is not None else None
    try:
        orchestrator = Orchestrator.from_settings(settings)
        result = orchestrator.run_stage_two(handoff, out, expected=expected)
    except HANDLED_ERRORS as exc:
        raise fail(exc) from exc

    print_measurements(result.measurements)
    console.print(
        Panel(
            "\n".join([
                "[bold green]Enclave image built[/bold green]",
                "",
                f"[bold]Run ID:[/bold]   {result.run_id}",
                f"[bold]Image:[/bold]    {result.stage_one.image.ref}",
                f"[bold]sha256:[/bold]   {result.enclave_image_sha256}",
                f"[bold]Hand-off:[/bold] {out / STAGE_TWO_FILE}",
            ]),
            title="[bold]Stage Two[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )
