"""``novahub run FILE`` — run the whole pipeline in one environment."""

from __future__ import annotations

from pathlib import Path

import typer

from novahub.cli.commands.publish import print_publish_result
from novahub.cli.output import (
    HANDLED_ERRORS,
    console,
    fail,
    load_settings,
    print_states,
)
from novahub.core.orchestrator import Orchestrator
from novahub.stages.stage_one import STAGE_ONE_LOG


def run_cmd(
    config_file: Path = typer.Argument(..., help="Path to a nova-build.yaml."),
    work_dir: Path = typer.Option(
        None,
        "--work-dir",
        "-w",
        help="Directory for hand-off documents. Defaults to <work_dir>/<run id>.",
    ),
) -> None:
    """Validate, resolve, build, convert, and publish one app version."""
    settings = load_settings()
    try:
        orchestrator = Orchestrator.from_settings(settings)
    except HANDLED_ERRORS as exc:
        raise fail(exc) from exc

    base = work_dir or settings.work_dir / orchestrator.run_id
    console.print(f"[bold cyan]Run {orchestrator.run_id}[/bold cyan]")
    try:
        result = orchestrator.run(config_file, base)
    except HANDLED_ERRORS as exc:
        print_states(orchestrator.run_id, orchestrator.get_states())
        raise fail(exc, log_ref=str(base / "stage-one" / STAGE_ONE_LOG)) from exc

    print_states(orchestrator.run_id, orchestrator.get_states())
    print_publish_result(result)
