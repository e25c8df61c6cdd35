"""``novahub build FILE --out DIR`` — stage one in its own environment.

Validates and resolves the config, builds and pushes the image, and writes
the stage-one hand-off document plus the raw build log into ``DIR``.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.panel import Panel

from novahub.cli.output import HANDLED_ERRORS, console, fail, load_settings
from novahub.core.handoff import STAGE_ONE_FILE
from novahub.core.orchestrator import Orchestrator
from novahub.stages.stage_one import STAGE_ONE_LOG


def build_cmd(
    config_file: Path = typer.Argument(..., help="Path to a nova-build.yaml."),
    out: Path = typer.Option(
        ...,
        "--out",
        "-o",
        help="Directory for the stage-one hand-off and build log.",
    ),
) -> None:
    """Build and push the app image (stage one)."""
    settings = load_settings()
    try:
        orchestrator = Orchestrator.from_settings(settings)
        result = orchestrator.run_stage_one(config_file, out)
    except HANDLED_ERRORS as exc:
        raise fail(exc, log_ref=str(out / STAGE_ONE_LOG)) from exc

    console.print(
        Panel(
            "\n".join([
                "[bold green]Image pushed[/bold green]",
                "",
                f"[bold]Run ID:[/bold]   {result.run_id}",
                f"[bold]Image:[/bold]    {result.image.ref}",
                f"[bold]Commit:[/bold]   {result.build_request.commit}",
                f"[bold]Hand-off:[/bold] {out / STAGE_ONE_FILE}",
            ]),
            title="[bold]Stage One[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )
