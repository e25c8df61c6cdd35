"""``novahub publish DIR`` — publish a stage-two output directory.

Safe to re-run: an identical republish is reported as unchanged, and a
failed release-record creation is completed by publishing again.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.panel import Panel

from novahub.cli.output import HANDLED_ERRORS, console, fail, load_settings
from novahub.core.orchestrator import Orchestrator
from novahub.models.build import PublishResult, PublishStatus


def print_publish_result(result: PublishResult) -> None:
    if result.status == PublishStatus.PUBLISHED:
        headline = "[bold green]Published[/bold green]"
    else:
        headline = "[bold yellow]Already published with identical content[/bold yellow]"
    console.print(
        Panel(
            "\n".join([
                headline,
                "",
                f"[bold]App:[/bold]      {result.app_name} {result.version}",
                f"[bold]Release:[/bold]  {result.release_tag}",
                f"[bold]Location:[/bold] {result.location}",
                f"[bold]sha256:[/bold]   {result.enclave_image_sha256}",
            ]),
            title="[bold]Publish Release[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )


def publish_cmd(
    directory: Path = typer.Argument(
        ..., help="Stage-two output directory (hand-off, enclave image, build log)."
    ),
) -> None:
    """Publish enclave image, measurements, and metadata for one app version."""
    settings = load_settings()
    try:
        orchestrator = Orchestrator.from_settings(settings)
        result = orchestrator.publish_from(directory)
    except HANDLED_ERRORS as exc:
        raise fail(exc) from exc

    print_publish_result(result)
