"""Main Typer application — imports and registers all CLI commands.

Entry point: ``novahub`` (configured via pyproject.toml scripts).

Commands: validate, resolve, build, convert, publish, run, history.
"""

from __future__ import annotations

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from novahub.cli.commands.build import build_cmd
from novahub.cli.commands.convert import convert_cmd
from novahub.cli.commands.history import history_cmd
from novahub.cli.commands.publish import publish_cmd
from novahub.cli.commands.resolve import resolve_cmd
from novahub.cli.commands.run import run_cmd
from novahub.cli.commands.validate import validate_cmd
from novahub.cli.output import load_settings

app = typer.Typer(
    name="novahub",
    help="Nova App Hub: reproducible, attestable enclave image builds.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)

# Register subcommands
app.command(name="validate", help="Validate nova-build.yaml files.")(validate_cmd)
app.command(name="resolve", help="Print the resolved build request for a config.")(resolve_cmd)
app.command(name="build", help="Stage one: build and push the image.")(build_cmd)
app.command(name="convert", help="Stage two: convert and measure the enclave image.")(convert_cmd)
app.command(name="publish", help="Publish a stage-two output directory.")(publish_cmd)
app.command(name="run", help="Run the whole pipeline for one config.")(run_cmd)
app.command(name="history", help="Show a run's audit ledger.")(history_cmd)


@app.callback()
def configure_logging(
    log_level: str = typer.Option(
        None,
        "--log-level",
        help="Log level (defaults to NOVAHUB_LOG_LEVEL, then INFO).",
    ),
) -> None:
    """Install a Rich log handler on stderr."""
    level = (log_level or load_settings().log_level).upper()
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
