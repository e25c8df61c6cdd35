"""``novahub validate [FILES...]`` — validate nova-build.yaml submissions.

With no arguments every ``<apps_dir>/*/nova-build.yaml`` is checked. All
files are validated and reported before exiting; the exit status is 1 if
any of them failed.
"""

from __future__ import annotations

from pathlib import Path

import typer

from novahub.cli.output import (
    HANDLED_ERRORS,
    console,
    fail,
    load_settings,
    print_report,
)
from novahub.collaborators.github import GitHubSource
from novahub.config import HubSettings
from novahub.core.production_guard import enforce_production_constraints
from novahub.core.validator import ConfigValidator


def discover_configs(settings: HubSettings) -> list[Path]:
    return sorted(Path(settings.apps_dir).glob(f"*/{settings.config_filename}"))


def validator_for(settings: HubSettings) -> ConfigValidator:
    if settings.skip_repo_check:
        return ConfigValidator(None, check_reachability=False)
    source = GitHubSource(
        api_url=settings.github_api_url,
        token=settings.github_token,
        timeout=settings.http_timeout_seconds,
    )
    return ConfigValidator(source)


def validate_cmd(
    files: list[Path] = typer.Argument(
        None,
        help="Config files to validate. Defaults to every app under the apps directory.",
    ),
) -> None:
    """Validate app build configurations and report every violation."""
    settings = load_settings()
    try:
        enforce_production_constraints(settings)
    except HANDLED_ERRORS as exc:
        raise fail(exc) from exc

    targets = list(files) if files else discover_configs(settings)
    if not targets:
        console.print(
            f"[bold red]No {settings.config_filename} files found under "
            f"{settings.apps_dir}[/bold red]"
        )
        raise typer.Exit(code=1)

    if settings.skip_repo_check:
        console.print("[yellow]Skipping repository reachability checks[/yellow]")

    validator = validator_for(settings)
    reports = [validator.validate_file(path) for path in targets]
    for report in reports:
        print_report(report)

    failed = [r for r in reports if not r.ok]
    console.print()
    if failed:
        console.print(
            f"[bold red]{len(failed)} of {len(reports)} configuration(s) failed validation[/bold red]"
        )
        raise typer.Exit(code=1)
    console.print(f"[bold green]All {len(reports)} configuration(s) are valid[/bold green]")
