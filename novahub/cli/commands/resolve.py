"""``novahub resolve FILE`` — print the build request a config resolves to.

Nothing is built and nothing is recorded in the ledger. Resolving the same
file twice against the same commit prints the same request hash.
"""

from __future__ import annotations

from pathlib import Path

import typer

from novahub.cli.commands.validate import validator_for
from novahub.cli.output import HANDLED_ERRORS, console, fail, load_settings
from novahub.collaborators.github import GitHubSource
from novahub.core.hasher import content_address
from novahub.core.resolver import BuildRequestResolver
from novahub.errors import ConfigurationError


def resolve_cmd(
    config_file: Path = typer.Argument(..., help="Path to a nova-build.yaml."),
) -> None:
    """Resolve commit, timestamp, and build arguments for one app."""
    settings = load_settings()
    source = GitHubSource(
        api_url=settings.github_api_url,
        token=settings.github_token,
        timeout=settings.http_timeout_seconds,
    )
    try:
        report = validator_for(settings).validate_file(config_file)
        if not report.ok:
            raise ConfigurationError(report)
        request = BuildRequestResolver(source).resolve(report.config)
    except HANDLED_ERRORS as exc:
        raise fail(exc) from exc

    console.print_json(request.model_dump_json())
    console.print(f"[bold]Request hash:[/bold] {content_address(request)}")
