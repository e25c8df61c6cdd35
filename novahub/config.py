"""Hub settings — env-driven, passed explicitly into every component.

Reads from a .env file and NOVAHUB_* environment variables. There is no
module-level instance: the CLI builds one ``HubSettings`` per invocation and
hands it to the Orchestrator and collaborators, so a run's behaviour is
fully determined by what it was constructed with.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class HubSettings(BaseSettings):
    """Deployment settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export NOVAHUB_ENVIRONMENT=production
        export NOVAHUB_REGISTRY=ghcr.io/nova-app-hub
        export NOVAHUB_SKIP_REPO_CHECK=true

    Or via .env file::

        NOVAHUB_RELEASE_REPO=nova-app-hub/releases
        NOVAHUB_GITHUB_TOKEN=ghp_...
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="NOVAHUB_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"

    # Validation
    skip_repo_check: bool = False
    http_timeout_seconds: float = Field(default=10.0, gt=0)

    # Pipeline
    pipeline_timeout_seconds: int = Field(default=3600, gt=0)
    registry: str = "ghcr.io/nova-app-hub"
    apps_dir: Path = Path("apps")
    config_filename: str = "nova-build.yaml"

    # Storage paths
    work_dir: Path = Path(".novahub/work")
    ledger_path: Path = Path(".novahub/ledger.db")
    release_store_path: Path = Path(".novahub/releases")

    # Release hosting: an empty release_repo selects the local release host
    release_repo: str = ""
    github_api_url: str = "https://api.github.com"
    github_token: str = ""

    # External tools
    docker_binary: str = "docker"
    nitro_cli_binary: str = "nitro-cli"
    git_binary: str = "git"

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"
