"""Production configuration guard — enforces hard constraints in production.

Runs once when the Orchestrator is constructed and fails hard
(``ProductionConfigError``) if any constraint is violated. All violations
are collected and reported together.
"""

from __future__ import annotations

import logging

from novahub.config import HubSettings

logger = logging.getLogger(__name__)


class ProductionConfigError(RuntimeError):
    """Raised when production configuration constraints are violated.

    The process must not continue with this configuration.
    """


def enforce_production_constraints(settings: HubSettings) -> None:
    """Validate production-critical settings.

    Constraints enforced
    --------------------
    1. The repository reachability check may not be skipped.
    2. Releases must go to a hosted release repository, with credentials.
    """
    if not settings.is_production:
        return

    violations: list[str] = []

    if settings.skip_repo_check:
        violations.append(
            "skip_repo_check=True is not allowed in production. "
            "Set NOVAHUB_SKIP_REPO_CHECK=false."
        )

    if not settings.release_repo:
        violations.append(
            "release_repo is required in production. Set NOVAHUB_RELEASE_REPO=<owner>/<repo>."
        )

    if not settings.github_token:
        violations.append(
            "github_token is required in production. Set NOVAHUB_GITHUB_TOKEN."
        )

    if violations:
        msg = (
            "Production configuration guard failed.\n"
            + "\n".join(f"  - {v}" for v in violations)
        )
        logger.critical(msg)
        raise ProductionConfigError(msg)

    logger.info("Production configuration guard passed.")
