"""Configuration validation for nova-build.yaml submissions.

Structural rules come from the ``AppConfig`` pydantic models. Semantic rules
are checked here, each producing its own ``IssueCode``, and all of them run
even after the first failure so that a submitter gets the full list in one
pass. Unknown keys are warnings, never errors.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError

from novahub.collaborators.base import SourceHost
from novahub.models.app_config import (
    AppConfig,
    BuildArg,
    BuildSpec,
    EnclaveSpec,
    ReproducibleSpec,
)
from novahub.models.validation import IssueCode, ValidationIssue, ValidationReport

logger = logging.getLogger(__name__)

NAME_RE = re.compile(r"^[a-z0-9-]+$")

# https://semver.org/#is-there-a-suggested-regular-expression-regex-to-check-a-semver-string
SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)"
    r"(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)

REPO_URL_RE = re.compile(
    r"^https://github\.com/[A-Za-z0-9](?:[A-Za-z0-9-]*[A-Za-z0-9])?/[A-Za-z0-9._-]+/?$"
)

COMMIT_RE = re.compile(r"^[0-9a-f]{7,40}$")

# Nested groups whose unknown keys are reported. ``metadata`` is free-form.
_CHECKED_GROUPS: dict[str, type[BaseModel]] = {
    "build": BuildSpec,
    "enclave": EnclaveSpec,
    "reproducible": ReproducibleSpec,
}


def load_config_file(path: Path) -> dict[str, Any]:
    """Read a YAML config file into a mapping.

    Raises ``FileNotFoundError`` if absent and ``ValueError`` for invalid
    YAML or a document that is not a mapping.
    """
    try:
        with open(path, "r", encoding="utf-8") as handle:
            payload = yaml.safe_load(handle)
    except yaml.YAMLError as exc:
        raise ValueError(f"Invalid YAML in {path}: {exc}") from exc

    if payload is None:
        payload = {}
    if not isinstance(payload, Mapping):
        raise ValueError(f"Config file must contain a YAML mapping: {path}")
    return dict(payload)


class ConfigValidator:
    """Validates one application's build configuration.

    Parameters
    ----------
    source_host:
        Used for the repository reachability check. When ``None`` the check
        is skipped.
    check_reachability:
        Explicit override for the check, which depends on the network and
        is therefore not deterministic.
    """

    def __init__(
        self,
        source_host: SourceHost | None = None,
        *,
        check_reachability: bool = True,
    ) -> None:
        self._source_host = source_host
        self._check_reachability = check_reachability and source_host is not None

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def validate(
        self,
        raw_config: Any,
        directory_name: str,
        *,
        source: str = "<memory>",
        timeout: float | None = None,
    ) -> ValidationReport:
        """Validate ``raw_config`` declared in directory ``directory_name``.

        Returns a report carrying every error and warning found. The
        report's ``config`` is the parsed ``AppConfig`` only when it is
        free of errors. ``timeout`` bounds the reachability check.
        """
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        if not isinstance(raw_config, Mapping):
            errors.append(ValidationIssue(
                code=IssueCode.SCHEMA,
                message=f"configuration must be a mapping, got {type(raw_config).__name__}",
            ))
            return self._report(source, directory_name, errors, warnings, None)

        config: AppConfig | None = None
        try:
            config = AppConfig.model_validate(dict(raw_config))
        except ValidationError as exc:
            errors.extend(self._schema_issues(exc))

        errors.extend(self._semantic_issues(raw_config, directory_name, timeout))
        warnings.extend(self._unknown_key_issues(raw_config))

        return self._report(
            source, directory_name, errors, warnings, config if not errors else None
        )

    def validate_file(
        self, path: Path, *, timeout: float | None = None
    ) -> ValidationReport:
        """Load and validate a nova-build.yaml; the directory is its parent."""
        path = Path(path)
        directory_name = path.resolve().parent.name
        try:
            raw = load_config_file(path)
        except (OSError, ValueError) as exc:
            issue = ValidationIssue(code=IssueCode.SCHEMA, message=str(exc))
            return self._report(str(path), directory_name, [issue], [], None)
        return self.validate(raw, directory_name, source=str(path), timeout=timeout)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    @staticmethod
    def _schema_issues(exc: ValidationError) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err["loc"])
            issues.append(ValidationIssue(
                code=IssueCode.SCHEMA,
                message=f"{loc or '<root>'}: {err['msg']}",
                field=loc,
            ))
        return issues

    def _semantic_issues(
        self, raw: Mapping[str, Any], directory_name: str, timeout: float | None
    ) -> list[ValidationIssue]:
        # Each rule looks only at fields of the right type; a missing or
        # mistyped field has already been reported as a schema error.
        issues: list[ValidationIssue] = []

        name = raw.get("name")
        if isinstance(name, str):
            if name != directory_name:
                issues.append(ValidationIssue(
                    code=IssueCode.NAME_DIRECTORY_MISMATCH,
                    message=f"Directory name '{directory_name}' must match app name '{name}'",
                    field="name",
                ))
            if not NAME_RE.match(name):
                issues.append(ValidationIssue(
                    code=IssueCode.INVALID_NAME,
                    message=f"App name '{name}' must match {NAME_RE.pattern}",
                    field="name",
                ))

        version = raw.get("version")
        if isinstance(version, str) and not SEMVER_RE.match(version):
            issues.append(ValidationIssue(
                code=IssueCode.INVALID_VERSION,
                message=f"Version '{version}' is not a semantic version (MAJOR.MINOR.PATCH)",
                field="version",
            ))

        repo = raw.get("repo")
        if isinstance(repo, str):
            if not REPO_URL_RE.match(repo):
                issues.append(ValidationIssue(
                    code=IssueCode.INVALID_REPO_URL,
                    message="Repository must be a public GitHub URL (https://github.com/<owner>/<repo>)",
                    field="repo",
                ))
            elif self._check_reachability and not self._source_host.is_reachable(
                repo, timeout=timeout
            ):
                issues.append(ValidationIssue(
                    code=IssueCode.REPO_UNREACHABLE,
                    message=f"Repository not accessible or not public: {repo}",
                    field="repo",
                ))

        commit = raw.get("commit")
        if isinstance(commit, str) and not COMMIT_RE.match(commit):
            issues.append(ValidationIssue(
                code=IssueCode.INVALID_COMMIT,
                message=f"Commit '{commit}' must be 7-40 lowercase hex characters",
                field="commit",
            ))

        return issues

    @staticmethod
    def _unknown_key_issues(raw: Mapping[str, Any]) -> list[ValidationIssue]:
        issues: list[ValidationIssue] = []

        def _flag(mapping: Mapping[str, Any], model: type[BaseModel], prefix: str) -> None:
            for key in mapping:
                if key not in model.model_fields:
                    path = f"{prefix}{key}"
                    issues.append(ValidationIssue(
                        code=IssueCode.UNKNOWN_KEY,
                        message=f"Unknown key '{path}' is ignored",
                        field=path,
                    ))

        _flag(raw, AppConfig, "")
        for group, model in _CHECKED_GROUPS.items():
            value = raw.get(group)
            if isinstance(value, Mapping):
                _flag(value, model, f"{group}.")

        build = raw.get("build")
        args = build.get("args") if isinstance(build, Mapping) else None
        if isinstance(args, list):
            for i, arg in enumerate(args):
                if isinstance(arg, Mapping):
                    _flag(arg, BuildArg, f"build.args.{i}.")

        return issues

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _report(
        source: str,
        directory_name: str,
        errors: list[ValidationIssue],
        warnings: list[ValidationIssue],
        config: AppConfig | None,
    ) -> ValidationReport:
        if errors:
            logger.warning(
                "Validation failed for %s: %d error(s) [%s]",
                source,
                len(errors),
                ", ".join(issue.code.value for issue in errors),
            )
        else:
            logger.info("Validation passed for %s", source)
        return ValidationReport(
            source=source,
            directory_name=directory_name,
            errors=errors,
            warnings=warnings,
            config=config,
        )
