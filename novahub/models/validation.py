"""Validation report models — structured results instead of exit codes."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from novahub.models.app_config import AppConfig


class IssueCode(str, Enum):
    """Independently reportable validation outcomes."""

    SCHEMA = "schema"
    NAME_DIRECTORY_MISMATCH = "name_directory_mismatch"
    INVALID_NAME = "invalid_name"
    INVALID_VERSION = "invalid_version"
    INVALID_REPO_URL = "invalid_repo_url"
    INVALID_COMMIT = "invalid_commit"
    REPO_UNREACHABLE = "repo_unreachable"
    UNKNOWN_KEY = "unknown_key"


class ValidationIssue(BaseModel):
    """A single error or warning, located by dotted field path."""

    model_config = ConfigDict(frozen=True)

    code: IssueCode
    message: str
    field: str = ""


class ValidationReport(BaseModel):
    """Everything found while validating one configuration.

    ``config`` is set only when there are no errors.
    """

    model_config = ConfigDict(frozen=True)

    source: str
    directory_name: str
    errors: list[ValidationIssue] = []
    warnings: list[ValidationIssue] = []
    config: AppConfig | None = None

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def error_codes(self) -> list[IssueCode]:
        return [issue.code for issue in self.errors]
