"""Error taxonomy for the build pipeline.

Every failure that stops a run is one of these classes. None of them is
retried by the pipeline itself; a retry is a fresh run submitted from outside.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from novahub.models.validation import ValidationReport


class NovaHubError(RuntimeError):
    """Base class for all pipeline failures."""


class ConfigurationError(NovaHubError):
    """The submitted configuration failed schema or semantic validation.

    Carries the complete report so the submitter sees every violation at once.
    """

    def __init__(self, report: ValidationReport) -> None:
        self.report = report
        lines = [f"{issue.code}: {issue.message}" for issue in report.errors]
        super().__init__(
            f"Configuration {report.source!r} has {len(lines)} error(s):\n"
            + "\n".join(f"  - {line}" for line in lines)
        )


class ResolutionError(NovaHubError):
    """A build request could not be derived unambiguously."""


class StageExecutionError(NovaHubError):
    """An external build step failed.

    ``category`` is a terse failure class (``checkout``, ``image_build``,
    ``image_push``, ``image_pull``, ``enclave_conversion``, ``measurement``,
    ``storage``, ``release``, ``timeout``). ``diagnostics`` holds the
    collaborator's raw output, unmodified.
    """

    def __init__(
        self,
        message: str,
        *,
        category: str,
        diagnostics: str = "",
        log_ref: str = "",
    ) -> None:
        super().__init__(message)
        self.category = category
        self.diagnostics = diagnostics
        self.log_ref = log_ref


class PipelineTimeoutError(StageExecutionError):
    """The overall pipeline deadline expired."""

    def __init__(self, message: str, *, diagnostics: str = "") -> None:
        super().__init__(message, category="timeout", diagnostics=diagnostics)


class DeterminismViolation(NovaHubError):
    """Identical inputs produced different measurement values.

    This is a correctness incident requiring human investigation, never a
    transient failure.
    """

    def __init__(
        self,
        message: str,
        *,
        expected: dict[str, str],
        observed: dict[str, str],
    ) -> None:
        super().__init__(message)
        self.expected = expected
        self.observed = observed

    @property
    def mismatched_registers(self) -> list[str]:
        keys = sorted(set(self.expected) | set(self.observed))
        return [k for k in keys if self.expected.get(k) != self.observed.get(k)]


class PublishConflict(NovaHubError):
    """An (app, version) already exists with different content."""

    def __init__(self, message: str, *, mismatched_fields: list[str]) -> None:
        super().__init__(message)
        self.mismatched_fields = mismatched_fields


class HandoffError(NovaHubError):
    """A stage hand-off document is missing, unreadable, or malformed."""
