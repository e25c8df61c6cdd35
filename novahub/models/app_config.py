"""Application build declaration — the parsed form of nova-build.yaml.

These models encode the *structural* schema only (required keys, types,
defaults). Grammar rules such as the identifier pattern or semantic-version
format are semantic checks owned by ``ConfigValidator`` so that each one is
reported independently.

Unknown keys are accepted (``extra="allow"``) and surfaced as warnings.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BuildArg(BaseModel):
    """One ``--build-arg NAME=VALUE`` passed to the image build."""

    model_config = ConfigDict(frozen=True, extra="allow")

    name: str
    value: str

    @field_validator("value", mode="before")
    @classmethod
    def _scalar_to_str(cls, v: Any) -> Any:
        # YAML turns `value: 1` into an int; build args are always strings.
        if isinstance(v, bool):
            return "true" if v else "false"
        if isinstance(v, (int, float)):
            return str(v)
        return v


class BuildSpec(BaseModel):
    """Where and how to build the container image."""

    model_config = ConfigDict(frozen=True, extra="allow")

    directory: str = "."
    dockerfile: str = "Dockerfile"
    args: list[BuildArg] = []


class EnclaveSpec(BaseModel):
    """Enclave conversion parameters."""

    model_config = ConfigDict(frozen=True, extra="allow")

    debug_mode: bool = False


class ReproducibleSpec(BaseModel):
    """Reproducibility parameters.

    ``source_date_epoch`` pins every embedded timestamp; when absent the
    resolved commit's author time is used instead.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    enabled: bool = True
    source_date_epoch: int | None = Field(default=None, ge=0)


class AppMetadata(BaseModel):
    """Free-form descriptive fields. Never affects the build."""

    model_config = ConfigDict(frozen=True, extra="allow")

    description: str | None = None
    maintainer: str | None = None
    license: str | None = None


class AppConfig(BaseModel):
    """A validated application declaration.

    Immutable for the lifetime of a pipeline run. A content change is made
    by submitting a new declaration with a new ``version``.
    """

    model_config = ConfigDict(frozen=True, extra="allow")

    name: str
    version: str
    repo: str
    branch: str
    commit: str | None = None
    build: BuildSpec = BuildSpec()
    enclave: EnclaveSpec = EnclaveSpec()
    reproducible: ReproducibleSpec = ReproducibleSpec()
    metadata: AppMetadata = AppMetadata()
