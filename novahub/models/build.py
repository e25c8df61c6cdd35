"""Build pipeline artifacts — the typed values passed across stage boundaries.

Every model here is frozen and JSON-serialisable. ``StageOneResult`` and
``StageTwoResult`` are written to disk as hand-off documents because the
stages run in separate environments with no shared memory.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, field_validator

from novahub.models.app_config import BuildArg

# Registers covering the enclave image, kernel/bootstrap, and application.
REGISTER_NAMES: tuple[str, ...] = ("PCR0", "PCR1", "PCR2")

_DIGEST_RE = re.compile(r"^sha256:[0-9a-f]{64}$")
_HEX_RE = re.compile(r"^[0-9a-f]+$")


class BuildRequest(BaseModel):
    """Fully resolved, deterministic expansion of an ``AppConfig``.

    A pure function of (AppConfig, commit metadata): resolving the same
    inputs twice yields an equal request. ``source_date_epoch`` is always
    set; no build ever falls back to wall-clock time.
    """

    model_config = ConfigDict(frozen=True)

    app_name: str
    version: str
    repo: str
    branch: str
    commit: str
    commit_source: Literal["pinned", "branch_head"]
    source_date_epoch: int
    timestamp_source: Literal["configured", "commit"]
    context_dir: str
    build_file: str
    build_args: list[BuildArg]
    debug_mode: bool = False
    reproducible: bool = True

    def build_arg_map(self) -> dict[str, str]:
        """Build arguments as an ordered name -> value mapping."""
        return {arg.name: arg.value for arg in self.build_args}


class ImageReference(BaseModel):
    """A digest-pinned container image reference.

    Tags are mutable and may be reassigned between stages, so a reference
    without an immutable ``sha256:`` digest is never accepted here.
    """

    model_config = ConfigDict(frozen=True)

    registry: str
    repository: str
    digest: str

    @field_validator("digest")
    @classmethod
    def _must_be_sha256(cls, v: str) -> str:
        if not _DIGEST_RE.match(v):
            raise ValueError(f"not an immutable sha256 digest: {v!r}")
        return v

    @property
    def ref(self) -> str:
        """``registry/repository@sha256:<hex>``"""
        return f"{self.registry}/{self.repository}@{self.digest}"

    @classmethod
    def parse(cls, ref: str) -> ImageReference:
        """Parse ``[registry/]repository[:tag]@sha256:<hex>``.

        Any tag in the name part is dropped. Raises ``ValueError`` for
        references that are not digest-pinned.
        """
        name, sep, digest = ref.strip().partition("@")
        if not sep:
            raise ValueError(f"image reference is not digest-pinned: {ref!r}")

        first, slash, rest = name.partition("/")
        if slash and ("." in first or ":" in first or first == "localhost"):
            registry, repository = first, rest
        else:
            registry, repository = "docker.io", name

        # Strip a tag (the colon after the last slash), keeping registry ports.
        last = repository.rsplit("/", 1)[-1]
        if ":" in last:
            repository = repository[: len(repository) - len(last)] + last.split(":", 1)[0]

        return cls(registry=registry, repository=repository, digest=digest)


class StageOneResult(BaseModel):
    """Hand-off from image construction to enclave conversion."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["stage_one_result"] = "stage_one_result"
    run_id: str
    image: ImageReference
    tag: str  # informational only; stage two always pulls by digest
    build_request: BuildRequest
    request_hash: str
    build_log: str = "stage-one.log"


class MeasurementSet(BaseModel):
    """The three platform configuration register values of an enclave image.

    Deterministic for a fixed image digest and debug flag. ``debug_mode`` is
    carried alongside because debug enclaves attest with different values.
    """

    model_config = ConfigDict(frozen=True)

    registers: dict[str, str]
    hash_algorithm: str = "sha384"
    debug_mode: bool = False

    @field_validator("registers")
    @classmethod
    def _three_hex_registers(cls, v: dict[str, str]) -> dict[str, str]:
        missing = [name for name in REGISTER_NAMES if not v.get(name)]
        if missing:
            raise ValueError(f"missing register values: {missing}")
        extra = sorted(set(v) - set(REGISTER_NAMES))
        if extra:
            raise ValueError(f"unexpected registers: {extra}")
        normalized: dict[str, str] = {}
        for name in REGISTER_NAMES:
            value = v[name].strip().lower()
            if not _HEX_RE.match(value):
                raise ValueError(f"{name} is not a hex string: {v[name]!r}")
            normalized[name] = value
        return normalized


class EnclaveBuild(BaseModel):
    """Output of enclave conversion: image bytes, measurements, raw log."""

    model_config = ConfigDict(frozen=True)

    image_bytes: bytes
    measurements: MeasurementSet
    log: str = ""


class StageTwoResult(BaseModel):
    """Hand-off from enclave conversion to publication.

    File fields name siblings of the hand-off document.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["stage_two_result"] = "stage_two_result"
    run_id: str
    stage_one: StageOneResult
    measurements: MeasurementSet
    enclave_image_file: str = "enclave.eif"
    enclave_image_sha256: str
    log_file: str = "build.log"


class BuildMetadata(BaseModel):
    """The published build record for one (app, version)."""

    model_config = ConfigDict(frozen=True)

    app_name: str
    version: str
    repo: str
    commit: str
    commit_source: str
    source_date_epoch: int
    timestamp_source: str
    image_ref: str
    image_digest: str
    debug_mode: bool
    reproducible: bool
    request_hash: str
    enclave_image_sha256: str
    build_log_ref: str


class StoreStatus(str, Enum):
    """Outcome of a put-if-absent-or-identical write."""

    WRITTEN = "written"
    IDENTICAL = "identical"
    CONFLICT = "conflict"


class StoreOutcome(BaseModel):
    """Result of ``ReleaseStore.put_if_absent_or_identical``."""

    model_config = ConfigDict(frozen=True)

    status: StoreStatus
    location: str
    mismatched_fields: list[str] = []


class PublishStatus(str, Enum):
    PUBLISHED = "published"
    UNCHANGED = "unchanged"


class PublishResult(BaseModel):
    """What ``ArtifactPublisher.publish`` did."""

    model_config = ConfigDict(frozen=True)

    app_name: str
    version: str
    status: PublishStatus
    location: str
    release_tag: str
    enclave_image_sha256: str
    files: list[str]
