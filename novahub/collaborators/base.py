"""Interfaces of the external systems the pipeline drives.

Concrete implementations live beside this module; tests substitute
in-memory fakes. Every method that may block accepts a ``timeout`` in
seconds, supplied from the run's ``Deadline``.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol

from pydantic import BaseModel, ConfigDict

from novahub.models.build import EnclaveBuild, StoreOutcome


class ImageBuildOutput(BaseModel):
    """A locally built image and the builder's raw log."""

    model_config = ConfigDict(frozen=True)

    image_id: str
    log: str = ""


class SourceHost(Protocol):
    """Revision-control hosting service."""

    def resolve_branch(
        self, repo: str, branch: str, *, timeout: float | None = None
    ) -> str:
        """Return the commit hash at the head of ``branch``."""
        ...

    def commit_timestamp(
        self, repo: str, commit: str, *, timeout: float | None = None
    ) -> int:
        """Return the commit's author time as a Unix epoch."""
        ...

    def is_reachable(self, url: str, *, timeout: float | None = None) -> bool:
        """Return True only if ``url`` answers 200 without redirecting."""
        ...


class SourceCheckout(Protocol):
    """Materialises an exact commit on local disk."""

    def checkout(
        self, repo: str, commit: str, dest: Path, *, timeout: float | None = None
    ) -> Path:
        ...


class ImageBuilder(Protocol):
    """Container image build engine and registry client."""

    def build(
        self,
        context: Path,
        build_file: Path,
        args: Mapping[str, str],
        *,
        tag: str,
        labels: Mapping[str, str],
        timeout: float | None = None,
    ) -> ImageBuildOutput:
        ...

    def push(self, tag: str, *, timeout: float | None = None) -> str:
        """Push ``tag`` and return the pushed ``name@sha256:<hex>`` reference."""
        ...

    def pull(self, ref: str, *, timeout: float | None = None) -> None:
        ...


class EnclaveConverter(Protocol):
    """Converts a pulled container image into an enclave image file."""

    def convert(
        self, image_ref: str, debug_mode: bool, *, timeout: float | None = None
    ) -> EnclaveBuild:
        ...


class ReleaseStore(Protocol):
    """Durable storage for published artifacts, keyed by ``<app>/<version>``."""

    def put_if_absent_or_identical(
        self,
        key: str,
        files: Mapping[str, bytes],
        *,
        compare: Sequence[str],
    ) -> StoreOutcome:
        """Write ``files`` under ``key`` unless it exists.

        If it exists, the files named in ``compare`` are checked byte for
        byte; any difference is reported as a conflict and nothing is written.
        """
        ...

    def read(self, key: str, filename: str) -> bytes | None:
        ...


class ReleaseHost(Protocol):
    """Externally visible release records."""

    def create_release(
        self,
        tag: str,
        files: Mapping[str, bytes],
        *,
        body: str = "",
        timeout: float | None = None,
    ) -> str:
        """Create (or confirm) release ``tag``; return its URL or location.

        Must succeed without side effects if the release already exists.
        ``timeout`` bounds the whole operation, not each request.
        """
        ...
