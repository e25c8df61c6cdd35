"""Artifact publication — exactly once per (app, version).

Layout: ``<app>/<version>/`` holding the enclave image, the measurement
file, the build metadata record, and the raw log; release tag
``<app>-v<version>`` referencing the first three.

Republishing an existing version succeeds only if the enclave image and
measurements are byte-identical; otherwise it is a ``PublishConflict``. The
storage write is idempotent, so a failed release-record creation can be
retried by publishing again.
"""

from __future__ import annotations

import json
import logging

from novahub.collaborators.base import ReleaseHost, ReleaseStore
from novahub.core.hasher import canonical_json_bytes, sha256_hex
from novahub.errors import PublishConflict, StageExecutionError
from novahub.models.build import (
    BuildMetadata,
    MeasurementSet,
    PublishResult,
    PublishStatus,
    StageOneResult,
    StoreStatus,
)

logger = logging.getLogger(__name__)

ENCLAVE_IMAGE_FILE = "enclave.eif"
MEASUREMENTS_FILE = "pcr.json"
METADATA_FILE = "metadata.json"
LOG_FILE = "build.log"

RELEASE_FILES: tuple[str, ...] = (ENCLAVE_IMAGE_FILE, MEASUREMENTS_FILE, METADATA_FILE)
IDENTITY_FILES: tuple[str, ...] = (ENCLAVE_IMAGE_FILE, MEASUREMENTS_FILE)


def artifact_key(app_name: str, version: str) -> str:
    return f"{app_name}/{version}"


def release_tag(app_name: str, version: str) -> str:
    return f"{app_name}-v{version}"


def measurements_bytes(measurements: MeasurementSet) -> bytes:
    """The measurement file: a flat register -> lowercase hex mapping."""
    return (json.dumps(measurements.registers, indent=2) + "\n").encode("utf-8")


def make_build_metadata(
    stage_one: StageOneResult,
    enclave_image_sha256: str,
) -> BuildMetadata:
    """Assemble the published build record from the stage-one hand-off."""
    request = stage_one.build_request
    return BuildMetadata(
        app_name=request.app_name,
        version=request.version,
        repo=request.repo,
        commit=request.commit,
        commit_source=request.commit_source,
        source_date_epoch=request.source_date_epoch,
        timestamp_source=request.timestamp_source,
        image_ref=stage_one.image.ref,
        image_digest=stage_one.image.digest,
        debug_mode=request.debug_mode,
        reproducible=request.reproducible,
        request_hash=stage_one.request_hash,
        enclave_image_sha256=enclave_image_sha256,
        build_log_ref=f"{artifact_key(request.app_name, request.version)}/{LOG_FILE}",
    )


class ArtifactPublisher:
    """Persists release artifacts and creates the release record.

    Parameters
    ----------
    store:
        Storage backend with put-if-absent-or-identical semantics.
    release_host:
        Creates the externally visible release record.
    """

    def __init__(self, store: ReleaseStore, release_host: ReleaseHost) -> None:
        self._store = store
        self._release_host = release_host

    def publish(
        self,
        app_name: str,
        version: str,
        artifact_bytes: bytes,
        measurements: MeasurementSet,
        metadata: BuildMetadata,
        *,
        log: str = "",
        timeout: float | None = None,
    ) -> PublishResult:
        """Publish one (app, version); see the module docstring for semantics.

        ``timeout`` bounds the release-record creation.
        """
        image_sha256 = sha256_hex(artifact_bytes)
        if (metadata.app_name, metadata.version) != (app_name, version):
            raise ValueError(
                f"Metadata is for {metadata.app_name}@{metadata.version}, "
                f"not {app_name}@{version}"
            )
        if metadata.enclave_image_sha256 != image_sha256:
            raise ValueError("Metadata enclave_image_sha256 does not match artifact bytes")
        if metadata.debug_mode != measurements.debug_mode:
            raise ValueError("Metadata debug_mode does not match the measurement set")

        key = artifact_key(app_name, version)
        files = {
            ENCLAVE_IMAGE_FILE: artifact_bytes,
            MEASUREMENTS_FILE: measurements_bytes(measurements),
            METADATA_FILE: canonical_json_bytes(metadata.model_dump(mode="json")),
            LOG_FILE: log.encode("utf-8"),
        }

        outcome = self._store.put_if_absent_or_identical(
            key, files, compare=IDENTITY_FILES
        )

        if outcome.status == StoreStatus.CONFLICT:
            mismatched = self._describe_conflict(key, image_sha256, measurements)
            logger.error(
                "Refusing to republish %s with different content: %s",
                key,
                ", ".join(mismatched),
            )
            raise PublishConflict(
                f"{app_name}@{version} is already published with different content "
                f"({', '.join(mismatched)}); bump the version to publish a change",
                mismatched_fields=mismatched,
            )

        status = (
            PublishStatus.PUBLISHED
            if outcome.status == StoreStatus.WRITTEN
            else PublishStatus.UNCHANGED
        )
        if status == PublishStatus.UNCHANGED:
            # The stored record is authoritative; never replace it.
            files = {name: self._read_existing(key, name) for name in RELEASE_FILES}
            logger.info("%s already published with identical content", key)
        else:
            logger.info("Stored %s at %s", key, outcome.location)

        tag = release_tag(app_name, version)
        try:
            release_ref = self._release_host.create_release(
                tag,
                {name: files[name] for name in RELEASE_FILES},
                body=self._release_body(metadata, measurements),
                timeout=timeout,
            )
        except StageExecutionError:
            logger.error(
                "Release %s failed after storage write; publishing again is safe", tag
            )
            raise
        logger.info("Release %s available at %s", tag, release_ref)

        return PublishResult(
            app_name=app_name,
            version=version,
            status=status,
            location=outcome.location,
            release_tag=tag,
            enclave_image_sha256=image_sha256,
            files=[*RELEASE_FILES, LOG_FILE],
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _read_existing(self, key: str, filename: str) -> bytes:
        data = self._store.read(key, filename)
        if data is None:
            raise StageExecutionError(
                f"Published {key} is missing {filename}",
                category="storage",
            )
        return data

    def _describe_conflict(
        self, key: str, image_sha256: str, measurements: MeasurementSet
    ) -> list[str]:
        mismatched: list[str] = []

        existing_image = self._store.read(key, ENCLAVE_IMAGE_FILE)
        if existing_image is None or sha256_hex(existing_image) != image_sha256:
            mismatched.append("enclave_image_sha256")

        existing_pcr = self._store.read(key, MEASUREMENTS_FILE)
        try:
            previous = json.loads(existing_pcr) if existing_pcr is not None else {}
        except ValueError:
            previous = {}
        for name, value in measurements.registers.items():
            if previous.get(name) != value:
                mismatched.append(name)

        return mismatched or ["measurements_file"]

    @staticmethod
    def _release_body(metadata: BuildMetadata, measurements: MeasurementSet) -> str:
        lines = [
            f"## {metadata.app_name} v{metadata.version}",
            "",
            f"- Source: {metadata.repo} @ `{metadata.commit}`",
            f"- Image: `{metadata.image_ref}`",
            f"- SOURCE_DATE_EPOCH: `{metadata.source_date_epoch}`",
            f"- Enclave image sha256: `{metadata.enclave_image_sha256}`",
            f"- Debug mode: {'**ENABLED**' if metadata.debug_mode else 'disabled'}",
            "",
            f"### Measurements ({measurements.hash_algorithm})",
            "",
        ]
        lines.extend(f"- {name}: `{value}`" for name, value in measurements.registers.items())
        return "\n".join(lines) + "\n"
