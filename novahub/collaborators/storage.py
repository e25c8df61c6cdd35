"""Filesystem release store and release host.

Layout under the store root::

    <root>/<app>/<version>/enclave.eif
    <root>/<app>/<version>/pcr.json
    <root>/<app>/<version>/metadata.json
    <root>/<app>/<version>/build.log
    <root>/releases/<app>-v<version>.json

A version directory is assembled in a temporary sibling and renamed into
place, so it either exists completely or not at all. Existing version
directories are never modified.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from collections.abc import Mapping, Sequence
from pathlib import Path

from novahub.core.handoff import atomic_write_bytes
from novahub.core.hasher import sha256_hex
from novahub.errors import StageExecutionError
from novahub.models.build import StoreOutcome, StoreStatus

logger = logging.getLogger(__name__)

RELEASES_DIR = "releases"


class LocalReleaseStore:
    """Immutable per-(app, version) artifact directories.

    Parameters
    ----------
    root:
        Store root directory. Created if it does not exist.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        parts = key.split("/")
        if (
            len(parts) != 2
            or any(p in ("", ".", "..") for p in parts)
            or parts[0] == RELEASES_DIR
        ):
            raise ValueError(f"invalid artifact key {key!r}")
        return self._root.joinpath(*parts)

    def put_if_absent_or_identical(
        self,
        key: str,
        files: Mapping[str, bytes],
        *,
        compare: Sequence[str],
    ) -> StoreOutcome:
        target = self._path(key)
        if target.exists():
            return self._compare(target, files, compare)

        target.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".{target.name}.", dir=target.parent))
        try:
            for name, data in files.items():
                (staging / name).write_bytes(data)
            try:
                os.rename(staging, target)
            except OSError:
                # Lost a race with a concurrent publisher of the same key.
                if not target.exists():
                    raise
                return self._compare(target, files, compare)
        except OSError as exc:
            raise StageExecutionError(
                f"Cannot write artifacts for {key}: {exc}", category="storage"
            ) from exc
        finally:
            if staging.exists():
                shutil.rmtree(staging, ignore_errors=True)

        logger.info("Wrote %d file(s) to %s", len(files), target)
        return StoreOutcome(status=StoreStatus.WRITTEN, location=str(target))

    def read(self, key: str, filename: str) -> bytes | None:
        path = self._path(key) / filename
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    @staticmethod
    def _compare(
        target: Path, files: Mapping[str, bytes], compare: Sequence[str]
    ) -> StoreOutcome:
        mismatched: list[str] = []
        for name in compare:
            existing = target / name
            if not existing.is_file() or existing.read_bytes() != files.get(name):
                mismatched.append(name)
        status = StoreStatus.CONFLICT if mismatched else StoreStatus.IDENTICAL
        return StoreOutcome(status=status, location=str(target), mismatched_fields=mismatched)


class LocalReleaseHost:
    """Writes one JSON release record per tag under ``<root>/releases``.

    An existing record is left untouched, which makes creation idempotent.
    """

    def __init__(self, root: Path) -> None:
        self._dir = Path(root) / RELEASES_DIR

    def create_release(
        self,
        tag: str,
        files: Mapping[str, bytes],
        *,
        body: str = "",
        timeout: float | None = None,
    ) -> str:
        # A local write has nothing to wait on; timeout is accepted and unused.
        path = self._dir / f"{tag}.json"
        if path.exists():
            logger.info("Release record %s already exists", path)
            return str(path)
        record = {
            "tag": tag,
            "assets": {name: f"sha256:{sha256_hex(data)}" for name, data in files.items()},
            "body": body,
        }
        try:
            atomic_write_bytes(path, (json.dumps(record, indent=2) + "\n").encode("utf-8"))
        except OSError as exc:
            raise StageExecutionError(
                f"Cannot write release record {path}: {exc}", category="release"
            ) from exc
        logger.info("Wrote release record %s", path)
        return str(path)
