"""Durable hand-off documents between pipeline stages.

Stage one and stage two run in separate environments; the only thing that
crosses between them is a JSON document written here. Writes are atomic
(temporary file + rename) so a reader never sees a partial document.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import TypeVar

from pydantic import BaseModel, ValidationError

from novahub.errors import HandoffError
from novahub.models.build import StageOneResult, StageTwoResult

logger = logging.getLogger(__name__)

STAGE_ONE_FILE = "stage-one.json"
STAGE_TWO_FILE = "stage-two.json"

_M = TypeVar("_M", bound=BaseModel)


def atomic_write_bytes(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` via a temporary sibling and ``os.replace``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def write_handoff(result: StageOneResult | StageTwoResult, directory: Path) -> Path:
    """Persist a stage result into ``directory`` and return the file path."""
    filename = STAGE_ONE_FILE if isinstance(result, StageOneResult) else STAGE_TWO_FILE
    path = Path(directory) / filename
    atomic_write_bytes(path, result.model_dump_json(indent=2).encode("utf-8"))
    logger.info("Wrote %s hand-off for run %s to %s", result.kind, result.run_id, path)
    return path


def _read(path: Path, model: type[_M], default_name: str) -> _M:
    path = Path(path)
    if path.is_dir():
        path = path / default_name
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise HandoffError(f"Cannot read hand-off document {path}: {exc}") from exc
    try:
        return model.model_validate_json(raw)
    except ValidationError as exc:
        raise HandoffError(f"Malformed hand-off document {path}: {exc}") from exc


def read_stage_one(path: Path) -> StageOneResult:
    """Load a ``StageOneResult`` from a file or a directory containing one."""
    return _read(path, StageOneResult, STAGE_ONE_FILE)


def read_stage_two(path: Path) -> StageTwoResult:
    """Load a ``StageTwoResult`` from a file or a directory containing one."""
    return _read(path, StageTwoResult, STAGE_TWO_FILE)
