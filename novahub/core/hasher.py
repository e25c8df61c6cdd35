"""Canonical JSON and SHA-256 helpers.

Everything the pipeline hashes is serialised by ``canonical_json_bytes``
first (sorted keys, no whitespace, ASCII only), so equal values hash equally
whatever their key order. Pydantic models are dumped in JSON mode before
serialisation.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any, Literal

from pydantic import BaseModel


def canonical_json_bytes(obj: Any) -> bytes:
    if isinstance(obj, BaseModel):
        obj = obj.model_dump(mode="json")
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def content_address(obj: Any) -> str:
    """``sha256:<hex>`` of the canonical form; used for request and hand-off hashes."""
    return f"sha256:{sha256_hex(canonical_json_bytes(obj))}"


def stage_hash(
    stage_id: str, side: Literal["inputs", "outputs"], values: Mapping[str, Any]
) -> str:
    """Hash of one side of a stage execution, bound to the stage id.

    The same inputs given to two different stages hash differently.
    """
    return sha256_hex(canonical_json_bytes({"stage_id": stage_id, side: dict(values)}))


def seal_entry(fields: Mapping[str, Any]) -> str:
    """Seal of a ledger row: the hash of every field except the seal itself."""
    return sha256_hex(
        canonical_json_bytes({k: v for k, v in fields.items() if k != "entry_hash"})
    )
