"""Enclave conversion with ``nitro-cli build-enclave``."""

from __future__ import annotations

import json
import logging
import tempfile
from collections.abc import Mapping
from pathlib import Path

from novahub.collaborators.docker import run_tool
from novahub.errors import StageExecutionError
from novahub.models.build import REGISTER_NAMES, EnclaveBuild, MeasurementSet

logger = logging.getLogger(__name__)


class NitroCliConverter:
    """Builds an enclave image file from a pulled container image.

    ``nitro-cli`` prints a JSON document whose ``Measurements`` object holds
    the register values. A debug-mode enclave attests with all-zero
    registers, so those are reported instead of the image measurements.
    """

    def __init__(self, *, nitro_cli_binary: str = "nitro-cli") -> None:
        self._nitro_cli = nitro_cli_binary

    def convert(
        self, image_ref: str, debug_mode: bool, *, timeout: float | None = None
    ) -> EnclaveBuild:
        with tempfile.TemporaryDirectory(prefix="novahub-eif-") as tmp:
            output = Path(tmp) / "enclave.eif"
            result = run_tool(
                [self._nitro_cli, "build-enclave",
                 "--docker-uri", image_ref,
                 "--output-file", str(output)],
                category="enclave_conversion",
                timeout=timeout,
            )
            try:
                image_bytes = output.read_bytes()
            except OSError as exc:
                raise StageExecutionError(
                    f"nitro-cli produced no enclave image for {image_ref}",
                    category="enclave_conversion",
                    diagnostics=result.stderr,
                ) from exc

        registers = parse_measurements(result.stdout, diagnostics=result.stderr)
        algorithm = registers.pop("HashAlgorithm", "sha384")
        if debug_mode:
            registers = {name: "0" * len(value) for name, value in registers.items()}

        return EnclaveBuild(
            image_bytes=image_bytes,
            measurements=MeasurementSet(
                registers=registers,
                hash_algorithm=algorithm.split()[0].lower(),
                debug_mode=debug_mode,
            ),
            log="\n".join(part for part in (result.stdout, result.stderr) if part),
        )


def parse_measurements(stdout: str, *, diagnostics: str = "") -> dict[str, str]:
    """Extract PCR0-PCR2 (and the hash algorithm) from nitro-cli JSON output."""
    try:
        measurements = json.loads(stdout)["Measurements"]
    except (ValueError, KeyError, TypeError) as exc:
        raise StageExecutionError(
            "nitro-cli output has no Measurements object",
            category="measurement",
            diagnostics="\n".join(part for part in (stdout, diagnostics) if part),
        ) from exc

    if not isinstance(measurements, Mapping):
        raise StageExecutionError(
            f"nitro-cli Measurements is a {type(measurements).__name__}, not an object",
            category="measurement",
            diagnostics="\n".join(part for part in (stdout, diagnostics) if part),
        )

    missing = [name for name in REGISTER_NAMES if not measurements.get(name)]
    if missing:
        raise StageExecutionError(
            f"nitro-cli output is missing register(s) {', '.join(missing)}",
            category="measurement",
            diagnostics=stdout,
        )
    registers = {name: str(measurements[name]).lower() for name in REGISTER_NAMES}
    if "HashAlgorithm" in measurements:
        registers["HashAlgorithm"] = str(measurements["HashAlgorithm"])
    return registers
