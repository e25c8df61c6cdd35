"""Stage two — enclave conversion and measurement.

Pulls the image by the digest stage one recorded, converts it into an
enclave image, and extracts the three measurement registers. Runs in an
environment with enclave build capability.

For a fixed image digest and debug flag the measurements must be
bit-identical across runs and hosts. A mismatch with an expected or
previously observed set is a ``DeterminismViolation``.
"""

from __future__ import annotations

import logging

from novahub.collaborators.base import EnclaveConverter, ImageBuilder
from novahub.core.deadline import Deadline, budget
from novahub.core.run_ledger import RunLedger
from novahub.errors import DeterminismViolation, ResolutionError
from novahub.models.app_config import EnclaveSpec
from novahub.models.build import EnclaveBuild, MeasurementSet, StageOneResult

logger = logging.getLogger(__name__)


class StageTwoCoordinator:
    """Converts a stage-one image into a measured enclave image.

    Parameters
    ----------
    puller:
        Registry client used to pull the image by digest.
    converter:
        Enclave image conversion tool.
    history:
        Optional ledger holding previously observed measurements; when
        given, every conversion is compared against (and recorded into) it.
    """

    def __init__(
        self,
        puller: ImageBuilder,
        converter: EnclaveConverter,
        *,
        history: RunLedger | None = None,
    ) -> None:
        self._puller = puller
        self._converter = converter
        self._history = history

    def convert(
        self,
        stage_one: StageOneResult,
        enclave: EnclaveSpec | None = None,
        *,
        expected: MeasurementSet | None = None,
        deadline: Deadline | None = None,
    ) -> EnclaveBuild:
        """Pull by digest, convert, and verify measurements."""
        debug_mode = stage_one.build_request.debug_mode
        if enclave is not None and enclave.debug_mode != debug_mode:
            raise ResolutionError(
                f"Enclave debug_mode={enclave.debug_mode} differs from the build "
                f"request's debug_mode={debug_mode}"
            )

        ref = stage_one.image.ref
        logger.info("Pulling %s", ref)
        self._puller.pull(ref, timeout=budget(deadline, "image pull"))

        logger.info("Converting %s (debug_mode=%s)", ref, debug_mode)
        build = self._converter.convert(
            ref, debug_mode, timeout=budget(deadline, "enclave conversion")
        )

        measurements = build.measurements
        if measurements.debug_mode != debug_mode:
            measurements = measurements.model_copy(update={"debug_mode": debug_mode})
            build = build.model_copy(update={"measurements": measurements})
        if debug_mode:
            logger.warning("Enclave %s measured in DEBUG mode", ref)

        self._verify(stage_one, measurements, expected)

        logger.info(
            "Measured %s: %s",
            ref,
            " ".join(f"{k}={v[:16]}..." for k, v in measurements.registers.items()),
        )
        return build

    def _verify(
        self,
        stage_one: StageOneResult,
        measurements: MeasurementSet,
        expected: MeasurementSet | None,
    ) -> None:
        observed = measurements.registers
        ref = stage_one.image.ref

        if expected is not None and expected.registers != observed:
            self._violation(ref, measurements.debug_mode, expected.registers, observed)

        if self._history is not None:
            stored = self._history.record_measurements(
                stage_one.image.digest, measurements.debug_mode, observed, stage_one.run_id
            )
            if stored != observed:
                self._violation(ref, measurements.debug_mode, stored, observed)

    @staticmethod
    def _violation(
        ref: str, debug_mode: bool, expected: dict[str, str], observed: dict[str, str]
    ) -> None:
        exc = DeterminismViolation(
            f"Measurements for {ref} (debug_mode={debug_mode}) differ from the "
            f"values expected for the same image",
            expected=expected,
            observed=observed,
        )
        logger.critical(
            "DETERMINISM VIOLATION for %s: registers %s differ",
            ref,
            ", ".join(exc.mismatched_registers),
        )
        raise exc
