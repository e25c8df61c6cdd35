"""Pipeline orchestrator — the central coordinator for Nova App Hub runs.

The Orchestrator wires the RunLedger, StageMachine, ConfigValidator,
BuildRequestResolver, both stage coordinators, and the ArtifactPublisher
into one pipeline. Every stage runs through ``execute_stage``, which records
RUNNING, then PASSED or FAILED, in the hash-chained ledger.

Stage one and stage two communicate only through hand-off documents on
disk, even when the whole pipeline runs in one process, so a split
deployment exercises exactly the same code path.
"""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from novahub.collaborators.base import (
    EnclaveConverter,
    ImageBuilder,
    ReleaseHost,
    ReleaseStore,
    SourceCheckout,
    SourceHost,
)
from novahub.config import HubSettings
from novahub.core.deadline import Deadline, budget
from novahub.core.handoff import atomic_write_bytes, read_stage_one, read_stage_two, write_handoff
from novahub.core.hasher import content_address, sha256_hex, stage_hash
from novahub.core.production_guard import enforce_production_constraints
from novahub.core.resolver import BuildRequestResolver
from novahub.core.run_ledger import RunLedger
from novahub.core.stage_machine import InvalidTransitionError, StageMachine
from novahub.core.validator import ConfigValidator
from novahub.errors import (
    ConfigurationError,
    DeterminismViolation,
    HandoffError,
    PublishConflict,
    ResolutionError,
    StageExecutionError,
)
from novahub.models.app_config import AppConfig
from novahub.models.build import (
    BuildRequest,
    MeasurementSet,
    PublishResult,
    StageOneResult,
    StageTwoResult,
)
from novahub.models.ledger import LedgerEntry
from novahub.models.stages import (
    PUBLISH,
    RESOLVE,
    STAGE_ONE,
    STAGE_TWO,
    VALIDATE,
    StageState,
)
from novahub.stages.publisher import ArtifactPublisher, make_build_metadata
from novahub.stages.stage_one import StageOneCoordinator
from novahub.stages.stage_two import StageTwoCoordinator

logger = logging.getLogger(__name__)

# (result, ledger outputs, artifact references)
StageOutcome = tuple[Any, dict[str, Any], list[str]]

# Publish failures that leave the stored artifacts intact. Publishing again
# finds them identical and only completes the release record.
RETRYABLE_PUBLISH_FAILURES = frozenset({"release", "storage", "timeout"})


def failure_category(exc: BaseException) -> str:
    """Terse failure class recorded in the ledger and shown to users."""
    if isinstance(exc, StageExecutionError):
        return exc.category
    if isinstance(exc, ConfigurationError):
        return "configuration"
    if isinstance(exc, ResolutionError):
        return "resolution"
    if isinstance(exc, DeterminismViolation):
        return "determinism_violation"
    if isinstance(exc, PublishConflict):
        return "publish_conflict"
    if isinstance(exc, HandoffError):
        return "handoff"
    return "internal"


class Orchestrator:
    """Central pipeline orchestrator.

    Parameters
    ----------
    settings:
        Deployment settings. Production constraints are enforced here.
    source_host, checkout, builder, converter, store, release_host:
        External collaborators; see ``novahub.collaborators.base``.
    ledger:
        Audit ledger. Defaults to ``settings.ledger_path``.
    run_id:
        Identifier of the run. A fresh one is generated when omitted; stage
        two and publication adopt the run id carried by their hand-off.
    clock:
        Monotonic clock for the pipeline deadline.
    """

    def __init__(
        self,
        settings: HubSettings,
        *,
        source_host: SourceHost,
        checkout: SourceCheckout,
        builder: ImageBuilder,
        converter: EnclaveConverter,
        store: ReleaseStore,
        release_host: ReleaseHost,
        ledger: RunLedger | None = None,
        run_id: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        # Production guard: fails hard if production constraints are violated
        enforce_production_constraints(settings)
        self.settings = settings

        self.ledger = ledger or RunLedger(settings.ledger_path)
        self.stage_machine = StageMachine(self.ledger)

        self.validator = ConfigValidator(
            source_host, check_reachability=not settings.skip_repo_check
        )
        self.resolver = BuildRequestResolver(source_host)
        self.stage_one = StageOneCoordinator(
            checkout, builder, registry=settings.registry, work_dir=settings.work_dir
        )
        self.stage_two = StageTwoCoordinator(builder, converter, history=self.ledger)
        self.publisher = ArtifactPublisher(store, release_host)

        ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        self.run_id = run_id or f"nh-{ts}-{uuid.uuid4().hex[:6]}"

        self._clock = clock
        self._deadline: Deadline | None = None

    @classmethod
    def from_settings(cls, settings: HubSettings, **overrides: Any) -> Orchestrator:
        """Build an Orchestrator with the real command-line collaborators."""
        from novahub.collaborators.docker import DockerImageBuilder, GitCheckout
        from novahub.collaborators.github import GitHubReleaseHost, GitHubSource
        from novahub.collaborators.nitro import NitroCliConverter
        from novahub.collaborators.storage import LocalReleaseHost, LocalReleaseStore

        if settings.release_repo:
            release_host: ReleaseHost = GitHubReleaseHost(
                settings.release_repo,
                token=settings.github_token,
                api_url=settings.github_api_url,
            )
        else:
            release_host = LocalReleaseHost(settings.release_store_path)

        collaborators: dict[str, Any] = {
            "source_host": GitHubSource(
                api_url=settings.github_api_url,
                token=settings.github_token,
                timeout=settings.http_timeout_seconds,
            ),
            "checkout": GitCheckout(git_binary=settings.git_binary),
            "builder": DockerImageBuilder(docker_binary=settings.docker_binary),
            "converter": NitroCliConverter(nitro_cli_binary=settings.nitro_cli_binary),
            "store": LocalReleaseStore(settings.release_store_path),
            "release_host": release_host,
        }
        collaborators.update(overrides)
        return cls(settings, **collaborators)

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    @property
    def deadline(self) -> Deadline:
        """The run's deadline, started by the first stage executed here."""
        if self._deadline is None:
            self._deadline = Deadline(
                self.settings.pipeline_timeout_seconds, clock=self._clock
            )
        return self._deadline

    def resume_run(self, run_id: str) -> dict[str, StageState]:
        """Continue ``run_id``; returns the stage states known to this ledger."""
        self.run_id = run_id
        return self.stage_machine.get_all_states(run_id)

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    def execute_stage(
        self,
        stage_id: str,
        inputs: dict[str, Any],
        handler: Callable[[], StageOutcome],
    ) -> Any:
        """Execute one stage through ``handler``.

        Lifecycle:
        1. Transition to RUNNING (prerequisite checked by the state machine)
        2. Check the pipeline deadline
        3. Call handler -> (result, outputs, artifact references)
        4. Transition to PASSED with the output hash, or FAILED with the
           failure category; downstream stages become BLOCKED
        5. Return the result; failures are re-raised unchanged
        """
        input_hash = stage_hash(stage_id, "inputs", inputs)

        self.stage_machine.transition(
            self.run_id, stage_id, StageState.RUNNING, input_hash=input_hash
        )
        logger.info("Run %s: %s started", self.run_id, stage_id)

        try:
            self.deadline.check(stage_id)
            result, outputs, artifact_refs = handler()
        except Exception as exc:
            category = failure_category(exc)
            summary = str(exc).splitlines()[0] if str(exc) else type(exc).__name__
            self.stage_machine.transition(
                self.run_id, stage_id, StageState.FAILED,
                input_hash=input_hash,
                output_hash=stage_hash(stage_id, "outputs", {"error": str(exc)}),
                detail=f"{category}: {summary}",
            )
            logger.error("Run %s: %s failed (%s)", self.run_id, stage_id, category)
            raise

        self.stage_machine.transition(
            self.run_id, stage_id, StageState.PASSED,
            input_hash=input_hash,
            output_hash=stage_hash(stage_id, "outputs", outputs),
            artifact_references=artifact_refs,
        )
        logger.info("Run %s: %s passed", self.run_id, stage_id)
        return result

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def validate(self, config_path: Path) -> AppConfig:
        """Validate a nova-build.yaml; raises ``ConfigurationError`` with the full report."""
        config_path = Path(config_path)

        def _handler() -> StageOutcome:
            report = self.validator.validate_file(
                config_path, timeout=budget(self.deadline, VALIDATE)
            )
            for warning in report.warnings:
                logger.warning("%s: %s", report.source, warning.message)
            if not report.ok:
                raise ConfigurationError(report)
            outputs = {
                "config": report.config.model_dump(mode="json"),
                "warnings": [w.message for w in report.warnings],
            }
            return report.config, outputs, [str(config_path)]

        return self.execute_stage(VALIDATE, {"config_path": str(config_path)}, _handler)

    def resolve(self, config: AppConfig) -> BuildRequest:
        def _handler() -> StageOutcome:
            request = self.resolver.resolve(config, deadline=self.deadline)
            return request, {"request_hash": content_address(request)}, []

        return self.execute_stage(RESOLVE, {"config": config.model_dump(mode="json")}, _handler)

    def run_stage_one(self, config_path: Path, out_dir: Path) -> StageOneResult:
        """Validate, resolve, build and push; write the stage-one hand-off to ``out_dir``."""
        out_dir = Path(out_dir)
        self.stage_machine.initialize_run(self.run_id)

        config = self.validate(config_path)
        request = self.resolve(config)

        def _handler() -> StageOutcome:
            result = self.stage_one.build(
                request, run_id=self.run_id, deadline=self.deadline, log_dir=out_dir
            )
            handoff = write_handoff(result, out_dir)
            outputs = {"image": result.image.ref, "request_hash": result.request_hash}
            return result, outputs, [str(handoff), result.image.ref]

        return self.execute_stage(
            STAGE_ONE, {"build_request": request.model_dump(mode="json")}, _handler
        )

    def run_stage_two(
        self,
        handoff: Path,
        out_dir: Path,
        *,
        expected: MeasurementSet | None = None,
    ) -> StageTwoResult:
        """Convert the image named by a stage-one hand-off; write artifacts to ``out_dir``.

        Writes ``enclave.eif``, ``build.log`` and the stage-two hand-off.
        """
        handoff = Path(handoff)
        out_dir = Path(out_dir)
        stage_one = read_stage_one(handoff)

        self.resume_run(stage_one.run_id)
        self.stage_machine.import_handoff(
            self.run_id,
            STAGE_ONE,
            output_hash=content_address(stage_one),
            artifact_references=[stage_one.image.ref],
        )
        handoff_dir = handoff if handoff.is_dir() else handoff.parent

        def _handler() -> StageOutcome:
            build = self.stage_two.convert(
                stage_one, expected=expected, deadline=self.deadline
            )
            image_sha256 = sha256_hex(build.image_bytes)
            result = StageTwoResult(
                run_id=self.run_id,
                stage_one=stage_one,
                measurements=build.measurements,
                enclave_image_sha256=image_sha256,
            )
            atomic_write_bytes(out_dir / result.enclave_image_file, build.image_bytes)
            atomic_write_bytes(
                out_dir / result.log_file,
                self._combined_log(handoff_dir / stage_one.build_log, build.log),
            )
            document = write_handoff(result, out_dir)
            outputs = {
                "measurements": build.measurements.registers,
                "debug_mode": build.measurements.debug_mode,
                "enclave_image_sha256": image_sha256,
            }
            return result, outputs, [str(document), f"sha256:{image_sha256}"]

        return self.execute_stage(
            STAGE_TWO, {"stage_one": stage_one.model_dump(mode="json")}, _handler
        )

    def publish_from(self, stage_two_dir: Path) -> PublishResult:
        """Publish the artifacts described by a stage-two hand-off directory.

        If an earlier attempt for the same run failed with a retryable
        category (``RETRYABLE_PUBLISH_FAILURES``), the publish stage is
        reopened and attempted again.
        """
        stage_two_dir = Path(stage_two_dir)
        stage_two = read_stage_two(stage_two_dir)
        if stage_two_dir.is_file():
            stage_two_dir = stage_two_dir.parent

        self.resume_run(stage_two.run_id)
        self.stage_machine.import_handoff(
            self.run_id,
            STAGE_TWO,
            output_hash=content_address(stage_two),
            artifact_references=[f"sha256:{stage_two.enclave_image_sha256}"],
        )
        if self.stage_machine.get_current_state(self.run_id, PUBLISH) == StageState.FAILED:
            self._reopen_publish()

        def _handler() -> StageOutcome:
            image_path = stage_two_dir / stage_two.enclave_image_file
            try:
                image_bytes = image_path.read_bytes()
            except OSError as exc:
                raise HandoffError(f"Cannot read enclave image {image_path}: {exc}") from exc
            if sha256_hex(image_bytes) != stage_two.enclave_image_sha256:
                raise HandoffError(
                    f"{image_path} does not match the checksum recorded in the hand-off"
                )
            log_path = stage_two_dir / stage_two.log_file
            log = log_path.read_text(encoding="utf-8") if log_path.is_file() else ""

            request = stage_two.stage_one.build_request
            result = self.publisher.publish(
                request.app_name,
                request.version,
                image_bytes,
                stage_two.measurements,
                make_build_metadata(stage_two.stage_one, stage_two.enclave_image_sha256),
                log=log,
                timeout=budget(self.deadline, PUBLISH),
            )
            outputs = {"status": result.status.value, "release_tag": result.release_tag}
            return result, outputs, [result.location, result.release_tag]

        return self.execute_stage(
            PUBLISH, {"stage_two": stage_two.model_dump(mode="json")}, _handler
        )

    def run(self, config_path: Path, work_dir: Path | None = None) -> PublishResult:
        """Run every stage in this environment, passing through hand-off documents."""
        base = Path(work_dir) if work_dir is not None else self.settings.work_dir / self.run_id
        stage_one_dir = base / "stage-one"
        stage_two_dir = base / "stage-two"

        self.run_stage_one(config_path, stage_one_dir)
        self.run_stage_two(stage_one_dir, stage_two_dir)
        return self.publish_from(stage_two_dir)

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_states(self) -> dict[str, StageState]:
        """Return current state of all stages."""
        return self.stage_machine.get_all_states(self.run_id)

    def get_run_entries(self) -> list[LedgerEntry]:
        """Return all ledger entries for the current run."""
        return self.ledger.get_run_entries(self.run_id)

    def verify_chain(self) -> bool:
        """Verify the hash chain integrity of the current run's ledger."""
        return self.ledger.verify_chain(self.run_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _reopen_publish(self) -> None:
        failures = [
            e for e in self.get_run_entries()
            if e.stage_id == PUBLISH and e.state_transition.endswith(f"->{StageState.FAILED.value}")
        ]
        category = failures[-1].detail.partition(":")[0] if failures else ""
        if category not in RETRYABLE_PUBLISH_FAILURES:
            raise InvalidTransitionError(
                f"Cannot retry publish for run {self.run_id}: the previous attempt "
                f"failed with {category or 'an unknown error'}, which is not retryable"
            )
        self.stage_machine.reopen(
            self.run_id, PUBLISH, detail=f"retry after {category} failure"
        )

    @staticmethod
    def _combined_log(stage_one_log: Path, conversion_log: str) -> bytes:
        parts: list[str] = []
        if stage_one_log.is_file():
            parts.append(stage_one_log.read_text(encoding="utf-8"))
        if conversion_log:
            parts.append(conversion_log)
        return "\n".join(parts).encode("utf-8")
