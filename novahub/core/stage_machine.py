"""Pipeline stage state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- A stage enters RUNNING only after its predecessor PASSED
- Failure blocks every downstream stage of the run
- Every transition recorded in the run ledger
"""

from __future__ import annotations

import logging

from novahub.core.run_ledger import RunLedger
from novahub.models.ledger import LedgerEntry
from novahub.models.stages import (
    PIPELINE_STAGES,
    VALID_TRANSITIONS,
    StageDefinition,
    StageState,
)

logger = logging.getLogger(__name__)

HANDOFF_ORIGIN = "handoff"


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class PrerequisiteNotMetError(RuntimeError):
    """Raised when a stage is started before its predecessor passed."""


class StageMachine:
    """Tracks and records stage states per run.

    Parameters
    ----------
    ledger:
        The run ledger to record transitions into.
    stages:
        Ordered stage definitions; each names at most one prerequisite.
    """

    def __init__(
        self,
        ledger: RunLedger,
        stages: list[StageDefinition] | None = None,
    ) -> None:
        self._ledger = ledger
        self._stages = sorted(stages or PIPELINE_STAGES, key=lambda sd: sd.ordinal)
        self._by_id = {sd.stage_id: sd for sd in self._stages}
        # In-memory state cache: run_id -> {stage_id -> StageState}
        self._states: dict[str, dict[str, StageState]] = {}

    @property
    def stage_ids(self) -> list[str]:
        return [sd.stage_id for sd in self._stages]

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def initialize_run(self, run_id: str) -> dict[str, StageState]:
        """Initialize all stages to NOT_STARTED for a new run."""
        self._states[run_id] = {sid: StageState.NOT_STARTED for sid in self.stage_ids}
        return dict(self._states[run_id])

    def get_current_state(self, run_id: str, stage_id: str) -> StageState:
        return self._run_states(run_id).get(stage_id, StageState.NOT_STARTED)

    def get_all_states(self, run_id: str) -> dict[str, StageState]:
        return dict(self._run_states(run_id))

    def _run_states(self, run_id: str) -> dict[str, StageState]:
        if run_id not in self._states:
            self._rebuild_state(run_id)
        return self._states[run_id]

    def _rebuild_state(self, run_id: str) -> None:
        """Rebuild in-memory state from the ledger."""
        states = {sid: StageState.NOT_STARTED for sid in self.stage_ids}
        for entry in self._ledger.get_run_entries(run_id):
            _, sep, to_state = entry.state_transition.partition("->")
            if sep and entry.stage_id in states:
                states[entry.stage_id] = StageState(to_state)
        self._states[run_id] = states

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self,
        run_id: str,
        stage_id: str,
        target_state: StageState,
        *,
        input_hash: str = "",
        output_hash: str = "",
        artifact_references: list[str] | None = None,
        detail: str = "",
    ) -> LedgerEntry:
        """Move ``stage_id`` to ``target_state`` and record it.

        Returns the sealed ledger entry.
        """
        if stage_id not in self._by_id:
            raise KeyError(f"Unknown stage_id {stage_id!r}. Known: {self.stage_ids}")

        states = self._run_states(run_id)
        current = states[stage_id]

        allowed = VALID_TRANSITIONS.get(current, set())
        if target_state not in allowed:
            raise InvalidTransitionError(
                f"Cannot transition {stage_id} from {current.value} to {target_state.value}. "
                f"Allowed: {sorted(s.value for s in allowed)}"
            )

        if target_state == StageState.RUNNING:
            prereq = self._by_id[stage_id].prerequisite
            if prereq and states.get(prereq) != StageState.PASSED:
                raise PrerequisiteNotMetError(
                    f"Cannot start {stage_id}: {prereq} is {states[prereq].value}"
                )

        sealed = self._ledger.append(LedgerEntry(
            run_id=run_id,
            stage_id=stage_id,
            state_transition=f"{current.value}->{target_state.value}",
            input_hash=input_hash,
            output_hash=output_hash,
            artifact_references=artifact_references or [],
            detail=detail,
        ))
        states[stage_id] = target_state

        if target_state == StageState.FAILED:
            self._block_downstream(run_id, stage_id)

        return sealed

    def import_handoff(
        self,
        run_id: str,
        through_stage: str,
        *,
        output_hash: str,
        artifact_references: list[str] | None = None,
    ) -> list[str]:
        """Mark every stage up to ``through_stage`` PASSED from a hand-off.

        Used when a later stage starts in a fresh environment: the hand-off
        document is the predecessor's success signal. Only NOT_STARTED
        stages are imported. Returns the imported stage ids.
        """
        if through_stage not in self._by_id:
            raise KeyError(f"Unknown stage_id {through_stage!r}")

        states = self._run_states(run_id)
        imported: list[str] = []
        for sd in self._stages:
            if states[sd.stage_id] == StageState.NOT_STARTED:
                self._ledger.append(LedgerEntry(
                    run_id=run_id,
                    stage_id=sd.stage_id,
                    state_transition=f"{HANDOFF_ORIGIN}->{StageState.PASSED.value}",
                    output_hash=output_hash if sd.stage_id == through_stage else "",
                    artifact_references=(
                        artifact_references or [] if sd.stage_id == through_stage else []
                    ),
                    detail=HANDOFF_ORIGIN,
                ))
                states[sd.stage_id] = StageState.PASSED
                imported.append(sd.stage_id)
            elif states[sd.stage_id] != StageState.PASSED:
                raise InvalidTransitionError(
                    f"Cannot import hand-off: {sd.stage_id} is {states[sd.stage_id].value}"
                )
            if sd.stage_id == through_stage:
                break

        logger.info("Run %s: imported hand-off through %s", run_id, through_stage)
        return imported

    def reopen(self, run_id: str, stage_id: str, *, detail: str) -> LedgerEntry:
        """Return a FAILED final stage to NOT_STARTED for another attempt.

        Only the last stage of the pipeline can be reopened: an earlier
        failure has already blocked every stage after it. The reopening is
        recorded as ``failed->not_started`` with ``detail`` as the reason.
        """
        if stage_id not in self._by_id:
            raise KeyError(f"Unknown stage_id {stage_id!r}. Known: {self.stage_ids}")

        states = self._run_states(run_id)
        current = states[stage_id]
        if current != StageState.FAILED:
            raise InvalidTransitionError(
                f"Cannot reopen {stage_id}: it is {current.value}, not failed"
            )
        ordinal = self._by_id[stage_id].ordinal
        downstream = [sd.stage_id for sd in self._stages if sd.ordinal > ordinal]
        if downstream:
            raise InvalidTransitionError(
                f"Cannot reopen {stage_id}: {', '.join(downstream)} depend on it"
            )

        sealed = self._ledger.append(LedgerEntry(
            run_id=run_id,
            stage_id=stage_id,
            state_transition=f"{StageState.FAILED.value}->{StageState.NOT_STARTED.value}",
            detail=detail,
        ))
        states[stage_id] = StageState.NOT_STARTED
        logger.warning("Run %s: %s reopened (%s)", run_id, stage_id, detail)
        return sealed

    def _block_downstream(self, run_id: str, failed_stage: str) -> list[str]:
        states = self._run_states(run_id)
        blocked: list[str] = []
        ordinal = self._by_id[failed_stage].ordinal
        for sd in self._stages:
            if sd.ordinal > ordinal and states[sd.stage_id] == StageState.NOT_STARTED:
                self._ledger.append(LedgerEntry(
                    run_id=run_id,
                    stage_id=sd.stage_id,
                    state_transition=f"{StageState.NOT_STARTED.value}->{StageState.BLOCKED.value}",
                    detail=f"upstream {failed_stage} failed",
                ))
                states[sd.stage_id] = StageState.BLOCKED
                blocked.append(sd.stage_id)
        return blocked

    # ------------------------------------------------------------------
    # Convenience methods
    # ------------------------------------------------------------------

    def can_start(self, run_id: str, stage_id: str) -> tuple[bool, list[str]]:
        """Check if a stage can transition to RUNNING.

        Returns (can_start, blocking_reasons).
        """
        states = self._run_states(run_id)
        current = states.get(stage_id, StageState.NOT_STARTED)
        if current != StageState.NOT_STARTED:
            return False, [f"Stage is currently {current.value}, not not_started"]

        prereq = self._by_id[stage_id].prerequisite
        if prereq and states.get(prereq) != StageState.PASSED:
            return False, [f"{prereq} is {states[prereq].value}"]

        return True, []
