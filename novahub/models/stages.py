"""Pipeline stage models — a strict linear state machine."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class StageState(str, Enum):
    """State of one pipeline stage within a run."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    BLOCKED = "blocked"
    FAILED = "failed"
    PASSED = "passed"


# Failure is terminal for a run: FAILED and BLOCKED have no way back through
# a transition. The one exception is StageMachine.reopen, which lets a failed
# publish be attempted again; anything else means starting a new run.
VALID_TRANSITIONS: dict[StageState, set[StageState]] = {
    StageState.NOT_STARTED: {StageState.RUNNING, StageState.BLOCKED},
    StageState.RUNNING: {StageState.PASSED, StageState.FAILED},
    StageState.BLOCKED: set(),
    StageState.FAILED: set(),
    StageState.PASSED: set(),
}


class StageDefinition(BaseModel):
    """A pipeline stage and the stage whose success it waits for."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    ordinal: int
    prerequisite: str | None = None


VALIDATE = "validate"
RESOLVE = "resolve"
STAGE_ONE = "stage_one"
STAGE_TWO = "stage_two"
PUBLISH = "publish"

PIPELINE_STAGES: list[StageDefinition] = [
    StageDefinition(stage_id=VALIDATE, display_name="Validate Configuration", ordinal=0),
    StageDefinition(
        stage_id=RESOLVE, display_name="Resolve Build Request", ordinal=1, prerequisite=VALIDATE
    ),
    StageDefinition(
        stage_id=STAGE_ONE, display_name="Build & Push Image", ordinal=2, prerequisite=RESOLVE
    ),
    StageDefinition(
        stage_id=STAGE_TWO, display_name="Convert & Measure Enclave", ordinal=3, prerequisite=STAGE_ONE
    ),
    StageDefinition(
        stage_id=PUBLISH, display_name="Publish Release", ordinal=4, prerequisite=STAGE_TWO
    ),
]
