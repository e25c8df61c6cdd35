"""Nova App Hub data models — all Pydantic v2, all frozen (immutable)."""

from novahub.models.app_config import (
    AppConfig,
    AppMetadata,
    BuildArg,
    BuildSpec,
    EnclaveSpec,
    ReproducibleSpec,
)
from novahub.models.build import (
    REGISTER_NAMES,
    BuildMetadata,
    BuildRequest,
    EnclaveBuild,
    ImageReference,
    MeasurementSet,
    PublishResult,
    PublishStatus,
    StageOneResult,
    StageTwoResult,
    StoreOutcome,
    StoreStatus,
)
from novahub.models.ledger import LedgerEntry
from novahub.models.stages import (
    PIPELINE_STAGES,
    VALID_TRANSITIONS,
    StageDefinition,
    StageState,
)
from novahub.models.validation import IssueCode, ValidationIssue, ValidationReport

__all__ = [
    # app config
    "AppConfig",
    "AppMetadata",
    "BuildArg",
    "BuildSpec",
    "EnclaveSpec",
    "ReproducibleSpec",
    # validation
    "IssueCode",
    "ValidationIssue",
    "ValidationReport",
    # build artifacts
    "REGISTER_NAMES",
    "BuildRequest",
    "ImageReference",
    "StageOneResult",
    "MeasurementSet",
    "EnclaveBuild",
    "StageTwoResult",
    "BuildMetadata",
    "StoreStatus",
    "StoreOutcome",
    "PublishStatus",
    "PublishResult",
    # stages
    "StageState",
    "StageDefinition",
    "VALID_TRANSITIONS",
    "PIPELINE_STAGES",
    # ledger
    "LedgerEntry",
]
