"""Nova App Hub stage coordinators.

Usage::

    from novahub.stages import StageOneCoordinator, StageTwoCoordinator

    stage_one = StageOneCoordinator(checkout, builder, registry=..., work_dir=...)
    result = stage_one.build(request, run_id=run_id)

    build = StageTwoCoordinator(builder, converter).convert(result)
"""

from __future__ import annotations

from novahub.stages.publisher import (
    ArtifactPublisher,
    artifact_key,
    make_build_metadata,
    release_tag,
)
from novahub.stages.stage_one import StageOneCoordinator, image_labels
from novahub.stages.stage_two import StageTwoCoordinator

__all__ = [
    "ArtifactPublisher",
    "StageOneCoordinator",
    "StageTwoCoordinator",
    "artifact_key",
    "image_labels",
    "make_build_metadata",
    "release_tag",
]
