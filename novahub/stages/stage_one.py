"""Stage one — image construction.

Checks out the exact resolved commit, builds the container image with the
resolved build arguments, pushes it, and returns a digest-pinned reference.
Runs in an environment with a source checkout and registry push rights.

Failure is terminal: nothing here retries or mutates the request.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from novahub.collaborators.base import ImageBuilder, SourceCheckout
from novahub.core.deadline import Deadline, budget
from novahub.core.handoff import atomic_write_bytes
from novahub.core.hasher import content_address
from novahub.errors import StageExecutionError
from novahub.models.build import BuildRequest, ImageReference, StageOneResult

logger = logging.getLogger(__name__)

STAGE_ONE_LOG = "stage-one.log"


def image_labels(request: BuildRequest, request_hash: str) -> dict[str, str]:
    """OCI labels recording the build request inside the image."""
    created = datetime.fromtimestamp(request.source_date_epoch, tz=timezone.utc)
    return {
        "org.opencontainers.image.source": request.repo,
        "org.opencontainers.image.revision": request.commit,
        "org.opencontainers.image.version": request.version,
        "org.opencontainers.image.created": created.isoformat().replace("+00:00", "Z"),
        "dev.novahub.request-hash": request_hash,
        "dev.novahub.debug-mode": "true" if request.debug_mode else "false",
    }


class StageOneCoordinator:
    """Builds and pushes the application image for a ``BuildRequest``.

    Parameters
    ----------
    checkout:
        Materialises the resolved commit on disk.
    builder:
        Container build engine and registry client.
    registry:
        Image repository prefix; images are pushed as
        ``<registry>/<app>:<version>``.
    work_dir:
        Per-run source checkouts are created beneath this directory.
    """

    def __init__(
        self,
        checkout: SourceCheckout,
        builder: ImageBuilder,
        *,
        registry: str,
        work_dir: Path,
    ) -> None:
        self._checkout = checkout
        self._builder = builder
        self._registry = registry.rstrip("/")
        self._work_dir = Path(work_dir)

    def build(
        self,
        request: BuildRequest,
        *,
        run_id: str,
        deadline: Deadline | None = None,
        log_dir: Path | None = None,
    ) -> StageOneResult:
        """Check out, build, push; return the digest-pinned result."""
        request_hash = content_address(request)
        repository = f"{self._registry}/{request.app_name}"
        tag = f"{repository}:{request.version}"

        # 1. Exact commit, never the branch head at execution time
        src = self._work_dir / run_id / "src"
        logger.info("Checking out %s at %s into %s", request.repo, request.commit, src)
        src = self._checkout.checkout(
            request.repo, request.commit, src, timeout=budget(deadline, "checkout")
        )

        context = src / request.context_dir
        build_file = src / request.build_file
        if not context.is_dir():
            raise StageExecutionError(
                f"Build directory {request.context_dir!r} not found at {request.commit}",
                category="image_build",
            )
        if not build_file.is_file():
            raise StageExecutionError(
                f"Build file {request.build_file!r} not found at {request.commit}",
                category="image_build",
            )

        # 2. Build with the resolved arguments
        logger.info("Building %s from %s", tag, request.build_file)
        output = self._builder.build(
            context,
            build_file,
            request.build_arg_map(),
            tag=tag,
            labels=image_labels(request, request_hash),
            timeout=budget(deadline, "image build"),
        )
        if log_dir is not None:
            atomic_write_bytes(Path(log_dir) / STAGE_ONE_LOG, output.log.encode("utf-8"))

        # 3. Push and pin by digest
        pushed = self._builder.push(tag, timeout=budget(deadline, "image push"))
        image = self._pin(pushed, repository)
        logger.info("Pushed %s as %s", tag, image.ref)

        return StageOneResult(
            run_id=run_id,
            image=image,
            tag=tag,
            build_request=request,
            request_hash=request_hash,
            build_log=STAGE_ONE_LOG,
        )

    @staticmethod
    def _pin(pushed: str, repository: str) -> ImageReference:
        try:
            image = ImageReference.parse(pushed)
            expected = ImageReference.parse(f"{repository}@{image.digest}")
        except ValueError as exc:
            raise StageExecutionError(
                f"Registry push did not yield a digest-pinned reference: {exc}",
                category="image_push",
                diagnostics=pushed,
            ) from exc
        if (image.registry, image.repository) != (expected.registry, expected.repository):
            raise StageExecutionError(
                f"Pushed reference {pushed!r} is not in repository {repository!r}",
                category="image_push",
                diagnostics=pushed,
            )
        return image
