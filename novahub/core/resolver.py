"""Build request resolution — AppConfig in, deterministic BuildRequest out.

Resolution is the only place commit and timestamp are decided. Given the
same configuration and the same commit metadata it always produces an
equal ``BuildRequest``; it never consults the wall clock.
"""

from __future__ import annotations

import logging
import posixpath

from novahub.collaborators.base import SourceHost
from novahub.core.deadline import Deadline, budget
from novahub.errors import ResolutionError
from novahub.models.app_config import AppConfig, BuildArg
from novahub.models.build import BuildRequest

logger = logging.getLogger(__name__)

# Pins every time-dependent value in the image build (file mtimes, archive
# headers). See https://reproducible-builds.org/specs/source-date-epoch/
SOURCE_DATE_EPOCH_ARG = "SOURCE_DATE_EPOCH"


class BuildRequestResolver:
    """Turns a validated ``AppConfig`` into a ``BuildRequest``.

    Parameters
    ----------
    source_host:
        Looks up branch heads and commit author times. Not consulted when
        both the commit and ``source_date_epoch`` are pinned.
    """

    def __init__(self, source_host: SourceHost) -> None:
        self._source_host = source_host

    def resolve(
        self, config: AppConfig, *, deadline: Deadline | None = None
    ) -> BuildRequest:
        """Resolve commit, timestamp, paths, and build arguments.

        Each commit metadata lookup is bounded by what is left of
        ``deadline``.

        Raises ``ResolutionError`` for duplicate argument names (including
        a collision with the injected ``SOURCE_DATE_EPOCH``), for paths
        escaping the repository, and for failed commit metadata lookups.
        """
        commit, commit_source = self._resolve_commit(config, deadline)
        epoch, timestamp_source = self._resolve_timestamp(config, commit, deadline)
        context_dir, build_file = self._resolve_paths(config)
        build_args = self._resolve_args(config, epoch)

        request = BuildRequest(
            app_name=config.name,
            version=config.version,
            repo=config.repo,
            branch=config.branch,
            commit=commit,
            commit_source=commit_source,
            source_date_epoch=epoch,
            timestamp_source=timestamp_source,
            context_dir=context_dir,
            build_file=build_file,
            build_args=build_args,
            debug_mode=config.enclave.debug_mode,
            reproducible=config.reproducible.enabled,
        )
        logger.info(
            "Resolved %s@%s: commit=%s (%s) source_date_epoch=%d (%s)",
            config.name,
            config.version,
            commit,
            commit_source,
            epoch,
            timestamp_source,
        )
        if request.debug_mode:
            logger.warning(
                "%s@%s is built in debug mode; its measurements are not "
                "those of a production enclave.",
                config.name,
                config.version,
            )
        return request

    # ------------------------------------------------------------------
    # Resolution steps
    # ------------------------------------------------------------------

    def _resolve_commit(
        self, config: AppConfig, deadline: Deadline | None
    ) -> tuple[str, str]:
        if config.commit:
            return config.commit, "pinned"
        timeout = budget(deadline, "resolve")
        try:
            commit = self._source_host.resolve_branch(
                config.repo, config.branch, timeout=timeout
            )
        except Exception as exc:
            raise ResolutionError(
                f"Cannot resolve head of branch {config.branch!r} in {config.repo}: {exc}"
            ) from exc
        if not commit:
            raise ResolutionError(
                f"Branch {config.branch!r} in {config.repo} has no head commit"
            )
        return commit, "branch_head"

    def _resolve_timestamp(
        self, config: AppConfig, commit: str, deadline: Deadline | None
    ) -> tuple[int, str]:
        configured = config.reproducible.source_date_epoch
        if configured is not None:
            return configured, "configured"
        timeout = budget(deadline, "resolve")
        try:
            epoch = self._source_host.commit_timestamp(
                config.repo, commit, timeout=timeout
            )
        except Exception as exc:
            raise ResolutionError(
                f"Cannot read author time of commit {commit} in {config.repo}: {exc}"
            ) from exc
        if epoch is None or epoch < 0:
            raise ResolutionError(
                f"Commit {commit} in {config.repo} has no usable author time: {epoch!r}"
            )
        return int(epoch), "commit"

    @staticmethod
    def _resolve_paths(config: AppConfig) -> tuple[str, str]:
        context_dir = posixpath.normpath(config.build.directory or ".")
        build_file = posixpath.normpath(
            posixpath.join(context_dir, config.build.dockerfile or "Dockerfile")
        )
        for label, path in (("build directory", context_dir), ("dockerfile", build_file)):
            if posixpath.isabs(path) or path == ".." or path.startswith("../"):
                raise ResolutionError(f"{label} {path!r} escapes the repository root")
        return context_dir, build_file

    @staticmethod
    def _resolve_args(config: AppConfig, epoch: int) -> list[BuildArg]:
        # Rebuilt so unknown keys on declared args never reach the request.
        args = [BuildArg(name=a.name, value=a.value) for a in config.build.args] + [
            BuildArg(name=SOURCE_DATE_EPOCH_ARG, value=str(epoch))
        ]
        seen: set[str] = set()
        duplicates: list[str] = []
        for arg in args:
            if arg.name in seen and arg.name not in duplicates:
                duplicates.append(arg.name)
            seen.add(arg.name)
        if duplicates:
            raise ResolutionError(
                f"Duplicate build argument name(s): {', '.join(duplicates)}"
                + (
                    f" ({SOURCE_DATE_EPOCH_ARG} is injected by the pipeline)"
                    if SOURCE_DATE_EPOCH_ARG in duplicates
                    else ""
                )
            )
        return args
