"""Git checkout and Docker build/push/pull via their command-line tools.

Every call goes through ``run_tool``, which bounds it with the caller's timeout
and maps failures onto ``StageExecutionError`` with the tool's raw output
as diagnostics.
"""

from __future__ import annotations

import json
import logging
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from pathlib import Path

from novahub.collaborators.base import ImageBuildOutput
from novahub.errors import PipelineTimeoutError, StageExecutionError

logger = logging.getLogger(__name__)


def run_tool(
    cmd: Sequence[str],
    *,
    category: str,
    timeout: float | None,
    cwd: Path | None = None,
) -> subprocess.CompletedProcess:
    logger.debug("Running %s", " ".join(cmd))
    try:
        return subprocess.run(
            list(cmd),
            cwd=str(cwd) if cwd is not None else None,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=True,
        )
    except subprocess.TimeoutExpired as exc:
        raise PipelineTimeoutError(
            f"{cmd[0]} {cmd[1]} did not finish within {timeout:g}s",
            diagnostics=_output(exc.stdout, exc.stderr),
        ) from exc
    except subprocess.CalledProcessError as exc:
        raise StageExecutionError(
            f"{cmd[0]} {cmd[1]} exited with status {exc.returncode}",
            category=category,
            diagnostics=_output(exc.stdout, exc.stderr),
        ) from exc
    except OSError as exc:
        raise StageExecutionError(
            f"Cannot run {cmd[0]}: {exc}", category=category
        ) from exc


def _output(stdout: str | bytes | None, stderr: str | bytes | None) -> str:
    parts = []
    for stream in (stdout, stderr):
        if isinstance(stream, bytes):
            stream = stream.decode("utf-8", errors="replace")
        if stream:
            parts.append(stream)
    return "\n".join(parts)


class GitCheckout:
    """Clones a repository and checks out one exact commit."""

    def __init__(self, *, git_binary: str = "git") -> None:
        self._git = git_binary

    def checkout(
        self, repo: str, commit: str, dest: Path, *, timeout: float | None = None
    ) -> Path:
        dest = Path(dest)
        if dest.exists():
            shutil.rmtree(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)

        run_tool(
            [self._git, "clone", "--quiet", repo, str(dest)],
            category="checkout",
            timeout=timeout,
        )
        run_tool(
            [self._git, "-c", "advice.detachedHead=false", "checkout", "--quiet", commit],
            category="checkout",
            timeout=timeout,
            cwd=dest,
        )

        head = run_tool(
            [self._git, "rev-parse", "HEAD"],
            category="checkout",
            timeout=timeout,
            cwd=dest,
        ).stdout.strip()
        if not head.startswith(commit):
            raise StageExecutionError(
                f"Checked-out HEAD {head} does not match requested commit {commit}",
                category="checkout",
            )
        return dest


class DockerImageBuilder:
    """Builds, pushes, and pulls images with the ``docker`` CLI."""

    def __init__(self, *, docker_binary: str = "docker") -> None:
        self._docker = docker_binary

    def build(
        self,
        context: Path,
        build_file: Path,
        args: Mapping[str, str],
        *,
        tag: str,
        labels: Mapping[str, str],
        timeout: float | None = None,
    ) -> ImageBuildOutput:
        cmd = [self._docker, "build", "--file", str(build_file), "--tag", tag]
        for name, value in args.items():
            cmd += ["--build-arg", f"{name}={value}"]
        for name, value in labels.items():
            cmd += ["--label", f"{name}={value}"]
        cmd.append(str(context))

        result = run_tool(cmd, category="image_build", timeout=timeout)
        image_id = run_tool(
            [self._docker, "image", "inspect", "--format", "{{.Id}}", tag],
            category="image_build",
            timeout=timeout,
        ).stdout.strip()
        return ImageBuildOutput(image_id=image_id, log=_output(result.stdout, result.stderr))

    def push(self, tag: str, *, timeout: float | None = None) -> str:
        run_tool([self._docker, "push", tag], category="image_push", timeout=timeout)
        inspected = run_tool(
            [self._docker, "image", "inspect", "--format", "{{json .RepoDigests}}", tag],
            category="image_push",
            timeout=timeout,
        ).stdout
        repository = tag.rsplit(":", 1)[0] if ":" in tag.rsplit("/", 1)[-1] else tag
        try:
            digests = json.loads(inspected) or []
        except ValueError as exc:
            raise StageExecutionError(
                f"Unreadable RepoDigests for {tag}",
                category="image_push",
                diagnostics=inspected,
            ) from exc
        for ref in digests:
            if ref.split("@", 1)[0] == repository:
                return ref
        raise StageExecutionError(
            f"No registry digest recorded for {repository} after push",
            category="image_push",
            diagnostics=inspected,
        )

    def pull(self, ref: str, *, timeout: float | None = None) -> None:
        run_tool([self._docker, "pull", ref], category="image_pull", timeout=timeout)
