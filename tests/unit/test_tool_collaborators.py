"""Tests for the git, docker and nitro-cli command-line collaborators.

``subprocess.run`` is replaced with a recorder, so no tool is executed.
"""

from __future__ import annotations

import json
import subprocess
from pathlib import Path

import pytest

from novahub.collaborators import docker as docker_module
from novahub.collaborators.docker import DockerImageBuilder, GitCheckout, run_tool
from novahub.collaborators.nitro import NitroCliConverter, parse_measurements
from novahub.errors import PipelineTimeoutError, StageExecutionError

DIGEST = "sha256:" + "ab" * 32
PCR = {"PCR0": "AA" * 48, "PCR1": "bb" * 48, "PCR2": "cc" * 48}


class FakeRun:
    """Answers each command by its first matching prefix."""

    def __init__(self, replies: dict[tuple[str, ...], object] | None = None) -> None:
        self.replies = replies or {}
        self.commands: list[list[str]] = []
        self.kwargs: list[dict] = []

    def __call__(self, cmd, **kwargs):
        self.commands.append(cmd)
        self.kwargs.append(kwargs)
        for prefix, reply in self.replies.items():
            if tuple(cmd[: len(prefix)]) == prefix:
                if isinstance(reply, BaseException):
                    raise reply
                if callable(reply):
                    reply = reply(cmd)
                return subprocess.CompletedProcess(cmd, 0, stdout=reply, stderr="")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


@pytest.fixture
def fake_run(monkeypatch) -> FakeRun:
    recorder = FakeRun()
    monkeypatch.setattr(docker_module.subprocess, "run", recorder)
    return recorder


class TestRunTool:
    def test_passes_timeout_and_check(self, fake_run):
        run_tool(["docker", "pull", "x"], category="image_pull", timeout=12.5)
        assert fake_run.kwargs[0]["timeout"] == 12.5
        assert fake_run.kwargs[0]["check"] is True
        assert fake_run.kwargs[0]["capture_output"] is True

    def test_non_zero_exit(self, fake_run):
        fake_run.replies[("docker", "pull")] = subprocess.CalledProcessError(
            1, ["docker", "pull"], output="", stderr="manifest unknown"
        )
        with pytest.raises(StageExecutionError, match="exited with status 1") as exc_info:
            run_tool(["docker", "pull", "x"], category="image_pull", timeout=None)
        assert exc_info.value.category == "image_pull"
        assert exc_info.value.diagnostics == "manifest unknown"

    def test_timeout(self, fake_run):
        fake_run.replies[("docker", "build")] = subprocess.TimeoutExpired(
            ["docker", "build"], 5, output=b"Step 3/9"
        )
        with pytest.raises(PipelineTimeoutError) as exc_info:
            run_tool(["docker", "build", "."], category="image_build", timeout=5)
        assert exc_info.value.category == "timeout"
        assert exc_info.value.diagnostics == "Step 3/9"

    def test_missing_binary(self, fake_run):
        fake_run.replies[("nitro-cli",)] = FileNotFoundError("nitro-cli")
        with pytest.raises(StageExecutionError, match="Cannot run nitro-cli"):
            run_tool(["nitro-cli", "build-enclave"], category="enclave_conversion", timeout=None)


class TestGitCheckout:
    def test_clones_and_checks_out_commit(self, fake_run, tmp_dir: Path):
        commit = "0123456789abcdef0123456789abcdef01234567"
        fake_run.replies[("git", "rev-parse")] = commit + "\n"
        dest = GitCheckout().checkout("https://github.com/org/demo", commit, tmp_dir / "src")

        assert dest == tmp_dir / "src"
        assert fake_run.commands[0][:3] == ["git", "clone", "--quiet"]
        assert fake_run.commands[1][-1] == commit
        assert fake_run.kwargs[1]["cwd"] == str(tmp_dir / "src")

    def test_head_mismatch_rejected(self, fake_run, tmp_dir: Path):
        fake_run.replies[("git", "rev-parse")] = "ffffffff\n"
        with pytest.raises(StageExecutionError, match="does not match") as exc_info:
            GitCheckout().checkout("https://github.com/org/demo", "0123456", tmp_dir / "src")
        assert exc_info.value.category == "checkout"


class TestDockerImageBuilder:
    def test_build_command(self, fake_run, tmp_dir: Path):
        fake_run.replies[("docker", "image", "inspect")] = DIGEST + "\n"
        output = DockerImageBuilder().build(
            tmp_dir, tmp_dir / "Dockerfile", {"SOURCE_DATE_EPOCH": "1700000000"},
            tag="registry.example.com/nova/demo:1.0.0",
            labels={"org.opencontainers.image.revision": "abc"},
        )
        cmd = fake_run.commands[0]
        assert cmd[:2] == ["docker", "build"]
        assert "SOURCE_DATE_EPOCH=1700000000" in cmd
        assert "org.opencontainers.image.revision=abc" in cmd
        assert cmd[-1] == str(tmp_dir)
        assert output.image_id == DIGEST

    def test_push_returns_matching_repo_digest(self, fake_run):
        fake_run.replies[("docker", "image", "inspect")] = json.dumps([
            f"mirror.example.com/demo@sha256:{'00' * 32}",
            f"localhost:5000/nova/demo@{DIGEST}",
        ])
        ref = DockerImageBuilder().push("localhost:5000/nova/demo:1.0.0")
        assert ref == f"localhost:5000/nova/demo@{DIGEST}"
        assert fake_run.commands[0] == ["docker", "push", "localhost:5000/nova/demo:1.0.0"]

    def test_push_without_digest_fails(self, fake_run):
        fake_run.replies[("docker", "image", "inspect")] = "[]"
        with pytest.raises(StageExecutionError, match="No registry digest") as exc_info:
            DockerImageBuilder().push("registry.example.com/nova/demo:1.0.0")
        assert exc_info.value.category == "image_push"

    def test_pull_by_reference(self, fake_run):
        ref = f"registry.example.com/nova/demo@{DIGEST}"
        DockerImageBuilder().pull(ref, timeout=30)
        assert fake_run.commands == [["docker", "pull", ref]]


def _nitro_reply(stdout: str):
    def _reply(cmd):
        Path(cmd[cmd.index("--output-file") + 1]).write_bytes(b"EIF")
        return stdout

    return _reply


class TestNitroCliConverter:
    def test_convert(self, fake_run):
        fake_run.replies[("nitro-cli", "build-enclave")] = _nitro_reply(
            json.dumps({"Measurements": dict(PCR, HashAlgorithm="Sha384 { ... }")})
        )
        build = NitroCliConverter().convert(f"demo@{DIGEST}", False)
        assert build.image_bytes == b"EIF"
        assert build.measurements.registers["PCR0"] == "aa" * 48
        assert build.measurements.hash_algorithm == "sha384"
        assert fake_run.commands[0][2:4] == ["--docker-uri", f"demo@{DIGEST}"]

    def test_debug_mode_zeroes_registers(self, fake_run):
        fake_run.replies[("nitro-cli", "build-enclave")] = _nitro_reply(
            json.dumps({"Measurements": PCR})
        )
        build = NitroCliConverter().convert(f"demo@{DIGEST}", True)
        assert build.measurements.debug_mode is True
        assert set(build.measurements.registers.values()) == {"0" * 96}

    def test_no_output_file(self, fake_run):
        fake_run.replies[("nitro-cli", "build-enclave")] = json.dumps({"Measurements": PCR})
        with pytest.raises(StageExecutionError, match="no enclave image"):
            NitroCliConverter().convert(f"demo@{DIGEST}", False)


class TestParseMeasurements:
    def test_not_json(self):
        with pytest.raises(StageExecutionError, match="no Measurements") as exc_info:
            parse_measurements("Start building the Enclave Image...")
        assert exc_info.value.category == "measurement"

    def test_missing_register(self):
        stdout = json.dumps({"Measurements": {"PCR0": "aa", "PCR1": "bb"}})
        with pytest.raises(StageExecutionError, match="PCR2"):
            parse_measurements(stdout)

    @pytest.mark.parametrize("measurements", ["oops", ["PCR0", "PCR1", "PCR2"], 42, None])
    def test_measurements_not_an_object(self, measurements):
        stdout = json.dumps({"Measurements": measurements})
        with pytest.raises(StageExecutionError, match="not an object") as exc_info:
            parse_measurements(stdout, diagnostics="nitro-cli stderr")
        assert exc_info.value.category == "measurement"
        assert stdout in exc_info.value.diagnostics
        assert "nitro-cli stderr" in exc_info.value.diagnostics

    @pytest.mark.parametrize("stdout", ["[1, 2]", "\"text\"", "7"])
    def test_top_level_not_an_object(self, stdout):
        with pytest.raises(StageExecutionError, match="no Measurements") as exc_info:
            parse_measurements(stdout)
        assert exc_info.value.category == "measurement"
