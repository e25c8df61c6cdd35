"""Tests for CLI commands via Typer CliRunner."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from novahub.cli.app import app
from novahub.cli.commands import resolve as resolve_module
from novahub.core.orchestrator import Orchestrator
from novahub.errors import PublishConflict

from tests.fakes import FakeConverter, InMemoryReleaseHost

runner = CliRunner()


@pytest.fixture
def cli_env(monkeypatch, tmp_dir: Path, source_host, checkout, builder, converter, store, release_host):
    """Point settings at the temp directory and inject the fakes."""
    monkeypatch.chdir(tmp_dir)
    monkeypatch.setenv("NOVAHUB_ENVIRONMENT", "development")
    monkeypatch.setenv("NOVAHUB_SKIP_REPO_CHECK", "true")
    monkeypatch.setenv("NOVAHUB_APPS_DIR", str(tmp_dir / "apps"))
    monkeypatch.setenv("NOVAHUB_WORK_DIR", str(tmp_dir / "work"))
    monkeypatch.setenv("NOVAHUB_LEDGER_PATH", str(tmp_dir / "ledger.db"))
    monkeypatch.setenv("NOVAHUB_RELEASE_STORE_PATH", str(tmp_dir / "releases"))
    monkeypatch.setenv("NOVAHUB_REGISTRY", "registry.example.com/nova")

    fakes = {
        "source_host": source_host,
        "checkout": checkout,
        "builder": builder,
        "converter": converter,
        "store": store,
        "release_host": release_host,
    }

    def _from_settings(cls, settings, **overrides):
        return cls(settings, **dict(fakes, **overrides))

    monkeypatch.setattr(Orchestrator, "from_settings", classmethod(_from_settings))
    monkeypatch.setattr(resolve_module, "GitHubSource", lambda **kwargs: source_host)
    return fakes


class TestCLIHelp:
    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        assert "validate" in result.output
        assert "history" in result.output

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in ("validate", "resolve", "build", "convert", "publish", "run", "history"):
            assert command in result.output


class TestValidateCommand:
    def test_valid_config(self, cli_env, write_config, valid_raw):
        path = write_config(valid_raw)
        result = runner.invoke(app, ["validate", str(path)])
        assert result.exit_code == 0, result.output
        assert "OK" in result.output
        assert "are valid" in result.output

    def test_discovers_configs(self, cli_env, write_config, valid_raw):
        write_config(valid_raw)
        write_config(dict(valid_raw, name="other"), directory="other")
        result = runner.invoke(app, ["validate"])
        assert result.exit_code == 0, result.output
        assert "All 2" in result.output

    def test_every_error_reported(self, cli_env, write_config, valid_raw):
        path = write_config(dict(valid_raw, name="Bad_Name", version="v1"))
        result = runner.invoke(app, ["validate", str(path)])
        assert result.exit_code == 1
        assert "FAIL" in result.output
        assert "name_directory_mismatch" in result.output
        assert "invalid_name" in result.output
        assert "invalid_version" in result.output

    def test_no_configs_found(self, cli_env):
        result = runner.invoke(app, ["validate"])
        assert result.exit_code == 1
        assert "No nova-build.yaml" in result.output

    def test_production_guard(self, cli_env, monkeypatch, write_config, valid_raw):
        monkeypatch.setenv("NOVAHUB_ENVIRONMENT", "production")
        result = runner.invoke(app, ["validate", str(write_config(valid_raw))])
        assert result.exit_code == 17
        assert "production_config" in result.output

    def test_invalid_settings_exit_code(self, cli_env, monkeypatch, write_config, valid_raw):
        monkeypatch.setenv("NOVAHUB_PIPELINE_TIMEOUT_SECONDS", "0")
        result = runner.invoke(app, ["validate", str(write_config(valid_raw))])
        assert result.exit_code == 17
        assert "Invalid settings" in result.output
        assert "NOVAHUB_PIPELINE_TIMEOUT_SECONDS" in result.output


class TestResolveCommand:
    def test_prints_request(self, cli_env, write_config, valid_raw):
        path = write_config(dict(valid_raw, reproducible={"source_date_epoch": 1700000000}))
        result = runner.invoke(app, ["resolve", str(path)])
        assert result.exit_code == 0, result.output
        assert "1700000000" in result.output
        assert "Request hash:" in result.output

    def test_resolution_error_exit_code(self, cli_env, write_config, valid_raw):
        path = write_config(dict(valid_raw, branch="missing"))
        result = runner.invoke(app, ["resolve", str(path)])
        assert result.exit_code == 11
        assert "resolution" in result.output


class TestPipelineCommands:
    def test_run(self, cli_env, write_config, valid_raw, store):
        result = runner.invoke(app, ["run", str(write_config(valid_raw))])
        assert result.exit_code == 0, result.output
        assert "Published" in result.output
        assert "demo/1.0.0" in store.objects

    def test_run_invalid_config(self, cli_env, write_config, valid_raw, builder):
        result = runner.invoke(app, ["run", str(write_config(dict(valid_raw, version="1")))])
        assert result.exit_code == 10
        assert "BLOCKED" in result.output
        assert builder.builds == []

    def test_split_build_convert_publish(self, cli_env, write_config, valid_raw, tmp_dir, store):
        one, two = tmp_dir / "one", tmp_dir / "two"
        result = runner.invoke(app, ["build", str(write_config(valid_raw)), "--out", str(one)])
        assert result.exit_code == 0, result.output
        assert "Image pushed" in result.output

        result = runner.invoke(app, ["convert", str(one), "--out", str(two)])
        assert result.exit_code == 0, result.output
        assert "PCR0" in result.output
        assert (two / "enclave.eif").is_file()

        result = runner.invoke(app, ["publish", str(two)])
        assert result.exit_code == 0, result.output
        assert "Published" in result.output

        result = runner.invoke(app, ["publish", str(two)])
        assert result.exit_code == 0, result.output
        assert "identical content" in result.output
        assert store.writes == 1

    def test_convert_expectation_mismatch(self, cli_env, write_config, valid_raw, tmp_dir):
        one, two = tmp_dir / "one", tmp_dir / "two"
        runner.invoke(app, ["build", str(write_config(valid_raw)), "--out", str(one)])
        expected = tmp_dir / "pcr.json"
        expected.write_text('{"PCR0": "00", "PCR1": "00", "PCR2": "00"}')
        result = runner.invoke(app, ["convert", str(one), "--out", str(two), "--expect", str(expected)])
        assert result.exit_code == 14
        assert "determinism_violation" in result.output

    def test_convert_unreadable_expectation(self, cli_env, tmp_dir):
        result = runner.invoke(
            app, ["convert", str(tmp_dir), "--out", str(tmp_dir / "two"), "--expect", str(tmp_dir / "none.json")]
        )
        assert result.exit_code == 2

    def test_convert_missing_handoff(self, cli_env, tmp_dir):
        result = runner.invoke(app, ["convert", str(tmp_dir / "nowhere"), "--out", str(tmp_dir / "two")])
        assert result.exit_code == 16
        assert "handoff" in result.output

    def test_publish_conflict_exit_code(self, cli_env, monkeypatch, write_config, valid_raw, tmp_dir):
        runner.invoke(app, ["run", str(write_config(valid_raw))])
        # A fresh environment whose conversion host disagrees with the first one
        monkeypatch.setenv("NOVAHUB_LEDGER_PATH", str(tmp_dir / "second-ledger.db"))
        cli_env["converter"] = FakeConverter(drift=True)
        one, two = tmp_dir / "one", tmp_dir / "two"
        runner.invoke(app, ["build", str(write_config(valid_raw)), "--out", str(one)])
        runner.invoke(app, ["convert", str(one), "--out", str(two)])
        result = runner.invoke(app, ["publish", str(two)])
        assert result.exit_code == 15
        assert "publish_conflict" in result.output

    def test_publish_retried_after_release_failure(self, cli_env, write_config, valid_raw, tmp_dir, store):
        cli_env["release_host"] = InMemoryReleaseHost(fail_times=1)
        one, two = tmp_dir / "one", tmp_dir / "two"
        runner.invoke(app, ["build", str(write_config(valid_raw)), "--out", str(one)])
        runner.invoke(app, ["convert", str(one), "--out", str(two)])

        result = runner.invoke(app, ["publish", str(two)])
        assert result.exit_code == 12
        assert "release" in result.output

        result = runner.invoke(app, ["publish", str(two)])
        assert result.exit_code == 0, result.output
        assert "demo-v1.0.0" in cli_env["release_host"].releases
        assert store.writes == 1


class TestHistoryCommand:
    def test_missing_ledger(self, cli_env):
        result = runner.invoke(app, ["history"])
        assert result.exit_code == 1
        assert "Ledger not found" in result.output

    def test_lists_runs_and_shows_one(self, cli_env, write_config, valid_raw):
        runner.invoke(app, ["run", str(write_config(valid_raw))])
        listing = runner.invoke(app, ["history"])
        assert listing.exit_code == 0
        [run_id] = [line for line in listing.output.splitlines() if line.startswith("nh-")]

        result = runner.invoke(app, ["history", run_id])
        assert result.exit_code == 0, result.output
        assert "Hash chain verified" in result.output

    def test_unknown_run(self, cli_env, write_config, valid_raw):
        runner.invoke(app, ["run", str(write_config(valid_raw))])
        result = runner.invoke(app, ["history", "nh-unknown"])
        assert result.exit_code == 1


def test_publish_conflict_is_a_handled_error():
    from novahub.cli.output import HANDLED_ERRORS, exit_code_for

    exc = PublishConflict("x", mismatched_fields=["PCR0"])
    assert isinstance(exc, HANDLED_ERRORS)
    assert exit_code_for(exc) == 15
