"""Tests for BuildRequestResolver — deterministic build requests."""

from __future__ import annotations

import time

import pytest

from novahub.core.deadline import Deadline
from novahub.core.hasher import content_address
from novahub.core.resolver import SOURCE_DATE_EPOCH_ARG, BuildRequestResolver
from novahub.errors import PipelineTimeoutError, ResolutionError
from novahub.models.app_config import AppConfig

from tests.fakes import HEAD_COMMIT, HEAD_COMMIT_TIME, FakeSourceHost, StepClock

PINNED = "fedcba9876543210fedcba9876543210fedcba98"


def _config(**overrides) -> AppConfig:
    raw = {
        "name": "demo",
        "version": "1.0.0",
        "repo": "https://github.com/org/demo",
        "branch": "main",
    }
    raw.update(overrides)
    return AppConfig.model_validate(raw)


class TestCommitResolution:
    def test_branch_head_used_when_unpinned(self, source_host):
        request = BuildRequestResolver(source_host).resolve(_config())
        assert request.commit == HEAD_COMMIT
        assert request.commit_source == "branch_head"
        assert ("resolve_branch", "https://github.com/org/demo", "main") in source_host.calls

    def test_pinned_commit_used_verbatim(self):
        host = FakeSourceHost(timestamps={PINNED: 1_600_000_000})
        request = BuildRequestResolver(host).resolve(_config(commit=PINNED))
        assert request.commit == PINNED
        assert request.commit_source == "pinned"
        assert not any(call[0] == "resolve_branch" for call in host.calls)

    def test_unknown_branch_is_resolution_error(self, source_host):
        with pytest.raises(ResolutionError, match="develop"):
            BuildRequestResolver(source_host).resolve(_config(branch="develop"))

    def test_empty_head_is_resolution_error(self):
        host = FakeSourceHost(heads={"main": ""})
        with pytest.raises(ResolutionError, match="no head commit"):
            BuildRequestResolver(host).resolve(_config())


class TestLookupBudget:
    def test_lookups_receive_remaining_budget(self, source_host):
        deadline = Deadline(60, clock=StepClock(step=1.0))
        BuildRequestResolver(source_host).resolve(_config(), deadline=deadline)
        assert source_host.timeouts == [59, 58]

    def test_no_deadline_means_unbounded(self, source_host):
        BuildRequestResolver(source_host).resolve(_config())
        assert source_host.timeouts == [None, None]

    def test_expired_deadline_stops_before_lookup(self, source_host):
        deadline = Deadline(1, clock=StepClock(step=5.0))
        with pytest.raises(PipelineTimeoutError, match="resolve"):
            BuildRequestResolver(source_host).resolve(_config(), deadline=deadline)
        assert source_host.calls == []


class TestTimestampResolution:
    def test_commit_author_time_not_wall_clock(self, source_host):
        """No reproducibility block: timestamp is the commit's author time."""
        before = int(time.time())
        request = BuildRequestResolver(source_host).resolve(_config())
        assert request.source_date_epoch == HEAD_COMMIT_TIME
        assert request.timestamp_source == "commit"
        assert request.source_date_epoch < before

    def test_configured_epoch_wins(self, source_host):
        config = _config(reproducible={"source_date_epoch": 1700000000})
        request = BuildRequestResolver(source_host).resolve(config)
        assert request.source_date_epoch == 1700000000
        assert request.timestamp_source == "configured"
        assert not any(call[0] == "commit_timestamp" for call in source_host.calls)

    def test_fully_pinned_config_needs_no_lookups(self):
        host = FakeSourceHost(heads={}, timestamps={})
        config = _config(commit=PINNED, reproducible={"source_date_epoch": 1700000000})
        request = BuildRequestResolver(host).resolve(config)
        assert request.commit == PINNED
        assert host.calls == []

    def test_missing_author_time_is_resolution_error(self):
        host = FakeSourceHost(timestamps={})
        with pytest.raises(ResolutionError, match="author time"):
            BuildRequestResolver(host).resolve(_config())

    def test_negative_author_time_rejected(self):
        host = FakeSourceHost(timestamps={HEAD_COMMIT: -5})
        with pytest.raises(ResolutionError, match="usable author time"):
            BuildRequestResolver(host).resolve(_config())


class TestBuildArguments:
    def test_timestamp_injected_last(self, source_host):
        config = _config(build={"args": [{"name": "B", "value": "2"}, {"name": "A", "value": "1"}]})
        request = BuildRequestResolver(source_host).resolve(config)
        assert [a.name for a in request.build_args] == ["B", "A", SOURCE_DATE_EPOCH_ARG]
        assert request.build_arg_map()[SOURCE_DATE_EPOCH_ARG] == str(HEAD_COMMIT_TIME)

    def test_duplicate_names_rejected(self, source_host):
        config = _config(build={"args": [{"name": "A", "value": "1"}, {"name": "A", "value": "2"}]})
        with pytest.raises(ResolutionError, match="Duplicate build argument name"):
            BuildRequestResolver(source_host).resolve(config)

    def test_collision_with_injected_name_rejected(self, source_host):
        config = _config(build={"args": [{"name": SOURCE_DATE_EPOCH_ARG, "value": "0"}]})
        with pytest.raises(ResolutionError, match="injected"):
            BuildRequestResolver(source_host).resolve(config)


class TestPaths:
    def test_default_paths(self, source_host):
        request = BuildRequestResolver(source_host).resolve(_config())
        assert request.context_dir == "."
        assert request.build_file == "Dockerfile"

    def test_build_file_is_inside_context(self, source_host):
        config = _config(build={"directory": "./server/", "dockerfile": "docker/Dockerfile.enclave"})
        request = BuildRequestResolver(source_host).resolve(config)
        assert request.context_dir == "server"
        assert request.build_file == "server/docker/Dockerfile.enclave"

    @pytest.mark.parametrize("build", [
        {"directory": "../other"},
        {"directory": "/etc"},
        {"dockerfile": "../../Dockerfile"},
    ])
    def test_escaping_paths_rejected(self, source_host, build):
        with pytest.raises(ResolutionError, match="escapes the repository root"):
            BuildRequestResolver(source_host).resolve(_config(build=build))


class TestDeterminism:
    def test_same_inputs_same_request(self):
        config = _config(build={"args": [{"name": "A", "value": "1"}]})
        first = BuildRequestResolver(FakeSourceHost()).resolve(config)
        second = BuildRequestResolver(FakeSourceHost()).resolve(config)
        assert first == second
        assert first.model_dump_json() == second.model_dump_json()
        assert content_address(first) == content_address(second)

    def test_two_submissions_with_fixed_epoch(self, source_host):
        a = _config(reproducible={"source_date_epoch": 1700000000})
        b = AppConfig.model_validate(a.model_dump())
        resolver = BuildRequestResolver(source_host)
        assert resolver.resolve(a) == resolver.resolve(b)

    def test_debug_mode_passed_through(self, source_host):
        request = BuildRequestResolver(source_host).resolve(_config(enclave={"debug_mode": True}))
        assert request.debug_mode is True

    def test_metadata_does_not_affect_request(self, source_host):
        resolver = BuildRequestResolver(source_host)
        plain = resolver.resolve(_config())
        described = resolver.resolve(_config(metadata={"description": "hello"}))
        assert plain == described
