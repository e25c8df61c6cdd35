"""Shared test fixtures for Nova App Hub."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml

from novahub.config import HubSettings
from novahub.core.orchestrator import Orchestrator
from novahub.core.run_ledger import RunLedger
from novahub.core.stage_machine import StageMachine

from tests.fakes import (
    REGISTRY,
    REPO,
    FakeCheckout,
    FakeConverter,
    FakeImageBuilder,
    FakeSourceHost,
    InMemoryReleaseHost,
    InMemoryReleaseStore,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def settings(tmp_dir: Path) -> HubSettings:
    """Development settings rooted in the temp directory."""
    return HubSettings(
        _env_file=None,
        environment="development",
        skip_repo_check=False,
        registry=REGISTRY,
        apps_dir=tmp_dir / "apps",
        work_dir=tmp_dir / "work",
        ledger_path=tmp_dir / "ledger.db",
        release_store_path=tmp_dir / "releases",
        release_repo="",
        github_token="",
    )


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def stage_machine(ledger: RunLedger) -> StageMachine:
    return StageMachine(ledger)


@pytest.fixture
def run_id() -> str:
    """Provide a deterministic test run ID."""
    return "nh-test-run-001"


@pytest.fixture
def source_host() -> FakeSourceHost:
    return FakeSourceHost()


@pytest.fixture
def checkout() -> FakeCheckout:
    return FakeCheckout()


@pytest.fixture
def builder() -> FakeImageBuilder:
    return FakeImageBuilder()


@pytest.fixture
def converter() -> FakeConverter:
    return FakeConverter()


@pytest.fixture
def store() -> InMemoryReleaseStore:
    return InMemoryReleaseStore()


@pytest.fixture
def release_host() -> InMemoryReleaseHost:
    return InMemoryReleaseHost()


@pytest.fixture
def valid_raw() -> dict[str, Any]:
    """The minimal valid declaration for an app living in ``apps/demo``."""
    return {
        "name": "demo",
        "version": "1.0.0",
        "repo": REPO,
        "branch": "main",
    }


@pytest.fixture
def write_config(tmp_dir: Path) -> Callable[..., Path]:
    """Factory fixture: write ``apps/<directory>/nova-build.yaml``."""

    def _factory(raw: Any, directory: str = "demo") -> Path:
        path = tmp_dir / "apps" / directory / "nova-build.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(raw, sort_keys=False), encoding="utf-8")
        return path

    return _factory


@pytest.fixture
def make_orchestrator(
    settings: HubSettings,
    source_host: FakeSourceHost,
    checkout: FakeCheckout,
    builder: FakeImageBuilder,
    converter: FakeConverter,
    store: InMemoryReleaseStore,
    release_host: InMemoryReleaseHost,
) -> Callable[..., Orchestrator]:
    """Factory fixture: an Orchestrator wired to the shared fakes."""

    def _factory(hub_settings: HubSettings | None = None, **overrides: Any) -> Orchestrator:
        kwargs: dict[str, Any] = {
            "source_host": source_host,
            "checkout": checkout,
            "builder": builder,
            "converter": converter,
            "store": store,
            "release_host": release_host,
        }
        kwargs.update(overrides)
        return Orchestrator(hub_settings or settings, **kwargs)

    return _factory
