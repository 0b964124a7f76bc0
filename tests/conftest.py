"""Pytest fixtures for volcache tests."""

from __future__ import annotations

import logging
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
import structlog

from tests.helpers import FIXED_NOW, FakeClock, FakeCommandRunner
from volcache.cli import helpers as cli_helpers
from volcache.cloud.memory import InMemoryBlockStorage
from volcache.core.config import SnapshotterConfig


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset logging and CLI state before and after each test."""
    cli_helpers.reset_cli_state()
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    cli_helpers.reset_cli_state()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)


@pytest.fixture
def runner() -> FakeCommandRunner:
    return FakeCommandRunner()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def client() -> InMemoryBlockStorage:
    return InMemoryBlockStorage(settle_after=1, now=lambda: FIXED_NOW)


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "runs-on"


@pytest.fixture
def make_config(state_dir: Path) -> Callable[..., SnapshotterConfig]:
    """Factory for a valid SnapshotterConfig with overrides."""

    def _make(**overrides: Any) -> SnapshotterConfig:
        data: dict[str, Any] = {
            "github_ref": "refs/heads/main",
            "github_repository": "acme/app",
            "instance_id": "i-0123456789abcdef0",
            "availability_zone": "us-east-1a",
            "state_dir": state_dir,
        }
        data.update(overrides)
        return SnapshotterConfig.model_validate(data)

    return _make


@pytest.fixture
def config(make_config: Callable[..., SnapshotterConfig]) -> SnapshotterConfig:
    return make_config()


@pytest.fixture
def no_aws_region(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove every source botocore could read a region from."""
    for var in ("AWS_REGION", "AWS_DEFAULT_REGION", "AWS_PROFILE"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("AWS_CONFIG_FILE", str(tmp_path / "no-aws-config"))
    monkeypatch.setenv("AWS_SHARED_CREDENTIALS_FILE", str(tmp_path / "no-aws-credentials"))
    monkeypatch.setenv("AWS_EC2_METADATA_DISABLED", "true")
