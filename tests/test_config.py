"""Tests for configuration models and loading."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
import yaml

from tests.helpers import FIXED_NOW
from volcache.core.config import (
    SnapshotterConfig,
    VolumeSpec,
    load_config,
    load_runner_config,
    normalize_ref,
)
from volcache.core.errors import ConfigurationError


def _environ(**extra: str) -> dict[str, str]:
    env = {
        "GITHUB_REF": "refs/heads/main",
        "GITHUB_REPOSITORY": "acme/app",
        "RUNS_ON_INSTANCE_ID": "i-0123456789abcdef0",
        "RUNS_ON_AWS_AZ": "us-east-1a",
        "RUNS_ON_AWS_REGION": "us-east-1",
    }
    env.update(extra)
    return env


class TestNormalizeRef:
    """Tests for normalize_ref()."""

    def test_bare_branch_is_qualified(self):
        assert normalize_ref("main") == "refs/heads/main"

    def test_qualified_refs_are_unchanged(self):
        assert normalize_ref("refs/heads/feature/x") == "refs/heads/feature/x"
        assert normalize_ref("refs/pull/7/merge") == "refs/pull/7/merge"

    def test_blank_stays_blank(self):
        assert normalize_ref("  ") == ""


class TestDefaults:
    """Default volume specification and wait budgets."""

    def test_volume_defaults(self):
        spec = VolumeSpec()
        assert spec.size_gib == 40
        assert spec.min_snapshot_size_gib == 40
        assert spec.volume_type == "gp3"
        assert spec.iops == 3000
        assert spec.throughput_mibps == 125
        assert spec.initialization_rate_mibps == 300
        assert spec.requested_device == "/dev/sdf"
        assert spec.filesystem == "ext4"

    def test_wait_defaults(self, config: SnapshotterConfig):
        assert config.waits.volume_available_seconds == 300
        assert config.waits.volume_in_use_seconds == 300
        assert config.waits.snapshot_completed_seconds == 600
        assert config.version == "v1"
        assert config.wait_for_snapshot_completion is False

    def test_resource_names(self, config: SnapshotterConfig):
        volume_name, snapshot_name = config.resource_names("feature-x", FIXED_NOW)
        assert volume_name == "runs-on-volume-feature-x-20260314-092653"
        assert snapshot_name == "runs-on-snapshot-feature-x-20260314-092653"

    def test_resource_name_overrides(self, make_config):
        config = make_config(volume_name="vol-custom", snapshot_name="snap-custom")
        assert config.resource_names("main", FIXED_NOW) == ("vol-custom", "snap-custom")

    def test_invalid_device_rejected(self):
        with pytest.raises(ValueError):
            VolumeSpec(requested_device="sdf")


class TestLoadConfig:
    """Tests for load_config()."""

    def test_from_environment(self):
        config = load_config(environ=_environ())

        assert config.github_ref == "refs/heads/main"
        assert config.github_repository == "acme/app"
        assert config.instance_id == "i-0123456789abcdef0"
        assert config.availability_zone == "us-east-1a"
        assert config.region == "us-east-1"
        assert config.default_branch is None
        assert config.custom_tags == []

    @pytest.mark.parametrize(
        "missing",
        ["GITHUB_REF", "GITHUB_REPOSITORY", "RUNS_ON_INSTANCE_ID", "RUNS_ON_AWS_AZ"],
    )
    def test_missing_required_value(self, missing: str):
        env = _environ()
        del env[missing]

        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            load_config(environ=env)

    def test_blank_required_value(self):
        with pytest.raises(ConfigurationError):
            load_config(environ=_environ(RUNS_ON_INSTANCE_ID="   "))

    def test_bare_ref_is_qualified(self):
        config = load_config(environ=_environ(GITHUB_REF="develop"))
        assert config.github_ref == "refs/heads/develop"

    def test_wait_flag_from_environment(self):
        assert load_config(environ=_environ(RUNS_ON_SNAPSHOT_WAIT="true")).wait_for_snapshot_completion
        assert not load_config(environ=_environ(RUNS_ON_SNAPSHOT_WAIT="0")).wait_for_snapshot_completion

    def test_runner_config_supplies_default_branch_and_tags(self, tmp_path: Path):
        (tmp_path / "config.json").write_text(json.dumps({
            "defaultBranch": "main",
            "customTags": [{"key": "team", "value": "infra"}, {"key": "cost-center", "value": "42"}],
        }))

        config = load_config(environ=_environ(RUNS_ON_HOME=str(tmp_path)))

        assert config.default_branch == "refs/heads/main"
        assert [(t.key, t.value) for t in config.custom_tags] == [
            ("team", "infra"),
            ("cost-center", "42"),
        ]

    def test_yaml_file_takes_precedence(self, tmp_path: Path):
        config_file = tmp_path / "volcache.yaml"
        config_file.write_text(yaml.safe_dump({
            "version": "v2",
            "github_repository": "acme/other",
            "volume": {"size_gib": 80, "filesystem": "xfs"},
        }))

        config = load_config(config_file, environ=_environ(RUNS_ON_SNAPSHOT_VERSION="v9"))

        assert config.version == "v2"
        assert config.github_repository == "acme/other"
        assert config.volume.size_gib == 80
        assert config.volume.filesystem == "xfs"
        assert config.instance_id == "i-0123456789abcdef0"

    def test_invalid_yaml(self, tmp_path: Path):
        config_file = tmp_path / "volcache.yaml"
        config_file.write_text("volume: [unclosed")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config(config_file, environ=_environ())

    def test_yaml_must_be_mapping(self, tmp_path: Path):
        config_file = tmp_path / "volcache.yaml"
        config_file.write_text("- a\n- b\n")

        with pytest.raises(ConfigurationError, match="must contain a mapping"):
            load_config(config_file, environ=_environ())


class TestLoadRunnerConfig:
    """A broken runner config file degrades to 'no fallback, no tags'."""

    def test_no_home(self):
        assert load_runner_config(None) == {}

    def test_missing_file(self, tmp_path: Path):
        assert load_runner_config(str(tmp_path)) == {}

    def test_malformed_file(self, tmp_path: Path):
        (tmp_path / "config.json").write_text("{not json")
        assert load_runner_config(str(tmp_path)) == {}

    def test_non_object(self, tmp_path: Path):
        (tmp_path / "config.json").write_text("[1, 2]")
        assert load_runner_config(str(tmp_path)) == {}
