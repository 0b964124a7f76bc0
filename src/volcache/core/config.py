"""Configuration models for volcache.

All environment-derived values are gathered once into a ``SnapshotterConfig``
and passed to ``VolumeCacheManager``; nothing below the CLI reads process
state directly.

Sources, later ones filling only what earlier ones left unset:
    1. An optional YAML file (``--config``).
    2. Environment variables set by the runner (``GITHUB_REF``,
       ``RUNS_ON_INSTANCE_ID``, ...).
    3. The runner config file ``$RUNS_ON_HOME/config.json``
       (``defaultBranch``, ``customTags``).

Example YAML:
    version: v2
    wait_for_snapshot_completion: true
    volume:
      size_gib: 80
      throughput_mibps: 250
    service:
      name: docker
"""

from __future__ import annotations

import json
import os
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from volcache.core import constants
from volcache.core.errors import ConfigurationError
from volcache.core.logging import get_logger

_logger = get_logger("config")


def normalize_ref(ref: str) -> str:
    """Return ``ref`` as a fully qualified git ref.

    ``main`` becomes ``refs/heads/main``; ``refs/pull/7/merge`` is unchanged.
    """
    ref = ref.strip()
    if not ref or ref.startswith("refs/"):
        return ref
    return f"refs/heads/{ref}"


class Tag(BaseModel):
    """A custom key/value tag added to every volume and snapshot."""

    model_config = ConfigDict(frozen=True)

    key: str = Field(min_length=1, max_length=128)
    value: str = Field(default="", max_length=256)


class VolumeSpec(BaseModel):
    """Size and performance class of provisioned volumes."""

    size_gib: int = Field(
        default=constants.DEFAULT_VOLUME_SIZE_GIB,
        ge=1,
        description="Size of blank volumes.",
    )
    min_snapshot_size_gib: int = Field(
        default=constants.DEFAULT_VOLUME_SIZE_GIB,
        ge=1,
        description="Snapshots of smaller volumes are never cloned.",
    )
    volume_type: str = Field(default=constants.DEFAULT_VOLUME_TYPE)
    iops: int | None = Field(default=constants.DEFAULT_VOLUME_IOPS, ge=100)
    throughput_mibps: int | None = Field(
        default=constants.DEFAULT_VOLUME_THROUGHPUT_MIBPS, ge=125
    )
    initialization_rate_mibps: int | None = Field(
        default=constants.DEFAULT_VOLUME_INITIALIZATION_RATE_MIBPS,
        ge=100,
        description="Provisioned initialization rate for snapshot clones. "
        "None lets the platform lazy-load blocks.",
    )
    requested_device: str = Field(
        default=constants.DEFAULT_REQUESTED_DEVICE,
        pattern=r"^/dev/[a-z0-9]+$",
    )
    filesystem: Literal["ext4", "xfs"] = constants.DEFAULT_FILESYSTEM


class WaitConfig(BaseModel):
    """Budgets for every bounded wait on the platform."""

    volume_available_seconds: float = Field(
        default=constants.VOLUME_AVAILABLE_TIMEOUT_SECONDS, gt=0
    )
    volume_in_use_seconds: float = Field(
        default=constants.VOLUME_IN_USE_TIMEOUT_SECONDS, gt=0
    )
    snapshot_completed_seconds: float = Field(
        default=constants.SNAPSHOT_COMPLETED_TIMEOUT_SECONDS, gt=0
    )
    volume_poll_interval_seconds: float = Field(
        default=constants.VOLUME_POLL_INTERVAL_SECONDS, gt=0
    )
    snapshot_poll_interval_seconds: float = Field(
        default=constants.SNAPSHOT_POLL_INTERVAL_SECONDS, gt=0
    )


class ServiceConfig(BaseModel):
    """The service whose data directory lives on the cached volume."""

    name: str = Field(default="docker", min_length=1)
    use_sudo: bool = True
    health_command: list[str] = Field(
        default_factory=lambda: ["docker", "system", "df"],
        description="Run after mounting; non-zero exit marks the cache corrupt.",
    )
    prune_command: list[str] | None = Field(
        default_factory=lambda: ["docker", "builder", "prune", "-f"],
        description="Run before snapshotting to drop disposable data.",
    )


class SnapshotterConfig(BaseModel):
    """Everything the volume cache manager needs to know about its job."""

    version: str = Field(default=constants.DEFAULT_CACHE_VERSION, min_length=1)
    github_ref: str = Field(min_length=1)
    github_repository: str = Field(min_length=1)
    instance_id: str = Field(min_length=1)
    availability_zone: str = Field(min_length=1)
    region: str | None = None
    default_branch: str | None = None
    custom_tags: list[Tag] = Field(default_factory=list)
    wait_for_snapshot_completion: bool = False
    snapshot_name: str | None = None
    volume_name: str | None = None
    volume: VolumeSpec = Field(default_factory=VolumeSpec)
    waits: WaitConfig = Field(default_factory=WaitConfig)
    service: ServiceConfig = Field(default_factory=ServiceConfig)
    state_dir: Path = constants.DEFAULT_STATE_DIR
    command_timeout_seconds: float = Field(default=constants.COMMAND_TIMEOUT_SECONDS, gt=0)

    @field_validator("github_ref", "default_branch")
    @classmethod
    def _qualify_ref(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return normalize_ref(v) or None

    @field_validator("github_ref", "github_repository", "instance_id", "availability_zone")
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    def resource_names(self, branch_label: str, now: datetime) -> tuple[str, str]:
        """Return ``(volume_name, snapshot_name)``, honouring explicit overrides."""
        stamp = now.strftime(constants.RESOURCE_NAME_TIME_FORMAT)
        volume_name = self.volume_name or f"runs-on-volume-{branch_label}-{stamp}"
        snapshot_name = self.snapshot_name or f"runs-on-snapshot-{branch_label}-{stamp}"
        return volume_name, snapshot_name


# Environment variable -> config field
_ENV_FIELDS: dict[str, str] = {
    "GITHUB_REF": "github_ref",
    "GITHUB_REPOSITORY": "github_repository",
    "RUNS_ON_INSTANCE_ID": "instance_id",
    "RUNS_ON_AWS_AZ": "availability_zone",
    "RUNS_ON_AWS_REGION": "region",
    "RUNS_ON_SNAPSHOT_VERSION": "version",
    "RUNS_ON_SNAPSHOT_WAIT": "wait_for_snapshot_completion",
}

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


def _load_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def load_runner_config(runs_on_home: str | None) -> dict[str, Any]:
    """Read ``defaultBranch``/``customTags`` from the runner config file.

    A missing or malformed file is logged and treated as empty: the cache
    then simply has no default-branch fallback and no custom tags.
    """
    if not runs_on_home:
        return {}
    path = Path(runs_on_home) / constants.RUNNER_CONFIG_FILENAME
    try:
        with open(path) as f:
            raw = json.load(f)
    except FileNotFoundError:
        _logger.warning("runner_config_missing", path=str(path))
        return {}
    except (OSError, json.JSONDecodeError) as e:
        _logger.warning("runner_config_unreadable", path=str(path), error=str(e))
        return {}
    if not isinstance(raw, dict):
        _logger.warning("runner_config_unreadable", path=str(path), error="not an object")
        return {}

    result: dict[str, Any] = {}
    if raw.get("defaultBranch"):
        result["default_branch"] = raw["defaultBranch"]
    tags = raw.get("customTags") or []
    if isinstance(tags, list):
        result["custom_tags"] = [
            {"key": t.get("key", ""), "value": t.get("value", "")}
            for t in tags
            if isinstance(t, dict)
        ]
    return result


def load_config(
    config_file: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> SnapshotterConfig:
    """Build and validate the configuration.

    Args:
        config_file: Optional YAML file with explicit settings.
        environ: Environment to read (defaults to ``os.environ``).

    Raises:
        ConfigurationError: If a required value is missing or invalid.
    """
    env = os.environ if environ is None else environ
    data: dict[str, Any] = _load_yaml(config_file) if config_file else {}

    for var, field_name in _ENV_FIELDS.items():
        value = env.get(var)
        if value and field_name not in data:
            if field_name == "wait_for_snapshot_completion":
                data[field_name] = value.strip().lower() in _TRUE_VALUES
            else:
                data[field_name] = value

    for field_name, value in load_runner_config(env.get("RUNS_ON_HOME")).items():
        data.setdefault(field_name, value)

    try:
        config = SnapshotterConfig.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from e

    _logger.debug(
        "config_loaded",
        repository=config.github_repository,
        ref=config.github_ref,
        default_branch=config.default_branch,
        custom_tags=len(config.custom_tags),
        version=config.version,
    )
    return config


__all__ = [
    "ServiceConfig",
    "SnapshotterConfig",
    "Tag",
    "VolumeSpec",
    "WaitConfig",
    "load_config",
    "load_runner_config",
    "normalize_ref",
]
