"""Shared utilities for volcache CLI commands.

Global options (``--log-level``, ``--log-file``, ``--log-format``,
``--config``) are collected by callbacks into module-level state and applied
once, before the command body runs.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import typer
from rich.console import Console

from volcache.core.config import SnapshotterConfig, load_config
from volcache.core.errors import ConfigurationError
from volcache.core.logging import configure_logging, get_logger
from volcache.snapshot.manager import VolumeCacheManager

_logger = get_logger("cli")


# =============================================================================
# Logging configuration
# =============================================================================


@dataclass
class CliLoggingConfig:
    """CLI logging options gathered from the global callbacks."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    file: Path | None = None
    format: Literal["json", "console"] = "console"
    configured: bool = False


_log_config = CliLoggingConfig()

# Path given with --config, if any
_config_file: Path | None = None


def set_log_level(level: str) -> None:
    _log_config.level = level.upper()  # type: ignore[assignment]


def set_log_file(path: Path | None) -> None:
    _log_config.file = path


def set_log_format(fmt: str) -> None:
    _log_config.format = fmt  # type: ignore[assignment]


def get_config_file() -> Path | None:
    return _config_file


def set_config_file(path: Path | None) -> None:
    global _config_file
    _config_file = path


def configure_global_logging(console: Console) -> None:
    """Configure logging from the global CLI options, once per process.

    Raises:
        typer.Exit: If the options are invalid.
    """
    if _log_config.configured:
        return

    try:
        configure_logging(
            level=_log_config.level,
            format=_log_config.format,
            file_path=_log_config.file,
        )
        _log_config.configured = True
    except ValueError as e:
        console.print(f"[red]Logging configuration error:[/red] {e}")
        raise typer.Exit(1) from None


def reset_cli_state() -> None:
    """Reset global CLI state (for tests)."""
    global _log_config
    _log_config = CliLoggingConfig()
    set_config_file(None)


# =============================================================================
# Config and manager construction
# =============================================================================


def load_cli_config() -> SnapshotterConfig:
    """Load configuration from ``--config`` and the environment.

    Raises:
        ConfigurationError: If required values are missing.
    """
    config_file = get_config_file()
    if config_file is not None and not config_file.exists():
        raise ConfigurationError(f"Config file not found: {config_file}")
    return load_config(config_file)


def create_manager(config: SnapshotterConfig) -> VolumeCacheManager:
    """Manager talking to EC2 and running real host commands."""
    return VolumeCacheManager.from_config(config)


def github_output_path() -> Path | None:
    """The step output file of the current GitHub Actions step, if any."""
    value = os.environ.get("GITHUB_OUTPUT")
    return Path(value) if value else None
