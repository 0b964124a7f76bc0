"""volcache CLI.

Package structure:
    cli/
    ├── __init__.py           # This file - app assembly and global options
    ├── helpers.py            # Logging/config state, manager construction
    ├── output.py             # Rich tables, GitHub Actions step outputs
    └── commands/
        ├── restore.py        # restore command
        └── snapshot.py       # snapshot command
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from volcache import __version__

from . import helpers as helpers
from .commands import restore, snapshot
from .helpers import (
    configure_global_logging,
    set_config_file,
    set_log_file,
    set_log_format,
    set_log_level,
)
from .output import console

# =============================================================================
# Typer app definition
# =============================================================================

app = typer.Typer(
    name="volcache",
    help="Per-branch EBS volume cache for GitHub Actions runners",
    add_completion=False,
)


# =============================================================================
# Global option callbacks
# =============================================================================


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"volcache v{__version__}")
        raise typer.Exit()


def log_level_callback(value: str | None) -> str | None:
    if value:
        set_log_level(value)
    return value


def log_file_callback(value: Path | None) -> Path | None:
    if value:
        set_log_file(value)
    return value


def log_format_callback(value: str | None) -> str | None:
    if value:
        set_log_format(value)
    return value


def config_callback(value: Path | None) -> Path | None:
    set_config_file(value)
    return value


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            callback=log_level_callback,
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="VOLCACHE_LOG_LEVEL",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            callback=log_file_callback,
            help="Also write logs to this file",
            envvar="VOLCACHE_LOG_FILE",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            callback=log_format_callback,
            help="Log format: console or json",
            envvar="VOLCACHE_LOG_FORMAT",
        ),
    ] = None,
    config: Annotated[
        Path | None,
        typer.Option(
            "--config",
            "-c",
            callback=config_callback,
            help="YAML file with volume cache settings",
            envvar="VOLCACHE_CONFIG",
        ),
    ] = None,
) -> None:
    """volcache - restore and snapshot per-branch cache volumes."""
    configure_global_logging(console)


# =============================================================================
# Command registration
# =============================================================================

app.command()(restore)
app.command()(snapshot)


__all__ = [
    "app",
    "console",
    "main",
]
