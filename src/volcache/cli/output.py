"""Rich output and GitHub Actions step outputs for the volcache CLI."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from volcache.core.errors import VolcacheError
from volcache.snapshot.manager import RestoreResult, SnapshotResult

# Logs go to stderr; results and errors to stdout
console = Console()


SNAPSHOT_STATE_COLORS: dict[str, str] = {
    "pending": "yellow",
    "completed": "green",
    "error": "red",
}


def restore_table(results: Sequence[RestoreResult]) -> Table:
    table = Table(title="Restored cache volumes", show_header=True, header_style="bold")
    table.add_column("Mount point", style="cyan")
    table.add_column("Volume")
    table.add_column("Device")
    table.add_column("Source")
    for result in results:
        source = result.source_snapshot_id or "[dim]blank (formatted)[/dim]"
        table.add_row(result.mount_point, result.volume_id, result.device_name, source)
    return table


def snapshot_table(results: Sequence[SnapshotResult]) -> Table:
    table = Table(title="Cache snapshots", show_header=True, header_style="bold")
    table.add_column("Mount point", style="cyan")
    table.add_column("Snapshot")
    table.add_column("Volume")
    table.add_column("State")
    for result in results:
        color = SNAPSHOT_STATE_COLORS.get(result.state, "white")
        table.add_row(
            result.mount_point,
            result.snapshot_id,
            result.volume_id,
            f"[{color}]{result.state}[/{color}]",
        )
    return table


def print_failure(phase: str, error: VolcacheError, allowed: bool) -> None:
    """Report a failed phase; ``allowed`` failures are shown as warnings."""
    if allowed:
        console.print(f"[yellow]Warning:[/yellow] {phase} failed: {escape(error.message)}")
        console.print("[dim]Continuing without the volume cache (--allow-failure).[/dim]")
    else:
        console.print(f"[red]Error:[/red] {phase} failed: {escape(error.message)}")


def write_github_output(path: Path, outputs: Mapping[str, str]) -> None:
    """Append ``name=value`` lines to a GitHub Actions step output file."""
    with open(path, "a", encoding="utf-8") as f:
        for name, value in outputs.items():
            f.write(f"{name}={value}\n")
