"""``volcache snapshot``: fold cache volumes back into snapshots at job end."""

from __future__ import annotations

import asyncio

import typer

from volcache.core.errors import VolcacheError
from volcache.snapshot.manager import SnapshotResult, VolumeCacheManager

from ..helpers import create_manager, github_output_path, load_cli_config
from ..output import console, print_failure, snapshot_table, write_github_output


async def _snapshot_all(
    manager: VolumeCacheManager, mount_points: list[str], wait: bool | None
) -> list[SnapshotResult]:
    results: list[SnapshotResult] = []
    for mount_point in mount_points:
        results.append(await manager.snapshot(mount_point, wait=wait))
    return results


def snapshot(
    mount_points: list[str] = typer.Argument(
        ...,
        help="Mount points restored earlier in this job",
        metavar="MOUNT_POINT...",
    ),
    wait: bool = typer.Option(
        False,
        "--wait",
        help="Wait for the snapshot to complete (also enabled by RUNS_ON_SNAPSHOT_WAIT)",
    ),
    allow_failure: bool = typer.Option(
        False,
        "--allow-failure",
        help="Exit 0 when the cache cannot be saved",
    ),
) -> None:
    """Snapshot the cache volume of each mount point and delete the volume."""
    try:
        config = load_cli_config()
        manager = create_manager(config)
        results = asyncio.run(_snapshot_all(manager, mount_points, wait or None))
    except VolcacheError as e:
        print_failure("snapshot", e, allow_failure)
        raise typer.Exit(0 if allow_failure else 1) from None

    console.print(snapshot_table(results))

    output_path = github_output_path()
    if output_path is not None:
        write_github_output(
            output_path,
            {"snapshot-id": ",".join(r.snapshot_id for r in results)},
        )
