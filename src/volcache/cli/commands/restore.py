"""``volcache restore``: provide cache volumes at job start."""

from __future__ import annotations

import asyncio

import typer

from volcache.core.errors import VolcacheError
from volcache.snapshot.manager import RestoreResult, VolumeCacheManager

from ..helpers import create_manager, github_output_path, load_cli_config
from ..output import console, print_failure, restore_table, write_github_output


async def _restore_all(
    manager: VolumeCacheManager, mount_points: list[str]
) -> list[RestoreResult]:
    results: list[RestoreResult] = []
    for mount_point in mount_points:
        results.append(await manager.restore(mount_point))
    return results


def restore(
    mount_points: list[str] = typer.Argument(
        ...,
        help="Mount points to back with a cache volume (e.g. /var/lib/docker)",
        metavar="MOUNT_POINT...",
    ),
    allow_failure: bool = typer.Option(
        False,
        "--allow-failure",
        help="Exit 0 when the cache cannot be restored, so the job runs cold",
    ),
) -> None:
    """Restore the branch cache: clone the latest snapshot (or a blank volume) and mount it."""
    try:
        config = load_cli_config()
        manager = create_manager(config)
        results = asyncio.run(_restore_all(manager, mount_points))
    except VolcacheError as e:
        print_failure("restore", e, allow_failure)
        raise typer.Exit(0 if allow_failure else 1) from None

    console.print(restore_table(results))

    output_path = github_output_path()
    if output_path is not None:
        write_github_output(
            output_path,
            {
                "volume-id": ",".join(r.volume_id for r in results),
                "device-name": ",".join(r.device_name for r in results),
            },
        )
