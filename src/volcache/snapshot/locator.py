"""Snapshot Locator: finds the snapshot a new cache volume is cloned from."""

from __future__ import annotations

from collections.abc import Iterable

from volcache.cloud.base import BlockStorageClient, Snapshot, SnapshotState
from volcache.core.logging import get_logger
from volcache.snapshot.keys import CacheKey

_logger = get_logger("snapshot.locator")


def latest_snapshot(snapshots: Iterable[Snapshot]) -> Snapshot | None:
    """Most recent snapshot by start time; ties go to the greatest id."""
    return max(snapshots, key=lambda s: (s.start_time, s.id), default=None)


class SnapshotLocator:
    """Looks up completed snapshots by cache key.

    Usage:
        locator = SnapshotLocator(client, min_volume_size_gib=40)
        snapshot = await locator.locate(key, default_key)
    """

    def __init__(self, client: BlockStorageClient, min_volume_size_gib: int) -> None:
        self._client = client
        self._min_volume_size_gib = min_volume_size_gib

    async def _find(self, key: CacheKey) -> Snapshot | None:
        found = await self._client.find_snapshots(key.tags(), state=SnapshotState.COMPLETED)
        eligible = []
        for snapshot in found:
            if snapshot.state != SnapshotState.COMPLETED:
                continue
            if snapshot.volume_size_gib < self._min_volume_size_gib:
                _logger.info(
                    "snapshot_undersized",
                    snapshot_id=snapshot.id,
                    size_gib=snapshot.volume_size_gib,
                    min_size_gib=self._min_volume_size_gib,
                )
                continue
            eligible.append(snapshot)

        snapshot = latest_snapshot(eligible)
        _logger.info(
            "snapshot_lookup",
            branch=key.branch_tag_value,
            repository=key.repository,
            matches=len(found),
            eligible=len(eligible),
            snapshot_id=snapshot.id if snapshot else None,
        )
        return snapshot

    async def locate(
        self,
        key: CacheKey,
        default_key: CacheKey | None = None,
    ) -> Snapshot | None:
        """Return the latest eligible snapshot for ``key``, else for ``default_key``.

        None means no usable snapshot exists and a blank volume should be
        provisioned; it is not an error.
        """
        snapshot = await self._find(key)
        if snapshot is not None:
            return snapshot

        if default_key is None or default_key == key:
            _logger.info("snapshot_not_found", branch=key.branch_tag_value)
            return None

        _logger.info(
            "snapshot_fallback",
            branch=key.branch_tag_value,
            default_branch=default_key.branch_tag_value,
        )
        snapshot = await self._find(default_key)
        if snapshot is None:
            _logger.info(
                "snapshot_not_found",
                branch=key.branch_tag_value,
                default_branch=default_key.branch_tag_value,
            )
        return snapshot
