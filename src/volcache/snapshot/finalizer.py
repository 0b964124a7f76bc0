"""Snapshot Finalizer: folds a job's cache volume back into a snapshot."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from datetime import UTC, datetime

from volcache.cloud.base import BlockStorageClient, Snapshot, SnapshotState
from volcache.core.config import WaitConfig
from volcache.core.constants import NAME_TAG_KEY
from volcache.core.errors import MountError, SnapshotFailedError
from volcache.core.logging import get_logger
from volcache.core.polling import Clock, Sleep, wait_until
from volcache.host.filesystem import HostFilesystem
from volcache.host.service import DependentService
from volcache.snapshot.attachment import AttachmentManager
from volcache.snapshot.keys import CacheKey
from volcache.snapshot.mount import STOP_SERVICE, MountOrchestrator
from volcache.snapshot.provisioner import VolumeProvisioner
from volcache.snapshot.steps import Step, run_step
from volcache.state.volume_info import VolumeInfoStore

_logger = get_logger("snapshot.finalizer")

PRUNE_CACHE = Step.best_effort("prune_cache")
DELETE_SOURCE_VOLUME = Step.best_effort("delete_source_volume")


def snapshot_description(key: CacheKey, taken_at: datetime) -> str:
    return (
        f"Snapshot for branch {key.branch_ref} taken at "
        f"{taken_at.astimezone(UTC).strftime('%Y-%m-%dT%H:%M:%SZ')}"
    )


def _snapshot_failed(snapshot: Snapshot) -> SnapshotFailedError | None:
    if snapshot.state == SnapshotState.ERROR:
        return SnapshotFailedError(
            f"Snapshot {snapshot.id} of volume {snapshot.volume_id} failed",
            operation="create_snapshot",
            resource_id=snapshot.id,
        )
    return None


class SnapshotFinalizer:
    """Quiesces, detaches and snapshots the volume bound to a mount point.

    Usage:
        snapshot = await finalizer.finalize("/var/lib/docker", key, False, name)
    """

    def __init__(
        self,
        client: BlockStorageClient,
        store: VolumeInfoStore,
        orchestrator: MountOrchestrator,
        filesystem: HostFilesystem,
        service: DependentService,
        attachments: AttachmentManager,
        provisioner: VolumeProvisioner,
        instance_id: str,
        waits: WaitConfig,
        now: Callable[[], datetime] | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._store = store
        self._orchestrator = orchestrator
        self._fs = filesystem
        self._service = service
        self._attachments = attachments
        self._provisioner = provisioner
        self._instance_id = instance_id
        self._waits = waits
        self._now = now or (lambda: datetime.now(UTC))
        self._clock = clock
        self._sleep = sleep

    async def _release_mount_point(self, mount_point: str) -> None:
        """Unmount; only an unmount the mount table still shows is fatal."""
        if await self._orchestrator.unmount_if_mounted(mount_point):
            return
        if await self._fs.is_mounted(mount_point):
            raise MountError(
                f"{mount_point} is still mounted; refusing to snapshot a live filesystem",
                operation="unmount",
                resource_id=mount_point,
            )
        _logger.info("mount_point_released_concurrently", mount_point=mount_point)

    async def wait_completed(self, snapshot_id: str) -> Snapshot:
        return await wait_until(
            lambda: self._client.describe_snapshot(snapshot_id),
            lambda s: s.state == SnapshotState.COMPLETED,
            timeout_seconds=self._waits.snapshot_completed_seconds,
            poll_interval_seconds=self._waits.snapshot_poll_interval_seconds,
            operation="wait_snapshot_completed",
            resource_id=snapshot_id,
            failed=_snapshot_failed,
            describe_state=lambda s: s.state.value,
            clock=self._clock,
            sleep=self._sleep,
        )

    async def finalize(
        self,
        mount_point: str,
        key: CacheKey,
        wait: bool,
        snapshot_name: str,
    ) -> Snapshot:
        """Snapshot the volume restored at ``mount_point`` and delete it.

        Raises:
            VolumeInfoNotFoundError: If no volume was restored at ``mount_point``.
            MountError: If the mount point cannot be released.
            WaitTimeoutError: If detaching (or, with ``wait``, the snapshot) times out.
            SnapshotFailedError: If the platform reports the snapshot as failed.
        """
        info = await self._store.load(mount_point)
        _logger.info(
            "finalize_started",
            mount_point=mount_point,
            volume_id=info.volume_id,
            device=info.device_name,
        )

        await run_step(PRUNE_CACHE, self._service.prune, _logger, service=self._service.name)
        await run_step(STOP_SERVICE, self._service.stop, _logger, service=self._service.name)
        await self._release_mount_point(mount_point)

        await self._attachments.detach(info.volume_id, self._instance_id)

        tags = key.tags()
        tags[NAME_TAG_KEY] = snapshot_name
        description = snapshot_description(key, self._now())
        snapshot = await self._client.create_snapshot(info.volume_id, tags, description)
        _logger.info(
            "snapshot_created",
            snapshot_id=snapshot.id,
            volume_id=info.volume_id,
            name=snapshot_name,
            state=snapshot.state.value,
        )

        if wait:
            snapshot = await self.wait_completed(snapshot.id)
            _logger.info("snapshot_completed", snapshot_id=snapshot.id)
        else:
            _logger.info("snapshot_continues_in_background", snapshot_id=snapshot.id)

        deleted = await run_step(
            DELETE_SOURCE_VOLUME,
            lambda: self._provisioner.delete(info.volume_id),
            _logger,
            volume_id=info.volume_id,
        )
        if deleted is None:
            _logger.warning(
                "volume_requires_manual_cleanup",
                volume_id=info.volume_id,
                snapshot_id=snapshot.id,
            )
        return snapshot
