"""Volume cache manager: the restore and snapshot entry points.

``restore`` runs at job start: locate a snapshot, provision a volume from it
(or blank), attach it and mount it. ``snapshot`` runs at job end, in a
separate process: detach the volume recorded for the mount point, snapshot
it and delete it.

Until ``restore`` has persisted the volume info record, the volume it created
belongs to nobody else; any error before that point deletes it again.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from volcache.cloud.base import BlockStorageClient
from volcache.cloud.ec2 import Ec2BlockStorageClient
from volcache.core.config import SnapshotterConfig
from volcache.core.errors import VolcacheError
from volcache.core.logging import JobContext, get_logger, with_context
from volcache.core.polling import Clock, Sleep
from volcache.host.commands import CommandRunner, SubprocessCommandRunner
from volcache.host.devices import DeviceResolver, default_device_resolver
from volcache.host.filesystem import HostFilesystem
from volcache.host.service import DependentService
from volcache.snapshot.attachment import AttachmentManager
from volcache.snapshot.finalizer import SnapshotFinalizer
from volcache.snapshot.keys import CacheKey, default_branch_key
from volcache.snapshot.locator import SnapshotLocator
from volcache.snapshot.mount import MountOrchestrator
from volcache.snapshot.provisioner import VolumeProvisioner
from volcache.state.volume_info import VolumeInfoStore

_logger = get_logger("snapshot.manager")


@dataclass
class RestoreResult:
    """Outcome of ``restore`` for one mount point."""

    mount_point: str
    volume_id: str
    device_name: str
    source_snapshot_id: str | None = None

    @property
    def formatted(self) -> bool:
        return self.source_snapshot_id is None


@dataclass
class SnapshotResult:
    """Outcome of ``snapshot`` for one mount point."""

    mount_point: str
    snapshot_id: str
    volume_id: str
    state: str


class VolumeCacheManager:
    """Per-branch volume cache for one job.

    Usage:
        manager = VolumeCacheManager.from_config(load_config())
        restored = await manager.restore("/var/lib/docker")
        ...
        result = await manager.snapshot("/var/lib/docker")
    """

    def __init__(
        self,
        config: SnapshotterConfig,
        client: BlockStorageClient,
        runner: CommandRunner,
        store: VolumeInfoStore | None = None,
        device_resolver: DeviceResolver | None = None,
        now: Callable[[], datetime] | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config
        self.key = CacheKey.from_config(config)
        self.default_key = default_branch_key(self.key, config.default_branch)
        self._now = now or (lambda: datetime.now(UTC))
        self._context = JobContext(repository=config.github_repository, ref=config.github_ref)

        self.store = store or VolumeInfoStore(config.state_dir)
        filesystem = HostFilesystem(runner, use_sudo=config.service.use_sudo)
        service = DependentService(runner, config.service)

        self.locator = SnapshotLocator(client, config.volume.min_snapshot_size_gib)
        self.provisioner = VolumeProvisioner(
            client, config.volume, config.waits, clock=clock, sleep=sleep
        )
        self.attachments = AttachmentManager(
            client,
            device_resolver or default_device_resolver(runner),
            config.waits,
            clock=clock,
            sleep=sleep,
        )
        self.orchestrator = MountOrchestrator(
            filesystem, service, self.store, filesystem_type=config.volume.filesystem
        )
        self.finalizer = SnapshotFinalizer(
            client,
            self.store,
            self.orchestrator,
            filesystem,
            service,
            self.attachments,
            self.provisioner,
            instance_id=config.instance_id,
            waits=config.waits,
            now=self._now,
            clock=clock,
            sleep=sleep,
        )

    @classmethod
    def from_config(cls, config: SnapshotterConfig) -> VolumeCacheManager:
        """Manager backed by EC2 and real host commands."""
        return cls(
            config,
            Ec2BlockStorageClient.from_region(config.region),
            SubprocessCommandRunner(timeout_seconds=config.command_timeout_seconds),
        )

    async def restore(self, mount_point: str) -> RestoreResult:
        """Provide a cache volume at ``mount_point``.

        Raises:
            VolcacheError: If any required step failed. The volume created by
                this call, if any, has been deleted again.
        """
        with with_context(self._context.for_mount_point(mount_point, "restore")):
            start = time.monotonic()
            try:
                result = await self._restore(mount_point)
            except VolcacheError as e:
                _logger.error("restore_failed", **e.to_log_fields())
                raise
            _logger.info(
                "restore_completed",
                volume_id=result.volume_id,
                device=result.device_name,
                snapshot_id=result.source_snapshot_id,
                duration_seconds=round(time.monotonic() - start, 1),
            )
            return result

    async def _restore(self, mount_point: str) -> RestoreResult:
        snapshot = await self.locator.locate(self.key, self.default_key)
        volume_name, _ = self.config.resource_names(self.key.branch_label, self._now())
        provisioned = await self.provisioner.provision(
            snapshot, self.config.availability_zone, self.key, volume_name
        )
        volume_id = provisioned.volume.id

        try:
            attachment = await self.attachments.attach(
                volume_id, self.config.instance_id, self.config.volume.requested_device
            )
            info = await self.orchestrator.mount(
                attachment.actual_device,
                mount_point,
                provisioned.is_new_and_unformatted,
                volume_id,
                instance_id=self.config.instance_id,
            )
        except Exception:
            await self.provisioner.discard(volume_id, self.config.instance_id)
            raise

        return RestoreResult(
            mount_point=mount_point,
            volume_id=info.volume_id,
            device_name=info.device_name,
            source_snapshot_id=provisioned.source_snapshot_id,
        )

    async def snapshot(self, mount_point: str, wait: bool | None = None) -> SnapshotResult:
        """Snapshot and release the volume restored at ``mount_point``.

        Args:
            mount_point: Mount point passed to ``restore`` earlier.
            wait: Block until the snapshot completes. Defaults to
                ``config.wait_for_snapshot_completion``.

        Raises:
            VolcacheError: If any required step failed.
        """
        if wait is None:
            wait = self.config.wait_for_snapshot_completion

        with with_context(self._context.for_mount_point(mount_point, "snapshot")):
            start = time.monotonic()
            _, snapshot_name = self.config.resource_names(self.key.branch_label, self._now())
            try:
                snapshot = await self.finalizer.finalize(mount_point, self.key, wait, snapshot_name)
            except VolcacheError as e:
                _logger.error("snapshot_failed", **e.to_log_fields())
                raise
            _logger.info(
                "snapshot_finished",
                snapshot_id=snapshot.id,
                state=snapshot.state.value,
                waited=wait,
                duration_seconds=round(time.monotonic() - start, 1),
            )
            return SnapshotResult(
                mount_point=mount_point,
                snapshot_id=snapshot.id,
                volume_id=snapshot.volume_id or "",
                state=snapshot.state.value,
            )
