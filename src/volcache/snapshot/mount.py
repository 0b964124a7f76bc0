"""Mount Orchestrator: puts an attached cache volume under the mount point.

Restore sequence for one mount point:

    1. stop the dependent service       best effort
    2. unmount the mount point          best effort, skipped if not mounted
    3. format the device (blank only)   required
    4. create the mount point           required
    5. mount the device                 required
    6. start the dependent service      required
    7. health check                     failure raises CacheCorruptedError
    8. persist the volume info record   required

A failure in steps 6 to 8 stops the service and unmounts the device again
before the error propagates.
"""

from __future__ import annotations

from volcache.core.errors import CacheCorruptedError, CommandError, MountError
from volcache.core.logging import get_logger
from volcache.host.filesystem import HostFilesystem
from volcache.host.service import DependentService
from volcache.snapshot.steps import Step, run_step
from volcache.state.volume_info import VolumeInfo, VolumeInfoStore

_logger = get_logger("snapshot.mount")

STOP_SERVICE = Step.best_effort("stop_service")
UNMOUNT = Step.best_effort("unmount")
FORMAT = Step.required("format")
CREATE_MOUNT_POINT = Step.required("create_mount_point")
MOUNT = Step.required("mount")
START_SERVICE = Step.required("start_service")
HEALTH_CHECK = Step.required("health_check")
SAVE_VOLUME_INFO = Step.required("save_volume_info")


class MountOrchestrator:
    """Runs the host side of restore and the quiesce half of snapshot."""

    def __init__(
        self,
        filesystem: HostFilesystem,
        service: DependentService,
        store: VolumeInfoStore,
        filesystem_type: str = "ext4",
    ) -> None:
        self._fs = filesystem
        self._service = service
        self._store = store
        self._filesystem_type = filesystem_type

    async def unmount_if_mounted(self, mount_point: str) -> bool:
        """Unmount ``mount_point`` unless nothing is mounted there.

        Returns:
            True if the mount point is unmounted afterwards.
        """
        try:
            mounted = await self._fs.is_mounted(mount_point)
        except CommandError as e:
            _logger.warning("mount_table_unreadable", mount_point=mount_point, error=e.message)
            mounted = True
        if not mounted:
            _logger.info("mount_point_not_mounted", mount_point=mount_point)
            return True
        result = await run_step(
            UNMOUNT, lambda: self._fs.unmount(mount_point), _logger, mount_point=mount_point
        )
        return result is not None

    async def quiesce(self, mount_point: str) -> None:
        """Stop the dependent service and release the mount point (both best effort)."""
        await run_step(STOP_SERVICE, self._service.stop, _logger, service=self._service.name)
        await self.unmount_if_mounted(mount_point)

    async def _mount(self, device: str, mount_point: str) -> None:
        try:
            await self._fs.mount(device, mount_point)
        except CommandError as e:
            raise MountError(
                f"Failed to mount {device} at {mount_point}: {e.message}",
                operation="mount",
                resource_id=device,
            ) from e

    async def _check_health(self, device: str, mount_point: str) -> None:
        try:
            await self._service.health_check()
        except CommandError as e:
            _logger.error(
                "cache_corrupted",
                mount_point=mount_point,
                device=device,
                service=self._service.name,
                output=e.output.strip(),
            )
            raise CacheCorruptedError(
                f"{self._service.name} failed its health check on {mount_point}; "
                f"the cache volume was unmounted",
                operation="health_check",
                resource_id=device,
            ) from e

    async def mount(
        self,
        device: str,
        mount_point: str,
        is_new_and_unformatted: bool,
        volume_id: str,
        instance_id: str | None = None,
    ) -> VolumeInfo:
        """Mount ``device`` at ``mount_point`` and record the binding.

        Raises:
            MountError: If the device cannot be mounted.
            CacheCorruptedError: If the service is unhealthy on the mounted cache.
            CommandError: If formatting or starting the service fails.
        """
        fields = {"mount_point": mount_point, "device": device}
        await self.quiesce(mount_point)

        if is_new_and_unformatted:
            await run_step(
                FORMAT,
                lambda: self._fs.format(device, self._filesystem_type),
                _logger,
                filesystem=self._filesystem_type,
                **fields,
            )
        else:
            _logger.info("format_skipped", reason="cloned from snapshot", **fields)

        await run_step(
            CREATE_MOUNT_POINT, lambda: self._fs.ensure_directory(mount_point), _logger, **fields
        )
        await run_step(MOUNT, lambda: self._mount(device, mount_point), _logger, **fields)

        info = VolumeInfo(
            volume_id=volume_id,
            device_name=device,
            mount_point=mount_point,
            instance_id=instance_id,
        )
        try:
            await run_step(START_SERVICE, self._service.start, _logger, service=self._service.name)
            await run_step(
                HEALTH_CHECK, lambda: self._check_health(device, mount_point), _logger, **fields
            )
            await run_step(SAVE_VOLUME_INFO, lambda: self._store.save(info), _logger, **fields)
        except Exception:
            # The device must not stay mounted once the volume is handed back
            _logger.warning("releasing_mount_point", **fields)
            await self.quiesce(mount_point)
            raise
        _logger.info("volume_mounted", volume_id=volume_id, **fields)
        return info
