"""Attachment Manager: binds a volume to this instance and finds its device."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

from volcache.cloud.base import (
    AttachmentStatus,
    BlockStorageClient,
    Volume,
    VolumeState,
)
from volcache.core.config import WaitConfig
from volcache.core.errors import CloudOperationError, DeviceResolutionError
from volcache.core.logging import get_logger
from volcache.core.polling import Clock, Sleep, wait_until
from volcache.host.devices import DeviceResolver

_logger = get_logger("snapshot.attachment")


@dataclass
class Attachment:
    """A volume attached to this instance.

    ``actual_device`` is the path the OS exposes; ``requested_device`` is only
    what was asked of the platform.
    """

    volume_id: str
    instance_id: str
    requested_device: str
    actual_device: str
    status: AttachmentStatus = AttachmentStatus.ATTACHED


def _attachment_state(instance_id: str):
    def render(volume: Volume) -> str:
        attachment = volume.attachment_for(instance_id)
        status = attachment.status.value if attachment else "none"
        return f"{volume.state.value}/{status}"

    return render


def _volume_failed(volume: Volume) -> CloudOperationError | None:
    if volume.state in (VolumeState.ERROR, VolumeState.DELETING, VolumeState.DELETED):
        return CloudOperationError(
            f"Volume {volume.id} entered state {volume.state.value}",
            operation="describe_volume",
            resource_id=volume.id,
        )
    return None


class AttachmentManager:
    """Attaches and detaches volumes with bounded waits."""

    def __init__(
        self,
        client: BlockStorageClient,
        device_resolver: DeviceResolver,
        waits: WaitConfig,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._resolver = device_resolver
        self._waits = waits
        self._clock = clock
        self._sleep = sleep

    async def wait_available(self, volume_id: str, instance_id: str) -> Volume:
        """Wait until the volume is ``available`` and attached nowhere on this instance."""
        return await wait_until(
            lambda: self._client.describe_volume(volume_id),
            lambda v: v.state == VolumeState.AVAILABLE and v.attachment_for(instance_id) is None,
            timeout_seconds=self._waits.volume_available_seconds,
            poll_interval_seconds=self._waits.volume_poll_interval_seconds,
            operation="wait_volume_available",
            resource_id=volume_id,
            failed=_volume_failed,
            describe_state=_attachment_state(instance_id),
            clock=self._clock,
            sleep=self._sleep,
        )

    async def wait_attached(self, volume_id: str, instance_id: str) -> Volume:
        def attached(volume: Volume) -> bool:
            attachment = volume.attachment_for(instance_id)
            return (
                volume.state == VolumeState.IN_USE
                and attachment is not None
                and attachment.status == AttachmentStatus.ATTACHED
            )

        return await wait_until(
            lambda: self._client.describe_volume(volume_id),
            attached,
            timeout_seconds=self._waits.volume_in_use_seconds,
            poll_interval_seconds=self._waits.volume_poll_interval_seconds,
            operation="wait_volume_in_use",
            resource_id=volume_id,
            failed=_volume_failed,
            describe_state=_attachment_state(instance_id),
            clock=self._clock,
            sleep=self._sleep,
        )

    async def attach(
        self,
        volume_id: str,
        instance_id: str,
        requested_device: str,
    ) -> Attachment:
        """Attach ``volume_id`` to ``instance_id`` and resolve its OS device.

        Raises:
            WaitTimeoutError: If the volume is not available or not attached in time.
            DeviceResolutionError: If no device path can be determined.
        """
        await self.wait_available(volume_id, instance_id)
        requested = await self._client.attach_volume(volume_id, instance_id, requested_device)
        _logger.info(
            "volume_attach_requested",
            volume_id=volume_id,
            instance_id=instance_id,
            device=requested_device,
            status=requested.status.value,
        )

        volume = await self.wait_attached(volume_id, instance_id)
        record = volume.attachment_for(instance_id)
        reported_device = record.device if record else None

        actual_device = await self._resolver.resolve(volume_id, reported_device)
        if not actual_device:
            raise DeviceResolutionError(
                f"Could not resolve the device of volume {volume_id} "
                f"(requested {requested_device}, reported {reported_device})",
                operation="resolve_device",
                resource_id=volume_id,
            )
        if actual_device != requested_device:
            _logger.info(
                "device_differs_from_requested",
                volume_id=volume_id,
                requested_device=requested_device,
                actual_device=actual_device,
            )

        _logger.info("volume_attached", volume_id=volume_id, device=actual_device)
        return Attachment(
            volume_id=volume_id,
            instance_id=instance_id,
            requested_device=requested_device,
            actual_device=actual_device,
        )

    async def detach(self, volume_id: str, instance_id: str) -> Volume:
        """Detach ``volume_id`` and wait until it is ``available`` again."""
        volume = await self._client.describe_volume(volume_id)
        if volume.attachment_for(instance_id) is None:
            _logger.info("volume_already_detached", volume_id=volume_id, state=volume.state.value)
        else:
            await self._client.detach_volume(volume_id, instance_id)
            _logger.info("volume_detach_requested", volume_id=volume_id, instance_id=instance_id)
        volume = await self.wait_available(volume_id, instance_id)
        _logger.info("volume_detached", volume_id=volume_id)
        return volume
