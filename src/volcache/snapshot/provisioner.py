"""Volume Provisioner: creates cache volumes and cleans up orphaned ones."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass

from volcache.cloud.base import (
    BlockStorageClient,
    Snapshot,
    Volume,
    VolumeRequest,
    VolumeState,
)
from volcache.core.config import VolumeSpec, WaitConfig
from volcache.core.constants import NAME_TAG_KEY
from volcache.core.errors import VolcacheError
from volcache.core.logging import get_logger
from volcache.core.polling import Clock, Sleep, wait_until
from volcache.snapshot.keys import CacheKey

_logger = get_logger("snapshot.provisioner")


@dataclass
class ProvisionedVolume:
    """A freshly created volume and how it must be prepared before mounting."""

    volume: Volume
    source_snapshot_id: str | None

    @property
    def is_new_and_unformatted(self) -> bool:
        """Blank volumes carry no filesystem; clones inherit the snapshot's."""
        return self.source_snapshot_id is None


class VolumeProvisioner:
    """Creates tagged volumes, blank or cloned from a snapshot."""

    def __init__(
        self,
        client: BlockStorageClient,
        spec: VolumeSpec,
        waits: WaitConfig,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._client = client
        self._spec = spec
        self._waits = waits
        self._clock = clock
        self._sleep = sleep

    def build_request(
        self,
        snapshot: Snapshot | None,
        availability_zone: str,
        key: CacheKey,
        volume_name: str,
    ) -> VolumeRequest:
        tags = key.tags()
        tags[NAME_TAG_KEY] = volume_name
        request = VolumeRequest(
            availability_zone=availability_zone,
            volume_type=self._spec.volume_type,
            tags=tags,
            iops=self._spec.iops,
            throughput_mibps=self._spec.throughput_mibps,
        )
        if snapshot is None:
            request.size_gib = self._spec.size_gib
        else:
            request.snapshot_id = snapshot.id
            request.initialization_rate_mibps = self._spec.initialization_rate_mibps
        return request

    async def provision(
        self,
        snapshot: Snapshot | None,
        availability_zone: str,
        key: CacheKey,
        volume_name: str,
    ) -> ProvisionedVolume:
        """Create the cache volume for this job.

        The volume is returned as soon as the platform accepted the request;
        it is usually still ``creating``.
        """
        request = self.build_request(snapshot, availability_zone, key, volume_name)
        volume = await self._client.create_volume(request)
        _logger.info(
            "volume_created",
            volume_id=volume.id,
            name=volume_name,
            snapshot_id=request.snapshot_id,
            size_gib=volume.size_gib,
            availability_zone=availability_zone,
        )
        return ProvisionedVolume(volume=volume, source_snapshot_id=request.snapshot_id)

    async def discard(self, volume_id: str, instance_id: str) -> bool:
        """Delete a volume that never reached its hand-off.

        Detaches it first if it is attached to ``instance_id``. Failures are
        logged, never raised, so the error that caused the cleanup is the one
        the caller sees.

        Returns:
            True if the volume was deleted.
        """
        _logger.warning("volume_cleanup_started", volume_id=volume_id)
        try:
            volume = await self._client.describe_volume(volume_id)
            if volume.attachment_for(instance_id) is not None:
                await self._client.detach_volume(volume_id, instance_id)
                volume = await self._wait_detached(volume_id, instance_id)
            elif volume.state == VolumeState.CREATING:
                volume = await self._wait_detached(volume_id, instance_id)
            await self._client.delete_volume(volume_id)
        except VolcacheError as e:
            _logger.error(
                "volume_cleanup_failed",
                volume_id=volume_id,
                action="delete the volume manually",
                **e.to_log_fields(),
            )
            return False

        _logger.info("volume_cleanup_completed", volume_id=volume_id)
        return True

    async def _wait_detached(self, volume_id: str, instance_id: str) -> Volume:
        return await wait_until(
            lambda: self._client.describe_volume(volume_id),
            lambda v: v.state == VolumeState.AVAILABLE and v.attachment_for(instance_id) is None,
            timeout_seconds=self._waits.volume_available_seconds,
            poll_interval_seconds=self._waits.volume_poll_interval_seconds,
            operation="wait_volume_released",
            resource_id=volume_id,
            describe_state=lambda v: v.state.value,
            clock=self._clock,
            sleep=self._sleep,
        )

    async def delete(self, volume_id: str) -> str:
        await self._client.delete_volume(volume_id)
        _logger.info("volume_deleted", volume_id=volume_id)
        return volume_id
