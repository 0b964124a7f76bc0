"""In-memory block-storage client.

Simulates the asynchronous life cycle of volumes, attachments and
snapshots: a transitional state settles after a configurable number of
describe calls. A test double for the snapshot workflow; no platform
calls are made.
"""

from __future__ import annotations

import itertools
from collections.abc import Callable, Mapping
from datetime import UTC, datetime

from volcache.cloud.base import (
    AttachmentStatus,
    BlockStorageClient,
    Snapshot,
    SnapshotState,
    Volume,
    VolumeAttachment,
    VolumeRequest,
    VolumeState,
)
from volcache.core.errors import CloudOperationError


class InMemoryBlockStorage(BlockStorageClient):
    """Block storage held in dicts.

    Attributes:
        volumes: Live volumes by id (deleted volumes are removed).
        snapshots: Snapshots by id.
        calls: ``(operation, resource_id)`` for every API call, in order.
        deleted_volume_ids: Ids passed to successful ``delete_volume`` calls.
    """

    def __init__(
        self,
        settle_after: int = 1,
        assigned_device: str | None = None,
        now: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the simulated platform.

        Args:
            settle_after: Describe calls a resource stays in a transitional
                state before settling.
            assigned_device: Device the platform reports after attaching,
                instead of the requested one.
            now: Clock for snapshot start times.
        """
        self.settle_after = settle_after
        self.assigned_device = assigned_device
        self._now = now or (lambda: datetime.now(UTC))
        self.volumes: dict[str, Volume] = {}
        self.snapshots: dict[str, Snapshot] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.deleted_volume_ids: list[str] = []
        self._countdown: dict[str, int] = {}
        self._failures: dict[str, CloudOperationError] = {}
        self._ids = itertools.count(1)

    # --- Test/seed helpers ---

    def fail_on(self, operation: str, error: CloudOperationError | None = None) -> None:
        """Make the next call to ``operation`` (a method name) raise."""
        self._failures[operation] = error or CloudOperationError(
            f"simulated {operation} failure", operation=operation
        )

    def add_snapshot(
        self,
        tags: Mapping[str, str],
        volume_size_gib: int = 40,
        start_time: datetime | None = None,
        state: SnapshotState = SnapshotState.COMPLETED,
        snapshot_id: str | None = None,
    ) -> Snapshot:
        """Seed a snapshot as if an earlier job had created it."""
        snapshot = Snapshot(
            id=snapshot_id or f"snap-{next(self._ids):08x}",
            volume_id=None,
            volume_size_gib=volume_size_gib,
            state=state,
            start_time=start_time or self._now(),
            tags=dict(tags),
        )
        self.snapshots[snapshot.id] = snapshot
        return snapshot

    def _record(self, operation: str, resource_id: str | None) -> None:
        self.calls.append((operation, resource_id))
        error = self._failures.pop(operation, None)
        if error is not None:
            raise error

    def _settled(self, resource_id: str) -> bool:
        remaining = self._countdown.get(resource_id, 0)
        if remaining <= 0:
            self._countdown.pop(resource_id, None)
            return True
        self._countdown[resource_id] = remaining - 1
        return False

    def _volume(self, volume_id: str, operation: str) -> Volume:
        volume = self.volumes.get(volume_id)
        if volume is None:
            raise CloudOperationError(
                f"{operation} failed (InvalidVolume.NotFound): {volume_id}",
                operation=operation,
                resource_id=volume_id,
            )
        return volume

    # --- BlockStorageClient ---

    async def find_snapshots(
        self,
        tags: Mapping[str, str],
        state: SnapshotState | None = SnapshotState.COMPLETED,
    ) -> list[Snapshot]:
        self._record("find_snapshots", None)
        return [
            s for s in self.snapshots.values()
            if (state is None or s.state == state)
            and all(s.tags.get(k) == v for k, v in tags.items())
        ]

    async def describe_snapshot(self, snapshot_id: str) -> Snapshot:
        self._record("describe_snapshot", snapshot_id)
        snapshot = self.snapshots.get(snapshot_id)
        if snapshot is None:
            raise CloudOperationError(
                f"Snapshot {snapshot_id} not found",
                operation="describe_snapshot",
                resource_id=snapshot_id,
            )
        if snapshot.state == SnapshotState.PENDING and self._settled(snapshot_id):
            snapshot.state = SnapshotState.COMPLETED
        return snapshot

    async def create_snapshot(
        self,
        volume_id: str,
        tags: Mapping[str, str],
        description: str,
    ) -> Snapshot:
        self._record("create_snapshot", volume_id)
        volume = self._volume(volume_id, "create_snapshot")
        snapshot = Snapshot(
            id=f"snap-{next(self._ids):08x}",
            volume_id=volume_id,
            volume_size_gib=volume.size_gib,
            state=SnapshotState.PENDING,
            start_time=self._now(),
            tags=dict(tags),
            description=description,
        )
        self.snapshots[snapshot.id] = snapshot
        self._countdown[snapshot.id] = self.settle_after
        return snapshot

    async def create_volume(self, request: VolumeRequest) -> Volume:
        self._record("create_volume", request.snapshot_id)
        size = request.size_gib
        if request.snapshot_id:
            source = self.snapshots.get(request.snapshot_id)
            if source is None:
                raise CloudOperationError(
                    f"Snapshot {request.snapshot_id} not found",
                    operation="create_volume",
                    resource_id=request.snapshot_id,
                )
            size = max(size or 0, source.volume_size_gib)
        if size is None:
            raise CloudOperationError(
                "create_volume requires a size or a snapshot", operation="create_volume"
            )
        volume = Volume(
            id=f"vol-{next(self._ids):08x}",
            size_gib=size,
            volume_type=request.volume_type,
            availability_zone=request.availability_zone,
            state=VolumeState.CREATING,
            tags=dict(request.tags),
            snapshot_id=request.snapshot_id,
        )
        self.volumes[volume.id] = volume
        self._countdown[volume.id] = self.settle_after
        return volume

    async def describe_volume(self, volume_id: str) -> Volume:
        self._record("describe_volume", volume_id)
        volume = self._volume(volume_id, "describe_volume")
        if not self._settled(volume_id):
            return volume
        if volume.state == VolumeState.CREATING:
            volume.state = VolumeState.AVAILABLE
        for attachment in list(volume.attachments):
            if attachment.status == AttachmentStatus.ATTACHING:
                attachment.status = AttachmentStatus.ATTACHED
                attachment.device = self.assigned_device or attachment.device
                volume.state = VolumeState.IN_USE
            elif attachment.status == AttachmentStatus.DETACHING:
                volume.attachments.remove(attachment)
                volume.state = VolumeState.AVAILABLE
        return volume

    async def delete_volume(self, volume_id: str) -> None:
        self._record("delete_volume", volume_id)
        volume = self._volume(volume_id, "delete_volume")
        if volume.attachments:
            raise CloudOperationError(
                f"delete_volume failed (VolumeInUse): {volume_id} is attached",
                operation="delete_volume",
                resource_id=volume_id,
            )
        del self.volumes[volume_id]
        self.deleted_volume_ids.append(volume_id)

    async def attach_volume(
        self,
        volume_id: str,
        instance_id: str,
        device: str,
    ) -> VolumeAttachment:
        self._record("attach_volume", volume_id)
        volume = self._volume(volume_id, "attach_volume")
        if volume.state != VolumeState.AVAILABLE:
            raise CloudOperationError(
                f"attach_volume failed (IncorrectState): {volume_id} is {volume.state.value}",
                operation="attach_volume",
                resource_id=volume_id,
            )
        attachment = VolumeAttachment(
            volume_id=volume_id,
            instance_id=instance_id,
            device=device,
            status=AttachmentStatus.ATTACHING,
        )
        volume.attachments.append(attachment)
        self._countdown[volume_id] = self.settle_after
        return VolumeAttachment(
            volume_id=volume_id,
            instance_id=instance_id,
            device=device,
            status=AttachmentStatus.ATTACHING,
        )

    async def detach_volume(self, volume_id: str, instance_id: str) -> None:
        self._record("detach_volume", volume_id)
        volume = self._volume(volume_id, "detach_volume")
        attachment = volume.attachment_for(instance_id)
        if attachment is None:
            raise CloudOperationError(
                f"detach_volume failed (IncorrectState): {volume_id} is not attached to {instance_id}",
                operation="detach_volume",
                resource_id=volume_id,
            )
        attachment.status = AttachmentStatus.DETACHING
        self._countdown[volume_id] = self.settle_after
