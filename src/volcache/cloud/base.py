"""Abstract block-storage API consumed by the volume cache manager."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class VolumeState(str, Enum):
    CREATING = "creating"
    AVAILABLE = "available"
    IN_USE = "in-use"
    DELETING = "deleting"
    DELETED = "deleted"
    ERROR = "error"


class SnapshotState(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    ERROR = "error"
    RECOVERABLE = "recoverable"
    RECOVERING = "recovering"


class AttachmentStatus(str, Enum):
    ATTACHING = "attaching"
    ATTACHED = "attached"
    DETACHING = "detaching"
    DETACHED = "detached"
    BUSY = "busy"


@dataclass
class VolumeAttachment:
    """Binding of a volume to an instance at a device path."""

    volume_id: str
    instance_id: str
    device: str | None
    status: AttachmentStatus


@dataclass
class Volume:
    """A block-storage volume as last described by the platform."""

    id: str
    size_gib: int
    volume_type: str
    availability_zone: str
    state: VolumeState
    tags: dict[str, str] = field(default_factory=dict)
    snapshot_id: str | None = None
    attachments: list[VolumeAttachment] = field(default_factory=list)

    def attachment_for(self, instance_id: str) -> VolumeAttachment | None:
        """Return the attachment to ``instance_id``, if any."""
        for attachment in self.attachments:
            if attachment.instance_id == instance_id:
                return attachment
        return None


@dataclass
class Snapshot:
    """An immutable point-in-time copy of a volume."""

    id: str
    volume_id: str | None
    volume_size_gib: int
    state: SnapshotState
    start_time: datetime
    tags: dict[str, str] = field(default_factory=dict)
    description: str = ""


@dataclass
class VolumeRequest:
    """Parameters for creating a volume.

    ``size_gib`` may be None only when ``snapshot_id`` is set, in which case
    the volume inherits the snapshot's size.
    """

    availability_zone: str
    volume_type: str
    tags: dict[str, str]
    size_gib: int | None = None
    snapshot_id: str | None = None
    iops: int | None = None
    throughput_mibps: int | None = None
    initialization_rate_mibps: int | None = None


class BlockStorageClient(ABC):
    """Abstract base class for block-storage platforms.

    Implementations translate platform errors into ``CloudOperationError``
    and never wait: every method returns as soon as the platform has
    accepted the request.
    """

    @abstractmethod
    async def find_snapshots(
        self,
        tags: Mapping[str, str],
        state: SnapshotState | None = SnapshotState.COMPLETED,
    ) -> list[Snapshot]:
        """List snapshots owned by the caller carrying every tag in ``tags``."""
        ...

    @abstractmethod
    async def describe_snapshot(self, snapshot_id: str) -> Snapshot:
        ...

    @abstractmethod
    async def create_snapshot(
        self,
        volume_id: str,
        tags: Mapping[str, str],
        description: str,
    ) -> Snapshot:
        """Start a snapshot of ``volume_id``; it completes asynchronously."""
        ...

    @abstractmethod
    async def create_volume(self, request: VolumeRequest) -> Volume:
        ...

    @abstractmethod
    async def describe_volume(self, volume_id: str) -> Volume:
        ...

    @abstractmethod
    async def delete_volume(self, volume_id: str) -> None:
        ...

    @abstractmethod
    async def attach_volume(
        self,
        volume_id: str,
        instance_id: str,
        device: str,
    ) -> VolumeAttachment:
        """Request attachment; the returned device is only a hint."""
        ...

    @abstractmethod
    async def detach_volume(self, volume_id: str, instance_id: str) -> None:
        ...
