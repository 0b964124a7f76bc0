"""Block-storage platform clients."""

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
from volcache.cloud.memory import InMemoryBlockStorage

__all__ = [
    "AttachmentStatus",
    "BlockStorageClient",
    "InMemoryBlockStorage",
    "Snapshot",
    "SnapshotState",
    "Volume",
    "VolumeAttachment",
    "VolumeRequest",
    "VolumeState",
]
