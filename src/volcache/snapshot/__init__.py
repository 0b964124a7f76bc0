"""Snapshot cache lifecycle: locate, provision, attach, mount, finalize."""

from volcache.snapshot.keys import CacheKey
from volcache.snapshot.manager import RestoreResult, SnapshotResult, VolumeCacheManager

__all__ = [
    "CacheKey",
    "RestoreResult",
    "SnapshotResult",
    "VolumeCacheManager",
]
