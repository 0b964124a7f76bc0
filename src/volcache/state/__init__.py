"""Local state persisted between the restore and snapshot phases."""

from volcache.state.volume_info import VolumeInfo, VolumeInfoStore

__all__ = ["VolumeInfo", "VolumeInfoStore"]
