"""Volume info records: which volume is bound to which mount point.

The restore phase and the snapshot phase run in separate processes. The
restore phase writes one JSON record per mount point; the snapshot phase
reads it back to find the volume to detach and snapshot.

File naming: ``{state_dir}/snapshot-{mount point with / replaced by -}.json``,
e.g. ``/runs-on/snapshot-var-lib-docker.json``.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from volcache.core.errors import VolumeInfoNotFoundError, VolumeInfoWriteError
from volcache.core.logging import get_logger

_logger = get_logger("state.volume_info")


class VolumeInfo(BaseModel):
    """The volume currently bound to a mount point."""

    model_config = ConfigDict(frozen=True)

    volume_id: str = Field(min_length=1)
    device_name: str = Field(min_length=1)
    mount_point: str = Field(min_length=1)
    instance_id: str | None = None


def volume_info_filename(mount_point: str) -> str:
    """Deterministic file name for a mount point's record."""
    sanitized = mount_point.replace("/", "-").strip("-")
    return f"snapshot-{sanitized}.json"


class VolumeInfoStore:
    """JSON file store of VolumeInfo records, one file per mount point."""

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = Path(state_dir)

    def path_for(self, mount_point: str) -> Path:
        return self.state_dir / volume_info_filename(mount_point)

    async def save(self, info: VolumeInfo) -> Path:
        """Write the record, replacing any previous one for the mount point."""
        path = self.path_for(info.mount_point)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)

            # Write atomically using temp file + rename
            temp_file = path.with_suffix(".json.tmp")
            with open(temp_file, "w") as f:
                json.dump(info.model_dump(mode="json", exclude_none=True), f, indent=2)
            temp_file.replace(path)
        except OSError as e:
            raise VolumeInfoWriteError(
                f"Cannot write volume info to {path}: {e}",
                operation="save_volume_info",
                resource_id=info.mount_point,
            ) from e

        _logger.info(
            "volume_info_saved",
            path=str(path),
            volume_id=info.volume_id,
            device=info.device_name,
        )
        return path

    async def load(self, mount_point: str) -> VolumeInfo:
        """Read the record for ``mount_point``.

        Raises:
            VolumeInfoNotFoundError: If no readable record exists.
        """
        path = self.path_for(mount_point)
        try:
            with open(path) as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise VolumeInfoNotFoundError(
                f"No volume info for mount point {mount_point} at {path}",
                operation="load_volume_info",
                resource_id=mount_point,
            ) from e
        except (OSError, json.JSONDecodeError) as e:
            raise VolumeInfoNotFoundError(
                f"Unreadable volume info for mount point {mount_point} at {path}: {e}",
                operation="load_volume_info",
                resource_id=mount_point,
            ) from e

        try:
            return VolumeInfo.model_validate(data)
        except ValidationError as e:
            raise VolumeInfoNotFoundError(
                f"Invalid volume info for mount point {mount_point} at {path}: {e}",
                operation="load_volume_info",
                resource_id=mount_point,
            ) from e

