"""Exception hierarchy for volcache.

All errors inherit from VolcacheError so callers of the two entry points can
catch one type. Each error records the failing operation and the cloud or
host resource it concerned, so a log line is enough to diagnose a failure
without re-running the job.
"""

from __future__ import annotations

from collections.abc import Sequence


class VolcacheError(Exception):
    """Base exception for all volcache errors."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        resource_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.resource_id = resource_id

    def to_log_fields(self) -> dict[str, object]:
        """Fields to attach to the log event reporting this error."""
        fields: dict[str, object] = {"error": self.message, "error_type": type(self).__name__}
        if self.operation:
            fields["operation"] = self.operation
        if self.resource_id:
            fields["resource_id"] = self.resource_id
        return fields


class ConfigurationError(VolcacheError):
    """Raised when required configuration is missing or invalid.

    Always raised before any cloud call is made.
    """


class CloudOperationError(VolcacheError):
    """Raised when a block-storage API call fails."""


class WaitTimeoutError(VolcacheError):
    """Raised when a resource does not reach the awaited state in time."""

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        resource_id: str | None = None,
        elapsed_seconds: float = 0.0,
        timeout_seconds: float = 0.0,
        last_state: str | None = None,
    ) -> None:
        super().__init__(message, operation=operation, resource_id=resource_id)
        self.elapsed_seconds = elapsed_seconds
        self.timeout_seconds = timeout_seconds
        self.last_state = last_state

    def to_log_fields(self) -> dict[str, object]:
        fields = super().to_log_fields()
        fields["elapsed_seconds"] = round(self.elapsed_seconds, 1)
        fields["timeout_seconds"] = self.timeout_seconds
        if self.last_state is not None:
            fields["last_state"] = self.last_state
        return fields


class CommandError(VolcacheError):
    """Raised when a host command exits non-zero, times out or cannot start."""

    def __init__(
        self,
        message: str,
        *,
        argv: Sequence[str],
        exit_code: int | None = None,
        output: str = "",
        timed_out: bool = False,
    ) -> None:
        super().__init__(message, operation=argv[0] if argv else None)
        self.argv = list(argv)
        self.exit_code = exit_code
        self.output = output
        self.timed_out = timed_out


class DeviceResolutionError(VolcacheError):
    """Raised when the OS device path of an attached volume cannot be found."""


class MountError(VolcacheError):
    """Raised when a mount point cannot be mounted or unmounted."""


class CacheCorruptedError(VolcacheError):
    """Raised when the dependent service fails its post-mount health check."""


class VolumeInfoNotFoundError(VolcacheError):
    """Raised when no volume info record exists for a mount point."""


class VolumeInfoWriteError(VolcacheError):
    """Raised when the volume info record cannot be written."""


class SnapshotFailedError(VolcacheError):
    """Raised when the platform reports a snapshot in the ``error`` state."""


__all__ = [
    "CacheCorruptedError",
    "CloudOperationError",
    "CommandError",
    "ConfigurationError",
    "DeviceResolutionError",
    "MountError",
    "SnapshotFailedError",
    "VolcacheError",
    "VolumeInfoNotFoundError",
    "VolumeInfoWriteError",
    "WaitTimeoutError",
]
