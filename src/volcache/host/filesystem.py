"""Formatting and (un)mounting block devices on the host."""

from __future__ import annotations

from volcache.host.commands import CommandResult, CommandRunner

# Flag forcing mkfs over an existing superblock
_FORCE_FLAGS: dict[str, str] = {
    "ext4": "-F",
    "xfs": "-f",
}


class HostFilesystem:
    """Privileged filesystem operations, run through a CommandRunner."""

    def __init__(self, runner: CommandRunner, use_sudo: bool = True) -> None:
        self._runner = runner
        self._use_sudo = use_sudo

    def _argv(self, *args: str) -> list[str]:
        return ["sudo", *args] if self._use_sudo else list(args)

    async def format(self, device: str, filesystem: str) -> CommandResult:
        force = _FORCE_FLAGS.get(filesystem)
        if force is None:
            raise ValueError(f"Unsupported filesystem '{filesystem}'")
        return await self._runner.run(self._argv(f"mkfs.{filesystem}", force, device))

    async def ensure_directory(self, path: str) -> CommandResult:
        return await self._runner.run(self._argv("mkdir", "-p", path))

    async def mount(self, device: str, mount_point: str) -> CommandResult:
        return await self._runner.run(self._argv("mount", device, mount_point))

    async def unmount(self, mount_point: str) -> CommandResult:
        return await self._runner.run(self._argv("umount", mount_point))

    async def is_mounted(self, mount_point: str) -> bool:
        """Check the mount table for a filesystem mounted at ``mount_point``."""
        result = await self._runner.run(
            ["findmnt", "-n", "--mountpoint", mount_point], check=False
        )
        return result.ok and bool(result.output.strip())
