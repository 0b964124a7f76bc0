"""Control of the service whose data lives on the cached volume."""

from __future__ import annotations

from volcache.core.config import ServiceConfig
from volcache.host.commands import CommandResult, CommandRunner


class DependentService:
    """systemd unit plus its data-usage check and prune command.

    Usage:
        docker = DependentService(runner, ServiceConfig(name="docker"))
        await docker.stop()
    """

    def __init__(self, runner: CommandRunner, config: ServiceConfig) -> None:
        self._runner = runner
        self._config = config

    @property
    def name(self) -> str:
        return self._config.name

    def _argv(self, *args: str) -> list[str]:
        return ["sudo", *args] if self._config.use_sudo else list(args)

    async def stop(self) -> CommandResult:
        return await self._runner.run(self._argv("systemctl", "stop", self._config.name))

    async def start(self) -> CommandResult:
        return await self._runner.run(self._argv("systemctl", "start", self._config.name))

    async def health_check(self) -> CommandResult:
        """Query the service's data usage; raises CommandError if it fails."""
        return await self._runner.run(self._argv(*self._config.health_command))

    async def prune(self) -> CommandResult | None:
        """Drop disposable data before a snapshot. None if no prune command is set."""
        if not self._config.prune_command:
            return None
        return await self._runner.run(self._argv(*self._config.prune_command))
