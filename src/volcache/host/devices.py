"""Resolution of the OS device path of an attached volume.

The platform's attachment record names the device that was *requested*
(``/dev/sdf``), but on Nitro instances the kernel exposes EBS volumes as
NVMe devices (``/dev/nvme1n1``). Resolution is therefore a pluggable
strategy: ask the host first, fall back to what the platform reported.
"""

from __future__ import annotations

import shlex
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from volcache.core.constants import EBS_DEVICE_MODEL
from volcache.core.errors import CommandError
from volcache.core.logging import get_logger
from volcache.host.commands import CommandRunner

_logger = get_logger("host.devices")


class DeviceResolver(Protocol):
    """Finds the device path of an attached volume, or returns None."""

    async def resolve(self, volume_id: str, reported_device: str | None) -> str | None:
        ...


@dataclass
class BlockDevice:
    """One whole-disk row of ``lsblk``."""

    path: str
    model: str = ""
    serial: str = ""
    mountpoint: str = ""


def parse_lsblk_pairs(output: str) -> list[BlockDevice]:
    """Parse ``lsblk -P`` output (``KEY="value"`` pairs, one device per line)."""
    devices: list[BlockDevice] = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        fields: dict[str, str] = {}
        for token in shlex.split(line):
            key, sep, value = token.partition("=")
            if sep:
                fields[key.upper()] = value.strip()
        if not fields.get("PATH"):
            continue
        devices.append(
            BlockDevice(
                path=fields["PATH"],
                model=fields.get("MODEL", ""),
                serial=fields.get("SERIAL", ""),
                mountpoint=fields.get("MOUNTPOINT", ""),
            )
        )
    return devices


class ReportedDeviceResolver:
    """Trusts the device named in the platform's attachment record."""

    async def resolve(self, volume_id: str, reported_device: str | None) -> str | None:
        return reported_device or None


class BlockDeviceModelResolver:
    """Finds the volume among the host's block devices.

    A device whose serial is the volume id (without the hyphen, as NVMe
    EBS devices report it) wins. Otherwise the last unmounted disk with the
    block-storage hardware model that does not back the root filesystem is
    taken.
    """

    def __init__(self, runner: CommandRunner, model: str = EBS_DEVICE_MODEL) -> None:
        self._runner = runner
        self._model = model

    async def _list_devices(self) -> list[BlockDevice]:
        result = await self._runner.run(
            ["lsblk", "-d", "-n", "-P", "-o", "PATH,MODEL,SERIAL,MOUNTPOINT"]
        )
        devices = parse_lsblk_pairs(result.output)
        for device in devices:
            _logger.debug(
                "block_device",
                path=device.path,
                model=device.model,
                serial=device.serial,
                mountpoint=device.mountpoint,
            )
        return devices

    async def _root_source(self) -> str | None:
        result = await self._runner.run(["findmnt", "-n", "-o", "SOURCE", "/"], check=False)
        source = result.output.strip()
        return source if result.ok and source else None

    async def resolve(self, volume_id: str, reported_device: str | None) -> str | None:
        try:
            devices = await self._list_devices()
        except CommandError as e:
            _logger.warning("block_device_listing_failed", volume_id=volume_id, error=str(e))
            return None

        serial = volume_id.replace("-", "")
        for device in devices:
            if device.serial == serial:
                _logger.info("device_matched_by_serial", volume_id=volume_id, device=device.path)
                return device.path

        root_source = await self._root_source()
        candidates = [
            d for d in devices
            if d.model == self._model
            and not d.mountpoint
            and not (root_source and root_source.startswith(d.path))
        ]
        if not candidates:
            return None
        device = candidates[-1].path
        _logger.info(
            "device_matched_by_model",
            volume_id=volume_id,
            device=device,
            candidates=[d.path for d in candidates],
        )
        return device


class ChainedDeviceResolver:
    """Tries resolvers in order and returns the first answer."""

    def __init__(self, resolvers: Sequence[DeviceResolver]) -> None:
        self._resolvers = list(resolvers)

    async def resolve(self, volume_id: str, reported_device: str | None) -> str | None:
        for resolver in self._resolvers:
            device = await resolver.resolve(volume_id, reported_device)
            if device:
                return device
        return None


def default_device_resolver(runner: CommandRunner) -> DeviceResolver:
    """Host enumeration first, then the platform's reported device."""
    return ChainedDeviceResolver([BlockDeviceModelResolver(runner), ReportedDeviceResolver()])
