"""Tests for the Mount Orchestrator."""

from __future__ import annotations

from pathlib import Path

import pytest

from tests.helpers import FakeCommandRunner
from volcache.core.config import ServiceConfig
from volcache.core.errors import (
    CacheCorruptedError,
    CommandError,
    MountError,
    VolumeInfoWriteError,
)
from volcache.host.filesystem import HostFilesystem
from volcache.host.service import DependentService
from volcache.snapshot.mount import MountOrchestrator
from volcache.state.volume_info import VolumeInfoStore

MOUNT_POINT = "/var/lib/docker"


@pytest.fixture
def store(state_dir: Path) -> VolumeInfoStore:
    return VolumeInfoStore(state_dir)


@pytest.fixture
def orchestrator(runner: FakeCommandRunner, store: VolumeInfoStore) -> MountOrchestrator:
    return MountOrchestrator(
        HostFilesystem(runner),
        DependentService(runner, ServiceConfig()),
        store,
    )


class TestMount:
    """Tests for MountOrchestrator.mount()."""

    async def test_blank_volume_sequence(self, orchestrator, runner, store):
        info = await orchestrator.mount("/dev/nvme1n1", MOUNT_POINT, True, "vol-1", "i-1")

        assert runner.commands == [
            ["sudo", "systemctl", "stop", "docker"],
            ["findmnt", "-n", "--mountpoint", MOUNT_POINT],
            ["sudo", "mkfs.ext4", "-F", "/dev/nvme1n1"],
            ["sudo", "mkdir", "-p", MOUNT_POINT],
            ["sudo", "mount", "/dev/nvme1n1", MOUNT_POINT],
            ["sudo", "systemctl", "start", "docker"],
            ["sudo", "docker", "system", "df"],
        ]
        assert info.volume_id == "vol-1"
        assert info.device_name == "/dev/nvme1n1"
        assert await store.load(MOUNT_POINT) == info

    async def test_cloned_volume_is_never_formatted(self, orchestrator, runner):
        await orchestrator.mount("/dev/nvme1n1", MOUNT_POINT, False, "vol-1")

        assert runner.ran("mkfs.ext4") == []
        assert runner.ran("mount", "/dev/nvme1n1", MOUNT_POINT)

    async def test_xfs_filesystem(self, runner, store):
        orchestrator = MountOrchestrator(
            HostFilesystem(runner),
            DependentService(runner, ServiceConfig()),
            store,
            filesystem_type="xfs",
        )

        await orchestrator.mount("/dev/sdf", MOUNT_POINT, True, "vol-1")

        assert runner.ran("mkfs.xfs") == [["mkfs.xfs", "-f", "/dev/sdf"]]

    async def test_service_stop_failure_is_tolerated(self, orchestrator, runner, store):
        runner.respond(["systemctl", "stop"], exit_code=5, output="Unit docker.service not loaded.")

        await orchestrator.mount("/dev/sdf", MOUNT_POINT, True, "vol-1")

        assert await store.load(MOUNT_POINT)

    async def test_mounted_mount_point_is_unmounted_first(self, orchestrator, runner):
        runner.respond(["findmnt", "-n", "--mountpoint"], output="/var/lib/docker /dev/nvme0n1p2 ext4\n")

        await orchestrator.mount("/dev/sdf", MOUNT_POINT, True, "vol-1")

        assert runner.index_of("umount", MOUNT_POINT) < runner.index_of("mount", "/dev/sdf")

    async def test_unmount_failure_is_tolerated(self, orchestrator, runner):
        runner.respond(["findmnt", "-n", "--mountpoint"], output="/var/lib/docker /dev/x ext4\n")
        runner.respond(["umount"], exit_code=32, output="umount: target is busy")

        await orchestrator.mount("/dev/sdf", MOUNT_POINT, True, "vol-1")

        assert runner.ran("mount", "/dev/sdf", MOUNT_POINT)

    async def test_mount_failure_is_fatal(self, orchestrator, runner, store):
        runner.respond(["mount"], exit_code=32, output="wrong fs type, bad superblock")

        with pytest.raises(MountError, match="wrong fs type"):
            await orchestrator.mount("/dev/sdf", MOUNT_POINT, False, "vol-1")

        assert runner.ran("systemctl", "start") == []
        assert not store.path_for(MOUNT_POINT).exists()

    async def test_format_failure_is_fatal(self, orchestrator, runner):
        runner.respond(["mkfs.ext4"], exit_code=1, output="mkfs failed")

        with pytest.raises(CommandError):
            await orchestrator.mount("/dev/sdf", MOUNT_POINT, True, "vol-1")

        assert runner.ran("mount") == []

    async def test_service_start_failure_is_fatal(self, orchestrator, runner, store):
        runner.respond(["systemctl", "start"], exit_code=1, output="Job failed")

        with pytest.raises(CommandError):
            await orchestrator.mount("/dev/sdf", MOUNT_POINT, True, "vol-1")

        assert not store.path_for(MOUNT_POINT).exists()

    async def test_service_start_failure_unmounts_device(self, orchestrator, runner):
        runner.respond(["systemctl", "start"], exit_code=1, output="Job failed")
        runner.respond(["findmnt", "-n", "--mountpoint"], output="/var/lib/docker /dev/sdf ext4\n")
        runner.respond(["findmnt", "-n", "--mountpoint"], output="", times=1)

        with pytest.raises(CommandError):
            await orchestrator.mount("/dev/sdf", MOUNT_POINT, True, "vol-1")

        assert runner.index_of("umount", MOUNT_POINT) > runner.index_of("systemctl", "start")

    async def test_save_failure_unmounts_device(self, runner, tmp_path: Path):
        blocker = tmp_path / "not-a-directory"
        blocker.write_text("")
        orchestrator = MountOrchestrator(
            HostFilesystem(runner),
            DependentService(runner, ServiceConfig()),
            VolumeInfoStore(blocker / "state"),
        )
        runner.respond(["findmnt", "-n", "--mountpoint"], output="/var/lib/docker /dev/sdf ext4\n")
        runner.respond(["findmnt", "-n", "--mountpoint"], output="", times=1)

        with pytest.raises(VolumeInfoWriteError):
            await orchestrator.mount("/dev/sdf", MOUNT_POINT, True, "vol-1")

        assert runner.index_of("umount", MOUNT_POINT) > runner.index_of("docker", "system", "df")
        assert runner.index_of("systemctl", "stop") > runner.index_of("systemctl", "start")

    async def test_health_check_failure_unmounts_and_fails(self, orchestrator, runner, store):
        runner.respond(["docker", "system", "df"], exit_code=1, output="Error: layer does not exist")
        # Not mounted before restore; mounted once the device is in place
        runner.respond(["findmnt", "-n", "--mountpoint"], output="/var/lib/docker /dev/sdf ext4\n")
        runner.respond(["findmnt", "-n", "--mountpoint"], output="", times=1)

        with pytest.raises(CacheCorruptedError):
            await orchestrator.mount("/dev/sdf", MOUNT_POINT, False, "vol-1")

        assert runner.index_of("umount", MOUNT_POINT) > runner.index_of("docker", "system", "df")
        assert not store.path_for(MOUNT_POINT).exists()


class TestUnmountIfMounted:
    """The defensive unmount is idempotent."""

    async def test_not_mounted_is_not_an_error(self, orchestrator, runner):
        assert await orchestrator.unmount_if_mounted(MOUNT_POINT)
        assert await orchestrator.unmount_if_mounted(MOUNT_POINT)

        assert runner.ran("umount") == []

    async def test_unreadable_mount_table_still_tries_unmount(self, orchestrator, runner):
        async def broken_is_mounted(mount_point: str) -> bool:
            raise CommandError("findmnt missing", argv=["findmnt"])

        orchestrator._fs.is_mounted = broken_is_mounted  # type: ignore[method-assign]

        assert await orchestrator.unmount_if_mounted(MOUNT_POINT)
        assert runner.ran("umount", MOUNT_POINT)
