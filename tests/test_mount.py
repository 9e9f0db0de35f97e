"""Tests for storage/mount.py - scoped mount/unmount of the OEM and EFI partitions."""

import pytest

from oem_seal.storage import mount
from oem_seal.storage.exceptions import (
    BootConfigIOError,
    InvalidInputError,
    MountError,
    UnmountFailedError,
)


@pytest.fixture
def proc_mounts(tmp_path, monkeypatch):
    """Fixture pointing PROC_MOUNTS at a writable file."""
    path = tmp_path / "mounts"
    path.write_text(
        "sysfs /sys sysfs rw,nosuid 0 0\n"
        "/dev/sda8 /mnt/disks/oem ext4 ro,relatime 0 0\n"
        "/dev/sda8 /usr/share/oem ext4 ro,relatime 0 0\n"
        "/dev/sda1 /mnt/stateful_partition ext4 rw 0 0\n"
    )
    monkeypatch.setattr(mount, "PROC_MOUNTS", str(path))
    return path


@pytest.fixture
def mountpoint(tmp_path, mocker):
    """Fixture making mkdtemp return a known directory."""
    path = tmp_path / "oem-seal-mnt"
    path.mkdir()
    mocker.patch("oem_seal.storage.mount.tempfile.mkdtemp", return_value=str(path))
    return path


class TestValidateDevicePath:
    """Tests for validate_device_path()."""

    def test_valid(self):
        mount.validate_device_path("/dev/sda12")

    @pytest.mark.parametrize(
        "device", ["sda12", "", None, "/dev/sda1; rm -rf /", "/dev/sda1 /etc", "/dev/$(id)"]
    )
    def test_rejected(self, device):
        with pytest.raises(InvalidInputError):
            mount.validate_device_path(device)


class TestMountpoints:
    """Tests for get_mountpoints() and is_mounted()."""

    def test_lists_all_mountpoints(self, proc_mounts):
        assert mount.get_mountpoints("/dev/sda8") == ["/mnt/disks/oem", "/usr/share/oem"]

    def test_exact_device_match(self, proc_mounts):
        assert mount.get_mountpoints("/dev/sda") == []
        assert not mount.is_mounted("/dev/sda12")
        assert mount.is_mounted("/dev/sda1")

    def test_missing_proc_mounts(self, tmp_path, monkeypatch):
        monkeypatch.setattr(mount, "PROC_MOUNTS", str(tmp_path / "absent"))
        assert mount.get_mountpoints("/dev/sda8") == []


class TestUnmount:
    """Tests for unmount_partition() and ensure_unmounted()."""

    def test_unmount(self, fake_runner):
        mount.unmount_partition("/dev/sda8", runner=fake_runner)
        assert fake_runner.commands == [["umount", "/dev/sda8"]]

    def test_unmount_failure(self, fake_runner):
        fake_runner.add(["umount"], stderr="target is busy", returncode=32)

        with pytest.raises(UnmountFailedError) as exc_info:
            mount.unmount_partition("/dev/sda8", runner=fake_runner)

        assert exc_info.value.device_name == "/dev/sda8"
        assert exc_info.value.reason == "target is busy"

    def test_ensure_unmounted_when_mounted(self, fake_runner, proc_mounts):
        assert mount.ensure_unmounted("/dev/sda8", runner=fake_runner) is True
        assert fake_runner.commands == [["umount", "/dev/sda8"]]

    def test_ensure_unmounted_when_not_mounted(self, fake_runner, proc_mounts):
        assert mount.ensure_unmounted("/dev/sda12", runner=fake_runner) is False
        assert fake_runner.calls == []

    def test_ensure_unmounted_invalid_path(self, fake_runner):
        with pytest.raises(InvalidInputError):
            mount.ensure_unmounted("sda8", runner=fake_runner)


class TestMountedPartition:
    """Tests for the mounted_partition() context manager."""

    def test_mounts_and_cleans_up(self, fake_runner, mountpoint):
        with mount.mounted_partition("/dev/sda12", runner=fake_runner) as path:
            assert path == mountpoint
            assert path.is_dir()

        assert fake_runner.commands == [
            ["mount", "/dev/sda12", str(mountpoint)],
            ["umount", "/dev/sda12"],
        ]
        assert not mountpoint.exists()

    def test_unmounts_when_block_raises(self, fake_runner, mountpoint):
        with pytest.raises(RuntimeError):
            with mount.mounted_partition("/dev/sda12", runner=fake_runner):
                raise RuntimeError("patch failed")

        assert fake_runner.commands[-1] == ["umount", "/dev/sda12"]
        assert not mountpoint.exists()

    def test_mount_failure_removes_directory(self, fake_runner, mountpoint):
        fake_runner.add(["mount"], stderr="wrong fs type", returncode=32)

        with pytest.raises(MountError, match="wrong fs type"):
            with mount.mounted_partition("/dev/sda12", runner=fake_runner):
                pytest.fail("block must not run")

        assert not mountpoint.exists()
        assert fake_runner.commands == [["mount", "/dev/sda12", str(mountpoint)]]

    def test_unmount_failure_propagates(self, fake_runner, mountpoint):
        fake_runner.add(["umount"], stderr="target is busy", returncode=32)

        with pytest.raises(UnmountFailedError):
            with mount.mounted_partition("/dev/sda12", runner=fake_runner):
                pass

    def test_block_error_wins_over_unmount_failure(self, fake_runner, mountpoint):
        fake_runner.add(["umount"], stderr="target is busy", returncode=32)

        with pytest.raises(BootConfigIOError, match="read-only file system"):
            with mount.mounted_partition("/dev/sda12", runner=fake_runner) as path:
                raise BootConfigIOError(
                    str(path / "efi/boot/grub.cfg"), "write", "read-only file system"
                )

        assert fake_runner.commands[-1] == ["umount", "/dev/sda12"]
        assert mountpoint.exists()

    def test_invalid_device(self, fake_runner):
        with pytest.raises(InvalidInputError):
            with mount.mounted_partition("/dev/sda12|reboot", runner=fake_runner):
                pass
        assert fake_runner.calls == []
