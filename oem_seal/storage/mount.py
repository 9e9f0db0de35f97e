"""Mount handling for the OEM and EFI partitions.

The sealing stage needs the OEM partition unmounted while veritysetup
writes the hash tree, and the EFI partition mounted while grub.cfg is
patched. Both are modelled as scoped operations:

    - ensure_unmounted(): unmount a partition only if /proc/mounts lists it
    - mounted_partition(): context manager that mounts a partition in a
      temporary directory and always unmounts it on exit; an unmount
      failure never hides an error raised inside the block

Device paths are validated before being handed to mount/umount.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Optional

from oem_seal.logging import LoggerFactory

from .command_runners import CommandRunner, run_checked_command
from .exceptions import InvalidInputError, MountError, ToolExecutionError, UnmountFailedError


log = LoggerFactory.for_mount()

PROC_MOUNTS = "/proc/mounts"


def validate_device_path(device: str) -> None:
    """Reject anything that is not a plain /dev node."""
    if not isinstance(device, str) or not device.startswith("/dev/"):
        raise InvalidInputError("invalid device path", device=device)
    if any(char in device for char in [";", "&", "|", "$", "`", "\n", "\r", " "]):
        raise InvalidInputError("device path contains invalid characters", device=device)


def get_mountpoints(device: str) -> list[str]:
    """Mountpoints of ``device`` according to /proc/mounts."""
    mountpoints = []
    try:
        with open(PROC_MOUNTS, "r", encoding="utf-8") as mounts_file:
            for line in mounts_file:
                parts = line.split()
                if len(parts) > 1 and parts[0] == device:
                    mountpoints.append(parts[1])
    except FileNotFoundError:
        return []
    return mountpoints


def is_mounted(device: str) -> bool:
    return bool(get_mountpoints(device))


def unmount_partition(device: str, runner: Optional[CommandRunner] = None) -> None:
    """Unmount a block device node (e.g., /dev/sda8).

    Raises:
        InvalidInputError: If device path is invalid
        UnmountFailedError: If umount fails
    """
    validate_device_path(device)
    try:
        run_checked_command(["umount", device], runner=runner)
    except ToolExecutionError as error:
        raise UnmountFailedError(device, error.output) from error


def ensure_unmounted(device: str, runner: Optional[CommandRunner] = None) -> bool:
    """Unmount ``device`` if it is mounted.

    Returns:
        True if an unmount was performed
    """
    validate_device_path(device)
    mountpoints = get_mountpoints(device)
    if not mountpoints:
        log.debug(f"{device} is not mounted")
        return False
    log.info(f"Unmounting {device} from {', '.join(mountpoints)}")
    unmount_partition(device, runner=runner)
    return True


@contextmanager
def mounted_partition(
    device: str, runner: Optional[CommandRunner] = None
) -> Generator[Path, None, None]:
    """Mount ``device`` in a fresh temporary directory for the duration of the block.

    Example:
        with mounted_partition("/dev/sda12") as mountpoint:
            patch(mountpoint / "efi/boot/grub.cfg")
    """
    validate_device_path(device)
    mountpoint = Path(tempfile.mkdtemp(prefix="oem-seal-"))
    try:
        run_checked_command(["mount", device, str(mountpoint)], runner=runner)
    except ToolExecutionError as error:
        shutil.rmtree(mountpoint, ignore_errors=True)
        raise MountError(f"Failed to mount {device} at {mountpoint}: {error.output}") from error
    log.info(f"Mounted {device} at {mountpoint}")
    try:
        yield mountpoint
    except BaseException:
        # The block's error is the one to report; a failed umount only gets logged.
        try:
            unmount_partition(device, runner=runner)
        except UnmountFailedError as error:
            log.error(f"{error}; leaving {mountpoint} in place")
        else:
            os.rmdir(mountpoint)
        raise
    unmount_partition(device, runner=runner)
    log.info(f"Unmounted {device}")
    os.rmdir(mountpoint)
