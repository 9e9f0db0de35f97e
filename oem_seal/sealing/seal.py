"""Seal the OEM partition: hash tree plus a verified kernel command line."""

from __future__ import annotations

from typing import Optional

from oem_seal.config import settings
from oem_seal.domain import VerityParameters
from oem_seal.logging import LoggerFactory
from oem_seal.storage.command_runners import CommandRunner
from oem_seal.storage.mount import mounted_partition
from oem_seal.storage.partition_table import get_partition_uuid

from .boot_config import append_verity_entry
from .verity import seal_partition


log = LoggerFactory.for_verity()


def seal_oem_partition(
    oem_fs_size_4k: int,
    *,
    oem_partition: Optional[str] = None,
    efi_partition: Optional[str] = None,
    device_name: Optional[str] = None,
    runner: Optional[CommandRunner] = None,
) -> VerityParameters:
    """Build the OEM hash tree and make the kernel verify it at boot.

    The PARTUUID is read after the extension has finished, so the grub entry
    references the partition independently of where it now sits.
    """
    oem_partition = oem_partition or settings.get_setting("oem_partition")
    efi_partition = efi_partition or settings.get_setting("efi_partition")
    device_name = device_name or settings.get_setting("verity_device_name")
    grub_relpath = settings.get_setting("grub_config_path")

    params = seal_partition(oem_fs_size_4k, device=oem_partition, runner=runner)
    partition_uuid = get_partition_uuid(oem_partition, runner=runner)

    with mounted_partition(efi_partition, runner=runner) as mountpoint:
        log.info(f"EFI partition {efi_partition} mounted")
        append_verity_entry(
            mountpoint / grub_relpath,
            device_name,
            partition_uuid,
            params.root_hash,
            params.salt,
            params.data_blocks,
        )
    log.info("Kernel command line modified")
    return params
