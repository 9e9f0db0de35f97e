"""Disk budget validation for OEM partition extension and sealing.

Pure computation, run before anything touches the disk. Given the requested
OEM size, the seal flag and the requested disk size, it decides the OEM
partition size the extension will apply and rejects disks that are too
small:

    seal  oem-size  required disk                OEM partition
    ----  --------  ---------------------------  ---------------------------
    no    unset     (no change)                  (no change)
    no    S         image + ceil_gb(S)           S - 1M
    yes   unset     image + 1                    32M (16M data + hash tree)
    yes   S         image + ceil_gb(2 x S)       2 x S - 1M

The disk resize API only takes whole gigabytes, so sizes are rounded up to
GB. The final 1M is taken off the partition to absorb a disk that ends up
1M short of the rounded figure; when sealing it comes out of the hash tree
half, which never needs the full data size.

Example:
    from oem_seal.build.budget import validate_oem_budget

    budget = validate_oem_budget("1G", seal_oem=False, disk_size_gb=11)
    budget.oem_size  # "1023M"
"""

from __future__ import annotations

from typing import Optional

from oem_seal.config import settings
from oem_seal.domain import BuildSizeBudget
from oem_seal.logging import LoggerFactory
from oem_seal.storage.exceptions import InsufficientDiskSizeError, InvalidInputError
from oem_seal.storage.units import (
    MIB,
    VERITY_BLOCK_SIZE,
    bytes_to_gb_round_up,
    parse_size_to_bytes,
)


log = LoggerFactory.for_build()

DEFAULT_SEALED_OEM_SIZE = "32M"
SEAL_HEADROOM_GB = 1


def _default_oem_size_bytes() -> int:
    return settings.get_int("default_oem_size_mb", settings.DEFAULT_OEM_SIZE_MB) * MIB


def validate_oem_size(oem_size: str) -> int:
    """Parse ``oem_size`` and check it is at least the image's default OEM size.

    Raises:
        InvalidFormatError: If oem_size is malformed
        InvalidInputError: If oem_size is below the default OEM size
    """
    size_bytes = parse_size_to_bytes(oem_size)
    minimum = _default_oem_size_bytes()
    if size_bytes < minimum:
        raise InvalidInputError(
            f"oem-size must be at least {minimum // MIB}M", oem_size=oem_size
        )
    return size_bytes


def validate_oem_budget(
    oem_size: Optional[str],
    seal_oem: bool,
    disk_size_gb: int,
    image_size_gb: Optional[int] = None,
) -> BuildSizeBudget:
    """Compute the OEM partition size and the minimum disk size.

    Args:
        oem_size: Requested OEM size (e.g. ``"1G"``), or None/"" to keep it
        seal_oem: Whether the OEM partition will be sealed with dm-verity
        disk_size_gb: Disk size the image will be built on
        image_size_gb: Size of the source image (defaults to the setting)

    Returns:
        BuildSizeBudget whose ``oem_size`` is the size to extend to

    Raises:
        InvalidFormatError: If oem_size is malformed
        InvalidInputError: If oem_size is below the default OEM size, or the
            resulting partition would not be larger than it
        InsufficientDiskSizeError: If disk_size_gb is below the minimum
    """
    if image_size_gb is None:
        image_size_gb = settings.get_int("image_size_gb", settings.DEFAULT_IMAGE_SIZE_GB)

    if not seal_oem and not oem_size:
        return BuildSizeBudget(image_size_gb=image_size_gb)

    if seal_oem and not oem_size:
        # Keep the image's OEM filesystem and double the partition for the hash tree.
        required_gb = image_size_gb + SEAL_HEADROOM_GB
        if disk_size_gb < required_gb:
            raise InsufficientDiskSizeError(
                disk_size_gb,
                required_gb,
                "need extra disk space to seal the OEM partition",
            )
        budget = BuildSizeBudget(
            image_size_gb=image_size_gb,
            oem_size=DEFAULT_SEALED_OEM_SIZE,
            oem_fs_size_4k=_default_oem_size_bytes() // VERITY_BLOCK_SIZE,
            required_disk_size_gb=required_gb,
            seal_oem=True,
        )
        log.info(f"Sealing with default OEM size; OEM partition {budget.oem_size}")
        return budget

    oem_fs_size_4k = None
    partition_bytes = validate_oem_size(oem_size)
    if seal_oem:
        oem_fs_size_4k = partition_bytes // VERITY_BLOCK_SIZE
        partition_bytes *= 2
        reason = f"'oem-size' x 2 + image size ({image_size_gb}GB)"
    else:
        reason = f"'oem-size' + image size ({image_size_gb}GB)"

    # The 1M slack must still leave a partition larger than the image's OEM.
    oem_partition_mb = partition_bytes // MIB - 1
    minimum_mb = _default_oem_size_bytes() // MIB
    if oem_partition_mb <= minimum_mb:
        raise InvalidInputError(
            f"oem-size must give an OEM partition larger than {minimum_mb}M",
            oem_size=oem_size,
            oem_partition=f"{oem_partition_mb}M",
        )

    required_gb = image_size_gb + bytes_to_gb_round_up(partition_bytes)
    if disk_size_gb < required_gb:
        raise InsufficientDiskSizeError(disk_size_gb, required_gb, reason)

    budget = BuildSizeBudget(
        image_size_gb=image_size_gb,
        oem_size=f"{oem_partition_mb}M",
        oem_fs_size_4k=oem_fs_size_4k,
        required_disk_size_gb=required_gb,
        seal_oem=seal_oem,
    )
    log.info(
        f"OEM partition {budget.oem_size} (requested {oem_size}, seal={seal_oem}); "
        f"disk needs at least {required_gb}GB"
    )
    return budget
