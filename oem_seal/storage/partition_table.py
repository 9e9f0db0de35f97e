"""Partition table operations backed by sfdisk and blkid.

This module handles the partition metadata the OEM extension relies on:
- Reading a disk's table (``sfdisk --json``)
- Moving a partition's start to an absolute sector or by a relative offset
- Setting a partition's size in place
- Reading a partition's PARTUUID, which survives moves and resizes

Nothing here reads or writes partition contents.
"""

from __future__ import annotations

import json
import re
from typing import Optional, Union

from oem_seal.domain import Partition, PartitionTable, SizeSpec
from oem_seal.logging import LoggerFactory

from .command_runners import CommandRunner, run_checked_command
from .exceptions import InvalidInputError, PartitionTableError

log = LoggerFactory.for_partition()

SFDISK = "sfdisk"
BLKID = "blkid"


def get_partition_number(node: str) -> Optional[int]:
    """Extract the partition number from a node (sda8 -> 8, nvme0n1p8 -> 8)."""
    if not node:
        return None
    match = re.search(r"(?:p)?(\d+)$", node)
    if not match:
        return None
    return int(match.group(1))


def partition_node(disk: str, index: int) -> str:
    """Device node of partition ``index`` on ``disk``."""
    if disk and disk[-1].isdigit():
        return f"{disk}p{index}"
    return f"{disk}{index}"


def _validate_target(disk: str, partition_index: int) -> None:
    if not disk or partition_index is None or partition_index <= 0:
        raise InvalidInputError(
            "invalid input", disk=disk, partition_index=partition_index
        )


def read_partition_table(disk: str, runner: Optional[CommandRunner] = None) -> PartitionTable:
    """Read and parse ``sfdisk --json <disk>``.

    Raises:
        InvalidInputError: If disk is empty
        ToolExecutionError: If sfdisk fails
        PartitionTableError: If the JSON is malformed
    """
    if not disk:
        raise InvalidInputError("invalid input", disk=disk)
    output = run_checked_command([SFDISK, "--json", disk], runner=runner)
    try:
        data = json.loads(output)["partitiontable"]
        partitions = []
        for entry in data.get("partitions", []):
            index = get_partition_number(entry["node"])
            if index is None:
                raise ValueError(f"cannot derive index from {entry['node']!r}")
            partitions.append(Partition.from_sfdisk_dict(entry, index))
        table = PartitionTable(
            device=data.get("device", disk),
            label=data.get("label", ""),
            partitions=tuple(sorted(partitions, key=lambda p: p.start)),
            sector_size=int(data.get("sectorsize", 512)),
            first_lba=data.get("firstlba"),
            last_lba=data.get("lastlba"),
        )
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as error:
        raise PartitionTableError(disk, f"cannot parse sfdisk output: {error}") from error
    log.debug(f"Read {len(table.partitions)} partitions from {disk}")
    return table


def move_partition(
    disk: str,
    partition_index: int,
    destination: Union[str, SizeSpec],
    runner: Optional[CommandRunner] = None,
) -> None:
    """Move a partition to a start sector.

    Args:
        disk: Disk device, e.g. ``/dev/sda``
        partition_index: Partition number on ``disk``
        destination: Absolute sector (``"2048"``) or relative shift
            (``"+5G"``, ``"-200M"``)

    Raises:
        InvalidInputError: If disk or destination is empty, or index <= 0
        InvalidFormatError: If destination is not a size string
        ToolExecutionError: If sfdisk rejects the move (e.g. overlap)
    """
    _validate_target(disk, partition_index)
    if not str(destination or "").strip():
        raise InvalidInputError(
            "invalid input",
            disk=disk,
            partition_index=partition_index,
            destination=destination,
        )
    if not isinstance(destination, SizeSpec):
        destination = SizeSpec.parse(destination)

    run_checked_command(
        [
            SFDISK,
            "--no-reread",
            "--move-data=/dev/null",
            disk,
            "-N",
            str(partition_index),
        ],
        input_text=f"{destination}\n",
        runner=runner,
    )
    log.info(f"Completed moving {partition_node(disk, partition_index)} to {destination}")


def resize_partition(
    disk: str,
    partition_index: int,
    size_sectors: int,
    runner: Optional[CommandRunner] = None,
) -> None:
    """Set a partition's size in sectors, keeping its start."""
    _validate_target(disk, partition_index)
    if size_sectors <= 0:
        raise InvalidInputError(
            "invalid input",
            disk=disk,
            partition_index=partition_index,
            size_sectors=size_sectors,
        )
    run_checked_command(
        [SFDISK, "--no-reread", disk, "-N", str(partition_index)],
        input_text=f",{size_sectors}\n",
        runner=runner,
    )
    log.info(
        f"Resized {partition_node(disk, partition_index)} to {size_sectors} sectors"
    )


def get_partition_uuid(partition_path: str, runner: Optional[CommandRunner] = None) -> str:
    """Read the PARTUUID of a partition node (uppercased).

    Raises:
        InvalidInputError: If partition_path is empty
        ToolExecutionError: If blkid fails
        PartitionTableError: If blkid reports no PARTUUID
    """
    if not partition_path:
        raise InvalidInputError("invalid input", partition_path=partition_path)
    output = run_checked_command(
        [BLKID, "-s", "PARTUUID", "-o", "value", partition_path], runner=runner
    )
    uuid = output.strip().upper()
    if not uuid:
        raise PartitionTableError(partition_path, "no PARTUUID reported by blkid")
    return uuid
