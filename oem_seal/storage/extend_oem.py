"""Grow the OEM partition in place.

The stateful partition sits immediately after the OEM partition, so growing
the OEM partition means relocating the stateful partition first. The whole
target layout is planned from the current table before any sfdisk call, the
steps run once each with no retries, and the table is re-read at the end to
confirm the result:

    1. plan       - target OEM size, stateful partition's new start
    2. move       - stateful partition to OEM start + target OEM size
    3. resize     - OEM partition entry to the target size
    4. move back  - only if the re-read table shows the stateful start drifted
    5. verify     - contiguity, unchanged stateful size and PARTUUIDs

The caller must already have grown the disk (see build.budget) so the
relocated stateful partition fits before the last usable LBA.
"""

from __future__ import annotations

from typing import Callable, Optional

from oem_seal.domain import OEMExtensionPlan, PartitionTable
from oem_seal.logging import LoggerFactory

from .command_runners import CommandRunner
from .exceptions import (
    ExtensionStepError,
    LayoutInconsistencyError,
    LayoutPlanError,
    ShrinkRejectedError,
    ToolExecutionError,
)
from .partition_table import move_partition, read_partition_table, resize_partition
from .units import bytes_to_sectors, parse_size_to_bytes, sectors_to_bytes


def plan_oem_extension(
    table: PartitionTable, state_index: int, oem_index: int, oem_size: str
) -> OEMExtensionPlan:
    """Compute the target layout without touching the disk.

    Raises:
        InvalidFormatError: If oem_size is malformed or not sector aligned
        PartitionTableError: If either partition is missing
        ShrinkRejectedError: If oem_size is not larger than the current size
        LayoutPlanError: If the stateful partition does not follow the OEM
            partition, or would not fit on the disk once relocated
    """
    oem = table.get(oem_index)
    state = table.get(state_index)
    target_sectors = bytes_to_sectors(parse_size_to_bytes(oem_size))

    if target_sectors <= oem.size:
        raise ShrinkRejectedError(
            table.device, oem_index, oem.size_bytes, sectors_to_bytes(target_sectors)
        )

    following = table.next_after(oem)
    if following is None or following.index != state_index:
        raise LayoutPlanError(
            table.device,
            f"partition {state_index} does not immediately follow OEM partition {oem_index}",
        )

    plan = OEMExtensionPlan(
        disk=table.device,
        oem_index=oem_index,
        state_index=state_index,
        oem_start=oem.start,
        current_oem_size=oem.size,
        target_oem_size=target_sectors,
        state_start=state.start,
        state_size=state.size,
    )

    new_state_end = plan.target_state_start + state.size
    if table.last_lba is not None and new_state_end - 1 > table.last_lba:
        raise LayoutPlanError(
            table.device,
            f"stateful partition would end at sector {new_state_end - 1}, "
            f"past the last usable sector {table.last_lba}; grow the disk first",
        )
    for other in table.partitions:
        if other.index in (oem_index, state_index):
            continue
        if other.start < new_state_end and plan.oem_start < other.end:
            raise LayoutPlanError(
                table.device,
                f"extended layout would overlap partition {other.index}",
            )
    return plan


def verify_extension(
    plan: OEMExtensionPlan, before: PartitionTable, after: PartitionTable
) -> None:
    """Compare the re-read table with the plan.

    Raises:
        LayoutInconsistencyError: Listing every mismatch found
    """
    oem = after.get(plan.oem_index)
    state = after.get(plan.state_index)
    mismatches = []
    if oem.start != plan.oem_start:
        mismatches.append(f"OEM start {oem.start} != {plan.oem_start}")
    if oem.size != plan.target_oem_size:
        mismatches.append(f"OEM size {oem.size} != {plan.target_oem_size}")
    if state.start != oem.start + oem.size:
        mismatches.append(
            f"stateful start {state.start} != OEM end {oem.start + oem.size}"
        )
    if state.size != plan.state_size:
        mismatches.append(f"stateful size {state.size} != {plan.state_size}")
    for index in (plan.oem_index, plan.state_index):
        old_uuid = before.get(index).uuid
        new_uuid = after.get(index).uuid
        if old_uuid != new_uuid:
            mismatches.append(f"partition {index} PARTUUID {new_uuid} != {old_uuid}")
    if mismatches:
        raise LayoutInconsistencyError(plan.disk, mismatches)


def _run_step(plan: OEMExtensionPlan, step: str, action: Callable[[], None]) -> None:
    try:
        action()
    except ToolExecutionError as error:
        raise ExtensionStepError(
            step, plan.disk, plan.state_index, plan.oem_index, error
        ) from error


def extend_oem_partition(
    disk: str,
    state_index: int,
    oem_index: int,
    oem_size: str,
    runner: Optional[CommandRunner] = None,
) -> OEMExtensionPlan:
    """Grow OEM partition ``oem_index`` on ``disk`` to ``oem_size``.

    Args:
        disk: Disk device, e.g. ``/dev/sda``
        state_index: Stateful partition number (follows the OEM partition)
        oem_index: OEM partition number
        oem_size: Target size string, e.g. ``"1023M"``

    Returns:
        The plan that was applied

    Raises:
        ShrinkRejectedError: If oem_size is not larger than the current size
        LayoutPlanError: If the target layout is not reachable
        ExtensionStepError: If a partition tool call fails (names the step)
        LayoutInconsistencyError: If the final table does not match the plan
    """
    log = LoggerFactory.for_partition(disk)
    before = read_partition_table(disk, runner=runner)
    plan = plan_oem_extension(before, state_index, oem_index, oem_size)
    log.info(
        f"Extending partition {oem_index} from {plan.current_oem_size} to "
        f"{plan.target_oem_size} sectors; moving partition {state_index} "
        f"from sector {plan.state_start} to {plan.target_state_start}"
    )

    _run_step(
        plan,
        "move-stateful",
        lambda: move_partition(disk, state_index, str(plan.target_state_start), runner=runner),
    )
    _run_step(
        plan,
        "resize-oem",
        lambda: resize_partition(disk, oem_index, plan.target_oem_size, runner=runner),
    )

    after = read_partition_table(disk, runner=runner)
    if after.get(state_index).start != plan.target_state_start:
        log.warning(
            f"Partition {state_index} starts at {after.get(state_index).start}, "
            f"moving it back to {plan.target_state_start}"
        )
        _run_step(
            plan,
            "move-stateful-back",
            lambda: move_partition(
                disk, state_index, str(plan.target_state_start), runner=runner
            ),
        )
        after = read_partition_table(disk, runner=runner)

    verify_extension(plan, before, after)
    log.success(f"OEM partition {oem_index} on {disk} extended to {oem_size}")
    return plan
