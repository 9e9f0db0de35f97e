"""Sequential OEM preparation pipeline.

    validate-budget -> extend-oem -> seal-oem

Each stage runs to completion before the next starts and the first failure
aborts the rest. Nothing is rolled back: a partially completed run leaves
the disk in the state the last completed stage produced, which is reported
in PipelineAbortedError.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from oem_seal.config import settings
from oem_seal.domain import BuildSizeBudget, OEMExtensionPlan, VerityParameters
from oem_seal.logging import LoggerFactory, operation_context
from oem_seal.sealing import seal_oem_partition
from oem_seal.storage.command_runners import CommandRunner
from oem_seal.storage.exceptions import PipelineAbortedError, StorageError
from oem_seal.storage.extend_oem import extend_oem_partition
from oem_seal.storage.partition_table import partition_node

from .budget import validate_oem_budget


T = TypeVar("T")

STAGE_BUDGET = "validate-budget"
STAGE_EXTEND = "extend-oem"
STAGE_SEAL = "seal-oem"


@dataclass(frozen=True)
class PipelineResult:
    budget: BuildSizeBudget
    plan: Optional[OEMExtensionPlan] = None
    verity: Optional[VerityParameters] = None
    completed_stages: tuple[str, ...] = ()


def prepare_oem_partition(
    disk: str,
    state_index: int,
    oem_index: int,
    oem_size: Optional[str],
    seal_oem: bool,
    disk_size_gb: int,
    *,
    image_size_gb: Optional[int] = None,
    efi_index: Optional[int] = None,
    runner: Optional[CommandRunner] = None,
) -> PipelineResult:
    """Validate the budget, extend the OEM partition and optionally seal it.

    The OEM and EFI partition nodes used for sealing are both derived from
    ``disk``; ``efi_index`` defaults to the ``efi_partition_number`` setting.

    Raises:
        PipelineAbortedError: Wrapping the first stage failure
    """
    log = LoggerFactory.for_build()
    if efi_index is None:
        efi_index = settings.get_int(
            "efi_partition_number", settings.DEFAULT_EFI_PARTITION_NUMBER
        )
    completed: list[str] = []

    def run_stage(name: str, action: Callable[[], T]) -> T:
        try:
            with operation_context(name, disk=disk):
                result = action()
        except StorageError as error:
            raise PipelineAbortedError(name, completed, error) from error
        completed.append(name)
        return result

    budget = run_stage(
        STAGE_BUDGET,
        lambda: validate_oem_budget(oem_size, seal_oem, disk_size_gb, image_size_gb),
    )

    plan = None
    if budget.extends_oem:
        plan = run_stage(
            STAGE_EXTEND,
            lambda: extend_oem_partition(
                disk, state_index, oem_index, budget.oem_size, runner=runner
            ),
        )
    else:
        log.info("No OEM size requested; leaving the OEM partition as is")

    verity = None
    if seal_oem:
        verity = run_stage(
            STAGE_SEAL,
            lambda: seal_oem_partition(
                budget.oem_fs_size_4k,
                oem_partition=partition_node(disk, oem_index),
                efi_partition=partition_node(disk, efi_index),
                runner=runner,
            ),
        )

    return PipelineResult(
        budget=budget, plan=plan, verity=verity, completed_stages=tuple(completed)
    )
