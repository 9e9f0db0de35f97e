"""Domain models for OEM partition extension and sealing."""

from __future__ import annotations

from .models import (
    BuildSizeBudget,
    DmDevice,
    DmTable,
    OEMExtensionPlan,
    Partition,
    PartitionTable,
    SizeSpec,
    VerityParameters,
)


__all__ = [
    "BuildSizeBudget",
    "DmDevice",
    "DmTable",
    "OEMExtensionPlan",
    "Partition",
    "PartitionTable",
    "SizeSpec",
    "VerityParameters",
]
