"""Domain model for OEM partition extension and sealing.

Type-safe objects for the values that flow between the pipeline stages:
sizes, partition table entries, verity parameters and the kernel's dm=
table. Everything here is pure; no I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Optional

from oem_seal.storage.exceptions import PartitionTableError
from oem_seal.storage.units import (
    SECTOR_SIZE,
    SECTORS_PER_VERITY_BLOCK,
    UNIT_BYTES,
    VERITY_BLOCK_SIZE,
    parse_destination,
)


# ==============================================================================
# Size Domain
# ==============================================================================


@dataclass(frozen=True)
class SizeSpec:
    """A quantity with an optional sign and unit.

    ``+N``/``-N`` are relative move targets for the partition tool and have
    no absolute byte value.
    """

    value: int
    unit: str = ""  # "", "B", "K", "M" or "G"; "" means 512-byte sectors
    sign: str = ""  # "", "+" or "-"

    @classmethod
    def parse(cls, text: str) -> SizeSpec:
        sign, value, unit = parse_destination(text)
        return cls(value=value, unit=unit, sign=sign)

    @property
    def is_relative(self) -> bool:
        return bool(self.sign)

    def to_bytes(self) -> int:
        """Absolute size in bytes.

        Raises:
            ValueError: For relative specs
        """
        if self.is_relative:
            raise ValueError(f"relative size {self} has no absolute byte value")
        return self.value * UNIT_BYTES[self.unit]

    def __str__(self) -> str:
        return f"{self.sign}{self.value}{self.unit}"


# ==============================================================================
# Partition Table Domain
# ==============================================================================


@dataclass(frozen=True)
class Partition:
    """One entry of a partition table, in 512-byte sectors."""

    index: int  # e.g., 8 for /dev/sda8
    node: str  # e.g., "/dev/sda8"
    start: int
    size: int
    uuid: str = ""  # PARTUUID, uppercase
    name: str = ""  # GPT partition name, e.g. "OEM"

    @property
    def end(self) -> int:
        """First sector after the partition."""
        return self.start + self.size

    @property
    def size_bytes(self) -> int:
        return self.size * SECTOR_SIZE

    @classmethod
    def from_sfdisk_dict(cls, entry: dict[str, Any], index: int) -> Partition:
        """Convert one ``sfdisk --json`` partition entry.

        Raises:
            KeyError: If node/start/size are missing
            ValueError: If start/size are not integers
        """
        return cls(
            index=index,
            node=entry["node"],
            start=int(entry["start"]),
            size=int(entry["size"]),
            uuid=str(entry.get("uuid") or "").upper(),
            name=str(entry.get("name") or ""),
        )


@dataclass(frozen=True)
class PartitionTable:
    """The partitions of one disk device."""

    device: str
    label: str
    partitions: tuple[Partition, ...]
    sector_size: int = SECTOR_SIZE
    first_lba: Optional[int] = None
    last_lba: Optional[int] = None

    def get(self, index: int) -> Partition:
        for partition in self.partitions:
            if partition.index == index:
                return partition
        raise PartitionTableError(self.device, f"partition {index} not found")

    def next_after(self, partition: Partition) -> Optional[Partition]:
        """The partition with the lowest start sector after ``partition``."""
        later = [p for p in self.partitions if p.start >= partition.end]
        return min(later, key=lambda p: p.start) if later else None


@dataclass(frozen=True)
class OEMExtensionPlan:
    """Target layout computed before any partition is touched."""

    disk: str
    oem_index: int
    state_index: int
    oem_start: int
    current_oem_size: int
    target_oem_size: int
    state_start: int
    state_size: int

    @property
    def target_state_start(self) -> int:
        return self.oem_start + self.target_oem_size

    @property
    def growth(self) -> int:
        return self.target_oem_size - self.current_oem_size


# ==============================================================================
# Verity Domain
# ==============================================================================


@dataclass(frozen=True)
class VerityParameters:
    """Output of one veritysetup run over the OEM partition."""

    data_blocks: int  # in 4096-byte blocks
    root_hash: str
    salt: str
    algorithm: str = "sha256"
    block_size: int = VERITY_BLOCK_SIZE

    @property
    def hash_offset(self) -> int:
        """Byte offset of the hash tree; it starts right after the data."""
        return self.data_blocks * self.block_size

    @property
    def data_sectors(self) -> int:
        return self.data_blocks * SECTORS_PER_VERITY_BLOCK


# ==============================================================================
# Kernel dm= Table Domain
# ==============================================================================


@dataclass(frozen=True)
class DmDevice:
    """One mapped device in a ``dm="..."`` kernel parameter.

    ``header`` is ``<name> <uuid> <ro|rw> <num-tables>`` and ``tables`` holds
    that many table rows. Both keep their original spacing so unpatched
    devices serialize byte-for-byte.
    """

    header: str
    tables: tuple[str, ...]

    @property
    def name(self) -> str:
        return self.header.split()[0]

    def render(self) -> str:
        return ",".join((self.header,) + self.tables)


@dataclass(frozen=True)
class DmTable:
    """Structured form of ``dm="<count> <device>,<table>[,<device>,<table>...]"``."""

    devices: tuple[DmDevice, ...]
    count_separator: str = " "

    @property
    def count(self) -> int:
        return len(self.devices)

    def find(self, name: str) -> Optional[int]:
        for position, device in enumerate(self.devices):
            if device.name == name:
                return position
        return None

    def with_device(self, device: DmDevice) -> DmTable:
        """Add ``device``, replacing an existing device of the same name."""
        position = self.find(device.name)
        devices = list(self.devices)
        if position is None:
            devices.append(device)
        else:
            devices[position] = device
        return replace(self, devices=tuple(devices))

    def render(self) -> str:
        body = ",".join(device.render() for device in self.devices)
        return f"{self.count}{self.count_separator}{body}"


# ==============================================================================
# Build Budget Domain
# ==============================================================================


@dataclass(frozen=True)
class BuildSizeBudget:
    """Disk sizing derived from the requested OEM size and the seal flag.

    ``oem_size`` is the partition size the extension applies (hash tree
    included when sealing); ``None`` means the OEM partition is left as is.
    """

    image_size_gb: int
    oem_size: Optional[str] = None
    oem_fs_size_4k: Optional[int] = None
    required_disk_size_gb: Optional[int] = None
    seal_oem: bool = False

    @property
    def extends_oem(self) -> bool:
        return self.oem_size is not None
