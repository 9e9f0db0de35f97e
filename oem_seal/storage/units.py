"""Size string parsing and unit conversion.

Size strings look like ``<integer>[B|K|M|G]``. A number without a unit is a
count of 512-byte sectors, the unit partition tools use by default. All
units are binary (1K = 1024 bytes) and every conversion is exact.
"""

from __future__ import annotations

import re

from .exceptions import InvalidFormatError


SECTOR_SIZE = 512
VERITY_BLOCK_SIZE = 4096
SECTORS_PER_VERITY_BLOCK = VERITY_BLOCK_SIZE // SECTOR_SIZE

KIB = 1 << 10
MIB = 1 << 20
GIB = 1 << 30

UNIT_BYTES = {
    "B": 1,
    "K": KIB,
    "M": MIB,
    "G": GIB,
    "": SECTOR_SIZE,
}

_SIZE_PATTERN = re.compile(r"^(?P<sign>[+-]?)(?P<value>\d+)(?P<unit>[A-Za-z]?)$")


def _split_size(spec: str) -> tuple[str, int, str]:
    if not isinstance(spec, str) or not spec.strip():
        raise InvalidFormatError(str(spec), "empty size")
    match = _SIZE_PATTERN.match(spec.strip())
    if not match:
        raise InvalidFormatError(spec, "expected <number>[B|K|M|G]")
    unit = match.group("unit")
    if unit not in UNIT_BYTES:
        raise InvalidFormatError(spec, f"unknown unit {unit!r}")
    return match.group("sign"), int(match.group("value")), unit


def parse_size_to_bytes(spec: str) -> int:
    """Convert a size string to bytes.

    Args:
        spec: e.g. ``"16M"``, ``"10G"``, ``"4096B"`` or ``"2048"`` (sectors)

    Returns:
        Size in bytes

    Raises:
        InvalidFormatError: On empty, signed, non-numeric input or an unknown unit
    """
    sign, value, unit = _split_size(spec)
    if sign:
        raise InvalidFormatError(spec, "size must be an unsigned quantity")
    return value * UNIT_BYTES[unit]


def parse_destination(spec: str) -> tuple[str, int, str]:
    """Split a move destination into (sign, value, unit).

    Accepts absolute sectors (``"2048"``) and relative shifts (``"+5G"``,
    ``"-200M"``).
    """
    return _split_size(spec)


def format_bytes(num_bytes: int, unit: str = "B") -> str:
    """Render a byte count in the given unit; the inverse of parse_size_to_bytes."""
    if unit not in UNIT_BYTES:
        raise InvalidFormatError(unit, f"unknown unit {unit!r}")
    if num_bytes < 0:
        raise InvalidFormatError(str(num_bytes), "size must not be negative")
    factor = UNIT_BYTES[unit]
    if num_bytes % factor:
        raise InvalidFormatError(
            str(num_bytes), f"not a whole number of {unit or 'sectors'}"
        )
    return f"{num_bytes // factor}{unit}"


def bytes_to_sectors(num_bytes: int) -> int:
    if num_bytes < 0 or num_bytes % SECTOR_SIZE:
        raise InvalidFormatError(
            str(num_bytes), f"not a whole number of {SECTOR_SIZE}-byte sectors"
        )
    return num_bytes // SECTOR_SIZE


def sectors_to_bytes(sectors: int) -> int:
    return sectors * SECTOR_SIZE


def bytes_to_gb_round_up(num_bytes: int) -> int:
    """Whole gigabytes needed to hold ``num_bytes``; never rounds down."""
    if num_bytes < 0:
        raise InvalidFormatError(str(num_bytes), "size must not be negative")
    return (num_bytes + GIB - 1) // GIB


def convert_size_to_gb_round_up(spec: str) -> int:
    return bytes_to_gb_round_up(parse_size_to_bytes(spec))
