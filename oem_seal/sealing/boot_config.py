"""Add a dm-verity device for the OEM partition to grub.cfg.

A target kernel command line in grub.cfg looks like::

    linux /syslinux/vmlinuz.A ... root=/dev/dm-0 dm="1 vroot none ro 1,0 4077568 verity payload=PARTUUID=8AC60384-1187-9E49-91CE-3ABD8DA295A7 hashtree=PARTUUID=8AC60384-1187-9E49-91CE-3ABD8DA295A7 hashstart=4077568 alg=sha256 root_hexdigest=... salt=..."

The quoted value is ``<device-count> <device>,<table>[,<device>,<table>...]``
where each device header is ``<name> <uuid> <ro|rw> <table-count>``. The
value is parsed into a DmTable, the OEM device is added (or replaced when a
device with the same name is already present, so re-running is safe), and
the count is re-derived from the devices actually present. Everything
outside the quoted value is written back unchanged.
"""

from __future__ import annotations

import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Union

from oem_seal.domain import DmDevice, DmTable
from oem_seal.logging import LoggerFactory
from oem_seal.storage.exceptions import BootConfigIOError, BootConfigParseError
from oem_seal.storage.units import SECTORS_PER_VERITY_BLOCK


log = LoggerFactory.for_boot_config()

_DM_PARAMETER = re.compile(r'\bdm="')
_DM_COUNT = re.compile(r"^(\d+)(\s+)(.*)$", re.DOTALL)


def parse_dm_table(value: str) -> DmTable:
    """Parse the text between the quotes of ``dm="..."``.

    Raises:
        ValueError: If the count, a device header or the table rows do not line up
    """
    match = _DM_COUNT.match(value)
    if not match:
        raise ValueError(f"expected '<count> <devices>', got {value!r}")
    count = int(match.group(1))
    segments = match.group(3).split(",")

    devices = []
    position = 0
    while position < len(segments):
        header = segments[position]
        fields = header.split()
        if len(fields) != 4 or not fields[3].isdigit():
            raise ValueError(
                f"expected '<name> <uuid> <ro|rw> <table-count>', got {header!r}"
            )
        table_count = int(fields[3])
        tables = tuple(segments[position + 1:position + 1 + table_count])
        if len(tables) != table_count:
            raise ValueError(
                f"device {fields[0]!r} declares {table_count} tables, found {len(tables)}"
            )
        devices.append(DmDevice(header=header, tables=tables))
        position += 1 + table_count

    if len(devices) != count:
        raise ValueError(f"device count is {count} but {len(devices)} devices are listed")
    return DmTable(devices=tuple(devices), count_separator=match.group(2))


def build_verity_device(
    device_name: str,
    partition_uuid: str,
    root_hash: str,
    salt: str,
    oem_fs_size_4k: int,
) -> DmDevice:
    """dm-verity device whose data and hash tree both live on ``partition_uuid``."""
    sectors = oem_fs_size_4k * SECTORS_PER_VERITY_BLOCK
    table = (
        f" 0 {sectors} verity payload=PARTUUID={partition_uuid} "
        f"hashtree=PARTUUID={partition_uuid} hashstart={sectors} alg=sha256 "
        f"root_hexdigest={root_hash} salt={salt}"
    )
    return DmDevice(header=f"{device_name} none ro 1", tables=(table,))


def patch_line(line: str, device: DmDevice) -> str:
    """Add ``device`` to the dm= parameter of one command line.

    Raises:
        ValueError: If the line has an unterminated or malformed dm= value
    """
    match = _DM_PARAMETER.search(line)
    if not match:
        return line
    start = match.end()
    end = line.find('"', start)
    if end == -1:
        raise ValueError("unterminated dm= value")
    table = parse_dm_table(line[start:end]).with_device(device)
    return line[:start] + table.render() + line[end:]


def patch_boot_config_text(text: str, device: DmDevice, path: str = "<text>") -> tuple[str, int]:
    """Patch every dm= line of a grub.cfg body.

    Returns:
        (new text, number of lines patched)

    Raises:
        BootConfigParseError: On the first malformed dm= value
    """
    patched = 0
    out = []
    for number, line in enumerate(text.splitlines(keepends=True), start=1):
        body = line.rstrip("\r\n")
        ending = line[len(body):]
        if _DM_PARAMETER.search(body):
            try:
                body = patch_line(body, device)
            except ValueError as error:
                raise BootConfigParseError(path, number, str(error)) from error
            patched += 1
        out.append(body + ending)
    return "".join(out), patched


def _write_atomically(path: Path, content: str) -> None:
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as tmp_file:
            tmp_file.write(content)
            tmp_file.flush()
            os.fsync(tmp_file.fileno())
        shutil.copymode(path, tmp_name)
        os.replace(tmp_name, path)
    except OSError:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def append_verity_entry(
    config_path: Union[str, Path],
    device_name: str,
    partition_uuid: str,
    root_hash: str,
    salt: str,
    oem_fs_size_4k: int,
) -> int:
    """Add the OEM verity device to every kernel command line in grub.cfg.

    The file is parsed fully before anything is written and then replaced as
    a whole, so a failure never leaves a half-patched boot config.

    Args:
        config_path: Path to grub.cfg
        device_name: dm device name, e.g. ``"oemroot"``
        partition_uuid: PARTUUID of the OEM partition
        root_hash: Root hash from veritysetup
        salt: Salt from veritysetup
        oem_fs_size_4k: OEM data region in 4096-byte blocks

    Returns:
        Number of lines patched

    Raises:
        BootConfigIOError: If grub.cfg cannot be read or written
        BootConfigParseError: If a dm= value is malformed
    """
    path = Path(config_path)
    try:
        with open(path, "r", encoding="utf-8", newline="") as config_file:
            content = config_file.read()
    except OSError as error:
        raise BootConfigIOError(str(path), "read", str(error)) from error

    device = build_verity_device(device_name, partition_uuid, root_hash, salt, oem_fs_size_4k)
    new_content, patched = patch_boot_config_text(content, device, str(path))
    if not patched:
        log.warning(f"No dm= kernel parameter found in {path}; nothing to patch")
        return 0

    try:
        _write_atomically(path, new_content)
    except OSError as error:
        raise BootConfigIOError(str(path), "write", str(error)) from error
    log.info(f"Added dm-verity device {device_name} to {patched} kernel command lines in {path}")
    return patched
