"""
Pytest configuration and shared fixtures for oem-seal tests.

This module provides a fake CommandRunner and canned tool output so the
partition, verity and grub logic runs without touching real disks.
"""

from __future__ import annotations

import json
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from oem_seal.config import settings
from oem_seal.storage.command_runners import CommandResult, set_default_runner


# ==============================================================================
# Fake Command Runner
# ==============================================================================


class FakeRunner:
    """CommandRunner that records every call and replays canned results.

    Responses are registered per command prefix; the longest matching prefix
    wins. Several responses for one prefix are returned in order, the last
    one repeating. Unregistered commands succeed with empty output.
    """

    def __init__(self) -> None:
        self.calls: List[Tuple[Tuple[str, ...], Optional[str]]] = []
        self._responses: Dict[Tuple[str, ...], List[CommandResult]] = {}

    def add(
        self,
        prefix: Sequence[str],
        stdout: str = "",
        stderr: str = "",
        returncode: int = 0,
    ) -> "FakeRunner":
        key = tuple(prefix)
        self._responses.setdefault(key, []).append(
            CommandResult(command=key, returncode=returncode, stdout=stdout, stderr=stderr)
        )
        return self

    def replace(self, prefix: Sequence[str], **result) -> "FakeRunner":
        """Drop queued responses for ``prefix`` and register a new one."""
        self._responses.pop(tuple(prefix), None)
        return self.add(prefix, **result)

    def run(self, command: Sequence[str], input_text: Optional[str] = None) -> CommandResult:
        command = tuple(command)
        self.calls.append((command, input_text))
        matches = [key for key in self._responses if command[: len(key)] == key]
        if not matches:
            return CommandResult(command=command, returncode=0)
        queue = self._responses[max(matches, key=len)]
        result = queue.pop(0) if len(queue) > 1 else queue[0]
        return CommandResult(
            command=command,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )

    @property
    def commands(self) -> List[List[str]]:
        return [list(command) for command, _ in self.calls]

    def calls_to(self, *prefix: str) -> List[Tuple[Tuple[str, ...], Optional[str]]]:
        return [call for call in self.calls if call[0][: len(prefix)] == prefix]


@pytest.fixture
def fake_runner() -> FakeRunner:
    """Fixture providing a fresh FakeRunner."""
    return FakeRunner()


@pytest.fixture(autouse=True)
def isolate_default_runner():
    """Never let a test fall through to the real subprocess runner's cache."""
    set_default_runner(None)
    yield
    set_default_runner(None)


@pytest.fixture(autouse=True)
def default_settings():
    """Reset settings to defaults for every test."""
    original = dict(settings.settings_store.values)
    settings.settings_store.values = dict(settings.DEFAULT_SETTINGS)
    yield settings.settings_store.values
    settings.settings_store.values = original


# ==============================================================================
# Partition Table Fixtures
# ==============================================================================

# COS-like layout on a disk grown from 10GB to 11GB: EFI (12), OEM (8) and
# the stateful partition (1) right after the OEM partition.
LAST_LBA_11GB = 23068638
EFI_PART = {"index": 12, "start": 4096, "size": 65536, "uuid": "a1b2c3d4-0000-4000-8000-00000000000c", "name": "EFI-SYSTEM"}
OEM_PART = {"index": 8, "start": 86016, "size": 32768, "uuid": "8ac60384-1187-9e49-91ce-3abd8da295a7", "name": "OEM"}
STATE_PART = {"index": 1, "start": 118784, "size": 20852703, "uuid": "d2e1f0a9-1111-4a2b-9c3d-000000000001", "name": "STATE"}


def sfdisk_json(partitions, device: str = "/dev/sda", last_lba: int = LAST_LBA_11GB) -> str:
    """Render ``sfdisk --json`` output for the given partition dicts."""
    return json.dumps(
        {
            "partitiontable": {
                "label": "gpt",
                "id": "5B9B0C9E-4F41-4D4B-9B1E-6A0F2D0A7C11",
                "device": device,
                "unit": "sectors",
                "firstlba": 34,
                "lastlba": last_lba,
                "sectorsize": 512,
                "partitions": [
                    {
                        "node": f"{device}{part['index']}",
                        "start": part["start"],
                        "size": part["size"],
                        "type": "0FC63DAF-8483-4772-8E79-3D69D8477DE4",
                        "uuid": part["uuid"],
                        "name": part["name"],
                    }
                    for part in partitions
                ],
            }
        },
        indent=3,
    )


@pytest.fixture
def cos_layout():
    """Fixture providing the EFI/OEM/STATE partition dicts (copies)."""
    return [dict(EFI_PART), dict(OEM_PART), dict(STATE_PART)]


@pytest.fixture
def extended_layout(cos_layout):
    """Factory for the layout after growing the OEM partition to ``sectors``."""

    def build(sectors: int):
        efi, oem, state = (dict(part) for part in cos_layout)
        oem["size"] = sectors
        state["start"] = oem["start"] + sectors
        return [efi, oem, state]

    return build


# ==============================================================================
# Tool Output Fixtures
# ==============================================================================


VERITYSETUP_OUTPUT = """VERITY header information for /dev/sda8
UUID:
Hash type:              0
Data blocks:            4096
Data block size:        4096
Hash block size:        4096
Hash algorithm:         sha256
Salt:                   9cd7ba29a1771b2097a7d72be8c13b29766d7617c3b924eb0cf23ff5071fee47
Root hash:              d6b862d01e01e6417a1b5e7eb0eed2a2189594b74325dd0749cd83bbf78f5dc8
"""

ROOT_HASH = "d6b862d01e01e6417a1b5e7eb0eed2a2189594b74325dd0749cd83bbf78f5dc8"
SALT = "9cd7ba29a1771b2097a7d72be8c13b29766d7617c3b924eb0cf23ff5071fee47"


@pytest.fixture
def veritysetup_output() -> str:
    """Fixture providing a successful veritysetup format report."""
    return VERITYSETUP_OUTPUT


GRUB_CFG = """defaultA=2
defaultB=3
gptpriority $grubdisk 2 prioA

menuentry "verified image A" {
  linux /syslinux/vmlinuz.A init=/usr/lib/systemd/systemd boot=local rootwait ro noresume loglevel=7 console=tty1 console=ttyS0 dm_verity.error_behavior=3 dm_verity.max_bios=-1 dm_verity.dev_wait=1 root=/dev/dm-0 dm="1 vroot none ro 1,0 4077568 verity payload=PARTUUID=8AC60384-1187-9E49-91CE-3ABD8DA295A7 hashtree=PARTUUID=8AC60384-1187-9E49-91CE-3ABD8DA295A7 hashstart=4077568 alg=sha256 root_hexdigest=aaaa salt=bbbb"
}

menuentry "verified image B" {
  linux /syslinux/vmlinuz.B init=/usr/lib/systemd/systemd boot=local rootwait ro noresume loglevel=7 console=tty1 console=ttyS0 dm_verity.error_behavior=3 dm_verity.max_bios=-1 dm_verity.dev_wait=1 root=/dev/dm-0 dm="1 vroot none ro 1,0 4077568 verity payload=PARTUUID=11111111-2222-3333-4444-555555555555 hashtree=PARTUUID=11111111-2222-3333-4444-555555555555 hashstart=4077568 alg=sha256 root_hexdigest=cccc salt=dddd"
}
"""


@pytest.fixture
def grub_cfg(tmp_path):
    """Fixture writing a two-entry grub.cfg under tmp_path/efi/boot."""
    path = tmp_path / "efi" / "boot" / "grub.cfg"
    path.parent.mkdir(parents=True)
    path.write_text(GRUB_CFG, encoding="utf-8")
    return path
