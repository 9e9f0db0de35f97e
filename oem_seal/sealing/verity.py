"""dm-verity hash tree computation over the OEM partition.

veritysetup runs inside a Docker image loaded from a tarball shipped with
the build context. The hash tree is written into the same partition right
after the data region (``--hash-offset`` = data size), which is why the
partition is extended to twice the data size before sealing.

Output of ``veritysetup format`` looks like::

    VERITY header information for /dev/sda8
    UUID:
    Hash type:              0
    Data blocks:            2048
    Data block size:        4096
    Hash block size:        4096
    Hash algorithm:         sha256
    Salt:                   9cd7ba29a1771b2097a7d72be8c13b29766d7617c3b924eb0cf23ff5071fee47
    Root hash:              d6b862d01e01e6417a1b5e7eb0eed2a2189594b74325dd0749cd83bbf78f5dc8

Only the ``Root hash:`` and ``Salt:`` prefixes are relied on.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, Optional

from oem_seal.config import settings
from oem_seal.domain import VerityParameters
from oem_seal.logging import LoggerFactory
from oem_seal.storage.command_runners import CommandRunner, run_checked_command
from oem_seal.storage.exceptions import (
    InvalidInputError,
    ToolExecutionError,
    VerityImageError,
    VerityOutputParseError,
)
from oem_seal.storage.mount import ensure_unmounted
from oem_seal.storage.units import VERITY_BLOCK_SIZE


log = LoggerFactory.for_verity()

ROOT_HASH_PREFIX = "Root hash:"
SALT_PREFIX = "Salt:"


def parse_veritysetup_output(output: str, data_blocks: int = 0) -> tuple[str, str]:
    """Extract (root hash, salt) from a veritysetup report.

    Raises:
        VerityOutputParseError: If either line is missing or empty
    """
    root_hash = ""
    salt = ""
    for line in output.splitlines():
        line = line.strip()
        if line.startswith(ROOT_HASH_PREFIX):
            root_hash = line[len(ROOT_HASH_PREFIX):].strip()
        elif line.startswith(SALT_PREFIX):
            salt = line[len(SALT_PREFIX):].strip()
    missing = []
    if not root_hash:
        missing.append(ROOT_HASH_PREFIX)
    if not salt:
        missing.append(SALT_PREFIX)
    if missing:
        raise VerityOutputParseError(missing, output, data_blocks)
    return root_hash, salt


def load_veritysetup_image(
    image_path: str, image_tag: str, runner: Optional[CommandRunner] = None
) -> str:
    """``docker load`` the veritysetup image and return its image ID."""
    try:
        run_checked_command(["docker", "load", "-i", image_path], runner=runner)
        output = run_checked_command(["docker", "images", image_tag, "-q"], runner=runner)
    except ToolExecutionError as error:
        raise VerityImageError(image_path, str(error)) from error
    lines = output.split()
    if not lines:
        raise VerityImageError(image_path, f"no image ID found for {image_tag}")
    return lines[0]


def remove_veritysetup_image(image_id: str, runner: Optional[CommandRunner] = None) -> None:
    run_checked_command(["docker", "rmi", image_id], runner=runner)


@contextmanager
def veritysetup_image(
    image_path: str, image_tag: str, runner: Optional[CommandRunner] = None
) -> Generator[str, None, None]:
    """Load the veritysetup image for the duration of the block.

    The image is removed on every exit path. A failed removal is logged and
    does not replace the result (or error) of the block.
    """
    image_id = load_veritysetup_image(image_path, image_tag, runner=runner)
    log.info(f"Docker image for veritysetup loaded ({image_id})")
    try:
        yield image_id
    finally:
        try:
            remove_veritysetup_image(image_id, runner=runner)
            log.info("Docker image for veritysetup removed")
        except ToolExecutionError as error:
            log.error(f"Cannot remove veritysetup image {image_id}: {error}")


def veritysetup_command(image_id: str, device: str, data_blocks: int) -> list[str]:
    """docker run invocation of ``veritysetup format`` over ``device``."""
    hash_offset = data_blocks * VERITY_BLOCK_SIZE
    return [
        "docker",
        "run",
        "--rm",
        "--name",
        settings.get_setting("veritysetup_container_name", "veritysetup"),
        "--privileged",
        "-v",
        "/dev:/dev",
        image_id,
        "veritysetup",
        "format",
        device,
        device,
        f"--data-block-size={VERITY_BLOCK_SIZE}",
        f"--hash-block-size={VERITY_BLOCK_SIZE}",
        f"--data-blocks={data_blocks}",
        f"--hash-offset={hash_offset}",
        "--no-superblock",
        "--format=0",
    ]


def seal_partition(
    oem_fs_size_4k: int,
    *,
    device: Optional[str] = None,
    image_path: Optional[str] = None,
    image_tag: Optional[str] = None,
    runner: Optional[CommandRunner] = None,
) -> VerityParameters:
    """Build the hash tree over the first ``oem_fs_size_4k`` 4K blocks of the OEM partition.

    Args:
        oem_fs_size_4k: Size of the OEM data region in 4096-byte blocks
        device: OEM partition node (defaults to the ``oem_partition`` setting)
        image_path: veritysetup image tarball
        image_tag: Tag the tarball loads as
        runner: Command runner

    Returns:
        VerityParameters with the root hash and salt

    Raises:
        InvalidInputError: If oem_fs_size_4k is not positive
        UnmountFailedError: If the OEM partition cannot be unmounted
        VerityImageError: If the image cannot be loaded
        ToolExecutionError: If veritysetup fails
        VerityOutputParseError: If the report lacks the root hash or salt
    """
    if not oem_fs_size_4k or oem_fs_size_4k <= 0:
        raise InvalidInputError("invalid input", oem_fs_size_4k=oem_fs_size_4k)
    device = device or settings.get_setting("oem_partition")
    image_path = image_path or settings.get_setting("veritysetup_image_path")
    image_tag = image_tag or settings.get_setting("veritysetup_image_tag")

    if ensure_unmounted(device, runner=runner):
        log.info(f"OEM partition {device} unmounted")

    with veritysetup_image(image_path, image_tag, runner=runner) as image_id:
        output = run_checked_command(
            veritysetup_command(image_id, device, oem_fs_size_4k), runner=runner
        )
        log.trace(f"stdout: {output.strip()}")
        root_hash, salt = parse_veritysetup_output(output, oem_fs_size_4k)

    params = VerityParameters(data_blocks=oem_fs_size_4k, root_hash=root_hash, salt=salt)
    log.info(
        f"Hash tree built over {oem_fs_size_4k} blocks of {device}, "
        f"hash offset {params.hash_offset}"
    )
    return params
