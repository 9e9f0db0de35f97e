import argparse
import sys

from oem_seal.build.budget import validate_oem_budget
from oem_seal.build.pipeline import prepare_oem_partition
from oem_seal.logging import LoggerFactory, setup_logging
from oem_seal.sealing import seal_oem_partition
from oem_seal.storage.exceptions import StorageError
from oem_seal.storage.extend_oem import extend_oem_partition


OEM_SIZE_HELP = (
    "Size of the new OEM partition, can be a number with unit like 10G, 10M, "
    "10K or 10B, or without unit indicating the number of 512B sectors."
)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="oem-seal",
        description="Extend and dm-verity seal the OEM partition of a disk image",
    )
    parser.add_argument("-d", "--debug", action="store_true", help="Enable verbose debug output")
    parser.add_argument("--trace", action="store_true", help="Also log raw tool output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    extend = subparsers.add_parser("extend-oem", help="Grow the OEM partition")
    extend.add_argument("disk", help="Disk device, e.g. /dev/sda")
    extend.add_argument("state_part_num", type=int, help="Stateful partition number")
    extend.add_argument("oem_part_num", type=int, help="OEM partition number")
    extend.add_argument("oem_size", help=OEM_SIZE_HELP)

    seal = subparsers.add_parser("seal-oem", help="Build the OEM hash tree and patch grub.cfg")
    seal.add_argument("oem_fs_size_4k", type=int, help="OEM data region in 4K blocks")
    seal.add_argument("--oem-partition", default=None, help="OEM partition node")
    seal.add_argument("--efi-partition", default=None, help="EFI partition node holding grub.cfg")

    budget = subparsers.add_parser("check-budget", help="Validate OEM and disk sizes")
    finish = subparsers.add_parser("finish", help="Validate, extend and optionally seal")
    finish.add_argument("disk", help="Disk device, e.g. /dev/sda")
    finish.add_argument("state_part_num", type=int, help="Stateful partition number")
    finish.add_argument("oem_part_num", type=int, help="OEM partition number")
    finish.add_argument(
        "--efi-part-num",
        type=int,
        default=None,
        help="EFI partition number holding grub.cfg (default from settings)",
    )
    for sub in (budget, finish):
        sub.add_argument("--oem-size", default="", help=OEM_SIZE_HELP)
        sub.add_argument(
            "--disk-size-gb", type=int, default=0, help="Disk size the image is built on, in GB"
        )
        sub.add_argument("--seal-oem", action="store_true", help="Seal the OEM partition")
        sub.add_argument("--image-size-gb", type=int, default=None, help="Source image size in GB")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    setup_logging(debug=args.debug, trace=args.trace)
    log = LoggerFactory.for_system()

    try:
        if args.command == "extend-oem":
            extend_oem_partition(
                args.disk, args.state_part_num, args.oem_part_num, args.oem_size
            )
        elif args.command == "seal-oem":
            seal_oem_partition(
                args.oem_fs_size_4k,
                oem_partition=args.oem_partition,
                efi_partition=args.efi_partition,
            )
        elif args.command == "check-budget":
            budget = validate_oem_budget(
                args.oem_size, args.seal_oem, args.disk_size_gb, args.image_size_gb
            )
            log.info(
                f"oem_size={budget.oem_size} oem_fs_size_4k={budget.oem_fs_size_4k} "
                f"required_disk_size_gb={budget.required_disk_size_gb}"
            )
        elif args.command == "finish":
            prepare_oem_partition(
                args.disk,
                args.state_part_num,
                args.oem_part_num,
                args.oem_size,
                args.seal_oem,
                args.disk_size_gb,
                image_size_gb=args.image_size_gb,
                efi_index=args.efi_part_num,
            )
    except StorageError as error:
        log.error(str(error))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
