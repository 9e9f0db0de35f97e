"""Sealing the OEM partition with dm-verity.

Main Functions:
    - seal_oem_partition(): Hash tree, PARTUUID lookup and grub.cfg patch
    - seal_partition(): Run veritysetup and return VerityParameters
    - append_verity_entry(): Add the OEM verity device to grub.cfg
"""

from .boot_config import append_verity_entry, parse_dm_table, patch_boot_config_text
from .seal import seal_oem_partition
from .verity import parse_veritysetup_output, seal_partition

__all__ = [
    "append_verity_entry",
    "parse_dm_table",
    "parse_veritysetup_output",
    "patch_boot_config_text",
    "seal_oem_partition",
    "seal_partition",
]
