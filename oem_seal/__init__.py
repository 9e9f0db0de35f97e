"""Extend and dm-verity seal the OEM partition of a disk image."""

from .__version__ import __version__

__all__ = ["__version__"]
