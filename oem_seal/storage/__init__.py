"""Partition table, mount and command helpers for the OEM partition."""
