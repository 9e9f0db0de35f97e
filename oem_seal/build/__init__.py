"""Disk budget validation and the OEM preparation pipeline."""
