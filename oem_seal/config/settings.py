"""Device paths and tool settings.

Values come from, in increasing priority: DEFAULT_SETTINGS, the JSON file at
SETTINGS_PATH, and ``OEM_SEAL_<KEY>`` environment variables (e.g.
``OEM_SEAL_EFI_PARTITION=/dev/vda12``), which build pipelines use to point
the tool at a different disk without writing a settings file.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from oem_seal.logging import LoggerFactory


SETTINGS_PATH = Path(
    os.environ.get(
        "OEM_SEAL_SETTINGS_PATH",
        Path.home() / ".config" / "oem-seal" / "settings.json",
    )
)
ENV_PREFIX = "OEM_SEAL_"

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_IMAGE_SIZE_GB = 10
DEFAULT_OEM_SIZE_MB = 16
DEFAULT_EFI_PARTITION_NUMBER = 12

DEFAULT_SETTINGS: dict[str, Any] = {
    "oem_partition": "/dev/sda8",
    "efi_partition": "/dev/sda12",
    "efi_partition_number": DEFAULT_EFI_PARTITION_NUMBER,
    "grub_config_path": "efi/boot/grub.cfg",
    "verity_device_name": "oemroot",
    "veritysetup_image_path": "./veritysetup.img",
    "veritysetup_image_tag": "veritysetup:veritysetup",
    "veritysetup_container_name": "veritysetup",
    "image_size_gb": DEFAULT_IMAGE_SIZE_GB,
    "default_oem_size_mb": DEFAULT_OEM_SIZE_MB,
    "use_sudo": False,
}

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def _coerce(raw: str, default: Any) -> Any:
    if isinstance(default, bool):
        return raw.strip().lower() in _TRUE_VALUES
    if isinstance(default, int):
        return int(raw)
    return raw


def _env_overrides(environ: Mapping[str, str]) -> dict[str, Any]:
    overrides = {}
    for key, default in DEFAULT_SETTINGS.items():
        raw = environ.get(ENV_PREFIX + key.upper())
        if raw is None:
            continue
        try:
            overrides[key] = _coerce(raw, default)
        except ValueError:
            LoggerFactory.for_system().warning(
                f"Ignoring {ENV_PREFIX + key.upper()}={raw!r}: expected an integer"
            )
    return overrides


def load_settings(environ: Mapping[str, str] | None = None) -> None:
    settings_store.values = dict(DEFAULT_SETTINGS)
    if SETTINGS_PATH.exists():
        try:
            data = json.loads(SETTINGS_PATH.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as error:
            LoggerFactory.for_system().warning(
                f"Ignoring unreadable settings file {SETTINGS_PATH}: {error}"
            )
            data = None
        if isinstance(data, dict):
            settings_store.values.update(data)
    settings_store.values.update(_env_overrides(os.environ if environ is None else environ))


def save_settings() -> None:
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    SETTINGS_PATH.write_text(
        json.dumps(settings_store.values, indent=2, sort_keys=True),
        encoding="utf-8",
    )


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def set_setting(key: str, value: Any) -> None:
    settings_store.values[key] = value
    save_settings()


def get_bool(key: str, default: bool = False) -> bool:
    value = get_setting(key, default)
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_VALUES
    return bool(value)


def get_int(key: str, default: int = 0) -> int:
    value = get_setting(key, default)
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


load_settings()
