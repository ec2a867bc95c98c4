"""Persisted tunables for the planner and the workflow sequencer.

Values live in a flat JSON object. Keys missing from the file fall back to
``DEFAULT_SETTINGS``; an unreadable file is treated as empty.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, TypeVar

SETTINGS_PATH = Path(
    os.environ.get(
        "DRIVEASSIST_SETTINGS_PATH",
        Path.home() / ".config" / "driveassist" / "settings.json",
    )
)

DEFAULT_SECTOR_SIZE = 512
DEFAULT_QUERY_TIMEOUT_SECONDS = 10
DEFAULT_UNMOUNT_RETRY_DELAY = 2.0
DEFAULT_SETTLE_DELAY = 2.0
DEFAULT_REFRESH_DELAY_QUICK = 3.5
DEFAULT_REFRESH_DELAY_SLOW = 13.5

DEFAULT_SETTINGS: dict[str, Any] = {
    "default_sector_size": DEFAULT_SECTOR_SIZE,
    "query_timeout_seconds": DEFAULT_QUERY_TIMEOUT_SECONDS,
    "unmount_retry_delay_seconds": DEFAULT_UNMOUNT_RETRY_DELAY,
    "settle_delay_seconds": DEFAULT_SETTLE_DELAY,
    "refresh_delay_quick_seconds": DEFAULT_REFRESH_DELAY_QUICK,
    "refresh_delay_slow_seconds": DEFAULT_REFRESH_DELAY_SLOW,
    "scratch_dir": "/tmp",
    "grub_mount_dir": "/mnt/driveassist_grub",
}

T = TypeVar("T")


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)


settings_store = SettingsStore()


def _read_file(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return {}
    return data if isinstance(data, dict) else {}


def load_settings() -> None:
    """Reset to the defaults, then overlay whatever the settings file holds."""
    settings_store.values = {**DEFAULT_SETTINGS, **_read_file(SETTINGS_PATH)}


def save_settings() -> None:
    """Write the current values, replacing the file in one step."""
    SETTINGS_PATH.parent.mkdir(parents=True, exist_ok=True)
    staging = SETTINGS_PATH.with_name(SETTINGS_PATH.name + ".tmp")
    staging.write_text(
        json.dumps(settings_store.values, indent=2, sort_keys=True),
        encoding="utf-8",
    )
    staging.replace(SETTINGS_PATH)


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def set_setting(key: str, value: Any) -> None:
    settings_store.values[key] = value
    save_settings()


def _coerced(key: str, default: T, convert: Callable[[Any], T]) -> T:
    try:
        return convert(get_setting(key, default))
    except (TypeError, ValueError):
        return default


def get_float(key: str, default: float = 0.0) -> float:
    """Numeric setting; junk in the file yields ``default``."""
    return _coerced(key, default, float)


def get_int(key: str, default: int = 0) -> int:
    return _coerced(key, default, int)


load_settings()
