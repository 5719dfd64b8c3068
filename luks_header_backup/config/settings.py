"""Settings storage for backup configuration."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any


SETTINGS_PATH = Path(
    os.environ.get(
        "LUKS_HEADER_BACKUP_SETTINGS_PATH",
        "/etc/luks-header-backup/settings.json",
    )
)

# Default values - use these constants instead of hardcoding values elsewhere
DEFAULT_COMMAND_TIMEOUT_SECONDS = 300
DEFAULT_SCP_OPTIONS = ["-o", "StrictHostKeyChecking=yes", "-o", "BatchMode=yes"]

DEFAULT_SETTINGS: dict[str, Any] = {
    "command_timeout_seconds": DEFAULT_COMMAND_TIMEOUT_SECONDS,
    "scp_options": list(DEFAULT_SCP_OPTIONS),
    "remote_paths": [],
    "backup_paths": [],
    "work_dir": None,
    "log_dir": None,
}


@dataclass
class SettingsStore:
    values: dict[str, Any] = field(default_factory=dict)
    path: Path | None = None


settings_store = SettingsStore()


def load_settings(path: Path | None = None) -> None:
    settings_path = path or SETTINGS_PATH
    settings_store.values = json.loads(json.dumps(DEFAULT_SETTINGS))
    settings_store.path = settings_path
    if not settings_path.exists():
        return
    try:
        data = json.loads(settings_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError):
        return
    if isinstance(data, dict):
        settings_store.values.update(data)


def get_setting(key: str, default: Any | None = None) -> Any:
    return settings_store.values.get(key, default)


def get_int(key: str, default: int) -> int:
    try:
        return int(get_setting(key, default))
    except (TypeError, ValueError):
        return default


def get_list(key: str) -> list[str]:
    value = get_setting(key)
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


def get_path(key: str) -> Path | None:
    value = get_setting(key)
    return Path(value) if value else None


load_settings()
