from __future__ import annotations

import os
from pathlib import Path
from typing import List, Optional

__all__ = [
    "CONFIG_FILENAME",
    "STATE_FILENAME",
    "ensure_dir",
    "get_config_path",
    "get_logs_dir",
    "get_state_path",
    "is_absolute_destination",
    "is_unc",
    "resolve_destination",
    "split_list",
]

CONFIG_FILENAME = "worldkeeper.conf"
STATE_FILENAME = "world_state.dat"
DEFAULT_DESTINATION = "backups"

_LONG_PATH_PREFIX = "\\\\?\\"
_UNC_PREFIX = "\\\\"
_LONG_UNC_PREFIX = "\\\\?\\UNC\\"


def is_unc(path: str | os.PathLike[str]) -> bool:
    """Return True if *path* points to a UNC network location."""

    text = str(path)
    if text.startswith(_LONG_UNC_PREFIX):
        return True
    if text.startswith(_LONG_PATH_PREFIX):
        return text[len(_LONG_PATH_PREFIX) :].startswith(_UNC_PREFIX)
    return text.startswith(_UNC_PREFIX)


def is_absolute_destination(text: str) -> bool:
    # Windows drive paths are absolute even when parsed on POSIX hosts.
    if text.startswith("/") or is_unc(text):
        return True
    return len(text) > 2 and text[1] == ":" and text[2] in "\\/"


def split_list(value: str) -> List[str]:
    """Split a ``;`` separated config value, dropping blanks."""

    return [part.strip() for part in str(value or "").split(";") if part.strip()]


def resolve_destination(text: str, base_dir: Path) -> Path:
    """Resolve a configured destination against the host's base directory."""

    cleaned = str(text or "").strip()
    if not cleaned:
        return Path(base_dir) / DEFAULT_DESTINATION
    expanded = os.path.expandvars(os.path.expanduser(cleaned))
    if is_absolute_destination(expanded):
        return Path(expanded)
    return Path(base_dir) / expanded


def ensure_dir(path: Path) -> Optional[Path]:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return None
    return path


def get_config_path(config_dir: Path) -> Path:
    return Path(config_dir) / CONFIG_FILENAME


def get_state_path(config_dir: Path) -> Path:
    return Path(config_dir) / STATE_FILENAME


def get_logs_dir(config_dir: Path) -> Path:
    return Path(config_dir) / "logs"
