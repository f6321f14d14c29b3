"""Backup configuration: defaults, ``key=value`` file handling and clamping."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from backup.types import Destination, SourceRoot

from .paths import ensure_dir, resolve_destination, split_list

__all__ = [
    "BackupConfig",
    "ConfigError",
    "ConfigState",
    "DEFAULT_CONFIG",
    "load_config",
    "parse_interval",
    "read_config_file",
    "save_config",
]

LOGGER = logging.getLogger("worldkeeper.config")

MIN_INTERVAL_MINUTES = 1


class ConfigError(ValueError):
    """Raised when a configuration value is set programmatically with the wrong type."""


# File key -> default. Key names are the on-disk spelling.
DEFAULT_CONFIG: Dict[str, Any] = {
    "backupFolders": "world;world_nether;world_the_end",
    "backupEnabled": True,
    "backupPaths": "backups",
    "backupInterval": "30m",
    "backupNameFormat": "{type}_{date}_{time}",
    "maxBackups": 10,
    "notifyPlayers": True,
    "noticeTime": 3,
    "shutdownDelay": 5,
    "verifyBackup": True,
    "smartBackup": True,
    "requireSignificantChange": True,
    "changeThreshold": 0.01,
    "minChangedFiles": 5,
    "compressionLevel": 3,
    "minBackupSizeMB": 10,
    "debugMode": False,
}

# File key -> dataclass attribute.
_ATTRS: Dict[str, str] = {
    "backupFolders": "backup_folders",
    "backupEnabled": "enabled",
    "backupPaths": "backup_paths",
    "backupInterval": "interval",
    "backupNameFormat": "name_format",
    "maxBackups": "max_backups",
    "notifyPlayers": "notify_players",
    "noticeTime": "notice_seconds",
    "shutdownDelay": "shutdown_delay_seconds",
    "verifyBackup": "verify_backup",
    "smartBackup": "smart_backup",
    "requireSignificantChange": "require_significant_change",
    "changeThreshold": "change_threshold",
    "minChangedFiles": "min_changed_files",
    "compressionLevel": "compression_level",
    "minBackupSizeMB": "min_backup_size_mb",
    "debugMode": "debug",
}

_TRUE = {"true", "yes", "on", "1"}
_FALSE = {"false", "no", "off", "0"}

_UNIT_MINUTES = {"m": 1, "h": 60, "d": 24 * 60}


def parse_interval(text: Optional[str]) -> int:
    """Convert ``30m``, ``2h``, ``1d``, ``1h30m`` into minutes.

    Trailing digits without a unit count as minutes. Unknown characters are
    ignored, and the result is never below one minute.
    """

    total = 0
    digits = ""
    for char in str(text or "").lower():
        if char.isdigit():
            digits += char
        elif char in _UNIT_MINUTES:
            total += int(digits or 0) * _UNIT_MINUTES[char]
            digits = ""
    if digits:
        total += int(digits)
    return max(MIN_INTERVAL_MINUTES, total)


def _clamp(value, low, high=None):
    if value < low:
        return low
    if high is not None and value > high:
        return high
    return value


def _coerce(raw: Any, default: Any) -> Any:
    if isinstance(default, bool):
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in _TRUE:
            return True
        if text in _FALSE:
            return False
        return default
    if isinstance(default, int):
        try:
            return int(str(raw).strip())
        except (TypeError, ValueError):
            return default
    if isinstance(default, float):
        try:
            return float(str(raw).strip())
        except (TypeError, ValueError):
            return default
    return str(raw).strip()


@dataclass(slots=True)
class BackupConfig:
    enabled: bool = True
    interval: str = "30m"
    max_backups: int = 10
    notice_seconds: int = 3
    shutdown_delay_seconds: int = 5
    backup_paths: str = "backups"
    name_format: str = "{type}_{date}_{time}"
    notify_players: bool = True
    verify_backup: bool = True
    smart_backup: bool = True
    compression_level: int = 3
    min_backup_size_mb: int = 10
    require_significant_change: bool = True
    change_threshold: float = 0.01
    min_changed_files: int = 5
    debug: bool = False
    backup_folders: str = "world;world_nether;world_the_end"

    def __post_init__(self) -> None:
        self.clamp()

    # ------------------------------------------------------------------
    def clamp(self) -> "BackupConfig":
        self.max_backups = _clamp(int(self.max_backups), 1)
        self.notice_seconds = _clamp(int(self.notice_seconds), 0, 300)
        self.shutdown_delay_seconds = _clamp(int(self.shutdown_delay_seconds), 1, 60)
        self.compression_level = _clamp(int(self.compression_level), 0, 9)
        self.min_backup_size_mb = _clamp(int(self.min_backup_size_mb), 0)
        self.change_threshold = _clamp(float(self.change_threshold), 0.0, 1.0)
        self.min_changed_files = _clamp(int(self.min_changed_files), 0)
        self.interval = str(self.interval or "").strip() or f"{MIN_INTERVAL_MINUTES}m"
        self.name_format = str(self.name_format or "").strip() or DEFAULT_CONFIG["backupNameFormat"]
        return self

    def update(self, **values: Any) -> "BackupConfig":
        for key, value in values.items():
            if key not in self.__slots__:
                raise ConfigError(f"Unknown config field: {key}")
            setattr(self, key, _coerce(value, getattr(self, key)))
        return self.clamp()

    @property
    def interval_minutes(self) -> int:
        return parse_interval(self.interval)

    @property
    def folder_names(self) -> List[str]:
        return split_list(self.backup_folders)

    @property
    def destination_texts(self) -> List[str]:
        return split_list(self.backup_paths)

    # ------------------------------------------------------------------
    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> "BackupConfig":
        values: Dict[str, Any] = {}
        for key, default in DEFAULT_CONFIG.items():
            if key in payload:
                values[_ATTRS[key]] = _coerce(payload[key], default)
            else:
                values[_ATTRS[key]] = default
        return cls(**values)

    def to_mapping(self) -> Dict[str, Any]:
        return {key: getattr(self, attr) for key, attr in _ATTRS.items()}


def read_config_file(path: Path) -> Dict[str, str]:
    """Parse ``key=value`` lines, ignoring comments, blanks and malformed lines."""

    values: Dict[str, str] = {}
    with open(path, "r", encoding="utf-8") as handle:
        for line in handle:
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            key, sep, value = stripped.partition("=")
            if not sep:
                continue
            values[key.strip()] = value.strip()
    return values


def load_config(path: Path) -> Tuple[BackupConfig, bool]:
    """Return the config at *path* merged over defaults and whether the file existed."""

    try:
        raw = read_config_file(path)
    except FileNotFoundError:
        return BackupConfig(), False
    except (OSError, UnicodeDecodeError) as exc:
        LOGGER.warning("config_read_failed path=%s err=%s", path, exc)
        return BackupConfig(), True
    unknown = sorted(key for key in raw if key not in DEFAULT_CONFIG)
    if unknown:
        LOGGER.info("config_unknown_keys keys=%s", ",".join(unknown))
    return BackupConfig.from_mapping(raw), True


_TEMPLATE = """\
# worldkeeper backup configuration
# Changes take effect after a reload or a restart.

# Folders to back up, relative to the server directory (separate with ;)
backupFolders={backupFolders}

# Enable scheduled backups (true/false)
backupEnabled={backupEnabled}

# Destination directories (separate with ;). Absolute, UNC or relative paths.
backupPaths={backupPaths}

# Interval between scheduled backups (m=minutes, h=hours, d=days, e.g. 1h30m)
backupInterval={backupInterval}

# Archive name template ({{type}}, {{date}}, {{time}}, {{server}})
backupNameFormat={backupNameFormat}

# Maximum archives kept per destination
maxBackups={maxBackups}

# Notify players before and after backups (true/false)
notifyPlayers={notifyPlayers}

# Notice before a manual backup starts (seconds, 0-300)
noticeTime={noticeTime}

# Delay before the server stops after a backup-and-stop (seconds, 1-60)
shutdownDelay={shutdownDelay}

# Verify archive integrity after writing (true/false)
verifyBackup={verifyBackup}

# Skip scheduled backups when nothing changed (true/false)
smartBackup={smartBackup}

# With smart backups, require a significant change (true/false)
requireSignificantChange={requireSignificantChange}

# Changed-bytes ratio counted as significant (0-1)
changeThreshold={changeThreshold}

# Changed files required alongside the ratio
minChangedFiles={minChangedFiles}

# Compression level (0-9)
compressionLevel={compressionLevel}

# Changed megabytes that are always significant
minBackupSizeMB={minBackupSizeMB}

# Verbose logging (true/false)
debugMode={debugMode}
"""


def _render(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def save_config(path: Path, config: BackupConfig) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    values = {key: _render(value) for key, value in config.to_mapping().items()}
    with open(path, "w", encoding="utf-8") as handle:
        handle.write(_TEMPLATE.format(**values))


@dataclass(slots=True)
class ConfigState:
    """Config plus the source roots and destinations derived from it."""

    config: BackupConfig
    base_dir: Path
    roots: List[SourceRoot] = field(default_factory=list)
    destinations: List[Destination] = field(default_factory=list)

    @classmethod
    def resolve(cls, config: BackupConfig, base_dir: Path) -> "ConfigState":
        state = cls(config=config, base_dir=Path(base_dir))
        state.refresh()
        return state

    def refresh(self) -> None:
        self.refresh_roots()
        self.destinations = list(_resolve_destinations(self.config.destination_texts, self.base_dir))

    def refresh_roots(self) -> List[SourceRoot]:
        """Re-check which source folders exist; returns the available ones."""

        self.roots = list(_resolve_roots(self.config.folder_names, self.base_dir))
        return self.enabled_roots

    def available_roots(self) -> List[SourceRoot]:
        """Like :meth:`refresh_roots` but leaves ``roots`` untouched."""

        return [root for root in _resolve_roots(self.config.folder_names, self.base_dir) if root.enabled]

    @property
    def enabled_roots(self) -> List[SourceRoot]:
        return [root for root in self.roots if root.enabled]


def _resolve_roots(names: Iterable[str], base_dir: Path) -> Iterable[SourceRoot]:
    seen = set()
    for name in names:
        if name in seen:
            continue
        seen.add(name)
        path = (base_dir / name).absolute()
        enabled = path.is_dir()
        if not enabled:
            LOGGER.debug("source_root_missing name=%s path=%s", name, path)
        yield SourceRoot(name=name, path=path, enabled=enabled)


def _resolve_destinations(texts: List[str], base_dir: Path) -> Iterable[Destination]:
    seen = set()
    for text in texts or [""]:
        path = resolve_destination(text, base_dir).absolute()
        if path in seen:
            continue
        seen.add(path)
        if ensure_dir(path) is None:
            LOGGER.warning("destination_create_failed path=%s", path)
        yield Destination(path=path)
