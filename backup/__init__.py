"""Change-aware archive backups of directory trees."""
from __future__ import annotations

from .api import BackupService
from .changes import ChangePolicy, detect
from .errors import BackupError
from .scanner import scan
from .types import ArchiveResult, ChangeVerdict, Destination, RunReport, Snapshot, SourceRoot

__all__ = [
    "ArchiveResult",
    "BackupError",
    "BackupService",
    "ChangePolicy",
    "ChangeVerdict",
    "Destination",
    "RunReport",
    "Snapshot",
    "SourceRoot",
    "detect",
    "scan",
]
