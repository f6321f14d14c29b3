"""Common dataclasses shared across backup modules."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Dict, List, Mapping, Optional

LOCK_MARKER = "session.lock"
ARCHIVE_SUFFIX = ".zip"


@dataclass(frozen=True, slots=True)
class SourceRoot:
    """One directory tree included in every archive."""

    name: str
    path: Path
    enabled: bool = True


@dataclass(frozen=True, slots=True)
class Destination:
    path: Path


@dataclass(frozen=True, slots=True)
class FileRecord:
    relative_path: str
    last_modified: int
    size_bytes: int


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Point-in-time inventory of every tracked file.

    ``captured_at`` and ``FileRecord.last_modified`` are epoch milliseconds.
    """

    captured_at: int
    files: Mapping[str, FileRecord] = field(default_factory=dict)
    total_size_bytes: int = 0
    total_file_count: int = 0
    folder_hashes: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "Snapshot":
        return cls(captured_at=0)

    @property
    def is_empty(self) -> bool:
        return self.captured_at == 0 and not self.files


class ChangeReason(str, Enum):
    FIRST_OBSERVATION = "first_observation"
    SIGNIFICANT_CHANGE = "significant_change"
    INSUFFICIENT_CHANGE = "insufficient_change"
    CHANGES_DETECTED = "changes_detected"
    NO_CHANGE = "no_change"


@dataclass(frozen=True, slots=True)
class ChangeVerdict:
    is_significant: bool
    changed_bytes: int
    changed_file_count: int
    reason: ChangeReason
    size_ratio: float = 0.0
    new_files: int = 0
    modified_files: int = 0
    deleted_files: int = 0
    samples: tuple = ()


@dataclass(slots=True)
class ArchiveResult:
    """Outcome of one destination within a run."""

    destination: Path
    archive_name: Optional[str] = None
    size_bytes: int = 0
    elapsed_seconds: float = 0.0
    ok: bool = False
    verified: bool = False
    attempts: int = 0
    error: Optional[str] = None

    @property
    def archive_path(self) -> Optional[Path]:
        if not self.archive_name:
            return None
        return self.destination / self.archive_name


@dataclass(frozen=True, slots=True)
class ProgressUpdate:
    files_processed: int
    files_total: int
    bytes_processed: int

    @property
    def percent(self) -> int:
        if self.files_processed <= 0:
            return 0
        if self.files_total <= 0:
            return 100
        return max(0, min(100, self.files_processed * 100 // self.files_total))

    @property
    def processed_mb(self) -> int:
        return self.bytes_processed // (1024 * 1024)


class RunOutcome(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(slots=True)
class RunReport:
    run_id: int
    manual: bool
    outcome: RunOutcome
    started_at: datetime
    finished_at: datetime
    results: List[ArchiveResult] = field(default_factory=list)
    verdict: Optional[ChangeVerdict] = None
    error: Optional[str] = None
    shutdown_requested: bool = False

    @property
    def elapsed_seconds(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()

    def summary(self) -> str:
        if self.outcome is RunOutcome.FAILED and not self.results:
            return f"Backup failed: {self.error or 'unknown error'}"
        lines = []
        for index, result in enumerate(self.results, start=1):
            if result.ok:
                size_mb = result.size_bytes // (1024 * 1024)
                lines.append(
                    f"Destination {index}: {result.archive_name} ({size_mb} MB, {result.elapsed_seconds:.1f}s)"
                )
            else:
                lines.append(f"Destination {index} failed: {result.error}")
        head = {
            RunOutcome.SUCCESS: "Backup completed",
            RunOutcome.PARTIAL: "Backup completed with failures",
            RunOutcome.FAILED: "Backup failed",
        }[self.outcome]
        return "\n".join([head, *lines])


@dataclass(frozen=True, slots=True)
class BackupDescriptor:
    name: str
    path: Path
    size_bytes: int
    modified_at: datetime


@dataclass(slots=True)
class RetentionSummary:
    removed: List[str]
    kept: List[str]
    failed: Dict[str, str] = field(default_factory=dict)


__all__ = [
    "ARCHIVE_SUFFIX",
    "ArchiveResult",
    "BackupDescriptor",
    "ChangeReason",
    "ChangeVerdict",
    "Destination",
    "FileRecord",
    "LOCK_MARKER",
    "ProgressUpdate",
    "RetentionSummary",
    "RunOutcome",
    "RunReport",
    "SourceRoot",
    "Snapshot",
]
