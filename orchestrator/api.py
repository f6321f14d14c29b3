"""Result types and response schemas handed back to the host."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from backup.types import ChangeVerdict


class BackupState(str, Enum):
    IDLE = "idle"
    NOTICE_WAIT = "notice_wait"
    SCANNING = "scanning"
    BUILDING = "building"
    VERIFYING = "verifying"
    ROTATING = "rotating"
    COMPLETED = "completed"
    FAILED = "failed"
    SHUTDOWN_PENDING = "shutdown_pending"


class ResultCode(str, Enum):
    DISABLED = "disabled"
    SKIPPED = "skipped"
    NOTICE = "notice"
    STARTED = "started"
    RELOADED = "reloaded"
    RELOAD_FAILED = "reload_failed"
    CONFIG_UPDATED = "config_updated"


@dataclass(slots=True)
class OperationResult:
    """Structured answer to a host call; ``message`` is an English fallback."""

    code: ResultCode
    message: str
    verdict: Optional[ChangeVerdict] = None
    delay_seconds: int = 0
    data: Dict[str, Any] = field(default_factory=dict)


class BackupEntry(BaseModel):
    name: str = Field(..., description="Archive file name without the .zip suffix.")
    size_bytes: int = Field(..., ge=0)
    modified_at: datetime = Field(..., description="Archive modification time (local).")


class DestinationListing(BaseModel):
    destination: str
    backups: List[BackupEntry] = Field(default_factory=list, description="Newest first, at most ten.")
    remaining: int = Field(0, ge=0, description="Archives present but not listed.")


class ProgressInfo(BaseModel):
    files_processed: int = 0
    files_total: int = 0
    bytes_processed: int = 0
    percent: int = Field(0, ge=0, le=100)


class DestinationOutcome(BaseModel):
    destination: str
    ok: bool
    archive_name: Optional[str] = None
    size_bytes: int = 0
    elapsed_seconds: float = 0.0
    verified: bool = False
    attempts: int = 0
    error: Optional[str] = None


class LastRunInfo(BaseModel):
    run_id: int
    manual: bool
    outcome: str
    started_at: datetime
    finished_at: datetime
    error: Optional[str] = None
    destinations: List[DestinationOutcome] = Field(default_factory=list)


class StatusResponse(BaseModel):
    state: BackupState
    enabled: bool
    interval: str
    interval_minutes: int
    next_run_at: Optional[datetime] = None
    max_backups: int
    compression_level: int
    verify_backup: bool
    notify_players: bool
    notice_seconds: int
    shutdown_delay_seconds: int
    smart_backup: bool
    require_significant_change: bool
    change_threshold: float
    min_changed_files: int
    min_backup_size_mb: int
    debug: bool
    source_roots: Dict[str, bool] = Field(default_factory=dict, description="Root name to availability.")
    destinations: List[str] = Field(default_factory=list)
    snapshot_captured_at: Optional[datetime] = None
    snapshot_total_files: int = 0
    snapshot_total_bytes: int = 0
    progress: ProgressInfo = Field(default_factory=ProgressInfo)
    last_run: Optional[LastRunInfo] = None


__all__ = [
    "BackupEntry",
    "BackupState",
    "DestinationListing",
    "DestinationOutcome",
    "LastRunInfo",
    "OperationResult",
    "ProgressInfo",
    "ResultCode",
    "StatusResponse",
]
