"""Error hierarchy for backup operations."""
from __future__ import annotations


class BackupError(RuntimeError):
    """Base exception for backup related failures."""


class BackupVerificationError(BackupError):
    """Raised when an archive still fails verification after its retry."""


class DestinationError(BackupError):
    """Raised when a destination directory or archive cannot be written."""


class SnapshotStateError(BackupError):
    """Raised when the persisted snapshot cannot be written."""


__all__ = ["BackupError", "BackupVerificationError", "DestinationError", "SnapshotStateError"]
