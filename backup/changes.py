"""Snapshot diffing and the significant-change decision."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List

from .types import ChangeReason, ChangeVerdict, Snapshot

_MAX_SAMPLES = 10
_MB = 1024 * 1024


@dataclass(frozen=True, slots=True)
class ChangePolicy:
    require_significant: bool = False
    change_ratio_threshold: float = 0.01
    min_changed_files: int = 5
    min_size_threshold_bytes: int = 10 * _MB
    collect_samples: bool = False

    @classmethod
    def from_config(cls, config: Any) -> "ChangePolicy":
        return cls(
            require_significant=bool(config.require_significant_change),
            change_ratio_threshold=float(config.change_threshold),
            min_changed_files=int(config.min_changed_files),
            min_size_threshold_bytes=int(config.min_backup_size_mb) * _MB,
            collect_samples=bool(config.debug),
        )


def detect(previous: Snapshot, current: Snapshot, policy: ChangePolicy) -> ChangeVerdict:
    if previous.is_empty:
        return ChangeVerdict(
            is_significant=True,
            changed_bytes=0,
            changed_file_count=0,
            reason=ChangeReason.FIRST_OBSERVATION,
            size_ratio=1.0,
        )

    samples: List[str] = []
    changed_bytes = 0
    new_files = modified_files = deleted_files = 0

    def note(line: str) -> None:
        if policy.collect_samples and len(samples) < _MAX_SAMPLES:
            samples.append(line)

    for path, record in current.files.items():
        before = previous.files.get(path)
        if before is None:
            new_files += 1
            changed_bytes += record.size_bytes
            note(f"[new] {path}")
        elif before.last_modified != record.last_modified or before.size_bytes != record.size_bytes:
            modified_files += 1
            changed_bytes += abs(record.size_bytes - before.size_bytes)
            note(f"[modified] {path} ({before.size_bytes} -> {record.size_bytes} bytes)")

    for path in previous.files:
        if path not in current.files:
            # Deletions count towards the file total only.
            deleted_files += 1
            note(f"[deleted] {path}")

    changed_count = new_files + modified_files + deleted_files
    if previous.total_size_bytes > 0:
        size_ratio = changed_bytes / previous.total_size_bytes
    else:
        size_ratio = 1.0

    if policy.require_significant:
        significant = changed_bytes >= policy.min_size_threshold_bytes or (
            size_ratio >= policy.change_ratio_threshold and changed_count >= policy.min_changed_files
        )
        reason = ChangeReason.SIGNIFICANT_CHANGE if significant else ChangeReason.INSUFFICIENT_CHANGE
    else:
        significant = changed_count > 0
        reason = ChangeReason.CHANGES_DETECTED if significant else ChangeReason.NO_CHANGE

    return ChangeVerdict(
        is_significant=significant,
        changed_bytes=changed_bytes,
        changed_file_count=changed_count,
        reason=reason,
        size_ratio=size_ratio,
        new_files=new_files,
        modified_files=modified_files,
        deleted_files=deleted_files,
        samples=tuple(samples),
    )


__all__ = ["ChangePolicy", "detect"]
