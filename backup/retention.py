"""Retention enforcement and listing of archives per destination."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Tuple

from .logs import BackupLogger
from .types import ARCHIVE_SUFFIX, BackupDescriptor, RetentionSummary

LIST_LIMIT = 10


@dataclass(slots=True)
class _ArchiveMeta:
    path: Path
    modified: float
    size_bytes: int


def _load_archives(destination: Path) -> List[_ArchiveMeta]:
    items: List[_ArchiveMeta] = []
    try:
        children = list(Path(destination).iterdir())
    except OSError:
        return items
    for child in children:
        if child.suffix.lower() != ARCHIVE_SUFFIX:
            continue
        try:
            if not child.is_file():
                continue
            info = child.stat()
        except OSError:
            continue
        items.append(_ArchiveMeta(path=child, modified=info.st_mtime, size_bytes=info.st_size))
    items.sort(key=lambda meta: (meta.modified, meta.path.name))
    return items


def rotate(destination: Path, max_count: int, *, logger: BackupLogger) -> RetentionSummary:
    """Delete the oldest archives so at most *max_count* remain."""

    items = _load_archives(destination)
    excess = len(items) - max(1, int(max_count))
    doomed = items[:excess] if excess > 0 else []

    removed: List[str] = []
    failed: Dict[str, str] = {}
    for meta in doomed:
        try:
            meta.path.unlink()
        except FileNotFoundError:
            removed.append(meta.path.name)
        except OSError as exc:
            failed[meta.path.name] = str(exc)
            logger.error("backup_remove_failed", path=str(meta.path), error=str(exc))
        else:
            removed.append(meta.path.name)
            logger.debug("backup_removed", path=str(meta.path), reason="retention")

    kept = [meta.path.name for meta in items if meta.path.name not in removed]
    logger.event(
        event="retention_applied",
        phase="retention",
        ok=not failed,
        destination=str(destination),
        removed=len(removed),
        kept=len(kept),
    )
    return RetentionSummary(removed=removed, kept=kept, failed=failed)


def list_archives(destination: Path, limit: int = LIST_LIMIT) -> Tuple[List[BackupDescriptor], int]:
    """Newest archives first, capped at *limit*, plus how many were left out."""

    items = list(reversed(_load_archives(destination)))
    shown = items[: max(0, int(limit))]
    descriptors = [
        BackupDescriptor(
            name=meta.path.name[: -len(ARCHIVE_SUFFIX)],
            path=meta.path,
            size_bytes=meta.size_bytes,
            modified_at=datetime.fromtimestamp(meta.modified),
        )
        for meta in shown
    ]
    return descriptors, len(items) - len(shown)


__all__ = ["LIST_LIMIT", "list_archives", "rotate"]
