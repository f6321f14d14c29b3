"""Directory-state scanning for change detection."""
from __future__ import annotations

import hashlib
import os
import time
from pathlib import Path
from typing import Callable, Dict, Iterable, Iterator, Optional, Tuple

from .types import LOCK_MARKER, FileRecord, Snapshot, SourceRoot


def _now_ms() -> int:
    return int(time.time() * 1000)


def _mtime_ms(stat_result: os.stat_result) -> int:
    return stat_result.st_mtime_ns // 1_000_000


def iter_root_files(root: SourceRoot) -> Iterator[Tuple[Path, str]]:
    """Yield ``(absolute path, "<root>/<relative>")`` for every archivable file.

    Directories are visited in sorted order; the lock marker is never yielded.
    A root that no longer exists yields nothing.
    """

    base = Path(root.path)
    if not root.enabled or not base.is_dir():
        return
    for dirpath, dirnames, filenames in os.walk(base):
        dirnames.sort()
        current = Path(dirpath)
        rel_dir = current.relative_to(base).as_posix()
        prefix = root.name if rel_dir == "." else f"{root.name}/{rel_dir}"
        for name in sorted(filenames):
            if name == LOCK_MARKER:
                continue
            path = current / name
            # Only regular files; opening a pipe would block the archiver.
            if not path.is_file():
                continue
            yield path, f"{prefix}/{name}"


def structural_hash(folder: Path) -> str:
    """Hash of a folder's immediate children (name, mtime, size for files)."""

    digest = hashlib.sha256()
    try:
        children = sorted(Path(folder).iterdir(), key=lambda item: item.name)
    except OSError:
        return ""
    for child in children:
        if child.name == LOCK_MARKER:
            continue
        try:
            info = child.stat()
        except OSError:
            continue
        digest.update(child.name.encode("utf-8", "surrogateescape"))
        digest.update(str(_mtime_ms(info)).encode("ascii"))
        if child.is_file():
            digest.update(str(info.st_size).encode("ascii"))
    return digest.hexdigest()[:16]


def scan(
    roots: Iterable[SourceRoot],
    *,
    structural_hashes: bool = False,
    clock: Optional[Callable[[], int]] = None,
) -> Snapshot:
    files: Dict[str, FileRecord] = {}
    folder_hashes: Dict[str, str] = {}
    total_size = 0
    for root in roots:
        if not root.enabled or not Path(root.path).is_dir():
            continue
        if structural_hashes:
            folder_hashes[root.name] = structural_hash(root.path)
        for path, relative in iter_root_files(root):
            try:
                info = path.stat()
            except OSError:
                # Vanished between listing and stat.
                continue
            files[relative] = FileRecord(
                relative_path=relative,
                last_modified=_mtime_ms(info),
                size_bytes=info.st_size,
            )
            total_size += info.st_size
    return Snapshot(
        captured_at=(clock or _now_ms)(),
        files=files,
        total_size_bytes=total_size,
        total_file_count=len(files),
        folder_hashes=folder_hashes,
    )


def count_files(roots: Iterable[SourceRoot]) -> int:
    return sum(1 for root in roots for _ in iter_root_files(root))


__all__ = ["count_files", "iter_root_files", "scan", "structural_hash"]
