"""Build compressed archives of the source roots."""
from __future__ import annotations

import os
import re
import stat
import threading
import time
import zipfile
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from .errors import DestinationError
from .logs import BackupLogger
from .scanner import count_files
from .types import ARCHIVE_SUFFIX, LOCK_MARKER, ProgressUpdate, SourceRoot

PROGRESS_EVERY = 100

_UNSAFE_NAME = re.compile(r"[\\/:*?\"<>|]+")

ProgressCallback = Callable[[ProgressUpdate], None]


class ProgressTracker:
    """Files/bytes counters shared between the worker and status readers."""

    def __init__(self, callback: Optional[ProgressCallback] = None, *, every: int = PROGRESS_EVERY) -> None:
        self._lock = threading.Lock()
        self._callback = callback
        self._every = max(1, int(every))
        self._files = 0
        self._bytes = 0
        self._total = 0

    def reset(self, total_files: int) -> None:
        with self._lock:
            self._files = 0
            self._bytes = 0
            self._total = max(0, int(total_files))

    def add_bytes(self, count: int) -> None:
        with self._lock:
            self._bytes += int(count)

    def file_done(self) -> None:
        with self._lock:
            self._files += 1
            update = self._snapshot_locked() if self._files % self._every == 0 else None
        if update is not None and self._callback is not None:
            self._callback(update)

    def snapshot(self) -> ProgressUpdate:
        with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> ProgressUpdate:
        return ProgressUpdate(files_processed=self._files, files_total=self._total, bytes_processed=self._bytes)


def archive_name_for(template: str, *, manual: bool, now: Optional[datetime] = None, server: str = "server") -> str:
    moment = now or datetime.now()
    name = (
        template.replace("{type}", "manual" if manual else "auto")
        .replace("{date}", moment.strftime("%Y-%m-%d"))
        .replace("{time}", moment.strftime("%H-%M-%S"))
        .replace("{server}", server)
    )
    name = _UNSAFE_NAME.sub("_", name).strip(" .")
    return name or moment.strftime("backup_%Y-%m-%d_%H-%M-%S")


def unique_archive_path(destination: Path, name: str) -> Path:
    candidate = destination / f"{name}{ARCHIVE_SUFFIX}"
    counter = 1
    while candidate.exists():
        candidate = destination / f"{name}_{counter}{ARCHIVE_SUFFIX}"
        counter += 1
    return candidate


def _write_tree(
    archive: zipfile.ZipFile,
    root: SourceRoot,
    *,
    tracker: ProgressTracker,
    logger: BackupLogger,
) -> None:
    base = Path(root.path)
    archive.write(base, f"{root.name}/")
    for dirpath, dirnames, filenames in os.walk(base):
        dirnames.sort()
        current = Path(dirpath)
        rel_dir = current.relative_to(base).as_posix()
        prefix = root.name if rel_dir == "." else f"{root.name}/{rel_dir}"
        for name in dirnames:
            try:
                archive.write(current / name, f"{prefix}/{name}/")
            except OSError as exc:
                logger.warning("directory_entry_skipped", path=str(current / name), error=str(exc))
        for name in sorted(filenames):
            if name == LOCK_MARKER:
                continue
            source = current / name
            try:
                info = source.stat()
                if not stat.S_ISREG(info.st_mode):
                    continue
                archive.write(source, f"{prefix}/{name}")
                tracker.add_bytes(info.st_size)
            except OSError as exc:
                # Usually a file held open exclusively by the server.
                logger.debug("locked_file_skipped", path=str(source), error=str(exc))
            tracker.file_done()


def build_archive(
    roots: Iterable[SourceRoot],
    destination: Path,
    archive_name: str,
    *,
    compression_level: int,
    logger: BackupLogger,
    tracker: Optional[ProgressTracker] = None,
) -> Path:
    """Write every enabled root into ``destination/archive_name.zip``.

    Unreadable files are skipped. Raises :class:`DestinationError` when the
    destination or archive itself cannot be written.
    """

    destination = Path(destination)
    try:
        destination.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise DestinationError(f"Cannot create destination {destination}: {exc}") from exc

    existing: List[SourceRoot] = [root for root in roots if root.enabled and Path(root.path).is_dir()]
    tracker = tracker or ProgressTracker()
    tracker.reset(count_files(existing))

    level = max(0, min(9, int(compression_level)))
    method = zipfile.ZIP_DEFLATED if level > 0 else zipfile.ZIP_STORED
    archive_path = destination / f"{archive_name}{ARCHIVE_SUFFIX}"
    logger.event(event="archive_start", phase="build", ok=True, path=str(archive_path), roots=[r.name for r in existing])
    try:
        archive = zipfile.ZipFile(
            archive_path,
            "w",
            compression=method,
            compresslevel=level if method == zipfile.ZIP_DEFLATED else None,
            strict_timestamps=False,
        )
    except OSError as exc:
        raise DestinationError(f"Cannot open archive {archive_path}: {exc}") from exc

    try:
        with archive:
            for root in existing:
                started = time.monotonic()
                _write_tree(archive, root, tracker=tracker, logger=logger)
                logger.debug("root_archived", root=root.name, elapsed_ms=int((time.monotonic() - started) * 1000))
    except OSError as exc:
        raise DestinationError(f"Failed writing archive {archive_path}: {exc}") from exc

    progress = tracker.snapshot()
    logger.event(
        event="archive_built",
        phase="build",
        ok=True,
        path=str(archive_path),
        files=progress.files_processed,
        bytes=progress.bytes_processed,
        size=archive_path.stat().st_size,
    )
    return archive_path


__all__ = [
    "PROGRESS_EVERY",
    "ProgressTracker",
    "archive_name_for",
    "build_archive",
    "unique_archive_path",
]
