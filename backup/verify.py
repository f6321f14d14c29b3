"""Verify produced archives."""
from __future__ import annotations

import zipfile
import zlib
from pathlib import Path
from typing import Optional

from .logs import BackupLogger

_CHUNK = 64 * 1024


def _drain(archive: zipfile.ZipFile, info: zipfile.ZipInfo) -> None:
    with archive.open(info, "r") as handle:
        while handle.read(_CHUNK):
            pass


def verify_archive(path: Path, *, logger: Optional[BackupLogger] = None) -> bool:
    """Read every file entry end to end; False on any error or when no file entry exists."""

    path = Path(path)
    file_entries = 0
    try:
        with zipfile.ZipFile(path, "r") as archive:
            for info in archive.infolist():
                if info.is_dir():
                    continue
                _drain(archive, info)
                file_entries += 1
    except (zipfile.BadZipFile, zlib.error, EOFError, OSError, ValueError, NotImplementedError) as exc:
        if logger is not None:
            logger.event(event="archive_verify_failed", phase="verify", ok=False, path=str(path), error=str(exc))
        return False

    if file_entries == 0:
        if logger is not None:
            logger.event(event="archive_verify_failed", phase="verify", ok=False, path=str(path), error="no file entries")
        return False
    if logger is not None:
        logger.event(event="archive_verified", phase="verify", ok=True, path=str(path), entries=file_entries)
    return True


__all__ = ["verify_archive"]
