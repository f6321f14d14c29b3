"""Persistence of the last backed-up snapshot.

Layout, one item per line::

    <lastBackupTime ms>
    <totalSize>
    <totalFiles>
    FOLDER:<name>:<hash>
    FILE:<relativePath>:<lastModified ms>:<size>
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Dict, List

from .errors import SnapshotStateError
from .types import FileRecord, Snapshot

LOGGER = logging.getLogger("worldkeeper.backup.state")

_FOLDER = "FOLDER:"
_FILE = "FILE:"


def _to_int(text: str) -> int:
    try:
        return int(text.strip())
    except ValueError:
        return 0


def dump_snapshot(snapshot: Snapshot) -> str:
    lines: List[str] = [
        str(snapshot.captured_at),
        str(snapshot.total_size_bytes),
        str(snapshot.total_file_count),
    ]
    for name, digest in snapshot.folder_hashes.items():
        lines.append(f"{_FOLDER}{name}:{digest}")
    for path, record in snapshot.files.items():
        lines.append(f"{_FILE}{path}:{record.last_modified}:{record.size_bytes}")
    return "\n".join(lines) + "\n"


def parse_snapshot(text: str) -> Snapshot:
    lines = text.splitlines()
    if len(lines) < 3:
        return Snapshot.empty()
    files: Dict[str, FileRecord] = {}
    folder_hashes: Dict[str, str] = {}
    for line in lines[3:]:
        if line.startswith(_FOLDER):
            name, sep, digest = line[len(_FOLDER) :].partition(":")
            if sep:
                folder_hashes[name] = digest
        elif line.startswith(_FILE):
            # Paths may contain ':' so the numeric fields are split from the right.
            parts = line[len(_FILE) :].rsplit(":", 2)
            if len(parts) == 3 and parts[0]:
                files[parts[0]] = FileRecord(
                    relative_path=parts[0],
                    last_modified=_to_int(parts[1]),
                    size_bytes=_to_int(parts[2]),
                )
    return Snapshot(
        captured_at=_to_int(lines[0]),
        files=files,
        total_size_bytes=_to_int(lines[1]),
        total_file_count=_to_int(lines[2]),
        folder_hashes=folder_hashes,
    )


def load_snapshot(path: Path) -> Snapshot:
    """Return the persisted snapshot, or an empty one when absent or unreadable."""

    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return Snapshot.empty()
    except (OSError, UnicodeDecodeError) as exc:
        LOGGER.warning("load_state_failed path=%s err=%s", path, exc)
        return Snapshot.empty()
    return parse_snapshot(text)


def save_snapshot(path: Path, snapshot: Snapshot) -> None:
    target = Path(path)
    tmp = target.with_name(target.name + ".tmp")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(dump_snapshot(snapshot), encoding="utf-8")
        os.replace(tmp, target)
    except OSError as exc:
        raise SnapshotStateError(f"Could not write snapshot state to {target}: {exc}") from exc


__all__ = ["dump_snapshot", "load_snapshot", "parse_snapshot", "save_snapshot"]
