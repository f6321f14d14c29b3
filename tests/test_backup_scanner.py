import os
import threading
from pathlib import Path

import pytest

from backup.scanner import count_files, iter_root_files, scan, structural_hash
from backup.types import LOCK_MARKER, SourceRoot


def _write(path: Path, data: bytes, mtime: int | None = None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
    if mtime is not None:
        os.utime(path, (mtime, mtime))


def test_scan_collects_relative_paths_and_totals(tmp_path):
    world = tmp_path / "world"
    nether = tmp_path / "world_nether"
    _write(world / "level.dat", b"a" * 10, mtime=1_700_000_000)
    _write(world / "region" / "r.0.0.mca", b"b" * 20)
    _write(world / LOCK_MARKER, b"lock")
    _write(nether / "DIM-1" / "r.0.0.mca", b"c" * 5)

    roots = [
        SourceRoot("world", world),
        SourceRoot("world_nether", nether),
        SourceRoot("world_the_end", tmp_path / "world_the_end"),
    ]
    snapshot = scan(roots, clock=lambda: 42)

    assert snapshot.captured_at == 42
    assert set(snapshot.files) == {
        "world/level.dat",
        "world/region/r.0.0.mca",
        "world_nether/DIM-1/r.0.0.mca",
    }
    assert snapshot.total_file_count == 3
    assert snapshot.total_size_bytes == 35
    assert snapshot.files["world/level.dat"].last_modified == 1_700_000_000_000
    assert snapshot.folder_hashes == {}


def test_scan_skips_disabled_roots_and_hashes_when_asked(tmp_path):
    world = tmp_path / "world"
    _write(world / "level.dat", b"x")
    roots = [SourceRoot("world", world), SourceRoot("other", world, enabled=False)]

    snapshot = scan(roots, structural_hashes=True)

    assert list(snapshot.files) == ["world/level.dat"]
    assert set(snapshot.folder_hashes) == {"world"}
    assert len(snapshot.folder_hashes["world"]) == 16
    assert count_files(roots) == 1


def test_structural_hash_tracks_immediate_children(tmp_path):
    folder = tmp_path / "world"
    _write(folder / "level.dat", b"one", mtime=1_600_000_000)
    before = structural_hash(folder)
    assert before == structural_hash(folder)

    _write(folder / "level.dat", b"one-two", mtime=1_600_000_000)
    assert structural_hash(folder) != before
    assert structural_hash(tmp_path / "missing") == ""


@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="named pipes need POSIX")
def test_scan_ignores_named_pipes(tmp_path):
    world = tmp_path / "world"
    _write(world / "level.dat", b"x")
    os.mkfifo(world / "console.pipe")
    roots = [SourceRoot("world", world)]
    result = []

    worker = threading.Thread(target=lambda: result.append(scan(roots)), daemon=True)
    worker.start()
    worker.join(10)

    assert not worker.is_alive()
    assert list(result[0].files) == ["world/level.dat"]
    assert count_files(roots) == 1


def test_iter_root_files_orders_directories(tmp_path):
    world = tmp_path / "world"
    for name in ("b/2.txt", "a/1.txt", "top.txt"):
        _write(world / name, b"-")

    relatives = [relative for _, relative in iter_root_files(SourceRoot("world", world))]

    assert relatives == ["world/top.txt", "world/a/1.txt", "world/b/2.txt"]
