import os
import threading
import zipfile
from datetime import datetime
from pathlib import Path

import pytest

import backup.api as backup_api
from backup.api import MAX_ATTEMPTS, BackupService
from backup.create import ProgressTracker, archive_name_for, build_archive, unique_archive_path
from backup.errors import DestinationError
from backup.logs import BackupLogger
from backup.types import LOCK_MARKER, Destination, SourceRoot
from backup.verify import verify_archive


class StubLogger(BackupLogger):
    def __init__(self) -> None:
        super().__init__(verbose=True)
        self.events = []

    def _write(self, payload, *, level):  # pragma: no cover - simple recorder
        self.events.append(payload)

    def names(self):
        return [entry["event"] for entry in self.events]


def _make_world(base: Path) -> list:
    world = base / "world"
    (world / "region").mkdir(parents=True)
    (world / "empty").mkdir()
    (world / "level.dat").write_bytes(b"level" * 100)
    (world / "region" / "r.0.0.mca").write_bytes(b"\x00" * 4096)
    (world / LOCK_MARKER).write_bytes(b"lock")
    nether = base / "world_nether"
    nether.mkdir()
    (nether / "level.dat").write_bytes(b"nether")
    return [
        SourceRoot("world", world),
        SourceRoot("world_nether", nether),
        SourceRoot("world_the_end", base / "world_the_end", enabled=False),
    ]


def test_build_and_verify_archive(tmp_path):
    roots = _make_world(tmp_path)
    updates = []
    tracker = ProgressTracker(updates.append, every=2)
    logger = StubLogger()

    archive_path = build_archive(roots, tmp_path / "out", "manual_test", compression_level=6, logger=logger, tracker=tracker)

    assert archive_path == tmp_path / "out" / "manual_test.zip"
    with zipfile.ZipFile(archive_path) as archive:
        names = set(archive.namelist())
        assert archive.getinfo("world/level.dat").compress_type == zipfile.ZIP_DEFLATED
    assert {"world/", "world/region/", "world/empty/", "world_nether/"} <= names
    assert {"world/level.dat", "world/region/r.0.0.mca", "world_nether/level.dat"} <= names
    assert f"world/{LOCK_MARKER}" not in names
    assert not any(name.startswith("world_the_end") for name in names)

    progress = tracker.snapshot()
    assert progress.files_processed == progress.files_total == 3
    assert progress.bytes_processed == 500 + 4096 + 6
    assert progress.percent == 100
    assert [update.files_processed for update in updates] == [2]
    assert "archive_built" in logger.names()

    assert verify_archive(archive_path, logger=logger) is True


@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="named pipes need POSIX")
def test_named_pipes_are_not_archived(tmp_path):
    roots = _make_world(tmp_path)
    os.mkfifo(tmp_path / "world" / "console.pipe")
    tracker = ProgressTracker()
    built = []

    worker = threading.Thread(
        target=lambda: built.append(
            build_archive(roots, tmp_path / "out", "pipe", compression_level=3, logger=StubLogger(), tracker=tracker)
        ),
        daemon=True,
    )
    worker.start()
    worker.join(10)

    assert not worker.is_alive()
    (archive_path,) = built
    with zipfile.ZipFile(archive_path) as archive:
        assert "world/console.pipe" not in archive.namelist()
    progress = tracker.snapshot()
    assert progress.files_processed == progress.files_total == 3


def test_progress_percent_before_and_after_work():
    tracker = ProgressTracker()
    assert tracker.snapshot().percent == 0

    tracker.reset(0)
    assert tracker.snapshot().percent == 0

    tracker.reset(4)
    tracker.file_done()
    assert tracker.snapshot().percent == 25


def test_locked_files_are_skipped(tmp_path, monkeypatch):
    roots = _make_world(tmp_path)
    real_write = zipfile.ZipFile.write

    def write(self, filename, arcname=None, *args, **kwargs):
        if Path(filename).name == "r.0.0.mca":
            raise PermissionError("file is in use")
        return real_write(self, filename, arcname, *args, **kwargs)

    monkeypatch.setattr(zipfile.ZipFile, "write", write)
    logger = StubLogger()
    tracker = ProgressTracker()

    archive_path = build_archive(roots, tmp_path / "out", "locked", compression_level=3, logger=logger, tracker=tracker)

    with zipfile.ZipFile(archive_path) as archive:
        names = archive.namelist()
    assert "world/region/r.0.0.mca" not in names
    assert "world/level.dat" in names
    assert "locked_file_skipped" in logger.names()
    assert tracker.snapshot().files_processed == 3


def test_level_zero_stores_entries(tmp_path):
    roots = _make_world(tmp_path)
    archive_path = build_archive(roots, tmp_path / "out", "stored", compression_level=0, logger=StubLogger())

    with zipfile.ZipFile(archive_path) as archive:
        assert archive.getinfo("world/region/r.0.0.mca").compress_type == zipfile.ZIP_STORED


def test_verify_rejects_corrupt_and_empty_archives(tmp_path):
    garbage = tmp_path / "garbage.zip"
    garbage.write_bytes(b"definitely not a zip")
    assert verify_archive(garbage) is False

    only_dirs = tmp_path / "dirs.zip"
    with zipfile.ZipFile(only_dirs, "w") as archive:
        archive.writestr("world/", b"")
    assert verify_archive(only_dirs) is False

    truncated = tmp_path / "truncated.zip"
    roots = _make_world(tmp_path)
    good = build_archive(roots, tmp_path / "out", "good", compression_level=3, logger=StubLogger())
    truncated.write_bytes(good.read_bytes()[:200])
    assert verify_archive(truncated) is False


def test_archive_names_are_sanitized_and_unique(tmp_path):
    moment = datetime(2024, 5, 6, 7, 8, 9)
    assert archive_name_for("{type}_{date}_{time}", manual=True, now=moment) == "manual_2024-05-06_07-08-09"
    assert archive_name_for("{server}:{type}", manual=False, now=moment) == "server_auto"

    (tmp_path / "auto.zip").write_bytes(b"")
    (tmp_path / "auto_1.zip").write_bytes(b"")
    assert unique_archive_path(tmp_path, "auto") == tmp_path / "auto_2.zip"


def test_service_retries_failed_verification_once(tmp_path, monkeypatch):
    roots = _make_world(tmp_path)
    calls = []

    def flaky_verify(path, *, logger=None):
        calls.append(path)
        return len(calls) > 1

    monkeypatch.setattr(backup_api, "verify_archive", flaky_verify)
    phases = []
    service = BackupService(logger=StubLogger())

    result = service.archive_destination(
        roots,
        Destination(tmp_path / "dest"),
        manual=False,
        name_format="{type}",
        compression_level=1,
        verify=True,
        on_phase=phases.append,
    )

    assert result.ok and result.verified
    assert result.attempts == 2
    assert result.archive_name == "auto.zip"
    assert phases == ["building", "verifying", "building", "verifying"]
    assert sorted(p.name for p in (tmp_path / "dest").iterdir()) == ["auto.zip"]
    assert "archive_retry" in service.logger.names()


def test_service_gives_up_after_second_verification_failure(tmp_path, monkeypatch):
    roots = _make_world(tmp_path)
    monkeypatch.setattr(backup_api, "verify_archive", lambda path, *, logger=None: False)
    service = BackupService(logger=StubLogger())

    result = service.archive_destination(
        roots, Destination(tmp_path / "dest"), manual=True, name_format="x", compression_level=3, verify=True
    )

    assert not result.ok
    assert result.attempts == MAX_ATTEMPTS
    assert "verification failed" in result.error
    assert list((tmp_path / "dest").iterdir()) == []


def test_service_reports_destination_failure_without_retry(tmp_path, monkeypatch):
    roots = _make_world(tmp_path)

    def broken(*args, **kwargs):
        raise DestinationError("disk full")

    monkeypatch.setattr(backup_api, "build_archive", broken)
    service = BackupService(logger=StubLogger())

    result = service.archive_destination(
        roots, Destination(tmp_path / "dest"), manual=True, name_format="x", compression_level=3, verify=True
    )

    assert not result.ok
    assert result.attempts == 1
    assert result.error == "disk full"


def test_service_without_sources_fails_fast(tmp_path):
    service = BackupService(logger=StubLogger())
    result = service.archive_destination(
        [SourceRoot("world", tmp_path / "nope")],
        Destination(tmp_path / "dest"),
        manual=True,
        name_format="x",
        compression_level=3,
        verify=False,
    )
    assert not result.ok
    assert result.attempts == 0
    assert result.error == "no source folders available"


def test_unwritable_destination_raises(tmp_path):
    roots = _make_world(tmp_path)
    blocker = tmp_path / "blocker"
    blocker.write_text("file", encoding="utf-8")

    with pytest.raises(DestinationError):
        build_archive(roots, blocker / "sub", "x", compression_level=3, logger=StubLogger())
