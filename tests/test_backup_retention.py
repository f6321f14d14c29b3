import os
from pathlib import Path

from backup.retention import list_archives, rotate


class StubLogger:
    def __init__(self) -> None:
        self.events = []

    def debug(self, event: str, **extra):  # pragma: no cover - simple recorder
        self.events.append(("debug", event, extra))

    def error(self, event: str, **extra):  # pragma: no cover - simple recorder
        self.events.append(("error", event, extra))

    def event(self, *, event: str, phase: str, ok: bool, **extra):  # pragma: no cover - simple recorder
        self.events.append(("event", event, phase, ok, extra))


def _create_archives(base: Path, count: int, *, start: int = 1_700_000_000) -> list:
    base.mkdir(parents=True, exist_ok=True)
    names = []
    for index in range(count):
        path = base / f"auto_{index:02d}.zip"
        path.write_bytes(b"z" * (index + 1))
        stamp = start + index * 60
        os.utime(path, (stamp, stamp))
        names.append(path.name)
    return names


def test_rotate_removes_oldest_first(tmp_path):
    base = tmp_path / "backups"
    names = _create_archives(base, 5)
    (base / "notes.txt").write_text("keep me", encoding="utf-8")
    (base / "folder.zip").mkdir()
    logger = StubLogger()

    summary = rotate(base, 3, logger=logger)

    assert summary.removed == names[:2]
    assert sorted(summary.kept) == names[2:]
    assert summary.failed == {}
    assert sorted(p.name for p in base.iterdir()) == ["folder.zip", "notes.txt", *names[2:]]
    assert logger.events[-1][1] == "retention_applied"


def test_rotate_is_noop_under_limit(tmp_path):
    base = tmp_path / "backups"
    names = _create_archives(base, 2)

    summary = rotate(base, 10, logger=StubLogger())

    assert summary.removed == []
    assert sorted(summary.kept) == names


def test_rotate_missing_destination(tmp_path):
    summary = rotate(tmp_path / "missing", 1, logger=StubLogger())
    assert summary.removed == [] and summary.kept == []


def test_list_archives_newest_first_with_remaining(tmp_path):
    base = tmp_path / "backups"
    names = _create_archives(base, 13)

    descriptors, remaining = list_archives(base)

    assert remaining == 3
    assert [d.name + ".zip" for d in descriptors] == list(reversed(names))[:10]
    assert descriptors[0].size_bytes == 13
