from backup.changes import ChangePolicy, detect
from backup.types import ChangeReason, FileRecord, Snapshot

MB = 1024 * 1024


def _snapshot(files, *, captured_at=1_000):
    records = {path: FileRecord(path, mtime, size) for path, (mtime, size) in files.items()}
    return Snapshot(
        captured_at=captured_at,
        files=records,
        total_size_bytes=sum(record.size_bytes for record in records.values()),
        total_file_count=len(records),
    )


BASE = {f"world/region/r.{i}.mca": (100, 1_000) for i in range(20)}


def test_empty_previous_is_always_significant():
    verdict = detect(Snapshot.empty(), _snapshot(BASE), ChangePolicy(require_significant=True))
    assert verdict.is_significant
    assert verdict.reason is ChangeReason.FIRST_OBSERVATION


def test_identical_snapshots_are_not_significant():
    previous = _snapshot(BASE)
    current = _snapshot(BASE, captured_at=2_000)

    lenient = detect(previous, current, ChangePolicy(require_significant=False))
    strict = detect(previous, current, ChangePolicy(require_significant=True, min_size_threshold_bytes=MB))

    assert not lenient.is_significant
    assert lenient.reason is ChangeReason.NO_CHANGE
    assert not strict.is_significant
    assert strict.changed_file_count == 0
    assert strict.changed_bytes == 0


def test_any_change_counts_without_significance_requirement():
    files = dict(BASE)
    files["world/region/r.0.mca"] = (200, 1_000)
    verdict = detect(_snapshot(BASE), _snapshot(files), ChangePolicy(require_significant=False))

    assert verdict.is_significant
    assert verdict.reason is ChangeReason.CHANGES_DETECTED
    assert verdict.modified_files == 1
    assert verdict.changed_bytes == 0


def test_ratio_needs_enough_files():
    files = dict(BASE)
    files["world/region/r.0.mca"] = (200, 5_000)
    policy = ChangePolicy(
        require_significant=True, change_ratio_threshold=0.01, min_changed_files=5, min_size_threshold_bytes=MB
    )

    verdict = detect(_snapshot(BASE), _snapshot(files), policy)

    assert verdict.changed_bytes == 4_000
    assert verdict.size_ratio == 4_000 / 20_000
    assert not verdict.is_significant
    assert verdict.reason is ChangeReason.INSUFFICIENT_CHANGE

    for i in range(1, 5):
        files[f"world/region/r.{i}.mca"] = (200, 1_000)
    verdict = detect(_snapshot(BASE), _snapshot(files), policy)
    assert verdict.changed_file_count == 5
    assert verdict.is_significant
    assert verdict.reason is ChangeReason.SIGNIFICANT_CHANGE


def test_changed_bytes_over_size_threshold_is_significant():
    files = dict(BASE)
    files["world/big.bin"] = (300, 2 * MB)
    policy = ChangePolicy(
        require_significant=True, change_ratio_threshold=1.0, min_changed_files=100, min_size_threshold_bytes=MB
    )

    verdict = detect(_snapshot(BASE), _snapshot(files), policy)

    assert verdict.new_files == 1
    assert verdict.is_significant


def test_deletions_count_files_but_not_bytes():
    files = dict(BASE)
    del files["world/region/r.3.mca"]
    verdict = detect(_snapshot(BASE), _snapshot(files), ChangePolicy(require_significant=False, collect_samples=True))

    assert verdict.deleted_files == 1
    assert verdict.changed_file_count == 1
    assert verdict.changed_bytes == 0
    assert verdict.samples == ("[deleted] world/region/r.3.mca",)


def test_zero_previous_total_uses_unit_ratio():
    previous = _snapshot({"world/empty.dat": (1, 0)})
    current = _snapshot({"world/empty.dat": (1, 0), "world/new.dat": (2, 0)})
    policy = ChangePolicy(require_significant=True, change_ratio_threshold=0.5, min_changed_files=1, min_size_threshold_bytes=MB)

    verdict = detect(previous, current, policy)

    assert verdict.size_ratio == 1.0
    assert verdict.is_significant


def test_samples_are_capped():
    files = {f"world/new/{i}.dat": (1, 1) for i in range(30)}
    verdict = detect(_snapshot(BASE), _snapshot({**BASE, **files}), ChangePolicy(collect_samples=True))

    assert len(verdict.samples) == 10
    assert all(sample.startswith("[new] ") for sample in verdict.samples)
