"""Public API for backup operations."""
from __future__ import annotations

import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .create import ProgressTracker, archive_name_for, build_archive, unique_archive_path
from .errors import BackupVerificationError, DestinationError
from .logs import BackupLogger
from .retention import LIST_LIMIT, list_archives, rotate
from .types import ARCHIVE_SUFFIX, ArchiveResult, BackupDescriptor, Destination, RetentionSummary, SourceRoot
from .verify import verify_archive

MAX_ATTEMPTS = 2

PhaseCallback = Callable[[str], None]


def _noop_phase(_phase: str) -> None:
    return None


class BackupService:
    """Coordinate archive creation, verification, retention and listing."""

    def __init__(self, *, logger: Optional[BackupLogger] = None) -> None:
        self._logger = logger or BackupLogger()

    @property
    def logger(self) -> BackupLogger:
        return self._logger

    # ------------------------------------------------------------------
    def archive_destination(
        self,
        roots: Sequence[SourceRoot],
        destination: Destination,
        *,
        manual: bool,
        name_format: str,
        compression_level: int,
        verify: bool,
        tracker: Optional[ProgressTracker] = None,
        on_phase: PhaseCallback = _noop_phase,
        now: Optional[datetime] = None,
    ) -> ArchiveResult:
        """Build (and verify) one archive, rebuilding once when verification fails."""

        result = ArchiveResult(destination=Path(destination.path))
        available = [root for root in roots if root.enabled and Path(root.path).is_dir()]
        if not available:
            result.error = "no source folders available"
            self._logger.event(event="archive_skipped", phase="build", ok=False, destination=str(destination.path), reason=result.error)
            return result

        started = time.monotonic()
        name = archive_name_for(name_format, manual=manual, now=now)
        stem: Optional[str] = None
        while result.attempts < MAX_ATTEMPTS:
            result.attempts += 1
            if stem is None:
                stem = unique_archive_path(result.destination, name).name[: -len(ARCHIVE_SUFFIX)]
            on_phase("building")
            try:
                archive_path = build_archive(
                    available,
                    result.destination,
                    stem,
                    compression_level=compression_level,
                    logger=self._logger,
                    tracker=tracker,
                )
            except DestinationError as exc:
                self._discard(result.destination / f"{stem}{ARCHIVE_SUFFIX}")
                result.error = str(exc)
                self._logger.event(event="archive_failed", phase="build", ok=False, destination=str(destination.path), error=str(exc))
                return result

            if verify:
                on_phase("verifying")
                if not verify_archive(archive_path, logger=self._logger):
                    self._discard(archive_path)
                    failure = BackupVerificationError(
                        f"verification failed for {archive_path.name} (attempt {result.attempts}/{MAX_ATTEMPTS})"
                    )
                    result.error = str(failure)
                    self._logger.warning("archive_retry", path=str(archive_path), attempt=result.attempts)
                    continue
                result.verified = True

            result.ok = True
            result.error = None
            result.archive_name = archive_path.name
            result.size_bytes = archive_path.stat().st_size
            result.elapsed_seconds = time.monotonic() - started
            return result

        result.elapsed_seconds = time.monotonic() - started
        self._logger.event(event="archive_failed", phase="verify", ok=False, destination=str(destination.path), error=result.error)
        return result

    def _discard(self, path: Path) -> None:
        try:
            path.unlink()
        except FileNotFoundError:
            return
        except OSError as exc:
            self._logger.error("partial_archive_remove_failed", path=str(path), error=str(exc))

    # ------------------------------------------------------------------
    def apply_retention(self, destinations: Iterable[Destination], max_count: int) -> Dict[Path, RetentionSummary]:
        summaries: Dict[Path, RetentionSummary] = {}
        for destination in destinations:
            summaries[Path(destination.path)] = rotate(destination.path, max_count, logger=self._logger)
        return summaries

    # ------------------------------------------------------------------
    def list_backups(
        self, destinations: Iterable[Destination], *, limit: int = LIST_LIMIT
    ) -> List[Tuple[Destination, List[BackupDescriptor], int]]:
        listing = []
        for destination in destinations:
            descriptors, remaining = list_archives(destination.path, limit)
            listing.append((destination, descriptors, remaining))
        return listing


__all__ = ["BackupService", "MAX_ATTEMPTS"]
