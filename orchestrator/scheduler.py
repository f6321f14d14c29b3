"""Backup scheduler: periodic timer, single worker and the public contract."""
from __future__ import annotations

import itertools
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set

from backup.api import BackupService
from backup.changes import ChangePolicy, detect
from backup.create import ProgressTracker
from backup.errors import SnapshotStateError
from backup.logs import BackupLogger
from backup.scanner import scan
from backup.state import load_snapshot, save_snapshot
from backup.types import ArchiveResult, ChangeVerdict, ProgressUpdate, RunOutcome, RunReport, Snapshot
from core.config import ConfigState, load_config, save_config
from core.logging_utils import configure_json_logging, release_json_logging
from core.paths import get_config_path, get_logs_dir, get_state_path

from .api import (
    BackupEntry,
    BackupState,
    DestinationListing,
    DestinationOutcome,
    LastRunInfo,
    OperationResult,
    ProgressInfo,
    ResultCode,
    StatusResponse,
)
from .host import NullHost, Notifier, ShutdownRequester, StatePersister
from .logs import (
    EVT_CONFIG_FAILED,
    EVT_CONFIG_RELOADED,
    EVT_CONFIG_UPDATED,
    EVT_HOST_CALLBACK_FAILED,
    EVT_RUN_DONE,
    EVT_RUN_FAILED,
    EVT_RUN_STATE,
    EVT_SHUTDOWN_REQUESTED,
    EVT_STATE_SAVE_FAILED,
    EVT_TIMER_FIRED,
    EVT_TIMER_STARTED,
    EVT_TIMER_STOPPED,
    EVT_TRIGGER_DISABLED,
    EVT_TRIGGER_NOTICE,
    EVT_TRIGGER_QUEUED,
    EVT_TRIGGER_SKIPPED,
    OrchestratorLogger,
)

ProgressListener = Callable[[ProgressUpdate], None]
ResultListener = Callable[[RunReport], None]
StateListener = Callable[[BackupState], None]

_PHASE_STATES = {"building": BackupState.BUILDING, "verifying": BackupState.VERIFYING}


def _outcome(results: List[ArchiveResult]) -> RunOutcome:
    succeeded = sum(1 for result in results if result.ok)
    if results and succeeded == len(results):
        return RunOutcome.SUCCESS
    if succeeded:
        return RunOutcome.PARTIAL
    return RunOutcome.FAILED


class BackupOrchestrator:
    """Own the backup config and last snapshot; serialize all work on one worker.

    Runs, reloads and config changes are executed by a single worker thread, so
    two backups never overlap. Scheduled triggers come from a timer thread;
    manual triggers come from host threads.
    """

    def __init__(
        self,
        *,
        persister: Optional[StatePersister] = None,
        shutdown_requester: Optional[ShutdownRequester] = None,
        notifier: Optional[Notifier] = None,
        on_progress: Optional[ProgressListener] = None,
        on_result: Optional[ResultListener] = None,
        on_state: Optional[StateListener] = None,
    ) -> None:
        null_host = NullHost()
        self._persister = persister or null_host
        self._shutdown_requester = shutdown_requester or null_host
        self._notifier = notifier or null_host
        self._on_progress = on_progress
        self._on_result = on_result
        self._on_state = on_state

        self._config_dir: Optional[Path] = None
        self._base_dir: Optional[Path] = None
        self._config: Optional[ConfigState] = None
        self._previous: Snapshot = Snapshot.empty()
        self._service: Optional[BackupService] = None
        self._logger = OrchestratorLogger()
        self._tracker = ProgressTracker(self._emit_progress)

        self._executor: Optional[ThreadPoolExecutor] = None
        self._worker_local = threading.local()
        self._cond = threading.Condition()
        self._pending = 0
        self._state = BackupState.IDLE
        self._notice_timers: Set[threading.Timer] = set()
        self._closed = False

        self._timer_thread: Optional[threading.Thread] = None
        self._timer_stop: Optional[threading.Event] = None
        self._next_run_at: Optional[datetime] = None

        self._run_ids = itertools.count(1)
        self._last_report: Optional[RunReport] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def initialize(self, config_dir: Path, source_base_dir: Path) -> None:
        if self._executor is not None:
            raise RuntimeError("BackupOrchestrator already initialized")
        self._config_dir = Path(config_dir)
        self._base_dir = Path(source_base_dir)
        self._config_dir.mkdir(parents=True, exist_ok=True)
        logs_dir = get_logs_dir(self._config_dir)

        config, existed = load_config(get_config_path(self._config_dir))
        if not existed:
            self._write_config(config)
        configure_json_logging(self._config_dir, debug=config.debug)
        self._logger = OrchestratorLogger(logs_dir)
        self._service = BackupService(logger=BackupLogger(logs_dir, verbose=config.debug))
        self._config = ConfigState.resolve(config, self._base_dir)
        self._previous = load_snapshot(get_state_path(self._config_dir))
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="backup-worker")
        self._start_timer()

    def shutdown(self) -> None:
        if self._executor is None or self._closed:
            return
        self._stop_timer()
        with self._cond:
            self._closed = True
            timers = list(self._notice_timers)
            self._notice_timers.clear()
        for timer in timers:
            timer.cancel()
            self._finish_pending()
        self._executor.shutdown(wait=True)
        if not self._previous.is_empty:
            self._persist_snapshot(self._previous)
        release_json_logging(self._config_dir)

    def await_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until nothing is queued, waiting on a notice, or running."""

        with self._cond:
            return self._cond.wait_for(lambda: self._pending == 0, timeout=timeout)

    # ------------------------------------------------------------------
    # Public contract
    # ------------------------------------------------------------------
    def trigger_backup(self, manual: bool = False, also_shutdown: bool = False) -> OperationResult:
        state = self._require_config()
        config = state.config
        if not config.enabled and not manual:
            self._logger.log_scheduler(EVT_TRIGGER_DISABLED, False, manual=manual)
            return OperationResult(code=ResultCode.DISABLED, message="Automatic backups are disabled.")

        verdict: Optional[ChangeVerdict] = None
        if not manual and config.smart_backup:
            current = scan(state.available_roots(), structural_hashes=config.debug)
            verdict = detect(self._previous, current, ChangePolicy.from_config(config))
            if not verdict.is_significant:
                self._logger.log_scheduler(
                    EVT_TRIGGER_SKIPPED,
                    True,
                    reason=verdict.reason.value,
                    changed_bytes=verdict.changed_bytes,
                    changed_files=verdict.changed_file_count,
                    ratio=round(verdict.size_ratio, 6),
                    samples=list(verdict.samples),
                )
                return OperationResult(
                    code=ResultCode.SKIPPED,
                    message="No significant changes since the last backup, skipping.",
                    verdict=verdict,
                )

        if manual and config.notice_seconds > 0 and config.notify_players:
            delay = config.notice_seconds
            message = f"Backup starting in {delay} seconds."
            self._notify(message)
            self._schedule_notice(delay, manual=manual, also_shutdown=also_shutdown)
            self._logger.log_scheduler(EVT_TRIGGER_NOTICE, True, delay_s=delay)
            return OperationResult(code=ResultCode.NOTICE, message=message, delay_seconds=delay)

        self._submit(self._run, manual, also_shutdown, verdict)
        self._logger.log_scheduler(EVT_TRIGGER_QUEUED, True, manual=manual, shutdown=also_shutdown)
        return OperationResult(code=ResultCode.STARTED, message="Backup task started.", verdict=verdict)

    def list_backups(self) -> List[DestinationListing]:
        state = self._require_config()
        listings: List[DestinationListing] = []
        for destination, descriptors, remaining in self._service.list_backups(state.destinations):
            listings.append(
                DestinationListing(
                    destination=str(destination.path),
                    backups=[
                        BackupEntry(name=item.name, size_bytes=item.size_bytes, modified_at=item.modified_at)
                        for item in descriptors
                    ],
                    remaining=remaining,
                )
            )
        return listings

    def get_status(self) -> StatusResponse:
        state = self._require_config()
        config = state.config
        progress = self._tracker.snapshot()
        previous = self._previous
        with self._cond:
            current_state = self._state
            next_run_at = self._next_run_at if self._timer_thread is not None else None
        return StatusResponse(
            state=current_state,
            enabled=config.enabled,
            interval=config.interval,
            interval_minutes=config.interval_minutes,
            next_run_at=next_run_at,
            max_backups=config.max_backups,
            compression_level=config.compression_level,
            verify_backup=config.verify_backup,
            notify_players=config.notify_players,
            notice_seconds=config.notice_seconds,
            shutdown_delay_seconds=config.shutdown_delay_seconds,
            smart_backup=config.smart_backup,
            require_significant_change=config.require_significant_change,
            change_threshold=config.change_threshold,
            min_changed_files=config.min_changed_files,
            min_backup_size_mb=config.min_backup_size_mb,
            debug=config.debug,
            source_roots={root.name: root.enabled for root in state.roots},
            destinations=[str(destination.path) for destination in state.destinations],
            snapshot_captured_at=None if previous.is_empty else datetime.fromtimestamp(previous.captured_at / 1000),
            snapshot_total_files=previous.total_file_count,
            snapshot_total_bytes=previous.total_size_bytes,
            progress=ProgressInfo(
                files_processed=progress.files_processed,
                files_total=progress.files_total,
                bytes_processed=progress.bytes_processed,
                percent=progress.percent,
            ),
            last_run=self._last_run_info(),
        )

    def reload_config(self) -> OperationResult:
        self._require_config()
        return self._on_worker(self._reload)

    # Config setters mirror the host's command set; each persists the file.
    def set_enabled(self, enabled: bool) -> OperationResult:
        return self._on_worker(self._update_config, enabled=bool(enabled))

    def set_debug(self, enabled: bool) -> OperationResult:
        return self._on_worker(self._update_config, debug=bool(enabled))

    def set_notice_seconds(self, seconds: int) -> OperationResult:
        return self._on_worker(self._update_config, notice_seconds=seconds)

    def set_shutdown_delay(self, seconds: int) -> OperationResult:
        return self._on_worker(self._update_config, shutdown_delay_seconds=seconds)

    def set_backup_folders(self, folders: str) -> OperationResult:
        return self._on_worker(self._update_config, backup_folders=str(folders))

    def set_backup_paths(self, paths: str) -> OperationResult:
        return self._on_worker(self._update_config, backup_paths=str(paths))

    def set_interval(self, interval: str) -> OperationResult:
        return self._on_worker(self._update_config, interval=str(interval))

    # ------------------------------------------------------------------
    # Worker plumbing
    # ------------------------------------------------------------------
    def _require_config(self) -> ConfigState:
        if self._config is None or self._service is None:
            raise RuntimeError("BackupOrchestrator.initialize() has not been called")
        return self._config

    def _submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        with self._cond:
            if self._closed or self._executor is None:
                raise RuntimeError("BackupOrchestrator is shut down")
            self._pending += 1
        try:
            return self._executor.submit(self._worker_call, fn, *args, **kwargs)
        except RuntimeError:
            self._finish_pending()
            raise

    def _worker_call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        self._worker_local.active = True
        try:
            return fn(*args, **kwargs)
        finally:
            self._worker_local.active = False
            self._finish_pending()

    def _finish_pending(self) -> None:
        with self._cond:
            self._pending = max(0, self._pending - 1)
            self._cond.notify_all()

    def _on_worker(self, fn: Callable[..., OperationResult], **kwargs: Any) -> OperationResult:
        self._require_config()
        if getattr(self._worker_local, "active", False):
            return fn(**kwargs)
        return self._submit(fn, **kwargs).result()

    def _schedule_notice(self, delay: int, *, manual: bool, also_shutdown: bool) -> None:
        with self._cond:
            if self._closed:
                raise RuntimeError("BackupOrchestrator is shut down")
            self._pending += 1
            timer = threading.Timer(delay, self._notice_elapsed)
            timer.args = (timer, manual, also_shutdown)
            timer.daemon = True
            self._notice_timers.add(timer)
            if self._state is BackupState.IDLE:
                self._state = BackupState.NOTICE_WAIT
        self._emit_state(BackupState.NOTICE_WAIT)
        timer.start()

    def _notice_elapsed(self, timer: threading.Timer, manual: bool, also_shutdown: bool) -> None:
        with self._cond:
            if timer not in self._notice_timers:
                return
            self._notice_timers.discard(timer)
        try:
            self._submit(self._run, manual, also_shutdown, None)
        except RuntimeError as exc:
            self._logger.log_error(EVT_RUN_FAILED, None, "notice", exc)
        finally:
            self._finish_pending()

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------
    def _start_timer(self) -> None:
        self._stop_timer()
        config = self._require_config().config
        if not config.enabled:
            return
        interval_s = config.interval_minutes * 60
        stop = threading.Event()
        thread = threading.Thread(
            target=self._timer_loop, args=(stop, interval_s), name="backup-timer", daemon=True
        )
        with self._cond:
            self._timer_stop = stop
            self._timer_thread = thread
            self._next_run_at = datetime.now() + timedelta(seconds=interval_s)
        thread.start()
        self._logger.log_scheduler(EVT_TIMER_STARTED, True, interval_min=config.interval_minutes)

    def _stop_timer(self) -> None:
        with self._cond:
            stop, thread = self._timer_stop, self._timer_thread
            self._timer_stop = None
            self._timer_thread = None
            self._next_run_at = None
        if stop is None:
            return
        stop.set()
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=2)
        self._logger.log_scheduler(EVT_TIMER_STOPPED, True)

    def _timer_loop(self, stop: threading.Event, interval_s: float) -> None:
        while not stop.wait(interval_s):
            with self._cond:
                if self._timer_stop is stop:
                    self._next_run_at = datetime.now() + timedelta(seconds=interval_s)
            self._logger.log_scheduler(EVT_TIMER_FIRED, True)
            try:
                self.trigger_backup(manual=False)
            except Exception as exc:  # the timer must survive a failed trigger
                self._logger.log_error(EVT_RUN_FAILED, None, "scheduler", exc)

    # ------------------------------------------------------------------
    # Backup run (worker thread only)
    # ------------------------------------------------------------------
    def _run(self, manual: bool, also_shutdown: bool, verdict: Optional[ChangeVerdict]) -> RunReport:
        run_id = next(self._run_ids)
        state = self._require_config()
        config = state.config
        roots = state.refresh_roots()
        destinations = list(state.destinations)
        broadcast = manual or config.notify_players
        started = datetime.now()
        report = RunReport(
            run_id=run_id,
            manual=manual,
            outcome=RunOutcome.FAILED,
            started_at=started,
            finished_at=started,
            verdict=verdict,
        )
        try:
            self._persister.flush_state()
            if broadcast:
                self._notify("Backing up world data...")
            self._set_state(BackupState.SCANNING, run_id)
            snapshot = scan(roots, structural_hashes=config.debug)

            for destination in destinations:
                result = self._service.archive_destination(
                    roots,
                    destination,
                    manual=manual,
                    name_format=config.name_format,
                    compression_level=config.compression_level,
                    verify=config.verify_backup,
                    tracker=self._tracker,
                    on_phase=lambda phase: self._set_state(_PHASE_STATES[phase], run_id),
                )
                report.results.append(result)

            self._set_state(BackupState.ROTATING, run_id)
            self._service.apply_retention(destinations, config.max_backups)

            report.outcome = _outcome(report.results)
            if report.outcome is not RunOutcome.FAILED:
                self._previous = snapshot
                self._persist_snapshot(snapshot)
            self._set_state(
                BackupState.COMPLETED if report.outcome is not RunOutcome.FAILED else BackupState.FAILED, run_id
            )
            report.finished_at = datetime.now()
            self._logger.log_run(
                run_id,
                "run",
                EVT_RUN_DONE,
                report.outcome is not RunOutcome.FAILED,
                outcome=report.outcome.value,
                elapsed_s=round(report.elapsed_seconds, 3),
                destinations=[
                    {"path": str(r.destination), "ok": r.ok, "archive": r.archive_name, "error": r.error}
                    for r in report.results
                ],
            )
            if broadcast:
                self._notify(report.summary())

            if also_shutdown:
                delay = config.shutdown_delay_seconds
                self._set_state(BackupState.SHUTDOWN_PENDING, run_id)
                if broadcast:
                    self._notify(f"Server will stop in {delay} seconds.")
                self._shutdown_requester.request_shutdown(delay)
                report.shutdown_requested = True
                self._logger.log_run(run_id, "shutdown", EVT_SHUTDOWN_REQUESTED, True, delay_s=delay)
        except Exception as exc:  # a failed run must leave the worker usable
            report.outcome = RunOutcome.FAILED
            report.error = str(exc) or type(exc).__name__
            report.finished_at = datetime.now()
            self._set_state(BackupState.FAILED, run_id)
            self._logger.log_error(EVT_RUN_FAILED, run_id, "run", exc)
            self._notify(report.summary())
        finally:
            self._last_report = report
            self._emit_result(report)
            with self._cond:
                idle_state = BackupState.NOTICE_WAIT if self._notice_timers else BackupState.IDLE
            self._set_state(idle_state, run_id)
        return report

    def _persist_snapshot(self, snapshot: Snapshot) -> None:
        try:
            save_snapshot(get_state_path(self._config_dir), snapshot)
        except SnapshotStateError as exc:
            self._logger.log_error(EVT_STATE_SAVE_FAILED, None, "state", exc)

    # ------------------------------------------------------------------
    # Config (worker thread only)
    # ------------------------------------------------------------------
    def _reload(self) -> OperationResult:
        try:
            config, existed = load_config(get_config_path(self._config_dir))
            if not existed:
                self._write_config(config)
            self._config = ConfigState.resolve(config, self._base_dir)
            self._service.logger.verbose = config.debug
            configure_json_logging(self._config_dir, debug=config.debug)
            self._start_timer()
        except Exception as exc:
            self._logger.log_error(EVT_CONFIG_FAILED, None, "config", exc)
            return OperationResult(code=ResultCode.RELOAD_FAILED, message=f"Reload failed: {exc}")
        self._logger.log_config(
            EVT_CONFIG_RELOADED,
            True,
            interval_min=config.interval_minutes,
            destinations=len(self._config.destinations),
            roots=[root.name for root in self._config.enabled_roots],
        )
        return OperationResult(
            code=ResultCode.RELOADED,
            message=(
                f"Configuration reloaded: backups {'enabled' if config.enabled else 'disabled'}, "
                f"every {config.interval_minutes} min, {len(self._config.destinations)} destination(s)."
            ),
            data=config.to_mapping(),
        )

    def _update_config(self, **values: Any) -> OperationResult:
        state = self._require_config()
        state.config.update(**values)
        if "backup_folders" in values or "backup_paths" in values:
            state.refresh()
        self._service.logger.verbose = state.config.debug
        configure_json_logging(self._config_dir, debug=state.config.debug)
        self._write_config(state.config)
        if "enabled" in values or "interval" in values:
            self._start_timer()
        applied: Dict[str, Any] = {key: getattr(state.config, key) for key in values}
        self._logger.log_config(EVT_CONFIG_UPDATED, True, **applied)
        changes = ", ".join(f"{key}={value}" for key, value in applied.items())
        return OperationResult(code=ResultCode.CONFIG_UPDATED, message=f"Updated {changes}.", data=applied)

    def _write_config(self, config) -> None:
        try:
            save_config(get_config_path(self._config_dir), config)
        except OSError as exc:
            self._logger.log_error(EVT_CONFIG_FAILED, None, "config", exc)

    # ------------------------------------------------------------------
    # Host callbacks
    # ------------------------------------------------------------------
    def _set_state(self, state: BackupState, run_id: Optional[int] = None) -> None:
        with self._cond:
            self._state = state
        if run_id is not None:
            self._logger.log_run(run_id, "state", EVT_RUN_STATE, state is not BackupState.FAILED, state=state.value)
        self._emit_state(state)

    def _emit_state(self, state: BackupState) -> None:
        if self._on_state is not None:
            self._guard(self._on_state, state)

    def _emit_progress(self, update: ProgressUpdate) -> None:
        if self._on_progress is not None:
            self._guard(self._on_progress, update)

    def _emit_result(self, report: RunReport) -> None:
        if self._on_result is not None:
            self._guard(self._on_result, report)

    def _notify(self, message: str) -> None:
        self._guard(self._notifier.notify, message)

    def _guard(self, callback: Callable[[Any], Any], payload: Any) -> None:
        try:
            callback(payload)
        except Exception as exc:  # host callbacks never abort a run
            self._logger.log_error(EVT_HOST_CALLBACK_FAILED, None, "host", exc)

    def _last_run_info(self) -> Optional[LastRunInfo]:
        report = self._last_report
        if report is None:
            return None
        return LastRunInfo(
            run_id=report.run_id,
            manual=report.manual,
            outcome=report.outcome.value,
            started_at=report.started_at,
            finished_at=report.finished_at,
            error=report.error,
            destinations=[
                DestinationOutcome(
                    destination=str(result.destination),
                    ok=result.ok,
                    archive_name=result.archive_name,
                    size_bytes=result.size_bytes,
                    elapsed_seconds=result.elapsed_seconds,
                    verified=result.verified,
                    attempts=result.attempts,
                    error=result.error,
                )
                for result in report.results
            ],
        )


__all__ = ["BackupOrchestrator"]
