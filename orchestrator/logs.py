"""Structured logging helpers for the orchestrator."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional


LOGGER = logging.getLogger("worldkeeper.orchestrator")

# Event ids, grouped by phase.
EVT_TIMER_STARTED = 1000
EVT_TIMER_STOPPED = 1001
EVT_TIMER_FIRED = 1002
EVT_TRIGGER_DISABLED = 1100
EVT_TRIGGER_SKIPPED = 1101
EVT_TRIGGER_NOTICE = 1102
EVT_TRIGGER_QUEUED = 1103
EVT_RUN_STATE = 1200
EVT_RUN_DONE = 1300
EVT_RUN_FAILED = 1301
EVT_SHUTDOWN_REQUESTED = 1400
EVT_CONFIG_RELOADED = 1500
EVT_CONFIG_UPDATED = 1501
EVT_CONFIG_FAILED = 1502
EVT_STATE_SAVE_FAILED = 1600
EVT_HOST_CALLBACK_FAILED = 1700


class OrchestratorLogger:
    """Write structured JSONL events for the orchestrator."""

    def __init__(self, logs_dir: Optional[Path] = None) -> None:
        self._log_path: Optional[Path] = None
        if logs_dir is not None:
            self._log_path = Path(logs_dir) / "orchestrator.jsonl"
            self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    # ------------------------------------------------------------------
    def log_event(
        self,
        *,
        level: str,
        event_id: int,
        run_id: Optional[int],
        phase: str,
        ok: bool,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        payload: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event_id": int(event_id),
            "run_id": run_id,
            "phase": phase,
            "ok": ok,
        }
        if data:
            payload.update(data)
        line = json.dumps(payload, sort_keys=True, default=str)
        if self._log_path is not None:
            with self._lock:
                with self._log_path.open("a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
        LOGGER.log(getattr(logging, level, logging.INFO), "%s", line)

    # ------------------------------------------------------------------
    def log_scheduler(self, event_id: int, ok: bool, **data: Any) -> None:
        self.log_event(level="INFO", event_id=event_id, run_id=None, phase="scheduler", ok=ok, data=data)

    def log_config(self, event_id: int, ok: bool, **data: Any) -> None:
        self.log_event(
            level="INFO" if ok else "WARNING", event_id=event_id, run_id=None, phase="config", ok=ok, data=data
        )

    def log_run(self, run_id: int, phase: str, event_id: int, ok: bool, **data: Any) -> None:
        self.log_event(level="INFO", event_id=event_id, run_id=run_id, phase=phase, ok=ok, data=data)

    def log_error(self, event_id: int, run_id: Optional[int], phase: str, err: BaseException, **data: Any) -> None:
        payload = dict(data)
        payload["err"] = type(err).__name__
        payload["err_msg"] = str(err)
        self.log_event(level="ERROR", event_id=event_id, run_id=run_id, phase=phase, ok=False, data=payload)


__all__ = ["OrchestratorLogger"]
