"""Capabilities the orchestrator needs from its host process."""
from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class StatePersister(Protocol):
    def flush_state(self) -> None:
        """Write any pending in-memory state to disk before a snapshot."""


@runtime_checkable
class ShutdownRequester(Protocol):
    def request_shutdown(self, delay_seconds: int) -> None:
        """Ask the host to stop after *delay_seconds*; must not block."""


@runtime_checkable
class Notifier(Protocol):
    def notify(self, message: str) -> None:
        """Broadcast a human-readable message to the host's users."""


class NullHost:
    """Host that persists nothing, never stops and tells nobody."""

    def flush_state(self) -> None:
        return None

    def request_shutdown(self, delay_seconds: int) -> None:
        return None

    def notify(self, message: str) -> None:
        return None


__all__ = ["Notifier", "NullHost", "ShutdownRequester", "StatePersister"]
