"""Scheduled, change-aware backup orchestrator."""

from .api import BackupState, DestinationListing, OperationResult, ResultCode, StatusResponse
from .host import Notifier, NullHost, ShutdownRequester, StatePersister
from .scheduler import BackupOrchestrator

__all__ = [
    "BackupOrchestrator",
    "BackupState",
    "DestinationListing",
    "Notifier",
    "NullHost",
    "OperationResult",
    "ResultCode",
    "ShutdownRequester",
    "StatePersister",
    "StatusResponse",
]
