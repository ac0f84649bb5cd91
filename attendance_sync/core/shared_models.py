"""Shared models for the attendance sync service."""

from enum import Enum


class SyncStatus(str, Enum):
    """Lifecycle state of a sync orchestrator."""

    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Whether no further transitions are allowed from this state."""
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset({SyncStatus.COMPLETED, SyncStatus.FAILED, SyncStatus.CANCELLED})


class BatchOutcome(str, Enum):
    """Terminal outcome of a single batch."""

    SUCCEEDED = "succeeded"
    PARTIAL = "partial"
    FAILED = "failed"


class DeadLetterReason(str, Enum):
    """Why a chunk was set aside without being completed."""

    CIRCUIT_OPEN = "circuit_open"
    SOURCE_FAILED = "source_failed"
    AUTHENTICATION_FAILED = "authentication_failed"
