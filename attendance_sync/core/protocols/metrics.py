"""Metrics protocol for sync instrumentation."""

from typing import Protocol, runtime_checkable


@runtime_checkable
class SyncMetrics(Protocol):
    """Protocol for sync run metrics collection."""

    def inc_records(self, outcome: str, count: int) -> None:
        """Add ``count`` records with the given outcome (succeeded/failed/skipped)."""
        ...

    def inc_retries(self, stage: str) -> None:
        """Count one retry attempt at ``stage`` (source or sink)."""
        ...

    def observe_batch_duration(self, duration: float) -> None:
        """Record the wall time of one terminal batch in seconds."""
        ...

    def inc_chunks(self, outcome: str) -> None:
        """Count one chunk reaching ``outcome`` (completed/dead_lettered)."""
        ...

    def set_active_workers(self, count: int) -> None:
        """Set the number of workers currently processing a chunk."""
        ...

    def set_progress(self, percentage: float) -> None:
        """Set the latest progress percentage."""
        ...

    def inc_runs(self, status: str) -> None:
        """Count one run finishing with ``status``."""
        ...
