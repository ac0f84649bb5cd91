"""Domain events emitted by the sync orchestrator.

BatchProcessedEvent is emitted per terminal batch and is the highest
frequency event on the bus. Lifecycle, chunk and checkpoint events are
emitted at well-defined transitions; ProgressUpdatedEvent carries the
throttled snapshots produced by the progress emitter.
"""

from datetime import date
from typing import TYPE_CHECKING, Optional

from attendance_sync.core.events.base import DomainEvent
from attendance_sync.core.events.enums import (
    BatchEventType,
    CheckpointEventType,
    ChunkEventType,
    ProgressEventType,
    SyncEventType,
)

if TYPE_CHECKING:
    from attendance_sync.platform.sync.types import Chunk, ProgressUpdate, SyncCounters


class SyncLifecycleEvent(DomainEvent):
    """Event published during orchestrator lifecycle transitions.

    Published when a run transitions to:
    - INITIALIZED (chunk list computed)
    - RUNNING (workers started)
    - COMPLETED / CANCELLED (with counters)
    - FAILED (with error)
    """

    event_type: SyncEventType

    total_chunks: int = 0
    chunks_remaining: int = 0
    resumed_from: Optional[str] = None

    records_processed: int = 0
    records_successful: int = 0
    records_failed: int = 0
    records_skipped: int = 0

    error: Optional[str] = None

    @classmethod
    def initialized(
        cls,
        operation_id: str,
        total_chunks: int,
        chunks_remaining: int,
        resumed_from: Optional[str] = None,
    ) -> "SyncLifecycleEvent":
        """Create an INITIALIZED event (chunk list ready)."""
        return cls(
            event_type=SyncEventType.INITIALIZED,
            operation_id=operation_id,
            total_chunks=total_chunks,
            chunks_remaining=chunks_remaining,
            resumed_from=resumed_from,
        )

    @classmethod
    def running(
        cls, operation_id: str, total_chunks: int, chunks_remaining: int
    ) -> "SyncLifecycleEvent":
        """Create a RUNNING event (workers started)."""
        return cls(
            event_type=SyncEventType.RUNNING,
            operation_id=operation_id,
            total_chunks=total_chunks,
            chunks_remaining=chunks_remaining,
        )

    @classmethod
    def finished(
        cls,
        event_type: SyncEventType,
        operation_id: str,
        counters: "SyncCounters",
        total_chunks: int,
        chunks_remaining: int,
        error: Optional[str] = None,
    ) -> "SyncLifecycleEvent":
        """Create a terminal event (completed, cancelled or failed)."""
        return cls(
            event_type=event_type,
            operation_id=operation_id,
            total_chunks=total_chunks,
            chunks_remaining=chunks_remaining,
            records_processed=counters.records_processed,
            records_successful=counters.records_successful,
            records_failed=counters.records_failed,
            records_skipped=counters.records_skipped,
            error=error,
        )


class ChunkEvent(DomainEvent):
    """Emitted when a chunk starts, completes or is dead-lettered."""

    event_type: ChunkEventType

    chunk_index: int
    school_code: Optional[str] = None
    window_start: date
    window_end: date

    records_processed: int = 0
    batches: int = 0
    reason: Optional[str] = None

    @classmethod
    def for_chunk(
        cls,
        event_type: ChunkEventType,
        operation_id: str,
        chunk: "Chunk",
        records_processed: int = 0,
        batches: int = 0,
        reason: Optional[str] = None,
    ) -> "ChunkEvent":
        """Build a chunk event from a Chunk."""
        return cls(
            event_type=event_type,
            operation_id=operation_id,
            chunk_index=chunk.index,
            school_code=chunk.school_code,
            window_start=chunk.window.start,
            window_end=chunk.window.end,
            records_processed=records_processed,
            batches=batches,
            reason=reason,
        )


class BatchProcessedEvent(DomainEvent):
    """Emitted after each batch reaches a terminal outcome.

    Carries per-batch deltas. Running totals are derived by consumers
    (progress logger, metrics), not embedded in the event.
    """

    event_type: BatchEventType = BatchEventType.PROCESSED

    chunk_index: int
    batch_seq: int
    outcome: str

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    retry_attempts: int = 0
    duration_ms: float = 0


class ProgressUpdatedEvent(DomainEvent):
    """Throttled progress snapshot."""

    event_type: ProgressEventType = ProgressEventType.UPDATED

    percentage: float
    records_processed: int
    estimated_total_records: int
    throughput: float
    eta_seconds: Optional[float] = None
    chunks_completed: int
    total_chunks: int
    batches_processed: int = 0
    current_step: str = ""
    is_final: bool = False

    @classmethod
    def from_update(cls, update: "ProgressUpdate") -> "ProgressUpdatedEvent":
        """Wrap a ProgressUpdate for publication on the bus."""
        return cls(
            operation_id=update.operation_id,
            timestamp=update.timestamp,
            percentage=update.percentage,
            records_processed=update.records_processed,
            estimated_total_records=update.estimated_total_records,
            throughput=update.throughput,
            eta_seconds=update.eta_seconds,
            chunks_completed=update.chunks_completed,
            total_chunks=update.total_chunks,
            batches_processed=update.batches_processed,
            current_step=update.current_step,
            is_final=update.is_final,
        )


class CheckpointSavedEvent(DomainEvent):
    """Emitted after a checkpoint is persisted."""

    event_type: CheckpointEventType = CheckpointEventType.SAVED

    checkpoint_id: str
    completed_chunks: int
    automatic: bool = False
