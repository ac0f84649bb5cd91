"""Progress logger: pure subscriber turning sync events into log lines.

Subscribes to ``sync.*``, ``progress.updated``, ``chunk.dead_lettered``
and ``checkpoint.saved``. The orchestrator never calls it directly.

- sync.initialized -> one line with the chunk plan
- progress.updated -> percentage, throughput and ETA
- chunk.dead_lettered -> warning with the reason
- sync.completed/failed/cancelled -> final summary
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from attendance_sync.core.events import (
    CheckpointSavedEvent,
    ChunkEvent,
    ProgressUpdatedEvent,
    SyncEventType,
    SyncLifecycleEvent,
)
from attendance_sync.core.logging import ContextualLogger, LoggerConfigurator
from attendance_sync.core.protocols.event_bus import DomainEvent, EventSubscriber

_TERMINAL_SYNC_EVENTS = {
    SyncEventType.COMPLETED,
    SyncEventType.FAILED,
    SyncEventType.CANCELLED,
}


@dataclass
class _RunLog:
    """What the logger remembers about one operation."""

    total_chunks: int = 0
    dead_letters: List[str] = field(default_factory=list)
    checkpoints: List[str] = field(default_factory=list)
    last_percentage: Optional[float] = None


def format_eta(seconds: Optional[float]) -> str:
    """``1h02m``, ``3m05s`` or ``42s``; ``unknown`` when there is no estimate."""
    if seconds is None:
        return "unknown"
    total = int(round(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}h{minutes:02d}m"
    if minutes:
        return f"{minutes}m{secs:02d}s"
    return f"{secs}s"


class SyncProgressLogger(EventSubscriber):
    """Logs the progress of every sync operation seen on the bus."""

    EVENT_PATTERNS = ["sync.*", "progress.updated", "chunk.dead_lettered", "checkpoint.saved"]

    def __init__(self, logger: Optional[ContextualLogger] = None) -> None:
        self.logger = logger or LoggerConfigurator.configure_logger(__name__)
        self._runs: Dict[str, _RunLog] = {}

    async def handle(self, event: DomainEvent) -> None:
        """Route one event to its log line."""
        run_logger = self.logger.with_context(operation_id=event.operation_id)
        run = self._runs.setdefault(event.operation_id, _RunLog())

        if isinstance(event, SyncLifecycleEvent):
            self._on_lifecycle(event, run, run_logger)
        elif isinstance(event, ProgressUpdatedEvent):
            self._on_progress(event, run, run_logger)
        elif isinstance(event, ChunkEvent):
            reason = event.reason or "unknown"
            run.dead_letters.append(reason)
            run_logger.warning(
                f"☠️ Chunk {event.chunk_index} ({event.school_code or 'all schools'} "
                f"{event.window_start}..{event.window_end}) dead-lettered: {reason}"
            )
        elif isinstance(event, CheckpointSavedEvent):
            run.checkpoints.append(event.checkpoint_id)
            run_logger.debug(
                f"Checkpoint {event.checkpoint_id} covers {event.completed_chunks} chunks"
            )

    def _on_lifecycle(
        self, event: SyncLifecycleEvent, run: _RunLog, run_logger: ContextualLogger
    ) -> None:
        if event.event_type == SyncEventType.INITIALIZED:
            run.total_chunks = event.total_chunks
            resumed = f", resumed from {event.resumed_from}" if event.resumed_from else ""
            run_logger.info(
                f"📋 Planned {event.total_chunks} chunks, "
                f"{event.chunks_remaining} to process{resumed}"
            )
        elif event.event_type == SyncEventType.RUNNING:
            run_logger.info(f"▶️ Sync running ({event.chunks_remaining} chunks queued)")
        elif event.event_type in _TERMINAL_SYNC_EVENTS:
            self._log_summary(event, run, run_logger)
            self._runs.pop(event.operation_id, None)

    def _on_progress(
        self, event: ProgressUpdatedEvent, run: _RunLog, run_logger: ContextualLogger
    ) -> None:
        run.last_percentage = event.percentage
        run_logger.info(
            f"📊 {event.percentage:.1f}% ({event.records_processed}/"
            f"~{event.estimated_total_records} records, "
            f"{event.chunks_completed}/{event.total_chunks} chunks) "
            f"{event.throughput:.1f} rec/s, ETA {format_eta(event.eta_seconds)}"
        )

    def _log_summary(
        self, event: SyncLifecycleEvent, run: _RunLog, run_logger: ContextualLogger
    ) -> None:
        status = event.event_type.value.split(".", 1)[1]
        summary = (
            f"Sync {status}: {event.records_processed} processed, "
            f"{event.records_successful} successful, {event.records_failed} failed, "
            f"{event.records_skipped} skipped; "
            f"{event.total_chunks - event.chunks_remaining}/{event.total_chunks} chunks done"
        )
        if run.dead_letters:
            summary += f", {len(run.dead_letters)} dead-lettered"
        if event.event_type == SyncEventType.FAILED:
            run_logger.error(f"❌ {summary} ({event.error or 'no error recorded'})")
        elif event.event_type == SyncEventType.CANCELLED:
            run_logger.warning(f"🛑 {summary}")
        else:
            run_logger.info(f"✅ {summary}")
