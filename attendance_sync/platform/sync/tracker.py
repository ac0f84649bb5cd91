"""Centralized counter tracker for sync runs.

SyncTracker is the single source of truth for run state during sync:
- Cumulative record counters (processed, successful, failed, skipped, retries)
- Which chunks are in flight, completed or dead-lettered
- Which counters are committed (belong to completed chunks) and may go
  into a checkpoint

This is a PURE STATE TRACKER. It does NOT publish events; the chunk
pipeline and the orchestrator publish to the EventBus themselves.
"""

import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Dict, Iterable, List, Optional, Set, Tuple

from attendance_sync.platform.sync.types import DeadLetter, SyncCounters

if TYPE_CHECKING:
    from attendance_sync.core.logging import ContextualLogger


@dataclass(frozen=True)
class TrackerSnapshot:
    """Consistent copy of tracker state taken under the lock."""

    live: SyncCounters
    committed: SyncCounters
    completed_chunks: Tuple[int, ...]
    chunks_in_flight: int
    in_flight_processed: int
    total_chunks: int
    chunks_completed_this_run: int
    dead_letters: Tuple[DeadLetter, ...] = field(default_factory=tuple)

    @property
    def chunks_completed(self) -> int:
        return len(self.completed_chunks)

    @property
    def chunks_remaining(self) -> int:
        return max(self.total_chunks - self.chunks_completed, 0)


class SyncTracker:
    """Lock-guarded aggregation point for every counter delta.

    Workers never touch counters directly: they hand deltas to this
    tracker, which serializes every mutation behind one asyncio.Lock.

    Counter buckets:
    - base: cumulative counters carried over from a resumed checkpoint
    - committed: deltas of chunks completed during this run
    - in flight: per-chunk deltas of chunks that have not finished
    - abandoned: deltas of dead-lettered chunks (visible, never checkpointed)
    """

    def __init__(
        self,
        total_chunks: int,
        logger: "ContextualLogger",
        completed_chunks: Optional[Iterable[int]] = None,
        base_counters: Optional[SyncCounters] = None,
    ) -> None:
        """Initialize the tracker.

        Args:
            total_chunks: Number of chunks in the full chunk list.
            logger: Contextual logger for debugging.
            completed_chunks: Indices already completed by a prior run.
            base_counters: Cumulative counters from that prior run.
        """
        self.total_chunks = total_chunks
        self.logger = logger

        self._base = SyncCounters(**(base_counters or SyncCounters()).to_dict())
        self._committed = SyncCounters()
        self._abandoned = SyncCounters()
        self._in_flight: Dict[int, SyncCounters] = {}

        self._completed: Set[int] = set(completed_chunks or ())
        self._completed_this_run = 0
        self._dead_letters: List[DeadLetter] = []

        self._lock = asyncio.Lock()

    # -------------------------------------------------------------------------
    # Chunk lifecycle
    # -------------------------------------------------------------------------

    async def start_chunk(self, chunk_index: int) -> None:
        """Open an in-flight bucket for a chunk."""
        async with self._lock:
            self._in_flight.setdefault(chunk_index, SyncCounters())

    async def record_batch(self, chunk_index: int, delta: SyncCounters) -> None:
        """Add one terminal batch's counters to its chunk's in-flight bucket."""
        async with self._lock:
            self._in_flight.setdefault(chunk_index, SyncCounters()).add(delta)

    async def record_retries(self, chunk_index: int, count: int = 1) -> None:
        """Count retry attempts consumed by a chunk (source pages included)."""
        async with self._lock:
            self._in_flight.setdefault(chunk_index, SyncCounters()).retry_attempts += count

    async def complete_chunk(self, chunk_index: int) -> int:
        """Commit a chunk's counters and mark it completed.

        Returns:
            Number of chunks completed during this run so far.
        """
        async with self._lock:
            delta = self._in_flight.pop(chunk_index, SyncCounters())
            if chunk_index in self._completed:
                self.logger.warning(f"Chunk {chunk_index} completed twice; ignoring second commit")
                self._abandoned.add(delta)
                return self._completed_this_run
            self._committed.add(delta)
            self._completed.add(chunk_index)
            self._completed_this_run += 1
            return self._completed_this_run

    async def abandon_chunk(self, chunk_index: int, dead_letter: DeadLetter) -> None:
        """Set a chunk aside: its counters stay visible but are never checkpointed."""
        async with self._lock:
            delta = self._in_flight.pop(chunk_index, SyncCounters())
            self._abandoned.add(delta)
            self._dead_letters.append(dead_letter)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def snapshot(self) -> TrackerSnapshot:
        """Take a consistent copy of every counter bucket."""
        async with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> TrackerSnapshot:
        in_flight = SyncCounters()
        for delta in self._in_flight.values():
            in_flight.add(delta)

        committed = self._base.plus(self._committed)
        live = committed.plus(in_flight).plus(self._abandoned)
        return TrackerSnapshot(
            live=live,
            committed=committed,
            completed_chunks=tuple(sorted(self._completed)),
            chunks_in_flight=len(self._in_flight),
            in_flight_processed=in_flight.records_processed,
            total_chunks=self.total_chunks,
            chunks_completed_this_run=self._completed_this_run,
            dead_letters=tuple(self._dead_letters),
        )

    @property
    def dead_letters(self) -> List[DeadLetter]:
        return list(self._dead_letters)

    def is_completed(self, chunk_index: int) -> bool:
        return chunk_index in self._completed
