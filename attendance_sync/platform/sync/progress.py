"""Throttled progress reporting.

Workers hand counter snapshots to ``ProgressEmitter.notify``, which only
stores the latest one. A ticker task turns the latest snapshot into a
``ProgressUpdate`` at most once per interval, so a burst of batches
finishing together produces a single emission. ``stop`` always emits the
final update, whatever the ticker did.
"""

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque, List, Optional, Sequence, Tuple

from attendance_sync.core.logging import ContextualLogger
from attendance_sync.platform.sync.config import MonitoringConfig
from attendance_sync.platform.sync.tracker import TrackerSnapshot
from attendance_sync.platform.sync.types import Chunk, ProgressUpdate

ProgressObserver = Callable[[ProgressUpdate], Awaitable[None]]
Clock = Callable[[], float]


class ThroughputWindow:
    """Records/second over a rolling time window."""

    def __init__(self, window_seconds: float) -> None:
        self.window_seconds = window_seconds
        self._samples: Deque[Tuple[float, int]] = deque()

    def observe(self, now: float, processed: int) -> None:
        self._samples.append((now, processed))
        # Keep one sample at or before the window start as the baseline.
        while len(self._samples) > 2 and self._samples[1][0] <= now - self.window_seconds:
            self._samples.popleft()

    def rate(self) -> float:
        if len(self._samples) < 2:
            return 0.0
        (t0, p0), (t1, p1) = self._samples[0], self._samples[-1]
        elapsed = t1 - t0
        if elapsed <= 0:
            return 0.0
        return max(p1 - p0, 0) / elapsed


def seed_records_per_chunk(chunks: Sequence[Chunk], expected_records_per_day: int) -> float:
    """Average records per chunk to assume until real counts arrive.

    ``expected_records_per_day`` is district-wide, so school-scoped chunks
    each get an even share of it.
    """
    if not chunks:
        return 0.0
    schools = len({chunk.school_code for chunk in chunks if chunk.school_code is not None})
    per_day = expected_records_per_day / schools if schools else float(expected_records_per_day)
    return sum(chunk.window.days for chunk in chunks) / len(chunks) * per_day


class ProgressEmitter:
    """Coalesces counter snapshots into periodic ProgressUpdates.

    Observer failures are logged and swallowed here so they never reach
    the workers that produced the counters.
    """

    def __init__(
        self,
        operation_id: str,
        config: MonitoringConfig,
        records_per_chunk_seed: float,
        logger: ContextualLogger,
        clock: Clock = time.monotonic,
    ) -> None:
        self.operation_id = operation_id
        self.config = config
        self.records_per_chunk_seed = records_per_chunk_seed
        self.logger = logger
        self._clock = clock

        self._observers: List[ProgressObserver] = []
        self._latest: Optional[TrackerSnapshot] = None
        self._latest_step = ""
        self._dirty = False
        self._throughput = ThroughputWindow(config.throughput_window_seconds)
        self._ticker: Optional[asyncio.Task] = None
        self._stopped = False
        self.emitted = 0

    @property
    def enabled(self) -> bool:
        return self.config.enable_progress_tracking

    def add_observer(self, observer: ProgressObserver) -> None:
        self._observers.append(observer)

    def notify(self, snapshot: TrackerSnapshot, current_step: str = "") -> None:
        """Store the latest snapshot; emission happens on the next tick."""
        if self._stopped:
            return
        self._latest = snapshot
        self._latest_step = current_step or self._latest_step
        self._dirty = True

    def start(self) -> None:
        """Start the ticker task (no-op when progress tracking is disabled)."""
        if not self.enabled or self._ticker is not None:
            return
        self._ticker = asyncio.create_task(
            self._run_ticker(), name=f"progress-{self.operation_id}"
        )

    async def flush(self) -> Optional[ProgressUpdate]:
        """Emit the latest snapshot if anything changed since the last emission."""
        if not self._dirty or self._latest is None:
            return None
        self._dirty = False
        update = self.build_update(self._latest, self._latest_step, is_final=False)
        await self._emit(update)
        return update

    async def stop(
        self, final_snapshot: TrackerSnapshot, current_step: str = "finished"
    ) -> Optional[ProgressUpdate]:
        """Stop the ticker and emit the final update."""
        self._stopped = True
        if self._ticker is not None:
            self._ticker.cancel()
            try:
                await self._ticker
            except asyncio.CancelledError:
                pass
            self._ticker = None
        if not self.enabled:
            return None
        self._dirty = False
        update = self.build_update(final_snapshot, current_step, is_final=True)
        await self._emit(update)
        return update

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_ticker(self) -> None:
        while True:
            await asyncio.sleep(self.config.progress_interval_seconds)
            await self.flush()

    async def _emit(self, update: ProgressUpdate) -> None:
        self.emitted += 1
        for observer in list(self._observers):
            try:
                await observer(update)
            except Exception as exc:
                self.logger.error(f"Progress observer failed: {exc}", exc_info=exc)

    def estimated_records_per_chunk(self, snapshot: TrackerSnapshot) -> float:
        """Observed average once chunks complete, otherwise the configured seed."""
        if snapshot.chunks_completed > 0 and snapshot.chunks_completed_this_run > 0:
            return snapshot.committed.records_processed / snapshot.chunks_completed
        return self.records_per_chunk_seed

    def build_update(
        self, snapshot: TrackerSnapshot, current_step: str, is_final: bool
    ) -> ProgressUpdate:
        """Derive percentage, throughput and ETA from a snapshot."""
        processed = snapshot.live.records_processed
        remaining_chunks = snapshot.chunks_remaining
        per_chunk = self.estimated_records_per_chunk(snapshot)
        projected = int(round(remaining_chunks * per_chunk))
        outstanding = max(0, projected - snapshot.in_flight_processed)
        if remaining_chunks == 0:
            outstanding = 0
        estimated_total = processed + outstanding

        if estimated_total > 0:
            percentage = processed / estimated_total * 100
        else:
            percentage = 100.0 if remaining_chunks == 0 else 0.0
        percentage = min(max(percentage, 0.0), 100.0)

        self._throughput.observe(self._clock(), processed)
        throughput = self._throughput.rate()
        if outstanding == 0:
            eta: Optional[float] = 0.0
        elif throughput > 0:
            eta = outstanding / throughput
        else:
            eta = None

        return ProgressUpdate(
            operation_id=self.operation_id,
            percentage=round(percentage, 2),
            records_processed=processed,
            estimated_total_records=estimated_total,
            throughput=round(throughput, 3),
            eta_seconds=eta,
            chunks_completed=snapshot.chunks_completed,
            total_chunks=snapshot.total_chunks,
            batches_processed=snapshot.live.batches_processed,
            current_step=current_step,
            is_final=is_final,
        )
