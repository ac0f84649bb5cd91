"""Sync orchestrator: chunk queue, worker pool, checkpoints and results."""

import asyncio
import random
import string
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Tuple, Union

from attendance_sync.adapters.event_bus import InMemoryEventBus
from attendance_sync.core.events import (
    CheckpointSavedEvent,
    ProgressUpdatedEvent,
    SyncEventType,
    SyncLifecycleEvent,
)
from attendance_sync.core.exceptions import (
    CheckpointError,
    CheckpointPersistenceError,
    ConfigurationError,
    InvalidStateError,
    OrchestratorFatalError,
)
from attendance_sync.core.logging import ContextualLogger, LoggerConfigurator
from attendance_sync.core.protocols import (
    CheckpointStore,
    CircuitBreaker,
    EventBus,
    RecordSink,
    SourceClient,
    SyncMetrics,
)
from attendance_sync.core.shared_models import SyncStatus
from attendance_sync.platform.sync.checkpoint import reconcile_config
from attendance_sync.platform.sync.chunker import DateChunker
from attendance_sync.platform.sync.config import SyncConfiguration
from attendance_sync.platform.sync.pipeline import ChunkPipeline, ChunkStatus, Sleep
from attendance_sync.platform.sync.progress import (
    Clock,
    ProgressEmitter,
    seed_records_per_chunk,
)
from attendance_sync.platform.sync.retry import RetryPolicy
from attendance_sync.platform.sync.tracker import SyncTracker, TrackerSnapshot
from attendance_sync.platform.sync.types import Checkpoint, Chunk, ProgressUpdate, SyncResult
from attendance_sync.platform.sync.worker_pool import AsyncWorkerPool

ConfigInput = Union[SyncConfiguration, Mapping[str, Any]]

_ALLOWED_TRANSITIONS = {
    SyncStatus.IDLE: {SyncStatus.INITIALIZING},
    SyncStatus.INITIALIZING: {SyncStatus.RUNNING, SyncStatus.FAILED},
    SyncStatus.RUNNING: {SyncStatus.COMPLETED, SyncStatus.FAILED, SyncStatus.CANCELLED},
}

_TERMINAL_EVENTS = {
    SyncStatus.COMPLETED: SyncEventType.COMPLETED,
    SyncStatus.FAILED: SyncEventType.FAILED,
    SyncStatus.CANCELLED: SyncEventType.CANCELLED,
}


def new_operation_id() -> str:
    """``attendance-sync-<epoch ms>-<9 random chars>``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"attendance-sync-{int(time.time() * 1000)}-{suffix}"


class SyncOrchestrator:
    """Runs one attendance sync from configuration (or checkpoint) to result.

    Lifecycle: ``idle -> initializing -> running -> completed | failed | cancelled``.
    An instance runs once; build a new one for the next run.

    Work is split into chunks (date window x school). A bounded worker pool
    claims chunks from a shared queue and hands each one to the
    ChunkPipeline; every counter delta goes through the SyncTracker.
    Cancellation is cooperative: workers finish their current batch, no new
    chunk is started, and a checkpoint is saved before returning.
    """

    def __init__(
        self,
        source: SourceClient,
        sink: RecordSink,
        checkpoint_store: CheckpointStore,
        config: Optional[ConfigInput] = None,
        *,
        event_bus: Optional[EventBus] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        metrics: Optional[SyncMetrics] = None,
        operation_id: Optional[str] = None,
        rng: Optional[random.Random] = None,
        sleep: Sleep = asyncio.sleep,
        clock: Clock = time.monotonic,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            source: SIS client.
            sink: Warehouse writer.
            checkpoint_store: Where checkpoints are saved and loaded.
            config: Run configuration; validated here, before any I/O.
            event_bus: Bus for lifecycle/progress events (in-memory by default).
            circuit_breaker: Per-school breaker; None disables it.
            metrics: Metrics sink, used when ``monitoring.enable_metrics`` is on.
            operation_id: Fixed id for a fresh run (generated when omitted).
            rng: Random source for retry jitter.
            sleep: Sleep used between retries.
            clock: Monotonic clock used for throughput.

        Raises:
            ConfigurationError: If ``config`` is invalid.
        """
        self.source = source
        self.sink = sink
        self.checkpoint_store = checkpoint_store
        self._config: Optional[SyncConfiguration] = (
            SyncConfiguration.parse(config) if config is not None else None
        )
        self._event_bus: EventBus = event_bus if event_bus is not None else InMemoryEventBus()
        self.circuit_breaker = circuit_breaker
        self.metrics = metrics
        self._rng = rng
        self._sleep = sleep
        self._clock = clock

        self._operation_id = operation_id or new_operation_id()
        self._status = SyncStatus.IDLE
        self._cancel_requested = False
        self._resumed_from: Optional[str] = None
        self._tracker: Optional[SyncTracker] = None
        self._checkpoints_saved = 0
        self._date_windows = 0
        self._base_processed = 0
        self.logger: ContextualLogger = self._build_logger()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def status(self) -> SyncStatus:
        return self._status

    @property
    def operation_id(self) -> str:
        return self._operation_id

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def config(self) -> Optional[SyncConfiguration]:
        return self._config

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def cancel(self) -> None:
        """Request cooperative cancellation.

        Workers finish the batch they are on and claim no further chunks.
        """
        if self._status.is_terminal:
            return
        self._cancel_requested = True
        self.logger.info("🛑 Cancellation requested")

    async def execute_sync(
        self,
        config: Optional[ConfigInput] = None,
        *,
        checkpoint: Optional[Checkpoint] = None,
    ) -> SyncResult:
        """Run the sync to completion or cancellation.

        Args:
            config: Run configuration; overrides the one given at construction.
            checkpoint: Resume from this checkpoint: its completed chunks are
                skipped and its counters are the starting point.

        Returns:
            The final SyncResult (status completed, cancelled or failed).

        Raises:
            InvalidStateError: The orchestrator has already run.
            ConfigurationError: Invalid or missing configuration, raised before any I/O.
            ConfigurationMismatchError: ``config`` changes the checkpoint's chunk identity.
        """
        if self._status != SyncStatus.IDLE:
            raise InvalidStateError(
                f"execute_sync can only run once per orchestrator (status: {self._status.value})"
            )

        supplied = SyncConfiguration.parse(config) if config is not None else self._config
        if checkpoint is not None:
            run_config = reconcile_config(checkpoint, supplied)
            self._operation_id = checkpoint.operation_id
            self.logger = self._build_logger()
        elif supplied is not None:
            run_config = supplied
        else:
            raise ConfigurationError("No sync configuration supplied")

        self._config = run_config
        return await self._run(run_config, checkpoint)

    async def resume_from_checkpoint(
        self, checkpoint_id: str, config: Optional[ConfigInput] = None
    ) -> SyncResult:
        """Load a checkpoint and finish the chunks it had not completed.

        The operation id of the checkpoint is kept, and counters continue
        from the checkpoint's cumulative values.

        Raises:
            CheckpointNotFoundError: Unknown checkpoint id.
            CheckpointVersionError: Checkpoint written by an incompatible version.
            ConfigurationMismatchError: ``config`` (or the constructor config)
                changes the checkpoint's chunk identity.
        """
        if self._status != SyncStatus.IDLE:
            raise InvalidStateError(
                "resume_from_checkpoint requires an idle orchestrator "
                f"(status: {self._status.value})"
            )
        supplied = SyncConfiguration.parse(config) if config is not None else self._config
        checkpoint = await self.checkpoint_store.load(checkpoint_id)
        self._resumed_from = checkpoint_id
        self.logger.info(
            f"♻️ Resuming {checkpoint.operation_id} from checkpoint {checkpoint_id} "
            f"({len(checkpoint.completed_chunks)} chunks already completed)"
        )
        return await self.execute_sync(supplied, checkpoint=checkpoint)

    async def save_checkpoint(self) -> str:
        """Persist the completed chunk set and committed counters.

        Allowed while running and after the run has finished.

        Returns:
            The checkpoint id, usable with ``resume_from_checkpoint``.

        Raises:
            InvalidStateError: Called before the run started.
            CheckpointError: The store failed to persist the checkpoint.
        """
        return await self._save_checkpoint(automatic=False)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def _run(self, config: SyncConfiguration, checkpoint: Optional[Checkpoint]) -> SyncResult:
        started_at = datetime.now(timezone.utc)
        started = time.monotonic()
        self._transition(SyncStatus.INITIALIZING)

        # Phase 1: chunk list
        phase_start = time.monotonic()
        self.logger.info("🚀 PHASE 1: Building chunk list...")
        chunks = DateChunker.build_chunks(config)
        valid_indices = {chunk.index for chunk in chunks}
        already_done = set(checkpoint.completed_chunks) & valid_indices if checkpoint else set()
        remaining = [chunk for chunk in chunks if chunk.index not in already_done]
        self._date_windows = len({chunk.window.position for chunk in chunks})
        self._base_processed = checkpoint.sync_counters.records_processed if checkpoint else 0
        self._tracker = SyncTracker(
            total_chunks=len(chunks),
            logger=self.logger,
            completed_chunks=already_done,
            base_counters=checkpoint.sync_counters if checkpoint else None,
        )
        metrics = self.metrics if config.monitoring.enable_metrics else None
        progress = ProgressEmitter(
            self._operation_id,
            config.monitoring,
            records_per_chunk_seed=seed_records_per_chunk(
                chunks, config.monitoring.expected_records_per_day
            ),
            logger=self.logger,
            clock=self._clock,
        )
        progress.add_observer(self._publish_progress)
        pipeline = ChunkPipeline(
            operation_id=self._operation_id,
            config=config,
            source=self.source,
            sink=self.sink,
            tracker=self._tracker,
            retry_policy=RetryPolicy(config.retry, rng=self._rng),
            event_bus=self._event_bus,
            logger=self.logger,
            progress=progress,
            circuit_breaker=self.circuit_breaker if config.circuit_breaker.enabled else None,
            metrics=metrics,
            should_stop=lambda: self._cancel_requested,
            sleep=self._sleep,
        )
        await self._event_bus.publish(
            SyncLifecycleEvent.initialized(
                self._operation_id,
                total_chunks=len(chunks),
                chunks_remaining=len(remaining),
                resumed_from=self._resumed_from,
            )
        )
        self.logger.info(
            f"✅ PHASE 1 complete ({time.monotonic() - phase_start:.2f}s): "
            f"{len(chunks)} chunks, {len(remaining)} to process"
        )

        # Phase 2: workers
        self._transition(SyncStatus.RUNNING)
        await self._event_bus.publish(
            SyncLifecycleEvent.running(self._operation_id, len(chunks), len(remaining))
        )
        phase_start = time.monotonic()
        self.logger.info(
            f"🚀 PHASE 2: Processing {len(remaining)} chunks "
            f"(parallelism: {config.parallelism}, batch_size: {config.batch_size})"
        )
        pool: AsyncWorkerPool[Chunk] = AsyncWorkerPool(
            config.parallelism, logger=self.logger, metrics=metrics
        )
        progress.start()

        final_status = SyncStatus.FAILED
        error: Optional[str] = None
        try:
            await pool.run(
                remaining,
                self._chunk_handler(pipeline, config),
                should_stop=lambda: self._cancel_requested,
            )
            final_status, error = await self._decide_outcome()
        except asyncio.CancelledError:
            self.logger.info("Task cancelled, saving checkpoint before propagating...")
            await self._finish(SyncStatus.CANCELLED, None, progress, metrics, started_at, started)
            raise
        except OrchestratorFatalError as exc:
            error = exc.message or str(exc)
            self.logger.error(f"❌ Sync aborted: {error}")
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            self.logger.error(f"❌ Unexpected error during sync: {error}", exc_info=True)
        self.logger.info(f"✅ PHASE 2 complete ({time.monotonic() - phase_start:.2f}s)")

        # Phase 3: finalize
        return await self._finish(final_status, error, progress, metrics, started_at, started)

    def _chunk_handler(
        self, pipeline: ChunkPipeline, config: SyncConfiguration
    ) -> Callable[[Chunk], Any]:
        every = config.checkpoint_every_chunks

        async def handle(chunk: Chunk) -> None:
            outcome = await pipeline.process(chunk)
            if outcome.status != ChunkStatus.COMPLETED or not every:
                return
            if outcome.completed_ordinal % every == 0:
                try:
                    await self._save_checkpoint(automatic=True)
                except CheckpointError as exc:
                    self.logger.warning(f"Periodic checkpoint failed: {exc}")

        return handle

    async def _decide_outcome(self) -> Tuple[SyncStatus, Optional[str]]:
        snapshot = await self._require_tracker().snapshot()
        if self._cancel_requested and snapshot.chunks_remaining > 0:
            return SyncStatus.CANCELLED, None
        if snapshot.chunks_completed_this_run == 0 and snapshot.dead_letters:
            reasons = sorted({letter.reason.value for letter in snapshot.dead_letters})
            error = (
                f"Source failed for every attempted chunk "
                f"({len(snapshot.dead_letters)} dead-lettered: {', '.join(reasons)})"
            )
            self.logger.error(f"❌ {error}")
            return SyncStatus.FAILED, error
        return SyncStatus.COMPLETED, None

    async def _finish(
        self,
        final_status: SyncStatus,
        error: Optional[str],
        progress: ProgressEmitter,
        metrics: Optional[SyncMetrics],
        started_at: datetime,
        started: float,
    ) -> SyncResult:
        tracker = self._require_tracker()
        snapshot = await tracker.snapshot()
        await progress.stop(snapshot, current_step=final_status.value)
        self._transition(final_status)

        checkpoint_id: Optional[str] = None
        checkpoint_error: Optional[str] = None
        try:
            checkpoint_id = await self._save_checkpoint(automatic=True)
        except CheckpointError as exc:
            checkpoint_error = exc.message or str(exc)
            self.logger.error(f"Checkpoint save failed: {checkpoint_error}")

        result = self._build_result(
            final_status, error, snapshot, started_at, started, checkpoint_id, checkpoint_error
        )
        await self._event_bus.publish(
            SyncLifecycleEvent.finished(
                _TERMINAL_EVENTS[final_status],
                self._operation_id,
                snapshot.live,
                total_chunks=snapshot.total_chunks,
                chunks_remaining=snapshot.chunks_remaining,
                error=error,
            )
        )
        if metrics is not None:
            metrics.inc_runs(final_status.value)
        self.logger.info(
            f"🏁 Sync {final_status.value}: {result.records_processed} processed, "
            f"{result.records_successful} successful, {result.records_failed} failed, "
            f"{result.records_skipped} skipped in {result.execution_time_seconds:.2f}s"
        )
        return result

    def _build_result(
        self,
        status: SyncStatus,
        error: Optional[str],
        snapshot: TrackerSnapshot,
        started_at: datetime,
        started: float,
        checkpoint_id: Optional[str],
        checkpoint_error: Optional[str],
    ) -> SyncResult:
        config = self._config
        elapsed = time.monotonic() - started
        live = snapshot.live
        run_processed = live.records_processed - self._base_processed
        metadata: Dict[str, Any] = {
            "total_chunks": snapshot.total_chunks,
            "chunks_completed": snapshot.chunks_completed,
            "chunks_completed_this_run": snapshot.chunks_completed_this_run,
            "chunks_remaining": snapshot.chunks_remaining,
            "chunks_dead_lettered": len(snapshot.dead_letters),
            "batches_processed": live.batches_processed,
            "schools": list(config.school_codes) if config else [],
            "date_windows": self._date_windows,
            "resumed_from": self._resumed_from,
            "checkpoints_saved": self._checkpoints_saved,
            "records_per_second": round(run_processed / elapsed, 3) if elapsed > 0 else 0.0,
        }
        if config is not None:
            metadata.update(
                parallelism=config.parallelism,
                batch_size=config.batch_size,
                chunk_days=config.chunk_days,
            )
        return SyncResult(
            operation_id=self._operation_id,
            status=status,
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
            execution_time_seconds=round(elapsed, 3),
            records_processed=live.records_processed,
            records_successful=live.records_successful,
            records_failed=live.records_failed,
            records_skipped=live.records_skipped,
            retry_attempts=live.retry_attempts,
            error=error,
            checkpoint_id=checkpoint_id,
            checkpoint_error=checkpoint_error,
            dead_letters=list(snapshot.dead_letters),
            metadata=metadata,
        )

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    async def _save_checkpoint(self, automatic: bool) -> str:
        if self._status in (SyncStatus.IDLE, SyncStatus.INITIALIZING) or self._config is None:
            raise InvalidStateError(
                "Checkpoints can only be saved during or after running "
                f"(status: {self._status.value})"
            )
        snapshot = await self._require_tracker().snapshot()
        checkpoint = Checkpoint(
            operation_id=self._operation_id,
            config=self._config,
            completed_chunks=snapshot.completed_chunks,
            counters=snapshot.committed.to_dict(),
        )
        try:
            checkpoint_id = await self.checkpoint_store.save(checkpoint)
        except CheckpointError:
            raise
        except Exception as exc:
            raise CheckpointPersistenceError(f"Failed to save checkpoint: {exc}") from exc

        self._checkpoints_saved += 1
        self.logger.info(
            f"💾 Checkpoint {checkpoint_id} saved "
            f"({len(checkpoint.completed_chunks)}/{snapshot.total_chunks} chunks)"
        )
        await self._event_bus.publish(
            CheckpointSavedEvent(
                operation_id=self._operation_id,
                checkpoint_id=checkpoint_id,
                completed_chunks=len(checkpoint.completed_chunks),
                automatic=automatic,
            )
        )
        return checkpoint_id

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _publish_progress(self, update: ProgressUpdate) -> None:
        if self.metrics is not None and self._config and self._config.monitoring.enable_metrics:
            self.metrics.set_progress(update.percentage)
        await self._event_bus.publish(ProgressUpdatedEvent.from_update(update))

    def _transition(self, target: SyncStatus) -> None:
        if target not in _ALLOWED_TRANSITIONS.get(self._status, set()):
            raise InvalidStateError(
                f"Illegal transition {self._status.value} -> {target.value}"
            )
        self.logger.debug(f"State {self._status.value} -> {target.value}")
        self._status = target

    def _require_tracker(self) -> SyncTracker:
        if self._tracker is None:
            raise InvalidStateError("Sync has not been initialized")
        return self._tracker

    def _build_logger(self) -> ContextualLogger:
        return LoggerConfigurator.configure_logger(
            __name__, dimensions={"operation_id": self._operation_id}
        )
