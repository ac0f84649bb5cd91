"""Per-chunk pipeline: page through the source, write batches, report.

One ChunkPipeline is shared by every worker of a run; ``process`` handles
exactly one chunk and keeps no per-chunk state on the instance.

For each chunk:
1. Check the per-school circuit breaker
2. Fetch pages in order (retrying transient failures)
3. Split pages into batches of at most ``batch_size`` and write each one
   (retrying transient failures)
4. Hand every terminal batch's counters to the tracker and publish
   ``batch.processed``
5. Mark the chunk completed, or dead-letter it when the source gives up
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional, Sequence, Tuple, TypeVar

from tenacity import AsyncRetrying

from attendance_sync.core.events import BatchProcessedEvent, ChunkEvent, ChunkEventType
from attendance_sync.core.exceptions import OrchestratorFatalError, SourceAuthenticationError
from attendance_sync.core.shared_models import BatchOutcome, DeadLetterReason
from attendance_sync.platform.sync.retry import RetryPolicy, log_retry_attempt
from attendance_sync.platform.sync.types import (
    AttendanceRecord,
    Chunk,
    DeadLetter,
    FailedRecord,
    SourcePage,
    SyncCounters,
)

if TYPE_CHECKING:
    from attendance_sync.core.logging import ContextualLogger
    from attendance_sync.core.protocols import (
        CircuitBreaker,
        EventBus,
        RecordSink,
        SourceClient,
        SyncMetrics,
    )
    from attendance_sync.platform.sync.config import SyncConfiguration
    from attendance_sync.platform.sync.progress import ProgressEmitter
    from attendance_sync.platform.sync.tracker import SyncTracker

R = TypeVar("R")
Sleep = Callable[[float], Awaitable[Any]]


class ChunkStatus(str, Enum):
    """How a chunk left the pipeline."""

    COMPLETED = "completed"
    DEAD_LETTERED = "dead_lettered"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True)
class ChunkOutcome:
    """Result of ``ChunkPipeline.process``."""

    chunk_index: int
    status: ChunkStatus
    batches: int = 0
    records_processed: int = 0
    dead_letter: Optional[DeadLetter] = None
    completed_ordinal: int = 0  # 1-based rank among chunks completed this run


class RetriesFailed(Exception):
    """A call failed permanently or ran out of retries.

    Carries the last error and how many retries were consumed before
    giving up.
    """

    def __init__(self, error: BaseException, retries: int) -> None:
        self.error = error
        self.retries = retries
        super().__init__(str(error))


class ChunkPipeline:
    """Processes one chunk at a time on behalf of a worker."""

    def __init__(
        self,
        operation_id: str,
        config: "SyncConfiguration",
        source: "SourceClient",
        sink: "RecordSink",
        tracker: "SyncTracker",
        retry_policy: RetryPolicy,
        event_bus: "EventBus",
        logger: "ContextualLogger",
        progress: Optional["ProgressEmitter"] = None,
        circuit_breaker: Optional["CircuitBreaker"] = None,
        metrics: Optional["SyncMetrics"] = None,
        should_stop: Callable[[], bool] = lambda: False,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """Initialize the pipeline with every collaborator of a run."""
        self.operation_id = operation_id
        self.config = config
        self.source = source
        self.sink = sink
        self.tracker = tracker
        self.retry_policy = retry_policy
        self.event_bus = event_bus
        self.logger = logger
        self.progress = progress
        self.circuit_breaker = circuit_breaker
        self.metrics = metrics
        self.should_stop = should_stop
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Chunk
    # ------------------------------------------------------------------

    async def process(self, chunk: Chunk) -> ChunkOutcome:
        """Run one chunk to a terminal outcome (or stop between batches)."""
        chunk_logger = self.logger.with_context(
            chunk_index=chunk.index, school_code=chunk.school_code or "*"
        )

        if self.circuit_breaker is not None:
            if not await self.circuit_breaker.is_available(chunk.breaker_key):
                chunk_logger.warning(f"⛔ Circuit open for {chunk.breaker_key}, skipping chunk")
                return await self._dead_letter(
                    chunk, DeadLetterReason.CIRCUIT_OPEN, f"circuit open for {chunk.breaker_key}"
                )

        await self.tracker.start_chunk(chunk.index)
        await self.event_bus.publish(
            ChunkEvent.for_chunk(ChunkEventType.STARTED, self.operation_id, chunk)
        )
        chunk_logger.debug(f"Chunk started ({chunk.window})")

        page_token: Optional[str] = None
        batch_seq = 0
        processed = 0
        while True:
            if self.should_stop():
                chunk_logger.info(f"Stopping chunk after {batch_seq} batches")
                return ChunkOutcome(chunk.index, ChunkStatus.INTERRUPTED, batch_seq, processed)

            try:
                page = await self._fetch_page(chunk, page_token, chunk_logger)
            except RetriesFailed as failure:
                if failure.retries:
                    await self.tracker.record_retries(chunk.index, failure.retries)
                return await self._source_failed(chunk, failure.error, chunk_logger)

            for records, rejected in _split_page(page, self.config.batch_size):
                if batch_seq and self.should_stop():
                    chunk_logger.info(f"Stopping chunk mid-page after {batch_seq} batches")
                    return ChunkOutcome(
                        chunk.index, ChunkStatus.INTERRUPTED, batch_seq, processed
                    )
                delta = await self._write_batch(chunk, batch_seq, records, rejected, chunk_logger)
                processed += delta.records_processed
                batch_seq += 1

            if page.next_page_token is None:
                break
            page_token = page.next_page_token

        ordinal = await self.tracker.complete_chunk(chunk.index)
        if self.circuit_breaker is not None:
            await self.circuit_breaker.record_success(chunk.breaker_key)
        if self.metrics is not None:
            self.metrics.inc_chunks(ChunkStatus.COMPLETED.value)
        await self.event_bus.publish(
            ChunkEvent.for_chunk(
                ChunkEventType.COMPLETED,
                self.operation_id,
                chunk,
                records_processed=processed,
                batches=batch_seq,
            )
        )
        chunk_logger.debug(f"Chunk completed: {processed} records in {batch_seq} batches")
        return ChunkOutcome(
            chunk.index, ChunkStatus.COMPLETED, batch_seq, processed, completed_ordinal=ordinal
        )

    async def _source_failed(
        self, chunk: Chunk, error: BaseException, chunk_logger: "ContextualLogger"
    ) -> ChunkOutcome:
        if self.circuit_breaker is not None:
            await self.circuit_breaker.record_failure(chunk.breaker_key)
        reason = (
            DeadLetterReason.AUTHENTICATION_FAILED
            if isinstance(error, SourceAuthenticationError)
            else DeadLetterReason.SOURCE_FAILED
        )
        chunk_logger.error(f"❌ Source failed for chunk {chunk.index}: {error}")
        return await self._dead_letter(chunk, reason, str(error))

    async def _dead_letter(
        self, chunk: Chunk, reason: DeadLetterReason, error: Optional[str]
    ) -> ChunkOutcome:
        dead_letter = DeadLetter.for_chunk(chunk, reason, error)
        await self.tracker.abandon_chunk(chunk.index, dead_letter)
        if self.metrics is not None:
            self.metrics.inc_chunks(ChunkStatus.DEAD_LETTERED.value)
        await self.event_bus.publish(
            ChunkEvent.for_chunk(
                ChunkEventType.DEAD_LETTERED, self.operation_id, chunk, reason=reason.value
            )
        )
        return ChunkOutcome(chunk.index, ChunkStatus.DEAD_LETTERED, dead_letter=dead_letter)

    # ------------------------------------------------------------------
    # Source / sink calls
    # ------------------------------------------------------------------

    async def _fetch_page(
        self, chunk: Chunk, page_token: Optional[str], chunk_logger: "ContextualLogger"
    ) -> SourcePage:
        page, retries = await self._call_with_retry(
            "source",
            lambda: self.source.fetch_page(
                chunk.school_code, chunk.window, page_token, self.config.batch_size
            ),
            self.config.timeouts.source_seconds,
            chunk_logger,
        )
        if retries:
            await self.tracker.record_retries(chunk.index, retries)
        return page

    async def _write_batch(
        self,
        chunk: Chunk,
        batch_seq: int,
        records: Sequence[AttendanceRecord],
        rejected: Sequence[FailedRecord],
        chunk_logger: "ContextualLogger",
    ) -> SyncCounters:
        """Write one batch and turn its outcome into a counter delta."""
        started = time.monotonic()
        succeeded = skipped = 0
        failed = len(rejected)
        retries = 0

        if records:
            try:
                result, retries = await self._call_with_retry(
                    "sink",
                    lambda: self.sink.write_batch(records),
                    self.config.timeouts.sink_seconds,
                    chunk_logger,
                )
            except RetriesFailed as failure:
                retries = failure.retries
                failed += len(records)
                chunk_logger.warning(
                    f"Batch {batch_seq} failed after {retries} retries: {failure.error}"
                )
            else:
                succeeded = len(result.succeeded)
                skipped = len(result.skipped)
                failed += len(result.failed)
                unaccounted = len(records) - (succeeded + skipped + len(result.failed))
                if unaccounted > 0:
                    chunk_logger.warning(
                        f"Sink did not report {unaccounted} records of batch {batch_seq}; "
                        "counting them as failed"
                    )
                    failed += unaccounted

        delta = SyncCounters(
            records_processed=len(records) + len(rejected),
            records_successful=succeeded,
            records_failed=failed,
            records_skipped=skipped,
            retry_attempts=retries,
            batches_processed=1,
        )
        await self.tracker.record_batch(chunk.index, delta)

        duration = time.monotonic() - started
        outcome = _batch_outcome(delta)
        if self.metrics is not None:
            self.metrics.inc_records("succeeded", succeeded)
            self.metrics.inc_records("failed", failed)
            self.metrics.inc_records("skipped", skipped)
            self.metrics.observe_batch_duration(duration)

        await self.event_bus.publish(
            BatchProcessedEvent(
                operation_id=self.operation_id,
                chunk_index=chunk.index,
                batch_seq=batch_seq,
                outcome=outcome.value,
                processed=delta.records_processed,
                succeeded=succeeded,
                failed=failed,
                skipped=skipped,
                retry_attempts=retries,
                duration_ms=duration * 1000,
            )
        )
        if self.progress is not None:
            self.progress.notify(
                await self.tracker.snapshot(), current_step=f"chunk {chunk.index} batch {batch_seq}"
            )
        return delta

    async def _call_with_retry(
        self,
        stage: str,
        call: Callable[[], Awaitable[R]],
        timeout: float,
        call_logger: "ContextualLogger",
    ) -> Tuple[R, int]:
        """Run ``call`` under the retry policy and a per-attempt timeout.

        Returns:
            The result and the number of retries it took.

        Raises:
            RetriesFailed: Permanent error, or transient errors exhausted retries.
            OrchestratorFatalError: Propagated untouched.
        """
        max_attempts = self.retry_policy.config.max_retries + 1
        log_before_sleep = log_retry_attempt(call_logger, stage, max_attempts)

        def before_sleep(retry_state: Any) -> None:
            log_before_sleep(retry_state)
            if self.metrics is not None:
                self.metrics.inc_retries(stage)

        retrying = AsyncRetrying(
            stop=self.retry_policy.stop,
            retry=self.retry_policy.retry_condition,
            wait=self.retry_policy.wait,
            sleep=self._sleep,
            before_sleep=before_sleep,
            reraise=True,
        )
        attempts = 0
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    result = await asyncio.wait_for(call(), timeout=timeout)
        except OrchestratorFatalError:
            raise
        except Exception as exc:
            raise RetriesFailed(exc, max(attempts - 1, 0)) from exc
        return result, attempts - 1


def _split_page(
    page: SourcePage, batch_size: int
) -> List[Tuple[List[AttendanceRecord], List[FailedRecord]]]:
    """Split a page into ordered batches; rejected records ride with the first one."""
    records = list(page.records)
    batches = [
        (records[start : start + batch_size], []) for start in range(0, len(records), batch_size)
    ]
    if page.rejected:
        if batches:
            batches[0] = (batches[0][0], list(page.rejected))
        else:
            batches.append(([], list(page.rejected)))
    return batches


def _batch_outcome(delta: SyncCounters) -> BatchOutcome:
    if delta.records_failed == 0:
        return BatchOutcome.SUCCEEDED
    if delta.records_successful or delta.records_skipped:
        return BatchOutcome.PARTIAL
    return BatchOutcome.FAILED
