"""Fake warehouse sink for testing.

Stores records by id with upsert semantics, logs every batch and can fail
whole batches or individual records on demand.
"""

from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Set

from attendance_sync.platform.sync.types import AttendanceRecord, FailedRecord, WriteResult


class FakeRecordSink:
    """Test implementation of RecordSink.

    Usage:
        sink = FakeRecordSink()
        sink.fail_next(TransientSinkError("503", status_code=503))

        await orchestrator.execute_sync(config)
        assert sink.row_count == 50
    """

    def __init__(
        self,
        reject_ids: Optional[Set[str]] = None,
        skip_ids: Optional[Set[str]] = None,
        on_write: Optional[Callable[[Sequence[AttendanceRecord]], Awaitable[None]]] = None,
    ) -> None:
        """Initialize the fake sink.

        Args:
            reject_ids: Record ids reported as failed instead of written.
            skip_ids: Record ids reported as skipped instead of written.
            on_write: Awaited with each batch before it is written.
        """
        self.reject_ids = set(reject_ids or ())
        self.skip_ids = set(skip_ids or ())
        self.on_write = on_write
        self.rows: Dict[str, AttendanceRecord] = {}
        self.batches: List[List[AttendanceRecord]] = []  # successful writes only
        self.attempts = 0
        self._queued_failures: List[Exception] = []
        self._always: Optional[Exception] = None

    async def write_batch(self, records: Sequence[AttendanceRecord]) -> WriteResult:
        """Upsert the batch and report per-record outcomes."""
        self.attempts += 1
        if self._always is not None:
            raise self._always
        if self._queued_failures:
            raise self._queued_failures.pop(0)
        if self.on_write is not None:
            await self.on_write(records)

        result = WriteResult()
        for record in records:
            if record.record_id in self.reject_ids:
                result.failed.append(FailedRecord(id=record.record_id, reason="rejected"))
            elif record.record_id in self.skip_ids:
                result.skipped.append(record.record_id)
            else:
                self.rows[record.record_id] = record
                result.succeeded.append(record.record_id)
        self.batches.append(list(records))
        return result

    # Failure injection

    def fail_next(self, error: Exception, times: int = 1) -> None:
        """Raise ``error`` on the next ``times`` writes."""
        self._queued_failures.extend([error] * times)

    def fail_always(self, error: Optional[Exception]) -> None:
        """Raise ``error`` on every write (None turns it off)."""
        self._always = error

    # Test helpers

    @property
    def row_count(self) -> int:
        return len(self.rows)

    @property
    def written_count(self) -> int:
        """Records across all accepted batches, counting rewrites."""
        return sum(len(batch) for batch in self.batches)
