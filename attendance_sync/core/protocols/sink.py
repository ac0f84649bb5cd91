"""RecordSink protocol: durable upserts into the warehouse."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, Sequence, runtime_checkable

if TYPE_CHECKING:
    from attendance_sync.platform.sync.types import AttendanceRecord, WriteResult


@runtime_checkable
class RecordSink(Protocol):
    """Upserts batches of attendance records.

    Writes must be safe to repeat: retried batches may overlap records that
    were already written.
    """

    async def write_batch(self, records: Sequence[AttendanceRecord]) -> WriteResult:
        """Write a batch and report per-record outcomes.

        Raises:
            TransientSinkError: Retryable failure for the whole batch.
            PermanentRecordError: The whole batch was rejected.
        """
        ...
