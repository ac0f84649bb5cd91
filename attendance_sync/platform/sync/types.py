"""Value types shared by the sync pipeline.

Windows and chunks are plain frozen dataclasses (hashable, cheap to build
by the thousand). Anything that crosses a process boundary (records,
checkpoints, results, progress snapshots) is a Pydantic model.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from attendance_sync.core.shared_models import DeadLetterReason, SyncStatus
from attendance_sync.platform.sync.config import SyncConfiguration

CHECKPOINT_SCHEMA_VERSION = "attendance-sync.checkpoint/v1"

PERIOD_COUNT = 7


# ---------------------------------------------------------------------------
# Chunking
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DateWindow:
    """Inclusive date window.

    ``position`` is the window's place in the unfiltered window sequence,
    so dropping non-school windows never shifts the others.
    """

    start: date
    end: date
    position: int = 0

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    def __str__(self) -> str:
        return f"{self.start.isoformat()}..{self.end.isoformat()}"


@dataclass(frozen=True)
class Chunk:
    """A window scoped to one school (or to every school when unfiltered)."""

    index: int
    window: DateWindow
    school_code: Optional[str] = None

    @property
    def breaker_key(self) -> str:
        return f"school:{self.school_code or '*'}"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


def school_year_for(day: date) -> str:
    """School year label for a date; years roll over in August."""
    if day.month >= 8:
        return f"{day.year}-{day.year + 1}"
    return f"{day.year - 1}-{day.year}"


class AttendanceRecord(BaseModel):
    """One student's attendance for one school day."""

    model_config = ConfigDict(frozen=True)

    student_id: str = Field(min_length=1)
    school_code: str = Field(min_length=1)
    attendance_date: date
    school_year: str = ""
    daily_status: str = "PRESENT"
    is_present: bool = True
    is_full_day_absent: bool = False
    tardy_count: int = Field(0, ge=0)
    period_statuses: Dict[int, str] = Field(default_factory=dict)

    @field_validator("period_statuses")
    @classmethod
    def check_periods(cls, value: Dict[int, str]) -> Dict[int, str]:
        if any(period < 1 or period > PERIOD_COUNT for period in value):
            raise ValueError(f"periods must be within 1..{PERIOD_COUNT}")
        return value

    @model_validator(mode="before")
    @classmethod
    def default_school_year(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("school_year") and data.get("attendance_date"):
            day = data["attendance_date"]
            if isinstance(day, str):
                day = date.fromisoformat(day)
            data = {**data, "school_year": school_year_for(day)}
        return data

    @computed_field  # type: ignore[misc]
    @property
    def record_id(self) -> str:
        return f"{self.school_code}:{self.student_id}:{self.attendance_date.isoformat()}"

    def to_row(self) -> Dict[str, Any]:
        """Flatten into the warehouse column layout."""
        row: Dict[str, Any] = {
            "student_id": self.student_id,
            "school_code": self.school_code,
            "attendance_date": self.attendance_date.isoformat(),
            "school_year": self.school_year,
            "daily_status": self.daily_status,
            "is_present": self.is_present,
            "is_full_day_absent": self.is_full_day_absent,
            "tardy_count": self.tardy_count,
        }
        for period in range(1, PERIOD_COUNT + 1):
            row[f"period_{period}_status"] = self.period_statuses.get(period)
        return row


@dataclass(frozen=True)
class FailedRecord:
    """A record that could not be written or was rejected by the source."""

    id: str
    reason: str


@dataclass
class SourcePage:
    """One page from the source.

    ``rejected`` holds payloads that failed validation; they count as
    permanently failed records of the batch.
    """

    records: List[AttendanceRecord] = field(default_factory=list)
    next_page_token: Optional[str] = None
    rejected: List[FailedRecord] = field(default_factory=list)


@dataclass
class WriteResult:
    """Per-record outcome of one sink write."""

    succeeded: List[str] = field(default_factory=list)
    failed: List[FailedRecord] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Counters
# ---------------------------------------------------------------------------


@dataclass
class SyncCounters:
    """Cumulative record counters for a run."""

    records_processed: int = 0
    records_successful: int = 0
    records_failed: int = 0
    records_skipped: int = 0
    retry_attempts: int = 0
    batches_processed: int = 0

    def add(self, other: "SyncCounters") -> None:
        self.records_processed += other.records_processed
        self.records_successful += other.records_successful
        self.records_failed += other.records_failed
        self.records_skipped += other.records_skipped
        self.retry_attempts += other.retry_attempts
        self.batches_processed += other.batches_processed

    def plus(self, other: "SyncCounters") -> "SyncCounters":
        total = SyncCounters(**self.to_dict())
        total.add(other)
        return total

    def to_dict(self) -> Dict[str, int]:
        return {
            "records_processed": self.records_processed,
            "records_successful": self.records_successful,
            "records_failed": self.records_failed,
            "records_skipped": self.records_skipped,
            "retry_attempts": self.retry_attempts,
            "batches_processed": self.batches_processed,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, int]) -> "SyncCounters":
        return cls(**{key: int(data.get(key, 0)) for key in cls().to_dict()})


# ---------------------------------------------------------------------------
# Checkpoints, results and progress
# ---------------------------------------------------------------------------


class Checkpoint(BaseModel):
    """Immutable snapshot of a run: config, completed chunk indices, counters.

    A chunk index is in ``completed_chunks`` only when every batch of the
    chunk reached a terminal outcome; counters cover those chunks only.
    """

    model_config = ConfigDict(frozen=True)

    schema_version: str = CHECKPOINT_SCHEMA_VERSION
    operation_id: str
    config: SyncConfiguration
    completed_chunks: Tuple[int, ...] = ()
    counters: Dict[str, int] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("completed_chunks")
    @classmethod
    def sort_chunks(cls, value: Tuple[int, ...]) -> Tuple[int, ...]:
        return tuple(sorted(set(value)))

    @property
    def sync_counters(self) -> SyncCounters:
        return SyncCounters.from_dict(self.counters)


class DeadLetter(BaseModel):
    """A chunk set aside without completing; it stays eligible for resume."""

    model_config = ConfigDict(frozen=True)

    chunk_index: int
    school_code: Optional[str] = None
    window_start: date
    window_end: date
    reason: DeadLetterReason
    error: Optional[str] = None

    @classmethod
    def for_chunk(
        cls, chunk: Chunk, reason: DeadLetterReason, error: Optional[str] = None
    ) -> "DeadLetter":
        return cls(
            chunk_index=chunk.index,
            school_code=chunk.school_code,
            window_start=chunk.window.start,
            window_end=chunk.window.end,
            reason=reason,
            error=error,
        )


class SyncResult(BaseModel):
    """Final summary of one run."""

    operation_id: str
    status: SyncStatus
    started_at: datetime
    finished_at: datetime
    execution_time_seconds: float

    records_processed: int = 0
    records_successful: int = 0
    records_failed: int = 0
    records_skipped: int = 0
    retry_attempts: int = 0

    error: Optional[str] = None
    checkpoint_id: Optional[str] = None
    checkpoint_error: Optional[str] = None
    dead_letters: List[DeadLetter] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @computed_field  # type: ignore[misc]
    @property
    def success(self) -> bool:
        return self.status in (SyncStatus.COMPLETED, SyncStatus.CANCELLED)


class ProgressUpdate(BaseModel):
    """Point-in-time progress view. Never persisted."""

    model_config = ConfigDict(frozen=True)

    operation_id: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    percentage: float = Field(ge=0, le=100)
    records_processed: int
    estimated_total_records: int
    throughput: float
    eta_seconds: Optional[float] = None
    chunks_completed: int
    total_chunks: int
    batches_processed: int = 0
    current_step: str = ""
    is_final: bool = False
