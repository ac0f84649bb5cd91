"""Date range partitioning.

Turns a configuration into the deterministic chunk list the orchestrator
works through. Chunk indices depend only on the chunk-identity fields of
the configuration, which is what lets a checkpoint written by one run be
resumed by another.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import FrozenSet, Iterable, List, Optional, Sequence

from attendance_sync.core.exceptions import InvalidRangeError
from attendance_sync.platform.sync.config import CalendarConfig, SyncConfiguration
from attendance_sync.platform.sync.types import Chunk, DateWindow


@dataclass(frozen=True)
class SchoolCalendar:
    """Weekends and holidays, used to trim windows down to school days."""

    weekend_days: FrozenSet[int] = frozenset({6, 7})
    holidays: FrozenSet[date] = field(default_factory=frozenset)

    @classmethod
    def from_config(cls, calendar: CalendarConfig) -> "SchoolCalendar":
        return cls(
            weekend_days=frozenset(calendar.weekend_days),
            holidays=frozenset(calendar.holidays),
        )

    def is_school_day(self, day: date) -> bool:
        return day.isoweekday() not in self.weekend_days and day not in self.holidays

    def trim(self, window: DateWindow) -> Optional[DateWindow]:
        """Shrink a window to its first..last school day, or None if it has none."""
        school_days = [day for day in _days(window.start, window.end) if self.is_school_day(day)]
        if not school_days:
            return None
        return DateWindow(start=school_days[0], end=school_days[-1], position=window.position)


class DateChunker:
    """Splits date ranges into windows and windows into chunks."""

    @staticmethod
    def split(
        start: date,
        end: date,
        chunk_days: int,
        calendar: Optional[SchoolCalendar] = None,
    ) -> List[DateWindow]:
        """Partition ``[start, end]`` into consecutive windows of at most ``chunk_days``.

        Without a calendar the windows are contiguous, non-overlapping and
        cover the range exactly; the last one may be shorter. With a
        calendar each window is trimmed to school days and windows without
        any are dropped, but surviving windows keep their original position.

        Raises:
            InvalidRangeError: If ``start > end`` or ``chunk_days <= 0``.
        """
        if chunk_days <= 0:
            raise InvalidRangeError(f"chunk_days must be positive, got {chunk_days}")
        if start > end:
            raise InvalidRangeError(f"start {start} is after end {end}")

        windows: List[DateWindow] = []
        step = timedelta(days=chunk_days)
        cursor = start
        position = 0
        while cursor <= end:
            window_end = min(cursor + step - timedelta(days=1), end)
            windows.append(DateWindow(start=cursor, end=window_end, position=position))
            cursor = window_end + timedelta(days=1)
            position += 1

        if calendar is None:
            return windows
        trimmed = (calendar.trim(window) for window in windows)
        return [window for window in trimmed if window is not None]

    @classmethod
    def build_chunks(cls, config: SyncConfiguration) -> List[Chunk]:
        """Cartesian product of windows and schools, with stable indices.

        ``index = window.position * len(schools) + school_position``; with no
        school filter there is one chunk per window and ``school_code`` is None.
        """
        calendar = None
        if config.calendar.exclude_non_school_days:
            calendar = SchoolCalendar.from_config(config.calendar)
        windows = cls.split(
            config.date_range.start_date,
            config.date_range.end_date,
            config.chunk_days,
            calendar,
        )
        schools: Sequence[Optional[str]] = config.school_codes or (None,)
        return [
            Chunk(
                index=window.position * len(schools) + school_position,
                window=window,
                school_code=school,
            )
            for window in windows
            for school_position, school in enumerate(schools)
        ]


def _days(start: date, end: date) -> Iterable[date]:
    day = start
    while day <= end:
        yield day
        day += timedelta(days=1)
