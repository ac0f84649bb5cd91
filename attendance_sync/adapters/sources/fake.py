"""Fake SIS source for testing.

Generates deterministic attendance for any window and school, pages it by
offset like the real client, records every call and can be told to fail.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Awaitable, Callable, Dict, List, Optional

from attendance_sync.platform.sync.types import (
    AttendanceRecord,
    DateWindow,
    FailedRecord,
    SourcePage,
)


@dataclass(frozen=True)
class FetchCall:
    """One recorded fetch_page call."""

    school_code: Optional[str]
    window: DateWindow
    page_token: Optional[str]
    limit: int


class FakeSourceClient:
    """Test implementation of SourceClient.

    Every calendar day in the requested window yields ``records_per_day``
    records per school. Records for ``school_code=None`` are attributed to
    school ``"ALL"``.

    Usage:
        source = FakeSourceClient(records_per_day=10)
        source.fail_next(TransientSourceError("503", status_code=503), times=2)

        result = await orchestrator.execute_sync(config)
        assert len(source.calls) == 3
    """

    def __init__(
        self,
        records_per_day: int = 1,
        rejected_per_page: int = 0,
        on_fetch: Optional[Callable[[FetchCall], Awaitable[None]]] = None,
    ) -> None:
        """Initialize the fake source.

        Args:
            records_per_day: Records generated per school per calendar day.
            rejected_per_page: Malformed rows reported on every non-empty page.
            on_fetch: Awaited before each call is answered (after failures
                are checked); lets tests pause or cancel mid-run.
        """
        self.records_per_day = records_per_day
        self.rejected_per_page = rejected_per_page
        self.on_fetch = on_fetch
        self.calls: List[FetchCall] = []
        self._queued_failures: List[Exception] = []
        self._school_failures: Dict[str, Exception] = {}
        self._always: Optional[Exception] = None

    async def fetch_page(
        self,
        school_code: Optional[str],
        window: DateWindow,
        page_token: Optional[str],
        limit: int,
    ) -> SourcePage:
        """Return the requested slice of generated records."""
        call = FetchCall(school_code, window, page_token, limit)
        self.calls.append(call)

        if self._always is not None:
            raise self._always
        if school_code is not None and school_code in self._school_failures:
            raise self._school_failures[school_code]
        if self._queued_failures:
            raise self._queued_failures.pop(0)
        if self.on_fetch is not None:
            await self.on_fetch(call)

        offset = int(page_token) if page_token else 0
        records = self.generate(school_code, window)
        page = records[offset : offset + limit]
        next_token = str(offset + limit) if offset + limit < len(records) else None
        rejected = [
            FailedRecord(id=f"bad:{window.start}:{offset}:{n}", reason="missing studentId")
            for n in range(self.rejected_per_page if page else 0)
        ]
        return SourcePage(records=page, next_page_token=next_token, rejected=rejected)

    # Failure injection

    def fail_next(self, error: Exception, times: int = 1) -> None:
        """Raise ``error`` on the next ``times`` calls."""
        self._queued_failures.extend([error] * times)

    def fail_school(self, school_code: str, error: Exception) -> None:
        """Raise ``error`` on every call for ``school_code``."""
        self._school_failures[school_code] = error

    def fail_always(self, error: Optional[Exception]) -> None:
        """Raise ``error`` on every call (None turns it off)."""
        self._always = error

    # Test helpers

    def generate(self, school_code: Optional[str], window: DateWindow) -> List[AttendanceRecord]:
        """All records the source holds for a school and window."""
        school = school_code or "ALL"
        records = []
        for offset in range(window.days):
            day = window.start + timedelta(days=offset)
            for n in range(self.records_per_day):
                records.append(
                    AttendanceRecord(
                        student_id=f"S{n:05d}",
                        school_code=school,
                        attendance_date=day,
                        daily_status="PRESENT" if n % 10 else "ABSENT",
                        is_present=bool(n % 10),
                        is_full_day_absent=not n % 10,
                    )
                )
        return records

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def calls_for(self, school_code: Optional[str]) -> List[FetchCall]:
        return [call for call in self.calls if call.school_code == school_code]
