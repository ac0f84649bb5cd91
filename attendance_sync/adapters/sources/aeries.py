"""Aeries SIS source client.

Reads daily attendance through ``GET /attendance/daterange`` with offset
pagination. Page tokens are the stringified offset of the next page; a
page shorter than ``limit`` is the last one.

Error mapping:
- 401/403 -> SourceAuthenticationError (never retried)
- 408/429/5xx, timeouts, connection errors -> TransientSourceError
- other 4xx -> httpx.HTTPStatusError (permanent)
"""

from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from attendance_sync.core.config import Settings
from attendance_sync.core.exceptions import (
    ConfigurationError,
    SourceAuthenticationError,
    TransientSourceError,
)
from attendance_sync.core.logging import LoggerConfigurator
from attendance_sync.platform.sync.types import (
    PERIOD_COUNT,
    AttendanceRecord,
    DateWindow,
    FailedRecord,
    SourcePage,
)

ATTENDANCE_PATH = "/attendance/daterange"

_PRESENT_STATUSES = {"PRESENT", "TARDY"}

logger = LoggerConfigurator.configure_logger(__name__, dimensions={"source": "aeries"})


def parse_attendance_payload(
    payload: Dict[str, Any], default_school: Optional[str] = None
) -> AttendanceRecord:
    """Convert one Aeries attendance payload into an AttendanceRecord.

    Raises:
        ValueError: Required fields are missing or malformed (pydantic's
            ValidationError is a ValueError).
    """
    student_id = payload.get("studentId")
    attendance_date = payload.get("attendanceDate")
    school_code = payload.get("schoolCode") or default_school
    missing = [
        name
        for name, value in (
            ("studentId", student_id),
            ("attendanceDate", attendance_date),
            ("schoolCode", school_code),
        )
        if not value
    ]
    if missing:
        raise ValueError(f"Missing {', '.join(missing)}")

    daily_status = str(payload.get("dailyStatus") or "PRESENT").upper()
    period_statuses: Dict[int, str] = {}
    periods = payload.get("periods") or []
    if isinstance(periods, list) and periods:
        reported = {
            int(p["period"]): str(p.get("status") or "PRESENT").upper()
            for p in periods
            if isinstance(p, dict) and p.get("period") is not None
        }
        period_statuses = {n: reported.get(n, "PRESENT") for n in range(1, PERIOD_COUNT + 1)}

    # Present if the day or any single period shows the student on campus.
    is_present = daily_status in _PRESENT_STATUSES or any(
        status in _PRESENT_STATUSES for status in period_statuses.values()
    )

    return AttendanceRecord(
        student_id=str(student_id),
        school_code=str(school_code),
        attendance_date=attendance_date,
        school_year=payload.get("schoolYear") or "",
        daily_status=daily_status,
        is_present=is_present,
        is_full_day_absent=daily_status == "ABSENT",
        tardy_count=int(payload.get("tardyCount") or 0),
        period_statuses=period_statuses,
    )


class AeriesSourceClient:
    """SourceClient backed by the Aeries REST API.

    Usage:
        async with AeriesSourceClient.from_settings(settings) as source:
            page = await source.fetch_page("RMS", window, None, 500)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        district_code: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Aeries API root, e.g. ``https://district.aeries.net/api``.
            api_key: Bearer token.
            district_code: Sent as ``X-District-Code`` on every request.
            client: Preconfigured httpx client (tests pass a MockTransport one).
            timeout: Per-request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {
            "Authorization": f"Bearer {api_key}",
            "X-District-Code": district_code,
            "Accept": "application/json",
        }

    @classmethod
    def from_settings(
        cls, settings: Settings, client: Optional[httpx.AsyncClient] = None
    ) -> "AeriesSourceClient":
        """Build a client from deployment settings."""
        if not settings.AERIES_API_KEY or not settings.AERIES_DISTRICT_CODE:
            raise ConfigurationError("AERIES_API_KEY and AERIES_DISTRICT_CODE must be set")
        return cls(
            base_url=settings.AERIES_BASE_URL,
            api_key=settings.AERIES_API_KEY,
            district_code=settings.AERIES_DISTRICT_CODE,
            client=client,
        )

    async def __aenter__(self) -> "AeriesSourceClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def fetch_page(
        self,
        school_code: Optional[str],
        window: DateWindow,
        page_token: Optional[str],
        limit: int,
    ) -> SourcePage:
        """Fetch one page of attendance for a school and window."""
        offset = int(page_token) if page_token else 0
        params: Dict[str, Any] = {
            "startDate": window.start.isoformat(),
            "endDate": window.end.isoformat(),
            "limit": limit,
            "offset": offset,
        }
        if school_code:
            params["schoolCode"] = school_code

        response = await self._get(ATTENDANCE_PATH, params)
        raw = _extract_rows(response)
        records, rejected = self._parse_rows(raw, school_code, offset)
        next_token = str(offset + len(raw)) if len(raw) >= limit and raw else None
        return SourcePage(records=records, next_page_token=next_token, rejected=rejected)

    async def _get(self, path: str, params: Dict[str, Any]) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = await self._client.get(url, params=params, headers=self._headers)
        except httpx.TimeoutException as e:
            raise TransientSourceError(f"Aeries request timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientSourceError(f"Aeries connection error: {e}") from e

        status = response.status_code
        if status in (401, 403):
            raise SourceAuthenticationError(f"Aeries rejected credentials (HTTP {status})")
        if status in (408, 429) or status >= 500:
            raise TransientSourceError(f"Aeries returned HTTP {status}", status_code=status)
        response.raise_for_status()
        return response

    def _parse_rows(
        self, rows: List[Any], school_code: Optional[str], offset: int
    ) -> Tuple[List[AttendanceRecord], List[FailedRecord]]:
        records: List[AttendanceRecord] = []
        rejected: List[FailedRecord] = []
        for position, row in enumerate(rows):
            if not isinstance(row, dict):
                rejected.append(
                    FailedRecord(id=f"offset:{offset + position}", reason="not an object")
                )
                continue
            try:
                records.append(parse_attendance_payload(row, default_school=school_code))
            except (ValueError, ValidationError, TypeError, KeyError) as e:
                record_id = _payload_id(row, school_code) or f"offset:{offset + position}"
                rejected.append(FailedRecord(id=record_id, reason=str(e)))
        if rejected:
            logger.warning(f"Rejected {len(rejected)} malformed Aeries rows at offset {offset}")
        return records, rejected


def _extract_rows(response: httpx.Response) -> List[Any]:
    try:
        body = response.json()
    except ValueError as e:
        raise TransientSourceError(f"Aeries returned a non-JSON body: {e}") from e
    if isinstance(body, list):
        return body
    if isinstance(body, dict) and isinstance(body.get("data"), list):
        return body["data"]
    raise TransientSourceError("Aeries response did not contain a data list")


def _payload_id(row: Dict[str, Any], school_code: Optional[str]) -> Optional[str]:
    student, day = row.get("studentId"), row.get("attendanceDate")
    if not student or not day:
        return None
    return f"{row.get('schoolCode') or school_code or '*'}:{student}:{day}"
