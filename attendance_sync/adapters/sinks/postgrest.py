"""Warehouse sink over a PostgREST endpoint.

Batches are upserted with ``on_conflict=student_id,attendance_date`` and
``Prefer: resolution=merge-duplicates``, so repeating a batch overwrites
rows instead of duplicating them. Duplicate (student, date) keys in one batch
are collapsed (last one wins) and reported as skipped; Postgres refuses
to upsert the same key twice in one statement.

Error mapping:
- 408/409/425/429/5xx, timeouts, connection errors -> TransientSinkError
- 400/422 -> PermanentRecordError (the whole batch was rejected)
- other statuses -> httpx.HTTPStatusError
"""

from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from attendance_sync.core.config import Settings
from attendance_sync.core.exceptions import (
    ConfigurationError,
    PermanentRecordError,
    TransientSinkError,
)
from attendance_sync.core.logging import LoggerConfigurator
from attendance_sync.platform.sync.retry import TRANSIENT_STATUS_CODES
from attendance_sync.platform.sync.types import AttendanceRecord, WriteResult

CONFLICT_COLUMNS = ("student_id", "attendance_date")

logger = LoggerConfigurator.configure_logger(__name__, dimensions={"sink": "postgrest"})


class PostgrestRecordSink:
    """RecordSink writing attendance rows into the warehouse table."""

    def __init__(
        self,
        base_url: str,
        service_key: str,
        table: str = "attendance_records",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.table = table
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
            "Prefer": "resolution=merge-duplicates,return=minimal",
        }

    @classmethod
    def from_settings(
        cls, settings: Settings, client: Optional[httpx.AsyncClient] = None
    ) -> "PostgrestRecordSink":
        if not settings.WAREHOUSE_SERVICE_KEY:
            raise ConfigurationError("WAREHOUSE_SERVICE_KEY must be set")
        return cls(
            base_url=settings.WAREHOUSE_REST_URL,
            service_key=settings.WAREHOUSE_SERVICE_KEY,
            table=settings.WAREHOUSE_ATTENDANCE_TABLE,
            client=client,
        )

    async def __aenter__(self) -> "PostgrestRecordSink":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def write_batch(self, records: Sequence[AttendanceRecord]) -> WriteResult:
        """Upsert a batch; every written row is reported as succeeded."""
        if not records:
            return WriteResult()

        unique: Dict[Tuple[str, date], AttendanceRecord] = {}
        duplicates: List[str] = []
        for record in records:
            key = (record.student_id, record.attendance_date)
            if key in unique:
                duplicates.append(unique[key].record_id)
            unique[key] = record
        written = [record.record_id for record in unique.values()]
        skipped = len(duplicates)
        rows: List[Dict[str, Any]] = [record.to_row() for record in unique.values()]

        url = f"{self.base_url}/{self.table}"
        params = {"on_conflict": ",".join(CONFLICT_COLUMNS)}
        try:
            response = await self._client.post(
                url, params=params, json=rows, headers=self._headers
            )
        except httpx.TimeoutException as e:
            raise TransientSinkError(f"Warehouse write timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientSinkError(f"Warehouse connection error: {e}") from e

        status = response.status_code
        if status in TRANSIENT_STATUS_CODES or status >= 500:
            raise TransientSinkError(f"Warehouse returned HTTP {status}", status_code=status)
        if status in (400, 422):
            raise PermanentRecordError(
                f"Warehouse rejected batch: {_error_message(response)}",
                record_ids=written,
            )
        response.raise_for_status()

        if skipped:
            logger.debug(f"Collapsed {skipped} duplicate rows in batch of {len(records)}")
        return WriteResult(succeeded=written, skipped=duplicates)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("details") or body)
    return str(body)
