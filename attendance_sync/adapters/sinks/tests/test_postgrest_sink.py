"""Unit tests for the PostgREST warehouse sink and the fake sink."""

import json
from datetime import date

import httpx
import pytest

from attendance_sync.adapters.sinks import FakeRecordSink, PostgrestRecordSink
from attendance_sync.core.config import Settings
from attendance_sync.core.exceptions import (
    ConfigurationError,
    PermanentRecordError,
    TransientSinkError,
)
from attendance_sync.platform.sync.types import AttendanceRecord

BASE_URL = "https://warehouse.test/rest/v1"


def _record(student_id="S00001", day=date(2024, 9, 3), status="PRESENT"):
    return AttendanceRecord(
        student_id=student_id,
        school_code="RMS",
        attendance_date=day,
        daily_status=status,
        is_present=status != "ABSENT",
        is_full_day_absent=status == "ABSENT",
        period_statuses={1: status},
    )


def _sink(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return PostgrestRecordSink(BASE_URL, "service-key", client=client)


class TestWriteBatch:
    @pytest.mark.asyncio
    async def test_request_shape(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(201)

        async with _sink(handler) as sink:
            result = await sink.write_batch([_record("S1"), _record("S2")])

        request = requests[0]
        assert request.method == "POST"
        assert request.url.path == "/rest/v1/attendance_records"
        assert request.url.params["on_conflict"] == "student_id,attendance_date"
        assert request.headers["apikey"] == "service-key"
        assert request.headers["Authorization"] == "Bearer service-key"
        assert "resolution=merge-duplicates" in request.headers["Prefer"]

        rows = json.loads(request.content)
        assert [row["student_id"] for row in rows] == ["S1", "S2"]
        assert rows[0]["attendance_date"] == "2024-09-03"
        assert rows[0]["period_1_status"] == "PRESENT"
        assert rows[0]["period_7_status"] is None
        assert result.succeeded == ["RMS:S1:2024-09-03", "RMS:S2:2024-09-03"]
        assert result.failed == []

    @pytest.mark.asyncio
    async def test_duplicate_keys_collapse_last_wins(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(201)

        async with _sink(handler) as sink:
            result = await sink.write_batch(
                [_record("S1"), _record("S2"), _record("S1", status="ABSENT")]
            )

        assert len(bodies[0]) == 2
        assert bodies[0][0]["daily_status"] == "ABSENT"
        assert sorted(result.succeeded) == ["RMS:S1:2024-09-03", "RMS:S2:2024-09-03"]
        assert result.skipped == ["RMS:S1:2024-09-03"]

    @pytest.mark.asyncio
    async def test_empty_batch_makes_no_request(self):
        def handler(request):
            raise AssertionError("no request expected")

        async with _sink(handler) as sink:
            result = await sink.write_batch([])

        assert result.succeeded == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [400, 422])
    async def test_validation_errors_are_permanent(self, status):
        response = httpx.Response(status, json={"message": "invalid input syntax for type date"})

        async with _sink(lambda request: response) as sink:
            with pytest.raises(PermanentRecordError) as exc_info:
                await sink.write_batch([_record("S1")])

        assert exc_info.value.record_ids == ["RMS:S1:2024-09-03"]
        assert "invalid input syntax" in str(exc_info.value)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [409, 429, 500, 503, 504])
    async def test_transient_statuses(self, status):
        async with _sink(lambda request: httpx.Response(status)) as sink:
            with pytest.raises(TransientSinkError) as exc_info:
                await sink.write_batch([_record()])
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.WriteTimeout("slow", request=request)

        async with _sink(handler) as sink:
            with pytest.raises(TransientSinkError):
                await sink.write_batch([_record()])

    @pytest.mark.asyncio
    async def test_unauthorized_raises_status_error(self):
        async with _sink(lambda request: httpx.Response(401)) as sink:
            with pytest.raises(httpx.HTTPStatusError):
                await sink.write_batch([_record()])


def test_from_settings_requires_service_key():
    with pytest.raises(ConfigurationError):
        PostgrestRecordSink.from_settings(Settings(WAREHOUSE_SERVICE_KEY=None))


@pytest.mark.asyncio
async def test_from_settings_uses_table():
    settings = Settings(WAREHOUSE_SERVICE_KEY="k", WAREHOUSE_ATTENDANCE_TABLE="daily_attendance")
    async with PostgrestRecordSink.from_settings(settings) as sink:
        assert sink.table == "daily_attendance"


class TestFakeRecordSink:
    @pytest.mark.asyncio
    async def test_upserts_and_reports_outcomes(self):
        sink = FakeRecordSink(reject_ids={"RMS:S2:2024-09-03"}, skip_ids={"RMS:S3:2024-09-03"})

        result = await sink.write_batch([_record("S1"), _record("S2"), _record("S3")])
        await sink.write_batch([_record("S1")])

        assert result.succeeded == ["RMS:S1:2024-09-03"]
        assert [f.id for f in result.failed] == ["RMS:S2:2024-09-03"]
        assert result.skipped == ["RMS:S3:2024-09-03"]
        assert sink.row_count == 1
        assert sink.written_count == 4

    @pytest.mark.asyncio
    async def test_queued_failures(self):
        sink = FakeRecordSink()
        sink.fail_next(TransientSinkError("busy"), times=2)

        for _ in range(2):
            with pytest.raises(TransientSinkError):
                await sink.write_batch([_record()])
        await sink.write_batch([_record()])

        assert sink.attempts == 3
        assert len(sink.batches) == 1
