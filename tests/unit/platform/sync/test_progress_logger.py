"""Tests for the progress logger subscriber."""

import logging
from datetime import date

import pytest

from attendance_sync.adapters.event_bus import FakeEventBus
from attendance_sync.core.events import (
    ChunkEvent,
    ChunkEventType,
    ProgressUpdatedEvent,
    SyncEventType,
    SyncLifecycleEvent,
)
from attendance_sync.platform.sync.subscribers import SyncProgressLogger
from attendance_sync.platform.sync.subscribers.progress_logger import format_eta
from attendance_sync.platform.sync.types import Chunk, DateWindow, SyncCounters

LOGGER_NAME = "attendance_sync.platform.sync.subscribers.progress_logger"


@pytest.fixture
def bus():
    bus = FakeEventBus(call_subscribers=True)
    SyncProgressLogger().attach(bus)
    return bus


def _progress(percentage=40.0, eta=125.0):
    return ProgressUpdatedEvent(
        operation_id="op-1",
        percentage=percentage,
        records_processed=400,
        estimated_total_records=1000,
        throughput=20.0,
        eta_seconds=eta,
        chunks_completed=2,
        total_chunks=5,
    )


def _finished(event_type, error=None):
    counters = SyncCounters(records_processed=10, records_successful=9, records_failed=1)
    return SyncLifecycleEvent.finished(
        event_type, "op-1", counters, total_chunks=5, chunks_remaining=1, error=error
    )


@pytest.mark.parametrize(
    "seconds, expected",
    [(None, "unknown"), (42, "42s"), (185, "3m05s"), (3720, "1h02m"), (0.4, "0s")],
)
def test_format_eta(seconds, expected):
    assert format_eta(seconds) == expected


def test_subscribes_to_expected_patterns():
    bus = FakeEventBus()
    SyncProgressLogger().attach(bus)
    assert bus.patterns == SyncProgressLogger.EVENT_PATTERNS


class TestLogLines:
    @pytest.mark.asyncio
    async def test_plan_and_progress(self, bus, caplog):
        with caplog.at_level(logging.DEBUG, logger=LOGGER_NAME):
            await bus.publish(
                SyncLifecycleEvent.initialized(
                    "op-1", total_chunks=5, chunks_remaining=3, resumed_from="cp-9"
                )
            )
            await bus.publish(_progress())

        messages = [r.getMessage() for r in caplog.records]
        assert any("Planned 5 chunks, 3 to process, resumed from cp-9" in m for m in messages)
        assert any("40.0%" in m and "ETA 2m05s" in m for m in messages)
        assert all(r.operation_id == "op-1" for r in caplog.records)

    @pytest.mark.asyncio
    async def test_dead_letter_is_warning(self, bus, caplog):
        chunk = Chunk(index=4, window=DateWindow(date(2024, 9, 2), date(2024, 9, 3)))
        with caplog.at_level(logging.DEBUG, logger=LOGGER_NAME):
            await bus.publish(
                ChunkEvent.for_chunk(
                    ChunkEventType.DEAD_LETTERED, "op-1", chunk, reason="source_failed"
                )
            )

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        assert "Chunk 4 (all schools" in record.getMessage()
        assert "source_failed" in record.getMessage()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "event_type, level",
        [
            (SyncEventType.COMPLETED, logging.INFO),
            (SyncEventType.CANCELLED, logging.WARNING),
            (SyncEventType.FAILED, logging.ERROR),
        ],
    )
    async def test_summary_level_follows_status(self, bus, caplog, event_type, level):
        with caplog.at_level(logging.DEBUG, logger=LOGGER_NAME):
            await bus.publish(_finished(event_type, error="boom"))

        record = caplog.records[-1]
        assert record.levelno == level
        assert "10 processed, 9 successful, 1 failed" in record.getMessage()
        assert "4/5 chunks done" in record.getMessage()

    @pytest.mark.asyncio
    async def test_summary_counts_dead_letters_and_forgets_run(self, caplog):
        subscriber = SyncProgressLogger()
        bus = FakeEventBus(call_subscribers=True)
        subscriber.attach(bus)
        chunk = Chunk(index=0, window=DateWindow(date(2024, 9, 2), date(2024, 9, 2)))

        with caplog.at_level(logging.DEBUG, logger=LOGGER_NAME):
            await bus.publish(
                ChunkEvent.for_chunk(ChunkEventType.DEAD_LETTERED, "op-1", chunk, reason="x")
            )
            await bus.publish(_finished(SyncEventType.COMPLETED))

        assert "1 dead-lettered" in caplog.records[-1].getMessage()
        assert subscriber._runs == {}
