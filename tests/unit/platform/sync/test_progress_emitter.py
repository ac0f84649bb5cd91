"""Tests for ProgressEmitter: estimates, throttling and the final update."""

from datetime import date

import pytest

from attendance_sync.core.logging import LoggerConfigurator
from attendance_sync.platform.sync.config import MonitoringConfig
from attendance_sync.platform.sync.progress import (
    ProgressEmitter,
    ThroughputWindow,
    seed_records_per_chunk,
)
from attendance_sync.platform.sync.tracker import TrackerSnapshot
from attendance_sync.platform.sync.types import Chunk, DateWindow, SyncCounters

logger = LoggerConfigurator.configure_logger(__name__)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _snapshot(
    processed=0, committed=0, completed=(), total=10, in_flight=0, this_run=None
) -> TrackerSnapshot:
    return TrackerSnapshot(
        live=SyncCounters(records_processed=processed, batches_processed=processed // 10),
        committed=SyncCounters(records_processed=committed),
        completed_chunks=tuple(completed),
        chunks_in_flight=1 if in_flight else 0,
        in_flight_processed=in_flight,
        total_chunks=total,
        chunks_completed_this_run=len(completed) if this_run is None else this_run,
    )


def _emitter(clock=None, seed=20.0, **monitoring) -> ProgressEmitter:
    return ProgressEmitter(
        "op-1",
        MonitoringConfig(**monitoring),
        records_per_chunk_seed=seed,
        logger=logger,
        clock=clock or FakeClock(),
    )


class TestThroughputWindow:
    def test_rate_over_window(self):
        window = ThroughputWindow(window_seconds=10)
        window.observe(0, 0)
        window.observe(5, 50)
        assert window.rate() == 10.0

    def test_old_samples_drop_out(self):
        window = ThroughputWindow(window_seconds=10)
        window.observe(0, 0)
        window.observe(20, 1000)
        window.observe(25, 1100)
        window.observe(31, 1200)
        # Baseline is the newest sample at or before t=21
        assert window.rate() == pytest.approx((1200 - 1000) / 11)

    def test_single_sample_has_no_rate(self):
        window = ThroughputWindow(window_seconds=10)
        window.observe(0, 100)
        assert window.rate() == 0.0


class TestSeedRecordsPerChunk:
    def test_uses_actual_window_lengths(self):
        # a full school week and a week trimmed to three days by a holiday
        chunks = [
            Chunk(0, DateWindow(date(2024, 9, 2), date(2024, 9, 6), position=0)),
            Chunk(1, DateWindow(date(2024, 9, 9), date(2024, 9, 11), position=1)),
        ]
        assert seed_records_per_chunk(chunks, 700) == 4 * 700

    def test_school_filter_splits_the_district_figure(self):
        window = DateWindow(date(2024, 9, 2), date(2024, 9, 6))
        chunks = [Chunk(0, window, "RMS"), Chunk(1, window, "LHS")]

        assert seed_records_per_chunk(chunks, 700) == 5 * 350

    def test_no_chunks(self):
        assert seed_records_per_chunk([], 700) == 0.0


class TestEstimates:
    def test_seed_estimate_before_any_chunk_completes(self):
        emitter = _emitter(expected_records_per_day=10)
        update = emitter.build_update(_snapshot(processed=5, in_flight=5), "", is_final=False)

        # 10 chunks x 20 records, minus in-flight progress already counted
        assert update.estimated_total_records == 5 + (200 - 5)
        assert update.percentage == 2.5

    def test_observed_average_replaces_seed(self):
        emitter = _emitter(expected_records_per_day=10)
        snapshot = _snapshot(processed=40, committed=40, completed=(0, 1), total=4)

        update = emitter.build_update(snapshot, "", is_final=False)

        assert emitter.estimated_records_per_chunk(snapshot) == 20
        assert update.estimated_total_records == 80
        assert update.percentage == 50.0

    def test_nothing_remaining_is_complete(self):
        emitter = _emitter()
        snapshot = _snapshot(processed=30, committed=30, completed=(0, 1, 2), total=3)

        update = emitter.build_update(snapshot, "", is_final=True)

        assert update.percentage == 100.0
        assert update.eta_seconds == 0.0

    def test_eta_from_throughput(self):
        clock = FakeClock()
        emitter = _emitter(clock=clock, expected_records_per_day=10)
        emitter.build_update(_snapshot(processed=0), "", is_final=False)
        clock.now = 10.0
        snapshot = _snapshot(processed=100, committed=100, completed=(0, 1, 2, 3, 4))

        update = emitter.build_update(snapshot, "", is_final=False)

        assert update.throughput == 10.0
        assert update.eta_seconds == pytest.approx(10.0)

    def test_eta_unknown_without_throughput(self):
        emitter = _emitter()
        update = emitter.build_update(_snapshot(processed=0), "", is_final=False)
        assert update.eta_seconds is None


class TestEmission:
    @pytest.mark.asyncio
    async def test_notify_coalesces_until_flush(self):
        emitter = _emitter()
        received = []

        async def observer(update):
            received.append(update)

        emitter.add_observer(observer)
        for n in range(5):
            emitter.notify(_snapshot(processed=n * 10))

        await emitter.flush()
        await emitter.flush()

        assert len(received) == 1
        assert received[0].records_processed == 40

    @pytest.mark.asyncio
    async def test_stop_always_emits_final(self):
        emitter = _emitter()
        received = []

        async def observer(update):
            received.append(update)

        emitter.add_observer(observer)
        emitter.start()
        update = await emitter.stop(_snapshot(processed=10), current_step="completed")

        assert update.is_final is True
        assert received[-1].is_final is True
        assert received[-1].current_step == "completed"

    @pytest.mark.asyncio
    async def test_disabled_tracking_emits_nothing(self):
        emitter = _emitter(enable_progress_tracking=False)
        received = []

        async def observer(update):
            received.append(update)

        emitter.add_observer(observer)
        emitter.start()
        emitter.notify(_snapshot(processed=10))
        assert await emitter.stop(_snapshot(processed=10)) is None
        assert received == []

    @pytest.mark.asyncio
    async def test_observer_failure_is_contained(self):
        emitter = _emitter()
        received = []

        async def broken(update):
            raise RuntimeError("observer down")

        async def healthy(update):
            received.append(update)

        emitter.add_observer(broken)
        emitter.add_observer(healthy)
        await emitter.stop(_snapshot(processed=10))

        assert len(received) == 1
        assert emitter.emitted == 1
