"""End-to-end tests for SyncOrchestrator against the in-memory fakes."""

import asyncio
from datetime import date, timedelta

import pytest

from attendance_sync.adapters.checkpoints.fake import FakeCheckpointStore
from attendance_sync.adapters.event_bus import FakeEventBus, InMemoryEventBus
from attendance_sync.core.exceptions import (
    CheckpointNotFoundError,
    ConfigurationError,
    ConfigurationMismatchError,
    InvalidStateError,
    OrchestratorFatalError,
    PermanentRecordError,
    SourceAuthenticationError,
    TransientSinkError,
    TransientSourceError,
)
from attendance_sync.core.shared_models import DeadLetterReason, SyncStatus
from attendance_sync.platform.sync.types import DateWindow


def _days_config(days, chunk_days=1, **overrides):
    start = date(2024, 9, 2)
    data = {
        "date_range": {"start_date": start, "end_date": start + timedelta(days=days - 1)},
        "chunk_days": chunk_days,
        "batch_size": 50,
        "parallelism": 1,
    }
    data.update(overrides)
    return data


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_five_days_for_one_school(
        self, make_orchestrator, sync_config_data, fake_sink, fake_event_bus
    ):
        orchestrator = make_orchestrator(sync_config_data)

        result = await orchestrator.execute_sync()

        assert result.status == SyncStatus.COMPLETED
        assert result.success is True
        assert result.records_processed == 50
        assert result.records_successful == 50
        assert result.records_failed == 0
        assert result.records_skipped == 0
        assert result.metadata["total_chunks"] == 3
        assert result.metadata["chunks_completed"] == 3
        assert result.metadata["schools"] == ["RMS"]
        assert result.checkpoint_id is not None
        assert fake_sink.row_count == 50
        assert orchestrator.status == SyncStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_event_sequence(self, make_orchestrator, sync_config_data, fake_event_bus):
        result = await make_orchestrator(sync_config_data).execute_sync()

        types = fake_event_bus.event_types
        assert types[0] == "sync.initialized"
        assert types[1] == "sync.running"
        assert types[-1] == "sync.completed"
        assert types.count("chunk.started") == 3
        assert types.count("chunk.completed") == 3
        assert types.count("batch.processed") == 3
        assert types.index("checkpoint.saved") < types.index("sync.completed")

        final = fake_event_bus.get_events("progress.updated")[-1]
        assert final.is_final is True
        assert final.percentage == 100.0
        assert all(e.operation_id == result.operation_id for e in fake_event_bus.events)

    @pytest.mark.asyncio
    async def test_terminal_checkpoint_holds_all_chunks(
        self, make_orchestrator, sync_config_data, fake_checkpoint_store
    ):
        result = await make_orchestrator(sync_config_data).execute_sync()

        checkpoint = fake_checkpoint_store.get(result.checkpoint_id)
        assert checkpoint.completed_chunks == (0, 1, 2)
        assert checkpoint.sync_counters.records_processed == 50
        assert checkpoint.operation_id == result.operation_id

    @pytest.mark.asyncio
    async def test_parallel_workers_process_each_chunk_once(
        self, make_orchestrator, fake_source, fake_event_bus
    ):
        orchestrator = make_orchestrator(_days_config(50, parallelism=8))

        result = await orchestrator.execute_sync()

        completed = [e.chunk_index for e in fake_event_bus.get_events("chunk.completed")]
        assert sorted(completed) == list(range(50))
        windows = [call.window.start for call in fake_source.calls]
        assert len(windows) == len(set(windows)) == 50
        assert result.records_processed == 500

    @pytest.mark.asyncio
    async def test_multi_page_chunks(self, make_orchestrator, fake_source, fake_sink):
        config = _days_config(4, chunk_days=4, batch_size=15)

        result = await make_orchestrator(config).execute_sync()

        # 40 records paged 15 at a time
        assert len(fake_source.calls) == 3
        assert [len(batch) for batch in fake_sink.batches] == [15, 15, 10]
        assert result.records_successful == 40

    @pytest.mark.asyncio
    async def test_zero_record_chunks_complete(self, make_orchestrator, fake_source):
        fake_source.records_per_day = 0

        result = await make_orchestrator(_days_config(3)).execute_sync()

        assert result.status == SyncStatus.COMPLETED
        assert result.records_processed == 0
        assert result.metadata["chunks_completed"] == 3

    @pytest.mark.asyncio
    async def test_periodic_checkpoints(self, make_orchestrator, fake_checkpoint_store):
        result = await make_orchestrator(
            _days_config(4, checkpoint_every_chunks=2)
        ).execute_sync()

        # after chunk 2, after chunk 4, then the terminal one
        assert fake_checkpoint_store.save_count == 3
        assert result.metadata["checkpoints_saved"] == 3

    @pytest.mark.asyncio
    async def test_periodic_checkpoints_with_parallel_workers(
        self, make_orchestrator, fake_checkpoint_store
    ):
        bus = InMemoryEventBus()

        async def slow_subscriber(event):
            await asyncio.sleep(0.01)

        bus.subscribe("chunk.completed", slow_subscriber)
        orchestrator = make_orchestrator(
            _days_config(4, parallelism=4, checkpoint_every_chunks=2), event_bus=bus
        )

        result = await orchestrator.execute_sync()

        assert result.status == SyncStatus.COMPLETED
        assert fake_checkpoint_store.save_count == 3
        assert result.metadata["checkpoints_saved"] == 3


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_sink_errors_are_retried(
        self, make_orchestrator, fake_sink, recorded_sleeps
    ):
        fake_sink.fail_next(TransientSinkError("503", status_code=503), times=3)

        result = await make_orchestrator(_days_config(1)).execute_sync()

        assert result.records_successful == 10
        assert result.retry_attempts == 3
        assert len(recorded_sleeps.delays) == 3
        for delay, base in zip(recorded_sleeps.delays, (1.0, 2.0, 4.0)):
            assert base * 0.8 <= delay <= base * 1.2

    @pytest.mark.asyncio
    async def test_exhausted_retries_count_batch_failed(
        self, make_orchestrator, fake_sink, recorded_sleeps
    ):
        fake_sink.fail_next(TransientSinkError("503", status_code=503), times=4)

        result = await make_orchestrator(_days_config(2)).execute_sync()

        assert fake_sink.attempts == 5
        assert len(recorded_sleeps.delays) == 3
        assert result.status == SyncStatus.COMPLETED
        assert result.records_failed == 10
        assert result.records_successful == 10
        assert result.retry_attempts == 3

    @pytest.mark.asyncio
    async def test_transient_source_errors_are_retried(
        self, make_orchestrator, fake_source, recorded_sleeps
    ):
        fake_source.fail_next(TransientSourceError("429", status_code=429), times=2)

        result = await make_orchestrator(_days_config(1)).execute_sync()

        assert result.records_successful == 10
        assert result.retry_attempts == 2
        assert result.dead_letters == []

    @pytest.mark.asyncio
    async def test_source_timeout_is_transient(self, make_orchestrator, fake_source):
        calls = 0

        async def slow_first_call(call):
            nonlocal calls
            calls += 1
            if calls == 1:
                await asyncio.sleep(1)

        fake_source.on_fetch = slow_first_call
        config = _days_config(1, timeouts={"source_seconds": 0.05})

        result = await make_orchestrator(config).execute_sync()

        assert result.retry_attempts == 1
        assert result.records_successful == 10


class TestDeadLetters:
    @pytest.mark.asyncio
    async def test_authentication_failure_fails_run(
        self, make_orchestrator, fake_source, recorded_sleeps, fake_checkpoint_store
    ):
        fake_source.fail_always(SourceAuthenticationError("401"))

        result = await make_orchestrator(_days_config(3)).execute_sync()

        assert result.status == SyncStatus.FAILED
        assert result.success is False
        assert "authentication_failed" in result.error
        assert [d.reason for d in result.dead_letters] == [
            DeadLetterReason.AUTHENTICATION_FAILED
        ] * 3
        assert recorded_sleeps.delays == []
        assert fake_checkpoint_store.latest.completed_chunks == ()

    @pytest.mark.asyncio
    async def test_one_failing_school_does_not_fail_run(
        self, make_orchestrator, fake_source, fake_checkpoint_store
    ):
        fake_source.fail_school("AHS", TransientSourceError("503", status_code=503))
        config = _days_config(2, school_codes=["AHS", "RMS"], retry={"max_retries": 0})

        result = await make_orchestrator(config).execute_sync()

        assert result.status == SyncStatus.COMPLETED
        assert {d.school_code for d in result.dead_letters} == {"AHS"}
        assert result.records_successful == 20
        # AHS chunks have even indices and stay eligible for resume
        assert fake_checkpoint_store.latest.completed_chunks == (1, 3)

    @pytest.mark.asyncio
    async def test_open_circuit_skips_school(
        self, make_orchestrator, fake_source, fake_circuit_breaker, fake_event_bus
    ):
        fake_circuit_breaker.trip("school:RMS")
        orchestrator = make_orchestrator(
            _days_config(2, school_codes=["RMS"]), circuit_breaker=fake_circuit_breaker
        )

        result = await orchestrator.execute_sync()

        assert result.status == SyncStatus.FAILED
        assert fake_source.call_count == 0
        assert {d.reason for d in result.dead_letters} == {DeadLetterReason.CIRCUIT_OPEN}
        assert len(fake_event_bus.get_events("chunk.dead_lettered")) == 2

    @pytest.mark.asyncio
    async def test_source_failure_reported_to_breaker(
        self, make_orchestrator, fake_source, fake_circuit_breaker
    ):
        fake_source.fail_school("AHS", SourceAuthenticationError())
        config = _days_config(1, school_codes=["AHS", "RMS"])

        await make_orchestrator(config, circuit_breaker=fake_circuit_breaker).execute_sync()

        assert fake_circuit_breaker.failures == ["school:AHS"]
        assert fake_circuit_breaker.successes == ["school:RMS"]

    @pytest.mark.asyncio
    async def test_disabled_breaker_is_not_consulted(
        self, make_orchestrator, fake_circuit_breaker
    ):
        config = _days_config(1, circuit_breaker={"enabled": False})

        await make_orchestrator(config, circuit_breaker=fake_circuit_breaker).execute_sync()

        assert fake_circuit_breaker.checks == []


class TestRecordOutcomes:
    @pytest.mark.asyncio
    async def test_rejected_and_skipped_records(self, make_orchestrator, fake_source, fake_sink):
        fake_source.rejected_per_page = 2
        records = fake_source.generate(None, DateWindow(date(2024, 9, 2), date(2024, 9, 2)))
        fake_sink.reject_ids = {records[0].record_id}
        fake_sink.skip_ids = {records[1].record_id}

        result = await make_orchestrator(_days_config(1)).execute_sync()

        assert result.records_processed == 12
        assert result.records_successful == 8
        assert result.records_failed == 3
        assert result.records_skipped == 1

    @pytest.mark.asyncio
    async def test_permanent_sink_error_fails_batch_without_retry(
        self, make_orchestrator, fake_sink, recorded_sleeps, fake_event_bus
    ):
        fake_sink.fail_next(PermanentRecordError("schema mismatch"))

        result = await make_orchestrator(_days_config(1)).execute_sync()

        assert result.records_failed == 10
        assert recorded_sleeps.delays == []
        assert fake_event_bus.get_event("batch.processed").outcome == "failed"


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_then_resume(
        self, make_orchestrator, fake_source, fake_checkpoint_store
    ):
        first = make_orchestrator(_days_config(10))

        async def cancel_on_third_fetch(call):
            if fake_source.call_count == 3:
                first.cancel()

        fake_source.on_fetch = cancel_on_third_fetch
        cancelled = await first.execute_sync()

        assert cancelled.status == SyncStatus.CANCELLED
        checkpoint = fake_checkpoint_store.get(cancelled.checkpoint_id)
        assert checkpoint.completed_chunks == (0, 1, 2)
        assert cancelled.metadata["chunks_remaining"] == 7

        fake_source.on_fetch = None
        fetched_before = fake_source.call_count
        second = make_orchestrator()
        resumed = await second.resume_from_checkpoint(cancelled.checkpoint_id)

        assert resumed.status == SyncStatus.COMPLETED
        assert resumed.operation_id == cancelled.operation_id
        assert resumed.records_processed == 100
        assert resumed.metadata["resumed_from"] == cancelled.checkpoint_id
        assert len(fake_source.calls) - fetched_before == 7
        assert not {c.window.start for c in fake_source.calls[fetched_before:]} & {
            c.window.start for c in fake_source.calls[:fetched_before]
        }

    @pytest.mark.asyncio
    async def test_resume_of_finished_run_does_nothing(
        self, make_orchestrator, sync_config_data, fake_source
    ):
        done = await make_orchestrator(sync_config_data).execute_sync()
        calls = fake_source.call_count

        again = await make_orchestrator().resume_from_checkpoint(done.checkpoint_id)

        assert fake_source.call_count == calls
        assert again.status == SyncStatus.COMPLETED
        assert again.records_processed == done.records_processed
        assert again.records_successful == done.records_successful

    @pytest.mark.asyncio
    async def test_task_cancellation_saves_checkpoint(
        self, make_orchestrator, fake_source, fake_checkpoint_store
    ):
        orchestrator = make_orchestrator(_days_config(5))
        blocked = asyncio.Event()

        async def block_second_fetch(call):
            if fake_source.call_count == 2:
                blocked.set()
                await asyncio.sleep(10)

        fake_source.on_fetch = block_second_fetch
        task = asyncio.create_task(orchestrator.execute_sync())
        await blocked.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert orchestrator.status == SyncStatus.CANCELLED
        assert fake_checkpoint_store.latest.completed_chunks == (0,)

    @pytest.mark.asyncio
    async def test_cancel_after_finish_is_a_noop(
        self, make_orchestrator, sync_config_data
    ):
        orchestrator = make_orchestrator(sync_config_data)
        await orchestrator.execute_sync()
        orchestrator.cancel()
        assert orchestrator.status == SyncStatus.COMPLETED


class TestConfigurationErrors:
    def test_invalid_config_rejected_at_construction(self, make_orchestrator, fake_source):
        with pytest.raises(ConfigurationError):
            make_orchestrator(_days_config(3, batch_size=0))
        assert fake_source.call_count == 0

    @pytest.mark.asyncio
    async def test_invalid_config_rejected_before_io(
        self, make_orchestrator, fake_source, fake_event_bus
    ):
        orchestrator = make_orchestrator()
        bad = _days_config(3)
        bad["date_range"] = {"start_date": date(2024, 9, 5), "end_date": date(2024, 9, 1)}

        with pytest.raises(ConfigurationError):
            await orchestrator.execute_sync(bad)

        assert orchestrator.status == SyncStatus.IDLE
        assert fake_source.call_count == 0
        assert fake_event_bus.events == []

    @pytest.mark.asyncio
    async def test_missing_config(self, make_orchestrator):
        with pytest.raises(ConfigurationError):
            await make_orchestrator().execute_sync()

    @pytest.mark.asyncio
    async def test_resume_with_conflicting_config(
        self, make_orchestrator, sync_config_data, fake_source
    ):
        done = await make_orchestrator(sync_config_data).execute_sync()
        calls = fake_source.call_count
        conflicting = {**sync_config_data, "chunk_days": 3}

        with pytest.raises(ConfigurationMismatchError) as exc_info:
            await make_orchestrator().resume_from_checkpoint(done.checkpoint_id, conflicting)

        assert exc_info.value.fields == ["chunk_days"]
        assert fake_source.call_count == calls

    @pytest.mark.asyncio
    async def test_resume_with_new_tuning(self, make_orchestrator, sync_config_data):
        done = await make_orchestrator(sync_config_data).execute_sync()
        orchestrator = make_orchestrator()

        await orchestrator.resume_from_checkpoint(
            done.checkpoint_id, {**sync_config_data, "parallelism": 5}
        )

        assert orchestrator.config.parallelism == 5

    @pytest.mark.asyncio
    async def test_unknown_checkpoint(self, make_orchestrator):
        with pytest.raises(CheckpointNotFoundError):
            await make_orchestrator().resume_from_checkpoint("nope")


class TestStateMachine:
    @pytest.mark.asyncio
    async def test_runs_only_once(self, make_orchestrator, sync_config_data):
        orchestrator = make_orchestrator(sync_config_data)
        await orchestrator.execute_sync()

        with pytest.raises(InvalidStateError):
            await orchestrator.execute_sync()

    @pytest.mark.asyncio
    async def test_save_checkpoint_requires_a_run(self, make_orchestrator, sync_config_data):
        with pytest.raises(InvalidStateError):
            await make_orchestrator(sync_config_data).save_checkpoint()

    @pytest.mark.asyncio
    async def test_manual_checkpoint_after_run(
        self, make_orchestrator, sync_config_data, fake_event_bus
    ):
        orchestrator = make_orchestrator(sync_config_data)
        await orchestrator.execute_sync()

        checkpoint_id = await orchestrator.save_checkpoint()

        saved = [e for e in fake_event_bus.get_events("checkpoint.saved")]
        assert saved[-1].checkpoint_id == checkpoint_id
        assert saved[-1].automatic is False


class TestCheckpointFailures:
    @pytest.mark.asyncio
    async def test_save_failure_is_reported_on_result(self, make_orchestrator, sync_config_data):
        orchestrator = make_orchestrator(
            sync_config_data, checkpoint_store=FakeCheckpointStore(fail_saves=True)
        )

        result = await orchestrator.execute_sync()

        assert result.status == SyncStatus.COMPLETED
        assert result.checkpoint_id is None
        assert "unavailable" in result.checkpoint_error


class TestFatalErrors:
    @pytest.mark.asyncio
    async def test_fatal_sink_error_fails_the_run(
        self, make_orchestrator, fake_sink, fake_event_bus, fake_checkpoint_store
    ):
        fake_sink.fail_next(OrchestratorFatalError("warehouse schema missing"))

        result = await make_orchestrator(_days_config(5)).execute_sync()

        assert result.status == SyncStatus.FAILED
        assert "warehouse schema missing" in result.error
        assert result.checkpoint_id is not None
        assert fake_checkpoint_store.latest() is not None
        # the first chunk aborted the pool before a second one was claimed
        assert fake_event_bus.event_types.count("chunk.started") == 1
        fake_event_bus.assert_published("sync.failed")

    @pytest.mark.asyncio
    async def test_unexpected_worker_error_fails_the_run(self, make_orchestrator):
        bus = FakeEventBus(call_subscribers=True)

        async def broken_subscriber(event):
            raise RuntimeError("subscriber bug")

        bus.subscribe("chunk.started", broken_subscriber)

        result = await make_orchestrator(_days_config(5), event_bus=bus).execute_sync()

        assert result.status == SyncStatus.FAILED
        assert "RuntimeError: subscriber bug" in result.error
        assert result.checkpoint_id is not None
        assert bus.event_types.count("chunk.started") == 1


class TestMonitoring:
    @pytest.mark.asyncio
    async def test_metrics_recorded(self, make_orchestrator, sync_config_data, fake_metrics):
        await make_orchestrator(sync_config_data).execute_sync()

        assert fake_metrics.records["succeeded"] == 50
        assert fake_metrics.chunks == ["completed"] * 3
        assert fake_metrics.runs == ["completed"]
        assert fake_metrics.progress[-1] == 100.0

    @pytest.mark.asyncio
    async def test_metrics_disabled(self, make_orchestrator, sync_config_data, fake_metrics):
        config = {**sync_config_data, "monitoring": {"enable_metrics": False}}
        await make_orchestrator(config).execute_sync()

        assert fake_metrics.runs == []
        assert fake_metrics.records == {}

    @pytest.mark.asyncio
    async def test_progress_disabled(self, make_orchestrator, sync_config_data, fake_event_bus):
        config = {**sync_config_data, "monitoring": {"enable_progress_tracking": False}}
        await make_orchestrator(config).execute_sync()

        fake_event_bus.assert_not_published("progress.updated")
        fake_event_bus.assert_published("sync.completed")
