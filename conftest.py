"""Root conftest for pytest configuration and shared fixtures.

This conftest is loaded before both testpaths (tests/ and attendance_sync/),
making its fixtures available to centralized tests AND colocated adapter tests.
"""

import os
import random
from datetime import date

import pytest

# Register pytest-asyncio plugin at the root level
pytest_plugins = ("pytest_asyncio",)

# ---------------------------------------------------------------------------
# Environment variables: must be set before any attendance_sync module import
# Uses setdefault so real env vars (CI) are never overridden.
# ---------------------------------------------------------------------------
os.environ.setdefault("ENVIRONMENT", "local")
os.environ.setdefault("LOCAL_DEVELOPMENT", "true")
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("AERIES_API_KEY", "test-aeries-key")
os.environ.setdefault("AERIES_DISTRICT_CODE", "TEST")
os.environ.setdefault("WAREHOUSE_SERVICE_KEY", "test-service-key")


# ---------------------------------------------------------------------------
# Shared fake fixtures: individual protocol fakes
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_event_bus():
    """Fake EventBus that records published events."""
    from attendance_sync.adapters.event_bus.fake import FakeEventBus

    return FakeEventBus()


@pytest.fixture
def fake_circuit_breaker():
    """Fake CircuitBreaker that tracks key state."""
    from attendance_sync.adapters.circuit_breaker.fake import FakeCircuitBreaker

    return FakeCircuitBreaker()


@pytest.fixture
def fake_source():
    """Fake SourceClient producing 10 records per school per day."""
    from attendance_sync.adapters.sources.fake import FakeSourceClient

    return FakeSourceClient(records_per_day=10)


@pytest.fixture
def fake_sink():
    """Fake RecordSink storing rows in memory."""
    from attendance_sync.adapters.sinks.fake import FakeRecordSink

    return FakeRecordSink()


@pytest.fixture
def fake_checkpoint_store():
    """Fake CheckpointStore that keeps checkpoint objects."""
    from attendance_sync.adapters.checkpoints.fake import FakeCheckpointStore

    return FakeCheckpointStore()


@pytest.fixture
def fake_metrics():
    """Fake SyncMetrics spy."""
    from attendance_sync.adapters.metrics import FakeSyncMetrics

    return FakeSyncMetrics()


@pytest.fixture
def recorded_sleeps():
    """Sleep replacement that records delays instead of waiting."""
    delays = []

    async def sleep(seconds):
        delays.append(seconds)

    sleep.delays = delays
    return sleep


@pytest.fixture
def sync_config_data():
    """Small run: 2024-08-15..2024-08-19 for RMS in 2-day chunks."""
    return {
        "date_range": {"start_date": date(2024, 8, 15), "end_date": date(2024, 8, 19)},
        "school_codes": ["RMS"],
        "chunk_days": 2,
        "batch_size": 20,
        "parallelism": 2,
        "monitoring": {"enable_progress_tracking": True, "progress_interval_seconds": 60},
    }


@pytest.fixture
def make_orchestrator(
    fake_source,
    fake_sink,
    fake_checkpoint_store,
    fake_event_bus,
    fake_metrics,
    recorded_sleeps,
):
    """Build a SyncOrchestrator wired to the shared fakes."""
    from attendance_sync.platform.sync.orchestrator import SyncOrchestrator

    def _make(config=None, **overrides):
        kwargs = dict(
            source=fake_source,
            sink=fake_sink,
            checkpoint_store=fake_checkpoint_store,
            config=config,
            event_bus=fake_event_bus,
            metrics=fake_metrics,
            rng=random.Random(7),
            sleep=recorded_sleeps,
        )
        kwargs.update(overrides)
        return SyncOrchestrator(**kwargs)

    return _make
