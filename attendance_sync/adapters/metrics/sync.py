"""Sync run metrics adapters (Prometheus + Fake).

The Prometheus implementation registers into a caller-supplied
CollectorRegistry (a private one by default), so several orchestrators in
one process never collide on the global registry.
"""

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

from attendance_sync.core.protocols.metrics import SyncMetrics

_BATCH_DURATION_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)


class PrometheusSyncMetrics(SyncMetrics):
    """Prometheus-backed sync metrics collection."""

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        namespace: str = "attendance_sync",
    ) -> None:
        self._registry = registry or CollectorRegistry()

        self._records_total = Counter(
            f"{namespace}_records_total",
            "Records reaching a terminal outcome",
            ["outcome"],
            registry=self._registry,
        )

        self._retries_total = Counter(
            f"{namespace}_retries_total",
            "Retry attempts against the source or sink",
            ["stage"],
            registry=self._registry,
        )

        self._batch_duration = Histogram(
            f"{namespace}_batch_duration_seconds",
            "Wall time of one batch including retries",
            buckets=_BATCH_DURATION_BUCKETS,
            registry=self._registry,
        )

        self._chunks_total = Counter(
            f"{namespace}_chunks_total",
            "Chunks reaching a terminal outcome",
            ["outcome"],
            registry=self._registry,
        )

        self._active_workers = Gauge(
            f"{namespace}_active_workers",
            "Workers currently processing a chunk",
            registry=self._registry,
        )

        self._progress = Gauge(
            f"{namespace}_progress_percentage",
            "Latest reported progress of the running sync",
            registry=self._registry,
        )

        self._runs_total = Counter(
            f"{namespace}_runs_total",
            "Sync runs by final status",
            ["status"],
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    # -- SyncMetrics protocol methods --

    def inc_records(self, outcome: str, count: int) -> None:
        if count > 0:
            self._records_total.labels(outcome=outcome).inc(count)

    def inc_retries(self, stage: str) -> None:
        self._retries_total.labels(stage=stage).inc()

    def observe_batch_duration(self, duration: float) -> None:
        self._batch_duration.observe(duration)

    def inc_chunks(self, outcome: str) -> None:
        self._chunks_total.labels(outcome=outcome).inc()

    def set_active_workers(self, count: int) -> None:
        self._active_workers.set(count)

    def set_progress(self, percentage: float) -> None:
        self._progress.set(percentage)

    def inc_runs(self, status: str) -> None:
        self._runs_total.labels(status=status).inc()


# ---------------------------------------------------------------------------
# Fake
# ---------------------------------------------------------------------------


class FakeSyncMetrics(SyncMetrics):
    """In-memory spy implementing the SyncMetrics protocol."""

    def __init__(self) -> None:
        self.records: dict[str, int] = {}
        self.retries: list[str] = []
        self.batch_durations: list[float] = []
        self.chunks: list[str] = []
        self.active_workers: list[int] = []
        self.progress: list[float] = []
        self.runs: list[str] = []

    def inc_records(self, outcome: str, count: int) -> None:
        self.records[outcome] = self.records.get(outcome, 0) + count

    def inc_retries(self, stage: str) -> None:
        self.retries.append(stage)

    def observe_batch_duration(self, duration: float) -> None:
        self.batch_durations.append(duration)

    def inc_chunks(self, outcome: str) -> None:
        self.chunks.append(outcome)

    def set_active_workers(self, count: int) -> None:
        self.active_workers.append(count)

    def set_progress(self, percentage: float) -> None:
        self.progress.append(percentage)

    def inc_runs(self, status: str) -> None:
        self.runs.append(status)

    # -- test helpers --

    @property
    def peak_workers(self) -> int:
        return max(self.active_workers, default=0)

    def clear(self) -> None:
        """Reset all recorded state."""
        self.records.clear()
        self.retries.clear()
        self.batch_durations.clear()
        self.chunks.clear()
        self.active_workers.clear()
        self.progress.clear()
        self.runs.clear()
