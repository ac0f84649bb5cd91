"""Metrics adapters."""

from attendance_sync.adapters.metrics.sync import FakeSyncMetrics, PrometheusSyncMetrics

__all__ = ["FakeSyncMetrics", "PrometheusSyncMetrics"]
