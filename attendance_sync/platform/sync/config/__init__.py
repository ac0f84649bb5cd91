"""Sync configuration."""

from attendance_sync.platform.sync.config.base import (
    CHUNK_IDENTITY_FIELDS,
    CalendarConfig,
    CircuitBreakerConfig,
    DateRange,
    MonitoringConfig,
    RetryConfig,
    SyncConfiguration,
    TimeoutConfig,
)

__all__ = [
    "CHUNK_IDENTITY_FIELDS",
    "CalendarConfig",
    "CircuitBreakerConfig",
    "DateRange",
    "MonitoringConfig",
    "RetryConfig",
    "SyncConfiguration",
    "TimeoutConfig",
]
