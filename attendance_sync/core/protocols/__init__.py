"""Core protocols for dependency injection.

The orchestrator depends only on these structural types; concrete
implementations live under ``attendance_sync.adapters``.
"""

from attendance_sync.core.protocols.checkpoint_store import CheckpointStore
from attendance_sync.core.protocols.circuit_breaker import CircuitBreaker
from attendance_sync.core.protocols.event_bus import (
    DomainEvent,
    EventBus,
    EventHandler,
    EventSubscriber,
)
from attendance_sync.core.protocols.metrics import SyncMetrics
from attendance_sync.core.protocols.sink import RecordSink
from attendance_sync.core.protocols.source import SourceClient

__all__ = [
    "CheckpointStore",
    "CircuitBreaker",
    "DomainEvent",
    "EventBus",
    "EventHandler",
    "EventSubscriber",
    "RecordSink",
    "SourceClient",
    "SyncMetrics",
]
