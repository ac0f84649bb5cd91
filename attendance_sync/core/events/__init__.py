"""Domain events for the event bus."""

from attendance_sync.core.events.base import DomainEvent
from attendance_sync.core.events.enums import (
    BatchEventType,
    CheckpointEventType,
    ChunkEventType,
    EventType,
    ProgressEventType,
    SyncEventType,
)
from attendance_sync.core.events.sync import (
    BatchProcessedEvent,
    CheckpointSavedEvent,
    ChunkEvent,
    ProgressUpdatedEvent,
    SyncLifecycleEvent,
)

__all__ = [
    "BatchEventType",
    "BatchProcessedEvent",
    "CheckpointEventType",
    "CheckpointSavedEvent",
    "ChunkEvent",
    "ChunkEventType",
    "DomainEvent",
    "EventType",
    "ProgressEventType",
    "ProgressUpdatedEvent",
    "SyncEventType",
    "SyncLifecycleEvent",
]
