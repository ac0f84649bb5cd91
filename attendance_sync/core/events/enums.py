"""Event type enums: the vocabulary of the event bus.

Every domain event must use one of these enums for its event_type field.
The union `EventType` constrains DomainEvent.event_type to known values.

When adding a new event domain:
1. Define its enum here
2. Add it to the EventType union
3. Add it to ALL_EVENT_TYPE_ENUMS
"""

from enum import Enum


class SyncEventType(str, Enum):
    """Sync lifecycle event types."""

    INITIALIZED = "sync.initialized"
    RUNNING = "sync.running"
    COMPLETED = "sync.completed"
    FAILED = "sync.failed"
    CANCELLED = "sync.cancelled"


class ChunkEventType(str, Enum):
    """Chunk-level event types (one pair per chunk)."""

    STARTED = "chunk.started"
    COMPLETED = "chunk.completed"
    DEAD_LETTERED = "chunk.dead_lettered"


class BatchEventType(str, Enum):
    """Batch-level operational event types (high-frequency)."""

    PROCESSED = "batch.processed"


class ProgressEventType(str, Enum):
    """Progress snapshot event types."""

    UPDATED = "progress.updated"


class CheckpointEventType(str, Enum):
    """Checkpoint persistence event types."""

    SAVED = "checkpoint.saved"


# Union of all known event types.
# DomainEvent.event_type is typed to this, ensuring only known values are used.
EventType = (
    SyncEventType | ChunkEventType | BatchEventType | ProgressEventType | CheckpointEventType
)

ALL_EVENT_TYPE_ENUMS: tuple[type[Enum], ...] = (
    SyncEventType,
    ChunkEventType,
    BatchEventType,
    ProgressEventType,
    CheckpointEventType,
)
