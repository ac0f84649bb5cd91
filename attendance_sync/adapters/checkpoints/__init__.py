"""Checkpoint store adapters."""

from attendance_sync.adapters.checkpoints.fake import FakeCheckpointStore
from attendance_sync.adapters.checkpoints.filesystem import FilesystemCheckpointStore
from attendance_sync.adapters.checkpoints.in_memory import InMemoryCheckpointStore

__all__ = ["FakeCheckpointStore", "FilesystemCheckpointStore", "InMemoryCheckpointStore"]
