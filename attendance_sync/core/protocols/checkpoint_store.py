"""CheckpointStore protocol: persist and load named checkpoint blobs."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from attendance_sync.platform.sync.types import Checkpoint


@runtime_checkable
class CheckpointStore(Protocol):
    """At-least-once durable checkpoint storage.

    ``save`` either fully succeeds or raises; the orchestrator adds no
    durability of its own.
    """

    async def save(self, checkpoint: Checkpoint) -> str:
        """Persist a checkpoint and return its id."""
        ...

    async def load(self, checkpoint_id: str) -> Checkpoint:
        """Load a checkpoint.

        Raises:
            CheckpointNotFoundError: Unknown id.
            CheckpointVersionError: Blob written by an incompatible version.
        """
        ...
