"""Fake checkpoint store for testing.

Keeps checkpoint objects as saved, records every call and can be told to
fail saves.
"""

from typing import Dict, List, Optional

from attendance_sync.core.exceptions import CheckpointNotFoundError, CheckpointPersistenceError
from attendance_sync.platform.sync.types import Checkpoint


class FakeCheckpointStore:
    """Test implementation of CheckpointStore.

    Usage:
        store = FakeCheckpointStore()
        result = await orchestrator.execute_sync(config)

        saved = store.get(result.checkpoint_id)
        assert saved.completed_chunks == (0, 1, 2)
    """

    def __init__(self, fail_saves: bool = False) -> None:
        """Initialize the fake store.

        Args:
            fail_saves: If True, every save raises CheckpointPersistenceError.
        """
        self.checkpoints: Dict[str, Checkpoint] = {}
        self.saved: List[str] = []  # ordered log of saved ids
        self.loads: List[str] = []  # ordered log of requested ids
        self.fail_saves = fail_saves

    async def save(self, checkpoint: Checkpoint) -> str:
        """Store the checkpoint under a sequential id."""
        if self.fail_saves:
            raise CheckpointPersistenceError("Checkpoint store unavailable")
        checkpoint_id = f"{checkpoint.operation_id}-cp{len(self.saved) + 1}"
        self.checkpoints[checkpoint_id] = checkpoint
        self.saved.append(checkpoint_id)
        return checkpoint_id

    async def load(self, checkpoint_id: str) -> Checkpoint:
        """Return the stored checkpoint or raise CheckpointNotFoundError."""
        self.loads.append(checkpoint_id)
        if checkpoint_id not in self.checkpoints:
            raise CheckpointNotFoundError(checkpoint_id)
        return self.checkpoints[checkpoint_id]

    # Test helpers

    def get(self, checkpoint_id: str) -> Checkpoint:
        """Get a stored checkpoint (AssertionError if missing)."""
        if checkpoint_id not in self.checkpoints:
            raise AssertionError(f"No checkpoint saved under '{checkpoint_id}'")
        return self.checkpoints[checkpoint_id]

    @property
    def latest(self) -> Optional[Checkpoint]:
        """The most recently saved checkpoint, if any."""
        return self.checkpoints[self.saved[-1]] if self.saved else None

    @property
    def save_count(self) -> int:
        return len(self.saved)
