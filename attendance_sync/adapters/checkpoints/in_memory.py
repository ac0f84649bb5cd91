"""In-memory checkpoint store.

Keeps the encoded JSON documents (not the objects) so a round trip goes
through the same codec as the filesystem store. Lives as long as the
process; useful for single-process runs and tests.
"""

import asyncio
from typing import Dict, List

from attendance_sync.core.exceptions import CheckpointNotFoundError
from attendance_sync.platform.sync.checkpoint import (
    decode_checkpoint,
    encode_checkpoint,
    new_checkpoint_id,
)
from attendance_sync.platform.sync.types import Checkpoint


class InMemoryCheckpointStore:
    """Checkpoint store keeping JSON blobs in a dict."""

    def __init__(self) -> None:
        self._blobs: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def save(self, checkpoint: Checkpoint) -> str:
        checkpoint_id = new_checkpoint_id(checkpoint)
        blob = encode_checkpoint(checkpoint)
        async with self._lock:
            self._blobs[checkpoint_id] = blob
        return checkpoint_id

    async def load(self, checkpoint_id: str) -> Checkpoint:
        async with self._lock:
            blob = self._blobs.get(checkpoint_id)
        if blob is None:
            raise CheckpointNotFoundError(checkpoint_id)
        return decode_checkpoint(blob)

    def put_raw(self, checkpoint_id: str, blob: str) -> None:
        """Store a raw document under an id (for migrations and tests)."""
        self._blobs[checkpoint_id] = blob

    def list_ids(self) -> List[str]:
        return list(self._blobs)
