"""Filesystem checkpoint store.

One JSON document per checkpoint id under a base directory. Works with a
local ``local_storage/`` directory as well as a mounted volume. Writes go
to a temporary file first and are renamed into place, so a crash never
leaves a half-written checkpoint behind.
"""

import asyncio
import logging
import re
from pathlib import Path
from typing import List, Union

import aiofiles
import aiofiles.os

from attendance_sync.core.exceptions import (
    CheckpointError,
    CheckpointNotFoundError,
    CheckpointPersistenceError,
)
from attendance_sync.platform.sync.checkpoint import (
    decode_checkpoint,
    encode_checkpoint,
    new_checkpoint_id,
)
from attendance_sync.platform.sync.types import Checkpoint

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9._-]+$")
_SUFFIX = ".json"


class FilesystemCheckpointStore:
    """Checkpoint store backed by JSON files.

    Uses aiofiles for non-blocking file I/O operations.
    """

    def __init__(self, base_path: Union[str, Path]):
        """Initialize the store.

        Args:
            base_path: Directory holding one ``<checkpoint id>.json`` per checkpoint.
        """
        self.base_path = Path(base_path)
        logger.debug(f"FilesystemCheckpointStore initialized at {self.base_path}")

    def _resolve(self, checkpoint_id: str) -> Path:
        if not _SAFE_ID.match(checkpoint_id):
            raise CheckpointNotFoundError(checkpoint_id)
        return self.base_path / f"{checkpoint_id}{_SUFFIX}"

    async def _ensure_base_dir(self) -> None:
        if not self.base_path.exists():
            await asyncio.to_thread(self.base_path.mkdir, parents=True, exist_ok=True)

    async def save(self, checkpoint: Checkpoint) -> str:
        """Write the checkpoint and return its id."""
        checkpoint_id = new_checkpoint_id(checkpoint)
        full_path = self._resolve(checkpoint_id)
        tmp_path = full_path.with_suffix(".tmp")

        try:
            await self._ensure_base_dir()
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(encode_checkpoint(checkpoint))
            await aiofiles.os.replace(tmp_path, full_path)
        except OSError as e:
            raise CheckpointPersistenceError(
                f"Failed to write checkpoint {checkpoint_id}: {e}"
            ) from e

        logger.debug(f"Checkpoint {checkpoint_id} written to {full_path}")
        return checkpoint_id

    async def load(self, checkpoint_id: str) -> Checkpoint:
        """Read and decode a checkpoint.

        Raises:
            CheckpointNotFoundError: No file for this id.
            CheckpointVersionError: Unsupported schema version.
            CheckpointPersistenceError: Unreadable or invalid content.
        """
        full_path = self._resolve(checkpoint_id)
        if not await aiofiles.os.path.exists(full_path):
            raise CheckpointNotFoundError(checkpoint_id)

        try:
            async with aiofiles.open(full_path, "r", encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            raise CheckpointPersistenceError(
                f"Failed to read checkpoint {checkpoint_id}: {e}"
            ) from e
        return decode_checkpoint(content)

    async def list_ids(self) -> List[str]:
        """Ids of every stored checkpoint, oldest first."""

        def _list_sync() -> List[str]:
            if not self.base_path.exists():
                return []
            files = sorted(self.base_path.glob(f"*{_SUFFIX}"), key=lambda p: p.stat().st_mtime)
            return [path.name[: -len(_SUFFIX)] for path in files]

        return await asyncio.to_thread(_list_sync)

    async def delete(self, checkpoint_id: str) -> bool:
        """Remove a checkpoint; returns False when it did not exist."""
        try:
            full_path = self._resolve(checkpoint_id)
        except CheckpointError:
            return False
        if not await aiofiles.os.path.exists(full_path):
            return False
        await aiofiles.os.remove(full_path)
        return True
