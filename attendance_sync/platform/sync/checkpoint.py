"""Checkpoint encoding and resume reconciliation.

A checkpoint is persisted as one JSON document:

    {
      "schema_version": "attendance-sync.checkpoint/v1",
      "operation_id": "attendance-sync-1723708800000-k3j9x2m1q",
      "config": {...},
      "completed_chunks": [0, 1, 4],
      "counters": {"records_processed": 1500, ...},
      "created_at": "2024-08-15T12:00:00+00:00"
    }

The version tag is checked before anything else is read, so blobs from a
future format are rejected instead of being misread.
"""

import json
import re
import uuid
from typing import Any, Dict, Optional, Union

from pydantic import ValidationError

from attendance_sync.core.exceptions import (
    CheckpointPersistenceError,
    CheckpointVersionError,
    ConfigurationMismatchError,
)
from attendance_sync.platform.sync.config import SyncConfiguration
from attendance_sync.platform.sync.types import CHECKPOINT_SCHEMA_VERSION, Checkpoint

SUPPORTED_SCHEMA_VERSIONS = frozenset({CHECKPOINT_SCHEMA_VERSION})


def encode_checkpoint(checkpoint: Checkpoint) -> str:
    """Serialize a checkpoint to its JSON document."""
    return checkpoint.model_dump_json(indent=2)


def decode_checkpoint(blob: Union[str, bytes]) -> Checkpoint:
    """Parse a JSON document back into a Checkpoint.

    Raises:
        CheckpointVersionError: Missing or unsupported ``schema_version``.
        CheckpointPersistenceError: Not JSON, or fields fail validation.
    """
    try:
        data = json.loads(blob)
    except (TypeError, ValueError) as exc:
        raise CheckpointPersistenceError(f"Checkpoint is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise CheckpointPersistenceError("Checkpoint document must be a JSON object")

    return checkpoint_from_dict(data)


def checkpoint_from_dict(data: Dict[str, Any]) -> Checkpoint:
    """Validate a decoded checkpoint document."""
    version = data.get("schema_version")
    if version not in SUPPORTED_SCHEMA_VERSIONS:
        raise CheckpointVersionError(found=version, expected=CHECKPOINT_SCHEMA_VERSION)
    try:
        return Checkpoint.model_validate(data)
    except ValidationError as exc:
        raise CheckpointPersistenceError(f"Checkpoint failed validation: {exc}") from exc


def reconcile_config(
    checkpoint: Checkpoint, supplied: Optional[SyncConfiguration]
) -> SyncConfiguration:
    """Pick the configuration a resumed run should use.

    The checkpoint's chunk identity always wins; a supplied configuration may
    only change tuning (parallelism, batch size, retry, monitoring, timeouts).

    Raises:
        ConfigurationMismatchError: The supplied config would change chunk identity.
    """
    if supplied is None:
        return checkpoint.config
    mismatches = checkpoint.config.identity_mismatches(supplied)
    if mismatches:
        raise ConfigurationMismatchError(mismatches)
    return checkpoint.config.with_tuning_from(supplied)


def new_checkpoint_id(checkpoint: Checkpoint) -> str:
    """``<operation id>-cp<12 hex chars>``; safe to use as a file name."""
    prefix = re.sub(r"[^A-Za-z0-9._-]", "_", checkpoint.operation_id)
    return f"{prefix}-cp{uuid.uuid4().hex[:12]}"
