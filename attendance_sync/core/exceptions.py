"""Shared exceptions module.

Error taxonomy for the sync orchestrator:

- ConfigurationError: invalid run configuration, raised before any I/O.
- TransientSourceError / TransientSinkError: retried per RetryPolicy.
- PermanentRecordError: malformed or rejected records, counted as failed.
- SourceAuthenticationError: the SIS refused our credentials (never retried).
- CheckpointError: checkpoint lookup, version or persistence problems.
- OrchestratorFatalError: aborts a run, which still returns a failed result.
"""

from typing import Optional, Sequence

from pydantic import ValidationError


class AttendanceSyncException(Exception):
    """Base exception for the attendance sync service."""

    pass


class ConfigurationError(AttendanceSyncException, ValueError):
    """Exception raised when a sync configuration is invalid."""

    def __init__(self, message: Optional[str] = "Invalid sync configuration"):
        """Create a new ConfigurationError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class InvalidRangeError(ConfigurationError):
    """Exception raised when a date range or chunk size cannot be partitioned."""

    def __init__(self, message: Optional[str] = "Invalid date range"):
        """Create a new InvalidRangeError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        super().__init__(message)


class ConfigurationMismatchError(ConfigurationError):
    """Exception raised when a supplied configuration conflicts with a checkpoint."""

    def __init__(self, fields: Sequence[str], message: Optional[str] = None):
        """Create a new ConfigurationMismatchError instance.

        Args:
        ----
            fields (Sequence[str]): Names of the conflicting fields.
            message (str, optional): Custom error message.

        """
        self.fields = list(fields)
        if message is None:
            message = (
                "Supplied configuration does not match the checkpoint: "
                f"{', '.join(self.fields)}"
            )
        super().__init__(message)


class TransientSourceError(AttendanceSyncException):
    """Exception raised for retryable SIS failures (timeouts, 429, 5xx)."""

    def __init__(self, message: Optional[str] = "Transient source failure", status_code=None):
        """Create a new TransientSourceError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.
            status_code (int, optional): HTTP status returned by the source.

        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class TransientSinkError(AttendanceSyncException):
    """Exception raised for retryable warehouse write failures."""

    def __init__(self, message: Optional[str] = "Transient sink failure", status_code=None):
        """Create a new TransientSinkError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.
            status_code (int, optional): HTTP status returned by the sink.

        """
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class PermanentRecordError(AttendanceSyncException):
    """Exception raised when records are malformed or rejected by validation."""

    def __init__(
        self,
        message: Optional[str] = "Record rejected",
        record_ids: Optional[Sequence[str]] = None,
    ):
        """Create a new PermanentRecordError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.
            record_ids (Sequence[str], optional): Identifiers of the rejected records.

        """
        self.message = message
        self.record_ids = list(record_ids or [])
        super().__init__(self.message)


class SourceAuthenticationError(AttendanceSyncException):
    """Exception raised when the SIS rejects our credentials."""

    def __init__(self, message: Optional[str] = "Source authentication failed"):
        """Create a new SourceAuthenticationError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class CheckpointError(AttendanceSyncException):
    """Base class for checkpoint failures."""

    def __init__(self, message: Optional[str] = "Checkpoint error"):
        """Create a new CheckpointError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class CheckpointNotFoundError(CheckpointError):
    """Exception raised when a checkpoint id is unknown to the store."""

    def __init__(self, checkpoint_id: str):
        """Create a new CheckpointNotFoundError instance.

        Args:
        ----
            checkpoint_id (str): The id that could not be found.

        """
        self.checkpoint_id = checkpoint_id
        super().__init__(f"Checkpoint not found: {checkpoint_id}")


class CheckpointVersionError(CheckpointError):
    """Exception raised when a persisted checkpoint has an unsupported schema version."""

    def __init__(self, found: Optional[str], expected: str):
        """Create a new CheckpointVersionError instance.

        Args:
        ----
            found (str, optional): Version tag found in the blob.
            expected (str): Version tag this release understands.

        """
        self.found = found
        self.expected = expected
        super().__init__(f"Unsupported checkpoint version {found!r} (expected {expected!r})")


class CheckpointPersistenceError(CheckpointError):
    """Exception raised when a checkpoint cannot be written or decoded."""

    pass


class OrchestratorFatalError(AttendanceSyncException):
    """Exception raised for conditions that abort a whole sync run."""

    def __init__(self, message: Optional[str] = "Sync aborted"):
        """Create a new OrchestratorFatalError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


class InvalidStateError(Exception):
    """Exception raised when an object is in an invalid state.

    Used by the orchestrator's state machine when an operation is not
    allowed in the current lifecycle state.
    """

    def __init__(self, message: Optional[str] = "Object is in an invalid state"):
        """Create a new InvalidStateError instance.

        Args:
        ----
            message (str, optional): The error message. Has default message.

        """
        self.message = message
        super().__init__(self.message)


def unpack_validation_error(exc: ValidationError) -> dict:
    """Unpack a Pydantic validation error into a dictionary.

    Args:
    ----
        exc (ValidationError): The Pydantic validation error.

    Returns:
    -------
        dict: The dictionary representation of the validation error.

    """
    error_messages = []
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"])
        message = error["msg"]
        error_messages.append({field: message})

    return {"errors": error_messages}
