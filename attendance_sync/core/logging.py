"""Logging for the attendance sync service.

Loggers are plain stdlib loggers wrapped in ``ContextualLogger`` so that
dimensions such as ``operation_id`` or ``chunk_index`` travel with every
record. Outside local development records are rendered as JSON lines.

Usage:
    from attendance_sync.core.logging import LoggerConfigurator, logger

    sync_logger = LoggerConfigurator.configure_logger(
        "attendance_sync.platform.sync",
        dimensions={"operation_id": operation_id},
    )
    chunk_logger = sync_logger.with_context(chunk_index=7)
    chunk_logger.info("Chunk started")
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, MutableMapping, Optional, Tuple

from attendance_sync.core.config import settings

_ROOT_LOGGER_NAME = "attendance_sync"

# Attributes present on every LogRecord; anything else came from `extra`.
_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class _JSONFormatter(logging.Formatter):
    """Render log records as single-line JSON documents."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class _TextFormatter(logging.Formatter):
    """Readable single-line format for local development."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        dims = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        if dims:
            rendered = " ".join(f"{k}={v}" for k, v in sorted(dims.items()))
            line = f"{line} [{rendered}]"
        return line


class ContextualLogger(logging.LoggerAdapter):
    """Logger adapter that carries dimensions and an optional message prefix."""

    def __init__(
        self,
        logger: logging.Logger,
        dimensions: Optional[Dict[str, Any]] = None,
        prefix: str = "",
    ) -> None:
        super().__init__(logger, dict(dimensions or {}))
        self.dimensions: Dict[str, Any] = dict(dimensions or {})
        self.prefix = prefix

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping]:
        extra = dict(self.dimensions)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        if self.prefix:
            msg = f"{self.prefix}{msg}"
        return msg, kwargs

    def with_context(self, **dimensions: Any) -> "ContextualLogger":
        """Return a child logger with additional dimensions."""
        merged = {**self.dimensions, **dimensions}
        return ContextualLogger(self.logger, merged, self.prefix)

    def with_prefix(self, prefix: str) -> "ContextualLogger":
        """Return a child logger that prefixes every message."""
        return ContextualLogger(self.logger, self.dimensions, f"{self.prefix}{prefix}")


class LoggerConfigurator:
    """Builds contextual loggers on top of a once-configured root handler."""

    _configured = False

    @classmethod
    def _configure_root(cls) -> None:
        if cls._configured:
            return
        root = logging.getLogger(_ROOT_LOGGER_NAME)
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(_JSONFormatter() if settings.use_json_logs else _TextFormatter())
        root.addHandler(handler)
        root.setLevel(settings.LOG_LEVEL)
        root.propagate = True
        cls._configured = True

    @classmethod
    def configure_logger(
        cls, name: str, dimensions: Optional[Dict[str, Any]] = None
    ) -> ContextualLogger:
        """Get a contextual logger for ``name`` carrying ``dimensions``.

        Args:
            name: Dotted logger name, normally below ``attendance_sync``.
            dimensions: Key/value pairs attached to every record.

        Returns:
            A ContextualLogger bound to the named stdlib logger.
        """
        cls._configure_root()
        return ContextualLogger(logging.getLogger(name), dimensions)


logger = LoggerConfigurator.configure_logger(_ROOT_LOGGER_NAME)
