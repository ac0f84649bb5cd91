"""Event bus subscribers for sync runs."""

from attendance_sync.platform.sync.subscribers.progress_logger import SyncProgressLogger

__all__ = ["SyncProgressLogger"]
