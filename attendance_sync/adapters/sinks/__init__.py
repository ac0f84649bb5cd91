"""Warehouse sink adapters."""

from attendance_sync.adapters.sinks.fake import FakeRecordSink
from attendance_sync.adapters.sinks.postgrest import PostgrestRecordSink

__all__ = ["FakeRecordSink", "PostgrestRecordSink"]
