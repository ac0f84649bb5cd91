"""SIS source adapters."""

from attendance_sync.adapters.sources.aeries import AeriesSourceClient, parse_attendance_payload
from attendance_sync.adapters.sources.fake import FakeSourceClient, FetchCall

__all__ = ["AeriesSourceClient", "FakeSourceClient", "FetchCall", "parse_attendance_payload"]
