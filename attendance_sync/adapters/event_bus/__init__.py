"""Event bus adapters."""

from attendance_sync.adapters.event_bus.fake import FakeEventBus
from attendance_sync.adapters.event_bus.in_memory import InMemoryEventBus

__all__ = ["InMemoryEventBus", "FakeEventBus"]
