"""Recording event bus for tests."""

import fnmatch
from typing import List, Tuple

from attendance_sync.core.protocols.event_bus import DomainEvent, EventHandler, event_type_name


class FakeEventBus:
    """EventBus spy.

    Every published event is kept in ``events``. Subscribers are only
    invoked when ``call_subscribers`` is set, and then sequentially so a
    failing subscriber fails the test.

    Usage:
        bus = FakeEventBus()
        result = await make_orchestrator(event_bus=bus).execute_sync()

        bus.assert_published("sync.completed")
        assert len(bus.get_events("chunk.completed")) == 3
    """

    def __init__(self, call_subscribers: bool = False) -> None:
        self.events: List[DomainEvent] = []
        self.subscriptions: List[Tuple[str, EventHandler]] = []
        self.call_subscribers = call_subscribers

    def subscribe(self, event_pattern: str, handler: EventHandler) -> None:
        self.subscriptions.append((event_pattern, handler))

    async def publish(self, event: DomainEvent) -> None:
        self.events.append(event)
        if not self.call_subscribers:
            return
        name = event_type_name(event)
        for pattern, handler in self.subscriptions:
            if fnmatch.fnmatchcase(name, pattern):
                await handler(event)

    # -- assertions --

    @property
    def event_types(self) -> List[str]:
        """Names of the published events, in publication order."""
        return [event_type_name(event) for event in self.events]

    @property
    def patterns(self) -> List[str]:
        return [pattern for pattern, _ in self.subscriptions]

    def get_events(self, event_type: str) -> List[DomainEvent]:
        return [event for event in self.events if event_type_name(event) == event_type]

    def has_event(self, event_type: str) -> bool:
        return event_type in self.event_types

    def get_event(self, event_type: str) -> DomainEvent:
        """First event named ``event_type``; AssertionError when none was published."""
        matches = self.get_events(event_type)
        if not matches:
            raise AssertionError(f"'{event_type}' not published; saw {self.event_types}")
        return matches[0]

    def assert_published(self, event_type: str) -> DomainEvent:
        return self.get_event(event_type)

    def assert_not_published(self, event_type: str) -> None:
        if self.has_event(event_type):
            raise AssertionError(f"'{event_type}' was published unexpectedly")

    def clear(self) -> None:
        self.events.clear()
