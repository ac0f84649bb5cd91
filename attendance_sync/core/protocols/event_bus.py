"""Event bus protocol.

The orchestrator and the chunk pipeline only ever publish; everything that
reacts to a run (the progress logger, a caller tracking one operation, a
metrics hook) subscribes with a glob over the dotted event name:

    bus.subscribe("chunk.*", on_chunk)
    bus.subscribe("sync.completed", on_done)
    await bus.publish(ChunkEvent.for_chunk(ChunkEventType.STARTED, op_id, chunk))
"""

from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, ClassVar, List, Protocol, Union, runtime_checkable


@runtime_checkable
class DomainEvent(Protocol):
    """What the bus needs from an event: a routable type and run metadata."""

    @property
    def event_type(self) -> Union[str, Enum]:
        """``<domain>.<action>`` name, or a str-Enum whose value is that name."""
        ...

    @property
    def timestamp(self) -> datetime:
        ...

    @property
    def operation_id(self) -> str:
        """Sync run the event belongs to."""
        ...


EventHandler = Callable[[DomainEvent], Awaitable[None]]


def event_type_name(event: DomainEvent) -> str:
    """Dotted event name used for pattern matching."""
    event_type = event.event_type
    return str(event_type.value if isinstance(event_type, Enum) else event_type)


@runtime_checkable
class EventBus(Protocol):
    """Publishes events to every subscriber whose pattern matches."""

    async def publish(self, event: DomainEvent) -> None:
        """Deliver ``event``; a failing subscriber never fails the publisher."""
        ...

    def subscribe(self, event_pattern: str, handler: EventHandler) -> None:
        """Call ``handler`` for every event whose name matches ``event_pattern``."""
        ...


class EventSubscriber:
    """Base class for bus subscribers.

    Subclasses list the glob patterns they care about in EVENT_PATTERNS
    and implement ``handle``. ``attach`` wires every pattern to the bus.
    """

    EVENT_PATTERNS: ClassVar[List[str]] = []

    async def handle(self, event: DomainEvent) -> None:
        """Handle one event routed to this subscriber."""
        raise NotImplementedError

    def attach(self, event_bus: EventBus) -> None:
        """Subscribe ``handle`` to every pattern in EVENT_PATTERNS."""
        for pattern in self.EVENT_PATTERNS:
            event_bus.subscribe(pattern, self.handle)
