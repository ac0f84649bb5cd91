"""In-process event bus.

Each orchestrator owns one bus for the lifetime of a run. Handlers for a
single event run concurrently; a handler that raises is logged and
dropped from that delivery only, it stays subscribed for later events.
"""

import asyncio
import fnmatch
from typing import Callable, Dict, List

from attendance_sync.core.logging import LoggerConfigurator
from attendance_sync.core.protocols.event_bus import DomainEvent, EventHandler, event_type_name

logger = LoggerConfigurator.configure_logger(__name__)


class InMemoryEventBus:
    """EventBus that routes by glob pattern on the dotted event name.

    Usage:
        bus = InMemoryEventBus()
        unsubscribe = bus.subscribe("chunk.*", on_chunk)
        await bus.publish(event)
        unsubscribe()
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[EventHandler]] = {}
        self.published_count = 0

    def subscribe(self, event_pattern: str, handler: EventHandler) -> Callable[[], None]:
        """Register ``handler`` for ``event_pattern``; returns an unsubscribe callable."""
        self._handlers.setdefault(event_pattern, []).append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_pattern, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def handlers_for(self, name: str) -> List[EventHandler]:
        """Handlers whose pattern matches ``name``, in subscription order."""
        return [
            handler
            for pattern, handlers in self._handlers.items()
            if fnmatch.fnmatchcase(name, pattern)
            for handler in handlers
        ]

    async def publish(self, event: DomainEvent) -> None:
        name = event_type_name(event)
        self.published_count += 1
        handlers = self.handlers_for(name)
        if not handlers:
            return

        outcomes = await asyncio.gather(
            *(handler(event) for handler in handlers), return_exceptions=True
        )
        for handler, outcome in zip(handlers, outcomes):
            if isinstance(outcome, Exception):
                logger.error(
                    f"Subscriber {getattr(handler, '__qualname__', handler)!r} "
                    f"failed on '{name}': {outcome}",
                    exc_info=outcome,
                    extra={"operation_id": event.operation_id},
                )
