"""
Event Bus

The single delivery path for realtime events inside a client. The realtime
connection publishes decoded events here; stores subscribe by event type.
"""

import logging
from collections import defaultdict
from typing import Callable, Optional

from tableside.schemas import EventType, RealtimeEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[RealtimeEvent], None]


class EventBus:
    """Typed publish/subscribe within one process."""

    def __init__(self):
        self._handlers: dict[Optional[EventType], list[EventHandler]] = defaultdict(list)

    def subscribe(
        self,
        event_type: Optional[EventType],
        handler: EventHandler,
    ) -> Callable[[], None]:
        """
        Register a handler for one event type, or for all with None.

        Returns:
            A callable that removes the handler again.
        """
        self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event: RealtimeEvent) -> int:
        """Deliver an event; a failing handler is logged and skipped."""
        handlers = list(self._handlers.get(event.type, [])) + list(self._handlers.get(None, []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                logger.exception(f"Handler {handler!r} failed on {event.type.value}")
        return len(handlers)
