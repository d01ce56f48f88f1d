"""
In-Memory Event Broker

Fans events out to subscribers living in the same process.
Used in development mode and in tests; keeps a short history of what was
published so it can be inspected.
"""

import asyncio
import logging
from collections import deque
from typing import AsyncIterator

from tableside.schemas import RealtimeEvent
from tableside.services.events.base import BaseEventBroker

logger = logging.getLogger(__name__)


class InMemoryEventBroker(BaseEventBroker):
    """Process-local broker backed by one asyncio.Queue per subscriber."""

    def __init__(self, history_size: int = 100):
        self._subscribers: set[asyncio.Queue] = set()
        self.history: deque[RealtimeEvent] = deque(maxlen=history_size)
        logger.info("InMemoryEventBroker initialized")

    @property
    def provider_name(self) -> str:
        return "memory"

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def publish(self, event: RealtimeEvent) -> int:
        self.history.append(event)
        for queue in list(self._subscribers):
            queue.put_nowait(event)
        logger.debug(f"Published {event.type.value} to {len(self._subscribers)} subscriber(s)")
        return len(self._subscribers)

    def subscribe(self) -> AsyncIterator[RealtimeEvent]:
        # Register now so events published before the first read are kept
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.add(queue)
        return self._drain(queue)

    async def _drain(self, queue: asyncio.Queue) -> AsyncIterator[RealtimeEvent]:
        try:
            while True:
                yield await queue.get()
        finally:
            self._subscribers.discard(queue)

    async def health_check(self) -> bool:
        return True

    def events_of(self, event_type) -> list[RealtimeEvent]:
        """Published events of one type, oldest first."""
        return [e for e in self.history if e.type == event_type]
