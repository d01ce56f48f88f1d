"""
Event Broker Abstract Base Class

Defines the interface every realtime event broker implements.
The order service publishes through it; the websocket relay subscribes to
it and forwards each event to connected clients.

Design Pattern: Strategy Pattern
    - InMemoryEventBroker for a single development process
    - RedisEventBroker when several API workers share one event stream
"""

from abc import ABC, abstractmethod
from typing import AsyncIterator

from tableside.schemas import RealtimeEvent


class BaseEventBroker(ABC):
    """Abstract base class for realtime event brokers."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def publish(self, event: RealtimeEvent) -> int:
        """
        Publish an event to every subscriber.

        Returns:
            Number of subscribers that received it (as reported by the broker)
        """
        pass

    @abstractmethod
    def subscribe(self) -> AsyncIterator[RealtimeEvent]:
        """Yield events as they are published, until the consumer stops."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check broker connectivity."""
        pass

    async def close(self) -> None:
        """Release connections held by the broker."""
        return None
