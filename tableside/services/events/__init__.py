"""
Event Broker Factory

Returns the in-memory or Redis event broker based on ENV_MODE.

Usage:
    from tableside.services.events import get_event_broker

    broker = get_event_broker()
    await broker.publish(event)
"""

import logging
from functools import lru_cache

from tableside.core.config import get_settings
from tableside.services.events.base import BaseEventBroker
from tableside.services.events.memory import InMemoryEventBroker
from tableside.services.events.redis_pubsub import RedisEventBroker

logger = logging.getLogger(__name__)


@lru_cache()
def get_event_broker() -> BaseEventBroker:
    """
    Get the configured event broker instance.

    Returns:
        BaseEventBroker: InMemoryEventBroker in development,
        RedisEventBroker in staging and production
    """
    settings = get_settings()

    if settings.use_redis_events:
        logger.info(f"Event Broker: Using RedisEventBroker ({settings.env_mode.value} mode)")
        return RedisEventBroker()
    logger.info("Event Broker: Using InMemoryEventBroker (development mode)")
    return InMemoryEventBroker()


def reset_event_broker() -> None:
    """Clear the cached broker instance."""
    get_event_broker.cache_clear()


__all__ = [
    "get_event_broker",
    "reset_event_broker",
    "BaseEventBroker",
    "InMemoryEventBroker",
    "RedisEventBroker",
]
