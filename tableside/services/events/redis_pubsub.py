"""
Redis Event Broker

Publishes realtime events on a Redis pub/sub channel so every API worker
relays them to its own websocket clients.

Requirements:
    - REDIS_URL environment variable
    - EVENTS_CHANNEL (defaults to tableside:events)
"""

import logging
from typing import AsyncIterator, Optional

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from tableside.core.config import get_settings
from tableside.schemas import RealtimeEvent
from tableside.services.events.base import BaseEventBroker

logger = logging.getLogger(__name__)


class RedisEventBroker(BaseEventBroker):
    """Event broker backed by Redis PUBLISH / SUBSCRIBE."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        channel: Optional[str] = None,
        client: Optional[aioredis.Redis] = None,
    ):
        settings = get_settings()
        self.channel = channel or settings.events_channel
        self._client = client or aioredis.from_url(
            redis_url or settings.redis_url,
            decode_responses=True,
        )
        logger.info(f"RedisEventBroker initialized (channel={self.channel})")

    @property
    def provider_name(self) -> str:
        return "redis"

    async def publish(self, event: RealtimeEvent) -> int:
        receivers = await self._client.publish(self.channel, event.model_dump_json())
        logger.debug(f"Published {event.type.value} to {receivers} Redis subscriber(s)")
        return receivers

    async def subscribe(self) -> AsyncIterator[RealtimeEvent]:
        pubsub = self._client.pubsub()
        await pubsub.subscribe(self.channel)
        logger.info(f"Redis subscriber started on {self.channel}")

        try:
            async for message in pubsub.listen():
                # Skip subscription confirmations
                if message is None or message.get("type") != "message":
                    continue
                try:
                    yield RealtimeEvent.model_validate_json(message["data"])
                except ValidationError as e:
                    logger.warning(f"Dropping malformed event from Redis: {e}")
        finally:
            await pubsub.unsubscribe(self.channel)
            await pubsub.aclose()

    async def health_check(self) -> bool:
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def close(self) -> None:
        await self._client.aclose()
