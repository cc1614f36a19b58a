"""Redis-based state manager backing the document store."""

import builtins
import json
from typing import Any

import redis.asyncio as redis

from moai.utils.logging import get_logger

logger = get_logger(__name__)


class StateManager:
    """Thin async wrapper around a Redis connection."""

    def __init__(self, redis_url: str, client: redis.Redis | None = None) -> None:
        self.redis_url = redis_url
        self.redis_client: redis.Redis | None = client

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self.redis_client is None:
            self.redis_client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("redis_connected", url=self.redis_url)

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self.redis_client:
            await self.redis_client.aclose()
            self.redis_client = None
            logger.info("redis_disconnected")

    async def ping(self) -> bool:
        """Round-trip to the server."""
        if not self.redis_client:
            await self.connect()

        return bool(await self.redis_client.ping())

    async def set(
        self,
        key: str,
        value: Any,
        ttl: int | None = None,
    ) -> None:
        """Set a value in Redis with optional TTL."""
        if not self.redis_client:
            await self.connect()

        # Serialize complex objects to JSON
        if isinstance(value, (dict, list)):
            value = json.dumps(value)

        await self.redis_client.set(key, value, ex=ttl)

        logger.debug("state_set", key=key, ttl=ttl)

    async def get(self, key: str) -> Any:
        """Get a value from Redis."""
        if not self.redis_client:
            await self.connect()

        value = await self.redis_client.get(key)

        if value:
            # Try to deserialize JSON
            try:
                return json.loads(value)
            except (json.JSONDecodeError, TypeError):
                return value

        return None

    async def delete(self, key: str) -> None:
        """Delete a key from Redis."""
        if not self.redis_client:
            await self.connect()

        await self.redis_client.delete(key)
        logger.debug("state_deleted", key=key)

    async def exists(self, key: str) -> bool:
        """Check if a key exists."""
        if not self.redis_client:
            await self.connect()

        return bool(await self.redis_client.exists(key))

    async def sadd(self, key: str, *members: str) -> None:
        """Add members to a set."""
        if not self.redis_client:
            await self.connect()

        await self.redis_client.sadd(key, *members)

    async def srem(self, key: str, *members: str) -> None:
        """Remove members from a set."""
        if not self.redis_client:
            await self.connect()

        await self.redis_client.srem(key, *members)

    async def smembers(self, key: str) -> builtins.set[str]:
        """Get all members of a set."""
        if not self.redis_client:
            await self.connect()

        return set(await self.redis_client.smembers(key))

    async def rpush(self, key: str, value: Any) -> None:
        """Append a value to a list."""
        if not self.redis_client:
            await self.connect()

        if isinstance(value, (dict, list)):
            value = json.dumps(value)

        await self.redis_client.rpush(key, value)

    async def lrange(self, key: str, start: int = 0, end: int = -1) -> list[Any]:
        """Get a slice of a list, JSON-decoding each entry."""
        if not self.redis_client:
            await self.connect()

        result = []
        for value in await self.redis_client.lrange(key, start, end):
            try:
                result.append(json.loads(value))
            except (json.JSONDecodeError, TypeError):
                result.append(value)
        return result

    async def publish(self, channel: str, message: str) -> None:
        """Publish a message to a channel."""
        if not self.redis_client:
            await self.connect()

        await self.redis_client.publish(channel, message)
        logger.debug("message_published", channel=channel)

    async def flush(self) -> None:
        """Drop every key in the current database."""
        if not self.redis_client:
            await self.connect()

        await self.redis_client.flushdb()
        logger.info("state_flushed")
