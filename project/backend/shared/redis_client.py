"""
Redis client.

Cache, cancellation flags, job queue and pub/sub over one async connection pool.
"""

import json
from typing import Any, Optional
import redis.asyncio as aioredis
from shared.config import settings
from shared.errors import RetryableError, ConfigError


class RedisClient:
    """Async Redis client with key namespacing and JSON support."""

    def __init__(self, url: Optional[str] = None):
        """Initialize Redis client (connections are opened on first command)."""
        try:
            self.client: aioredis.Redis = aioredis.from_url(
                url or settings.redis_url,
                encoding="utf-8",
                decode_responses=False  # Values are encoded/decoded here
            )
            self.prefix = "composite:cache:"
            self.queue_prefix = "composite:queue:"
        except Exception as e:
            raise ConfigError(f"Failed to initialize Redis client: {str(e)}") from e

    def _prefix_key(self, key: str) -> str:
        """Add namespace prefix to key."""
        return f"{self.prefix}{key}"

    def _queue_key(self, name: str) -> str:
        return f"{self.queue_prefix}{name}"

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        """
        Set a string value.

        Args:
            key: Cache key
            value: String value to store
            ex: Expiration time in seconds (optional)
        """
        try:
            await self.client.set(self._prefix_key(key), value.encode("utf-8"), ex=ex)
            return True
        except Exception as e:
            raise RetryableError(f"Failed to set Redis key: {str(e)}") from e

    async def get(self, key: str) -> Optional[str]:
        """Get a string value, or None if the key does not exist."""
        try:
            result = await self.client.get(self._prefix_key(key))
            if result is None:
                return None
            return result.decode("utf-8")
        except Exception as e:
            raise RetryableError(f"Failed to get Redis key: {str(e)}") from e

    async def delete(self, key: str) -> bool:
        """Delete a key; returns False if it did not exist."""
        try:
            result = await self.client.delete(self._prefix_key(key))
            return result > 0
        except Exception as e:
            raise RetryableError(f"Failed to delete Redis key: {str(e)}") from e

    async def set_json(self, key: str, data: Any, ttl: Optional[int] = None) -> bool:
        """Store a JSON-serialized value."""
        try:
            json_str = json.dumps(data, default=str)  # default=str handles datetime, enums
        except (TypeError, ValueError) as e:
            raise RetryableError(f"Failed to encode JSON for Redis: {str(e)}") from e
        return await self.set(key, json_str, ex=ttl)

    async def get_json(self, key: str) -> Optional[Any]:
        """Fetch and decode a JSON value."""
        json_str = await self.get(key)
        if json_str is None:
            return None
        try:
            return json.loads(json_str)
        except json.JSONDecodeError as e:
            raise RetryableError(f"Failed to decode JSON from Redis: {str(e)}") from e

    async def push(self, queue: str, payload: dict) -> int:
        """Append a JSON payload to the head of a list-backed queue."""
        try:
            return await self.client.lpush(self._queue_key(queue), json.dumps(payload, default=str))
        except Exception as e:
            raise RetryableError(f"Failed to push to queue {queue}: {str(e)}") from e

    async def pop(self, queue: str, timeout: int = 5) -> Optional[dict]:
        """Block up to `timeout` seconds for the oldest payload in a queue."""
        try:
            item = await self.client.brpop(self._queue_key(queue), timeout=timeout)
        except Exception as e:
            raise RetryableError(f"Failed to pop from queue {queue}: {str(e)}") from e
        if not item:
            return None
        # brpop returns (key, value)
        raw = item[1]
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    async def queue_length(self, queue: str) -> int:
        try:
            return await self.client.llen(self._queue_key(queue))
        except Exception as e:
            raise RetryableError(f"Failed to read queue length: {str(e)}") from e

    async def publish(self, channel: str, data: Any) -> int:
        """Publish a JSON message on a pub/sub channel."""
        try:
            return await self.client.publish(channel, json.dumps(data, default=str))
        except Exception as e:
            raise RetryableError(f"Failed to publish to {channel}: {str(e)}") from e

    async def health_check(self) -> bool:
        """Return True if Redis answers PING."""
        try:
            await self.client.ping()
            return True
        except Exception:
            return False

    async def close(self):
        """Close Redis connection."""
        await self.client.aclose()


# Singleton instance
redis_client = RedisClient()
