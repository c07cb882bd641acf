"""
Key-value persistence backends for credentials.

The credential store talks to a `Persistence` port rather than to a concrete
storage so that tokens can live in a process-local map or be shared between
processes through Redis. Values are opaque strings; a missing key reads as None.
"""

from abc import ABC, abstractmethod
import logging
from typing import Dict, Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class Persistence(ABC):
    @abstractmethod
    async def get_item(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set_item(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def remove_item(self, key: str) -> None:
        """Remove `key`. Removing a missing key is not an error."""
        pass


class MemoryPersistence(Persistence):
    """Dict-backed persistence, scoped to a single process."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._items: Dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class RedisPersistence(Persistence):
    """
    Redis-backed persistence.

    Works with clients created with or without `decode_responses`; bytes read
    back from Redis are decoded as UTF-8.
    """

    def __init__(self, redis_client: redis.Redis, key_prefix: str = "") -> None:
        self._redis = redis_client
        self._key_prefix = key_prefix

    @staticmethod
    def from_url(url: str, key_prefix: str = "") -> "RedisPersistence":
        return RedisPersistence(redis.Redis.from_url(url), key_prefix=key_prefix)

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    async def get_item(self, key: str) -> Optional[str]:
        value = await self._redis.get(self._key(key))
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def set_item(self, key: str, value: str) -> None:
        await self._redis.set(self._key(key), value)

    async def remove_item(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def close(self) -> None:
        await self._redis.aclose()
