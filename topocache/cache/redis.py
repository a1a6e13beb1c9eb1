"""Redis-backed key/value store and distributed lock."""
import uuid
from typing import Optional, Protocol
import redis.asyncio as redis
from topocache.config import settings


class KeyValueStore(Protocol):
    """Shared store holding cached values and their expiry markers."""

    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str, ttl: float) -> None: ...

    async def exists(self, key: str) -> bool: ...

    async def delete(self, key: str) -> None: ...


class DistributedLock(Protocol):
    """Lock shared by every server process that refreshes the cache."""

    async def try_acquire(self, key: str, ttl: float) -> Optional[str]: ...

    async def release(self, key: str, token: str) -> None: ...


def _to_ms(ttl: float) -> int:
    return max(int(ttl * 1000), 1)


class RedisCache:
    """Redis connection used as the shared cache store."""

    def __init__(self):
        """Initialize Redis connection."""
        self.redis: Optional[redis.Redis] = None

    async def connect(self):
        """Establish Redis connection."""
        self.redis = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            db=settings.redis_db,
            password=settings.redis_password,
            decode_responses=True,
        )

    async def disconnect(self):
        """Close Redis connection."""
        if self.redis:
            await self.redis.close()

    async def get(self, key: str) -> Optional[str]:
        """Return the raw value stored at key, or None."""
        if not self.redis:
            return None
        return await self.redis.get(key)

    async def set(self, key: str, value: str, ttl: float):
        """
        Store a value that expires after ttl seconds.

        Args:
            key: Cache key
            value: Serialized value
            ttl: Time to live in seconds (fractions allowed)
        """
        if not self.redis:
            return
        await self.redis.set(key, value, px=_to_ms(ttl))

    async def delete(self, key: str):
        """Delete a cache entry."""
        if self.redis:
            await self.redis.delete(key)

    async def exists(self, key: str) -> bool:
        """Check if a key exists in cache."""
        if not self.redis:
            return False
        return await self.redis.exists(key) > 0


# Deletes the lock only while it still holds our token.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class RedisLock:
    """
    Distributed lock built on SET NX PX.

    The lock key expires on its own after ttl, so a refresher that dies
    while holding it cannot block the key forever. Each acquisition gets
    its own token and only the holder of that token can release it.
    """

    def __init__(self, cache: RedisCache):
        self.cache = cache

    async def try_acquire(self, key: str, ttl: float) -> Optional[str]:
        """Try once to take the lock; never blocks. Returns the owner token, or None."""
        if not self.cache.redis:
            return None
        token = uuid.uuid4().hex
        if await self.cache.redis.set(key, token, nx=True, px=_to_ms(ttl)):
            return token
        return None

    async def release(self, key: str, token: str):
        """Release the lock if token still owns it."""
        if not self.cache.redis:
            return
        await self.cache.redis.eval(_RELEASE_SCRIPT, 1, key, token)


# Global cache instance
cache = RedisCache()


def make_key(*parts: str) -> str:
    """
    Create a namespaced cache key.

    Args:
        *parts: Key components

    Returns:
        Formatted cache key
    """
    return settings.key_prefix + ":".join(parts)
