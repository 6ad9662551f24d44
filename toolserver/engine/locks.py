"""Leased uniqueness locks keyed by job id.

``acquire`` hands out a token; ``release`` only drops the lease while that
token still owns it, so a holder whose lease expired cannot free a key that
someone else has taken since.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid

from redis import asyncio as aioredis

from toolserver.config import settings

logger = logging.getLogger(__name__)

# Delete the key only if it still holds our token
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def new_token() -> str:
    return uuid.uuid4().hex


class LockStore:
    async def acquire(self, key: str, ttl: int) -> str | None:
        """Return an ownership token, or None while another holder has the key."""
        raise NotImplementedError

    async def release(self, key: str, token: str | None = None) -> bool:
        """Release ``key``; without a token the lease is dropped unconditionally."""
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MemoryLockStore(LockStore):
    """Process-local locks; enough for a single API/worker process."""

    def __init__(self):
        self._leases: dict[str, tuple[float, str]] = {}
        self._lock = asyncio.Lock()

    async def acquire(self, key: str, ttl: int) -> str | None:
        async with self._lock:
            now = time.monotonic()
            lease = self._leases.get(key)
            if lease is not None and lease[0] > now:
                return None
            token = new_token()
            self._leases[key] = (now + ttl, token)
            return token

    async def release(self, key: str, token: str | None = None) -> bool:
        async with self._lock:
            lease = self._leases.get(key)
            if lease is None:
                return False
            if token is not None and lease[1] != token:
                logger.warning(f"Lock {key} is owned by another holder; not releasing")
                return False
            del self._leases[key]
            return True

    def held(self, key: str) -> bool:
        lease = self._leases.get(key)
        return lease is not None and lease[0] > time.monotonic()


class RedisLockStore(LockStore):
    """Locks shared by every worker process through ``SET NX EX``."""

    def __init__(self, url: str | None = None, prefix: str = "toolserver:lock:"):
        self.url = url or settings.redis_url
        self.prefix = prefix
        self._client: aioredis.Redis | None = None

    async def _redis(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(self.url, encoding="utf-8", decode_responses=True)
        return self._client

    async def acquire(self, key: str, ttl: int) -> str | None:
        client = await self._redis()
        token = new_token()
        if await client.set(self.prefix + key, token, nx=True, ex=ttl):
            return token
        return None

    async def release(self, key: str, token: str | None = None) -> bool:
        client = await self._redis()
        if token is None:
            return bool(await client.delete(self.prefix + key))
        released = bool(await client.eval(_RELEASE_SCRIPT, 1, self.prefix + key, token))
        if not released:
            logger.warning(f"Lock {key} expired or is owned by another holder; not releasing")
        return released

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Closed Redis lock connection")


def create_lock_store() -> LockStore:
    if settings.lock_backend == "redis":
        return RedisLockStore()
    return MemoryLockStore()
