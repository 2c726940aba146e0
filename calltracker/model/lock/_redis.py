from __future__ import annotations
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as redis
from redis.exceptions import LockError, RedisError

from ...errors import UpstreamError


# ---- keys
def k_lock(key: str) -> str: return f"calltracker:lock:{key}"


class CounterLock:
    """Per-key lock shared by every process pointed at the same Redis."""

    def __init__(self, r: redis.Redis, ttl_seconds: float) -> None:
        self.r = r
        self.ttl = ttl_seconds

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        # ttl bounds how long a crashed holder can block the key
        lock = self.r.lock(
            k_lock(key), timeout=self.ttl, blocking_timeout=self.ttl
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            raise UpstreamError(f"Counter lock unavailable: {e}")
        if not acquired:
            raise UpstreamError(f"Timed out waiting for counter lock {key}")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # expired while we held it; nothing left to release
                pass

    async def close(self) -> None:
        await self.r.aclose()
