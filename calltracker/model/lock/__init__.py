from typing import Optional
import redis.asyncio as redis

from ._local import CounterLock as LocalCounterLock
from ._redis import CounterLock as RedisCounterLock

BACKENDS = ("local", "redis")


# Factory keeps server.py simple and constructor-agnostic:
def new_lock(backend: str = "local", *,
             r: Optional[redis.Redis] = None,
             ttl_seconds: float = 10.0):
    backend = backend.lower()
    if backend == "redis":
        if r is None:
            raise RuntimeError(
                "CounterLock(redis) requires r=redis.Redis"
            )
        return RedisCounterLock(r=r, ttl_seconds=ttl_seconds)
    if backend == "local":
        return LocalCounterLock()
    raise RuntimeError(f"unknown counter lock backend: {backend!r}")


__all__ = ["LocalCounterLock", "RedisCounterLock", "new_lock", "BACKENDS"]
