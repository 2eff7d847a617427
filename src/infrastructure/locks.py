"""
Redis-based distributed lock for the expiration sweeper.

Each sweep job takes ``lock:sweeper:<job>`` before running, so when
several API processes host the sweeper only one of them works a job per
interval.  The TTL bounds how long a crashed holder can block the others.

Acquire is ``SET NX EX`` with a random token; release deletes the key only
while it still carries our token (Lua check-and-delete), so a holder whose
TTL lapsed can never free a lock another process has since taken.
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class LockUnavailable(RuntimeError):
    """Another process holds the lock."""


class DistributedLock:
    def __init__(self, client: aioredis.Redis, name: str, ttl_seconds: int = 60):
        self.redis = client
        self.key = f"lock:{name}"
        self.ttl = ttl_seconds
        self.token = uuid.uuid4().hex

    async def acquire(self) -> bool:
        return bool(await self.redis.set(self.key, self.token, nx=True, ex=self.ttl))

    async def release(self) -> bool:
        """True when the key was ours and has been deleted."""
        return bool(await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token))

    async def __aenter__(self) -> "DistributedLock":
        if not await self.acquire():
            raise LockUnavailable(f"Lock {self.key} is held by another process")
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()
