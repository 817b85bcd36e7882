from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Protocol
from uuid import uuid4

from redis.asyncio import Redis

from lighthouse.core.config import get_settings


logger = logging.getLogger(__name__)


class CheckLeaseStore(Protocol):
    async def acquire(self, check_id: str) -> str | None: ...

    async def release(self, check_id: str, token: str) -> None: ...


class LocalCheckLeaseStore:
    """In-process in-flight markers keyed by check id.

    A lease expires after ``ttl_s`` so a probe abandoned by a crashed task
    cannot pin its check forever.
    """

    def __init__(self, *, ttl_s: float = 120.0) -> None:
        self._ttl_s = ttl_s
        self._leases: dict[str, tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    async def acquire(self, check_id: str) -> str | None:
        now = time.monotonic()
        async with self._lock:
            held = self._leases.get(check_id)
            if held is not None and held[1] > now:
                return None
            token = uuid4().hex
            self._leases[check_id] = (token, now + self._ttl_s)
            return token

    async def release(self, check_id: str, token: str) -> None:
        async with self._lock:
            held = self._leases.get(check_id)
            # Release only our own lease so a newer holder is never clobbered.
            if held is not None and held[0] == token:
                del self._leases[check_id]

    def held(self) -> set[str]:
        now = time.monotonic()
        return {check_id for check_id, (_, expires) in self._leases.items() if expires > now}


class RedisCheckLeaseStore:
    # Cross-process leases via SET NX EX so multiple runners never probe one check concurrently.
    def __init__(self, redis: Any, *, ttl_s: int = 120, prefix: str = "lighthouse:check-lease") -> None:
        self._redis = redis
        self._ttl_s = max(1, int(ttl_s))
        self._prefix = prefix

    def _key(self, check_id: str) -> str:
        return f"{self._prefix}:{check_id}"

    async def acquire(self, check_id: str) -> str | None:
        token = uuid4().hex
        acquired = await self._redis.set(self._key(check_id), token, nx=True, ex=self._ttl_s)
        return token if acquired else None

    async def release(self, check_id: str, token: str) -> None:
        key = self._key(check_id)
        current = await self._redis.get(key)
        value = current.decode("utf-8") if isinstance(current, (bytes, bytearray)) else str(current or "")
        if value == token:
            await self._redis.delete(key)


def build_lease_store() -> CheckLeaseStore:
    settings = get_settings()
    ttl_s = max(1, int(settings.check_lease_ttl_s))
    if settings.check_lease_backend == "redis":
        redis = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
        logger.info("check_lease_backend backend=redis ttl_s=%s", ttl_s)
        return RedisCheckLeaseStore(redis, ttl_s=ttl_s, prefix=settings.check_lease_redis_prefix)
    return LocalCheckLeaseStore(ttl_s=ttl_s)
