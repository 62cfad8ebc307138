"""Interchangeable TTL stores for revocation records.

``MemoryRevocationBackend`` is local to one process. ``RedisRevocationBackend``
is shared by every instance, so a logout on one node is seen by all of them.
"""

import asyncio
import heapq
from datetime import datetime, timedelta
from typing import Protocol

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from tokenkeep.core.clock import Clock, utc_now
from tokenkeep.core.settings import RedisSettings
from tokenkeep.revocation.types import RevocationRecord

AUDIT_SET_KEY = "revoked_tokens"
KEY_PREFIX = "revoked_"


class RevocationBackendError(Exception):
    """The backend could not complete the operation."""


class RevocationBackend(Protocol):
    """Key-value store whose entries die with the tokens they describe."""

    name: str

    async def set(self, key: str, record: RevocationRecord, ttl_seconds: int) -> None: ...
    async def add(self, key: str, record: RevocationRecord, ttl_seconds: int) -> bool: ...
    async def get(self, key: str) -> RevocationRecord | None: ...
    async def count(self) -> int: ...
    async def purge_expired(self) -> int: ...
    async def ping(self) -> None: ...
    async def close(self) -> None: ...


class MemoryRevocationBackend:
    """Process-local dict with per-entry expiry.

    Every write first evicts entries whose expiry has passed, oldest first,
    so records nobody reads again do not accumulate.
    """

    name = "memory"

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[RevocationRecord, datetime]] = {}
        self._expiry_heap: list[tuple[datetime, str]] = []

    async def set(self, key: str, record: RevocationRecord, ttl_seconds: int) -> None:
        self._evict_expired()
        self._store(key, record, ttl_seconds)

    async def add(self, key: str, record: RevocationRecord, ttl_seconds: int) -> bool:
        """Write only when no live entry exists for ``key``."""
        self._evict_expired()
        if await self.get(key) is not None:
            return False
        self._store(key, record, ttl_seconds)
        return True

    def _store(self, key: str, record: RevocationRecord, ttl_seconds: int) -> None:
        expires_at = self._clock() + timedelta(seconds=max(1, ttl_seconds))
        self._entries[key] = (record, expires_at)
        heapq.heappush(self._expiry_heap, (expires_at, key))

    def _evict_expired(self) -> int:
        now = self._clock()
        removed = 0
        while self._expiry_heap and self._expiry_heap[0][0] <= now:
            expires_at, key = heapq.heappop(self._expiry_heap)
            entry = self._entries.get(key)
            # Skip heap items left behind by an overwrite with a later expiry.
            if entry is not None and entry[1] == expires_at:
                del self._entries[key]
                removed += 1
        return removed

    async def get(self, key: str) -> RevocationRecord | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        record, expires_at = entry
        if expires_at <= self._clock():
            self._entries.pop(key, None)
            return None
        return record

    async def count(self) -> int:
        now = self._clock()
        return sum(1 for _, expires_at in self._entries.values() if expires_at > now)

    async def purge_expired(self) -> int:
        return self._evict_expired()

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        self._entries.clear()
        self._expiry_heap.clear()


class RedisRevocationBackend:
    """Shared Redis store; every command is bounded by ``timeout`` seconds."""

    name = "redis"

    def __init__(
        self,
        client: aioredis.Redis,
        *,
        timeout: float,
        clock: Clock = utc_now,
    ) -> None:
        self._client = client
        self._timeout = timeout
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: RedisSettings) -> "RedisRevocationBackend":
        client = aioredis.from_url(
            settings.connection_url,
            decode_responses=True,
            socket_timeout=settings.timeout,
            socket_connect_timeout=settings.timeout,
        )
        return cls(client, timeout=settings.timeout)

    @staticmethod
    def _key(key: str) -> str:
        return f"{KEY_PREFIX}{key}"

    async def set(self, key: str, record: RevocationRecord, ttl_seconds: int) -> None:
        ttl = max(1, ttl_seconds)
        expires_at = self._clock().timestamp() + ttl
        try:
            async with asyncio.timeout(self._timeout):
                pipe = self._client.pipeline()
                pipe.set(self._key(key), record.model_dump_json(), ex=ttl)
                pipe.zadd(AUDIT_SET_KEY, {key: expires_at})
                await pipe.execute()
        except (RedisError, OSError, TimeoutError) as exc:
            raise RevocationBackendError(str(exc) or type(exc).__name__) from exc

    async def add(self, key: str, record: RevocationRecord, ttl_seconds: int) -> bool:
        """SET NX: the first writer for ``key`` wins."""
        ttl = max(1, ttl_seconds)
        expires_at = self._clock().timestamp() + ttl
        try:
            async with asyncio.timeout(self._timeout):
                pipe = self._client.pipeline()
                pipe.set(self._key(key), record.model_dump_json(), ex=ttl, nx=True)
                pipe.zadd(AUDIT_SET_KEY, {key: expires_at}, nx=True)
                created, _ = await pipe.execute()
        except (RedisError, OSError, TimeoutError) as exc:
            raise RevocationBackendError(str(exc) or type(exc).__name__) from exc
        return bool(created)

    async def get(self, key: str) -> RevocationRecord | None:
        try:
            async with asyncio.timeout(self._timeout):
                raw = await self._client.get(self._key(key))
        except (RedisError, OSError, TimeoutError) as exc:
            raise RevocationBackendError(str(exc) or type(exc).__name__) from exc
        if raw is None:
            return None
        try:
            return RevocationRecord.model_validate_json(raw)
        except ValidationError as exc:
            raise RevocationBackendError("corrupt revocation record") from exc

    async def count(self) -> int:
        await self.purge_expired()
        try:
            async with asyncio.timeout(self._timeout):
                return int(await self._client.zcard(AUDIT_SET_KEY))
        except (RedisError, OSError, TimeoutError) as exc:
            raise RevocationBackendError(str(exc) or type(exc).__name__) from exc

    async def purge_expired(self) -> int:
        """Trim audit-set members whose records Redis has already expired."""
        now = self._clock().timestamp()
        try:
            async with asyncio.timeout(self._timeout):
                return int(
                    await self._client.zremrangebyscore(AUDIT_SET_KEY, "-inf", now)
                )
        except (RedisError, OSError, TimeoutError) as exc:
            raise RevocationBackendError(str(exc) or type(exc).__name__) from exc

    async def ping(self) -> None:
        try:
            async with asyncio.timeout(self._timeout):
                await self._client.ping()
        except (RedisError, OSError, TimeoutError) as exc:
            raise RevocationBackendError(str(exc) or type(exc).__name__) from exc

    async def close(self) -> None:
        await self._client.aclose()
