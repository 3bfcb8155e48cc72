import logging
import time
from datetime import timedelta
from typing import Dict, Optional, Protocol, Tuple

from redis.asyncio import Redis
from redis.exceptions import ResponseError

from .exceptions import ResourceExhaustedError

logger = logging.getLogger(__name__)

OOM_MARKER = "OOM"
OOM_MESSAGE = "OOM command not allowed when used memory > 'maxmemory'."


class CacheClient(Protocol):
    async def set(self, key: str, value: bytes, ttl: timedelta) -> None:
        ...

    async def get(self, key: str) -> Optional[bytes]:
        ...

    async def close(self) -> None:
        ...


class RedisCache:
    """Redis-backed cache; out-of-memory replies surface as ResourceExhaustedError."""

    def __init__(self, url: str, client: Optional[Redis] = None):
        self.url = url
        self.client = client if client is not None else Redis.from_url(url)

    async def set(self, key: str, value: bytes, ttl: timedelta) -> None:
        try:
            await self.client.set(key, value, ex=ttl)
        except ResponseError as exc:
            if OOM_MARKER in str(exc):
                raise ResourceExhaustedError(str(exc)) from exc
            raise

    async def get(self, key: str) -> Optional[bytes]:
        return await self.client.get(key)

    async def close(self) -> None:
        await self.client.aclose()


class InMemoryCache:
    """Process-local cache with TTL expiry and an optional entry ceiling."""

    def __init__(self, max_entries: Optional[int] = None):
        self.max_entries = max_entries
        self._entries: Dict[str, Tuple[bytes, float]] = {}
        self.rejected_writes = 0

    def _purge_expired(self) -> None:
        now = time.monotonic()
        expired = [key for key, (_, expires_at) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]

    async def set(self, key: str, value: bytes, ttl: timedelta) -> None:
        if self.max_entries is not None and key not in self._entries:
            if len(self._entries) >= self.max_entries:
                self._purge_expired()
            if len(self._entries) >= self.max_entries:
                self.rejected_writes += 1
                raise ResourceExhaustedError(OOM_MESSAGE)
        self._entries[key] = (bytes(value), time.monotonic() + ttl.total_seconds())

    async def get(self, key: str) -> Optional[bytes]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= time.monotonic():
            del self._entries[key]
            return None
        return value

    async def close(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def metrics(self) -> Dict[str, object]:
        return {
            "backend": "memory",
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "rejected_writes": self.rejected_writes,
        }


def create_cache(backend: str, url: str, max_entries: Optional[int] = None) -> CacheClient:
    backend = backend.lower()
    if backend == "redis":
        logger.info("Using Redis cache")
        return RedisCache(url)
    logger.info("Using in-memory cache (max_entries=%s)", max_entries)
    return InMemoryCache(max_entries)
