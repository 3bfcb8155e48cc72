import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Mapping, Optional

from .cache import CacheClient, create_cache
from .config import Settings
from .writer import CacheWriter

logger = logging.getLogger(__name__)


@dataclass
class SyncContext:
    """Shared service state: one settings snapshot and one cache client."""

    settings: Settings
    cache: CacheClient
    writer: CacheWriter

    @classmethod
    def from_settings(
        cls, settings: Settings, cache: Optional[CacheClient] = None
    ) -> "SyncContext":
        if cache is None:
            cache = create_cache(
                backend=settings.cache_backend,
                url=settings.redis_url,
                max_entries=settings.memory_cache_max_entries,
            )
        writer = CacheWriter(
            cache,
            ttl=timedelta(seconds=settings.cache_ttl_seconds),
            retry_wait=timedelta(seconds=settings.retry_wait_seconds),
            max_concurrency=settings.max_concurrent_writes,
        )
        return cls(settings=settings, cache=cache, writer=writer)

    @property
    def key_mapping(self) -> Mapping[str, str]:
        return self.settings.table_key_mapping

    async def aclose(self) -> None:
        logger.info("Closing cache connection")
        await self.cache.close()
