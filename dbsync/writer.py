import asyncio
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Iterable, List, Mapping, Optional, Tuple

from . import codec
from .cache import CacheClient
from .exceptions import ResourceExhaustedError
from .models import CacheEntry, WriteOutcome
from .rows import encode_row

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class CacheWriter:
    """Writes encoded rows to the cache, waiting out cache memory pressure.

    A write that the cache rejects as out of memory is retried after a fixed
    backoff, forever, until it succeeds or the task is cancelled. Any other
    error is raised to the caller.
    """

    def __init__(
        self,
        cache: CacheClient,
        ttl: timedelta,
        retry_wait: timedelta,
        max_concurrency: int = 64,
        sleep: Sleep = asyncio.sleep,
    ):
        self.cache = cache
        self.ttl = ttl
        self.retry_wait = retry_wait
        self.max_concurrency = max(1, max_concurrency)
        self._sleep = sleep

    async def write(self, key: str, row: Mapping[str, Any]) -> WriteOutcome:
        entry = CacheEntry(key=key, value=codec.encode(encode_row(row)), ttl=self.ttl)
        backoffs = 0
        while True:
            try:
                await self.cache.set(entry.key, entry.value, entry.ttl)
            except ResourceExhaustedError:
                backoffs += 1
                logger.warning(
                    "Cache out of memory writing %s: waiting %.0f seconds before retry #%d",
                    key,
                    self.retry_wait.total_seconds(),
                    backoffs,
                )
                await self._sleep(self.retry_wait.total_seconds())
                continue
            return WriteOutcome(key=key, size=len(entry.value), backoffs=backoffs)

    async def write_batch(
        self,
        entries: Iterable[Tuple[str, Mapping[str, Any]]],
        on_written: Optional[Callable[[WriteOutcome], None]] = None,
    ) -> List[WriteOutcome]:
        """Write every entry concurrently and wait for all of them.

        At most ``max_concurrency`` writes are in flight. The first write that
        fails with a non-retryable error cancels the rest and is re-raised.
        ``on_written`` is called once per row as soon as it is stored.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)
        failures: List[BaseException] = []

        async def bounded_write(key: str, row: Mapping[str, Any]) -> WriteOutcome:
            async with semaphore:
                try:
                    outcome = await self.write(key, row)
                except Exception as exc:
                    failures.append(exc)
                    raise
            if on_written is not None:
                on_written(outcome)
            return outcome

        tasks = [asyncio.create_task(bounded_write(key, row)) for key, row in entries]
        if not tasks:
            return []

        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        finally:
            pending = [task for task in tasks if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        written = 0
        for task in tasks:
            # retrieve every outcome so no task exception goes unobserved
            if not task.cancelled() and task.exception() is None:
                written += 1
        if failures:
            logger.error(
                "Abandoned %d of %d rows after cache write failure: %s",
                len(tasks) - written,
                len(tasks),
                failures[0],
            )
            raise failures[0]
        return [task.result() for task in tasks]
