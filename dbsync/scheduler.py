import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncContextManager, Callable, Optional

from .context import SyncContext
from .exceptions import SourceConnectionError
from .keys import cache_key, resolve_strategy, row_identity
from .models import ConnectionResult, CycleResult, SourceResult, SyncTarget, WriteOutcome
from .sources import SourceConnection, get_primary_keys, list_targets, open_source, redact

logger = logging.getLogger(__name__)

SourceOpener = Callable[[str], AsyncContextManager[SourceConnection]]


class SchedulerState(str, Enum):
    IDLE = "idle"
    RUNNING_CONNECTION = "running_connection"
    RUNNING_SOURCE = "running_source"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


class SyncScheduler:
    """Mirrors every configured source database into the cache on a fixed cadence.

    Connections and their sources are processed one after another; the rows of
    a single source are written concurrently. Cancelling the task running
    ``run_forever`` stops the loop, including any sleep or backoff in progress.
    """

    def __init__(self, context: SyncContext, opener: SourceOpener = open_source):
        self.context = context
        self.settings = context.settings
        self._open = opener
        self.state = SchedulerState.IDLE
        self.last_run_at: Optional[datetime] = None
        self.last_result: Optional[CycleResult] = None

    async def run_forever(self) -> None:
        try:
            while True:
                await self.run_cycle()
                self.state = SchedulerState.SLEEPING
                await asyncio.sleep(self.settings.sync_interval_seconds)
                self.state = SchedulerState.IDLE
        finally:
            self.state = SchedulerState.STOPPED
            logger.info("Sync scheduler stopped")

    async def run_cycle(self) -> CycleResult:
        started_at = datetime.now(timezone.utc)
        logger.info("=== Sync cycle started at %s ===", started_at.isoformat())

        connections = []
        for url in self.settings.source_urls:
            connections.append(await self.sync_connection(url))

        finished_at = datetime.now(timezone.utc)
        self.state = SchedulerState.IDLE
        self.last_run_at = finished_at
        self.last_result = CycleResult(
            started_at=started_at,
            finished_at=finished_at,
            connections=connections,
        )
        logger.info(
            "=== Sync cycle completed at %s (%d rows written) ===",
            finished_at.isoformat(),
            self.last_result.rows_written,
        )
        return self.last_result

    async def sync_connection(self, url: str) -> ConnectionResult:
        self.state = SchedulerState.RUNNING_CONNECTION
        result = ConnectionResult(database=redact(url))
        try:
            async with self._open(url) as source:
                result.database = source.database_name
                result.connected = True
                logger.info("Connected to database: %s", source.database_name)

                targets = await list_targets(source, self.settings.sync_mode)
                result.sources_found = len(targets)
                logger.info("%d sources found in database %s", len(targets), source.database_name)

                for target in targets:
                    self.state = SchedulerState.RUNNING_SOURCE
                    source_result = SourceResult(schema_name=target.schema_name, name=target.name)
                    result.sources.append(source_result)
                    await self.sync_target(source, target, source_result)
                    self.state = SchedulerState.RUNNING_CONNECTION

                logger.info("Completed syncing database: %s", source.database_name)
        except SourceConnectionError as exc:
            result.error = str(exc)
            logger.warning("Skipping database %s for this cycle: %s", result.database, exc)
        except Exception as exc:
            result.error = str(exc)
            logger.exception("Error syncing database %s", result.database)
        return result

    async def sync_target(
        self,
        source: SourceConnection,
        target: SyncTarget,
        result: Optional[SourceResult] = None,
    ) -> SourceResult:
        """Mirror one table or view.

        ``result`` is updated as rows are written, so it stays accurate when
        the batch is aborted part way through.
        """
        logger.info("Syncing source: %s", target.qualified_name)
        if result is None:
            result = SourceResult(schema_name=target.schema_name, name=target.name)

        primary_keys = await get_primary_keys(source, target)
        fetched = await source.fetch_top_rows(target.schema_name, target.name, self.settings.top_rows)
        result.rows_fetched = len(fetched)
        if not fetched.rows:
            logger.info("No rows found for source: %s", target.qualified_name)
            return result

        strategy = resolve_strategy(target.name, primary_keys, fetched.columns, self.context.key_mapping)
        logger.info("Syncing %d rows from source %s", len(fetched), target.qualified_name)

        entries = [
            (cache_key(source.database_name, target.name, row_identity(strategy, row)), row)
            for row in fetched.rows
        ]

        def count_written(outcome: WriteOutcome) -> None:
            result.rows_written += 1

        await self.context.writer.write_batch(entries, on_written=count_written)
        logger.info("Completed syncing source: %s (%d rows)", target.qualified_name, result.rows_written)
        return result
