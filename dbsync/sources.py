"""Relational sources: metadata discovery and bounded row fetches.

``SqlSource`` wraps a single SQLAlchemy connection. Its blocking calls run in
worker threads so that awaiting a fetch is a cancellable suspension point of
the sync loop.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Callable, List, Optional, Protocol, Tuple

from sqlalchemy import MetaData, Table, create_engine, inspect, select
from sqlalchemy import types as sqltypes
from sqlalchemy.engine import URL, Connection, Engine, make_url
from sqlalchemy.exc import SQLAlchemyError

from .config import SyncMode
from .exceptions import SourceConnectionError
from .models import ColumnInfo, ColumnKind, FetchedRows, SyncTarget

logger = logging.getLogger(__name__)

SYSTEM_SCHEMAS = frozenset(
    {"information_schema", "pg_catalog", "pg_toast", "sys", "guest", "mysql", "performance_schema"}
)
INTERRUPT_POLL_SECONDS = 0.1


class SourceConnection(Protocol):
    database_name: str

    async def list_base_tables(self) -> List[Tuple[str, str]]:
        ...

    async def list_views(self) -> List[Tuple[str, str]]:
        ...

    async def get_primary_key_columns(self, schema: str, name: str) -> List[str]:
        ...

    async def fetch_top_rows(self, schema: str, name: str, limit: int) -> FetchedRows:
        ...


def classify_column(column_type: sqltypes.TypeEngine) -> ColumnKind:
    if isinstance(column_type, sqltypes.SmallInteger):
        return ColumnKind.OTHER
    if isinstance(column_type, sqltypes.Integer):
        return ColumnKind.INTEGER
    if isinstance(column_type, (sqltypes.DateTime, sqltypes.Date)):
        return ColumnKind.DATETIME
    return ColumnKind.OTHER


def database_name_for(url: URL) -> str:
    if url.get_backend_name() == "sqlite":
        if not url.database or url.database == ":memory:":
            return "memory"
        return Path(url.database).stem
    return url.database or url.host or url.get_backend_name()


def redact(url: str) -> str:
    try:
        return make_url(url).render_as_string(hide_password=True)
    except SQLAlchemyError:
        return "<invalid url>"


class SqlSource:
    """One open connection to a source database.

    Only one worker thread uses the connection at a time. A cancelled call
    interrupts the running statement, and ``aclose`` waits for the worker to
    return before the connection is closed.
    """

    def __init__(self, engine: Engine, connection: Connection):
        self.engine = engine
        self.connection = connection
        self.database_name = database_name_for(engine.url)
        self._in_flight: Optional[asyncio.Future] = None

    @classmethod
    def connect(cls, url: str) -> "SqlSource":
        try:
            parsed = make_url(url)
            connect_args = {}
            if parsed.get_backend_name() == "sqlite":
                # calls hop between worker threads
                connect_args["check_same_thread"] = False
            engine = create_engine(parsed, connect_args=connect_args)
        except SQLAlchemyError as exc:
            raise SourceConnectionError(f"Cannot open {redact(url)}: {exc}") from exc
        try:
            connection = engine.connect()
        except SQLAlchemyError as exc:
            engine.dispose()
            raise SourceConnectionError(f"Cannot open {redact(url)}: {exc}") from exc
        return cls(engine, connection)

    def close(self) -> None:
        try:
            self.connection.close()
        finally:
            self.engine.dispose()

    def interrupt(self) -> bool:
        """Ask the driver to abort the statement running on this connection."""
        try:
            driver_connection = self.connection.connection.driver_connection
        except SQLAlchemyError:
            return False
        for method_name in ("interrupt", "cancel"):
            method = getattr(driver_connection, method_name, None)
            if method is not None:
                method()
                return True
        return False

    async def _run(self, func: Callable[..., Any], *args: Any) -> Any:
        future = asyncio.ensure_future(asyncio.to_thread(func, *args))
        self._in_flight = future
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            if not future.done():
                self.interrupt()
            raise

    async def aclose(self) -> None:
        future = self._in_flight
        if future is not None and not future.done():
            logger.info("Interrupting running statement on %s", self.database_name)
            while not future.done():
                # an interrupt issued before the statement starts has no effect
                if not self.interrupt():
                    logger.warning("Driver for %s cannot interrupt a running statement", self.database_name)
                    await asyncio.wait([future])
                    break
                await asyncio.wait([future], timeout=INTERRUPT_POLL_SECONDS)
            if not future.cancelled() and future.exception() is not None:
                logger.debug("Interrupted call on %s ended with: %s", self.database_name, future.exception())
        await asyncio.to_thread(self.close)

    def _user_schemas(self) -> List[str]:
        inspector = inspect(self.connection)
        return [
            schema
            for schema in inspector.get_schema_names()
            if schema.lower() not in SYSTEM_SCHEMAS and not schema.lower().startswith("pg_")
        ]

    def _list_relations(self, views: bool) -> List[Tuple[str, str]]:
        inspector = inspect(self.connection)
        relations = []
        for schema in self._user_schemas():
            if views:
                names = inspector.get_view_names(schema=schema)
            else:
                names = inspector.get_table_names(schema=schema)
            relations.extend((schema, name) for name in names)
        return relations

    def _primary_key_columns(self, schema: str, name: str) -> List[str]:
        constraint = inspect(self.connection).get_pk_constraint(name, schema=schema)
        return list(constraint.get("constrained_columns") or [])

    def _fetch_top_rows(self, schema: str, name: str, limit: int) -> FetchedRows:
        table = Table(name, MetaData(), schema=schema, autoload_with=self.connection)
        result = self.connection.execute(select(table).limit(limit))
        rows = [dict(row) for row in result.mappings()]
        # end the implicit read transaction opened by the query
        self.connection.rollback()
        columns = [ColumnInfo(name=c.name, kind=classify_column(c.type)) for c in table.columns]
        logger.debug("Fetched %d rows from %s.%s (limit %d)", len(rows), schema, name, limit)
        return FetchedRows(columns=columns, rows=rows)

    async def list_base_tables(self) -> List[Tuple[str, str]]:
        return await self._run(self._list_relations, False)

    async def list_views(self) -> List[Tuple[str, str]]:
        return await self._run(self._list_relations, True)

    async def get_primary_key_columns(self, schema: str, name: str) -> List[str]:
        return await self._run(self._primary_key_columns, schema, name)

    async def fetch_top_rows(self, schema: str, name: str, limit: int) -> FetchedRows:
        return await self._run(self._fetch_top_rows, schema, name, limit)


@asynccontextmanager
async def open_source(url: str) -> AsyncIterator[SqlSource]:
    source = await asyncio.to_thread(SqlSource.connect, url)
    try:
        yield source
    finally:
        await source.aclose()


async def list_targets(source: SourceConnection, mode: SyncMode) -> List[SyncTarget]:
    if mode is SyncMode.VIEWS:
        relations = await source.list_views()
    else:
        relations = await source.list_base_tables()
    is_table = mode is SyncMode.TABLES
    return [SyncTarget(schema=schema, name=name, is_table=is_table) for schema, name in relations]


async def get_primary_keys(source: SourceConnection, target: SyncTarget) -> List[str]:
    if not target.is_table:
        return []
    return await source.get_primary_key_columns(target.schema_name, target.name)
