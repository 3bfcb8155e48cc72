"""Shared pytest fixtures for the sync service tests.

Source databases are small SQLite files built through SQLAlchemy, and the
cache is the in-memory backend, so no external services are needed.
"""

from datetime import timedelta

import pytest
from sqlalchemy import create_engine, text

from dbsync.cache import InMemoryCache
from dbsync.config import Settings, SyncMode
from dbsync.context import SyncContext

SALES_DDL = [
    "CREATE TABLE orders (id INTEGER PRIMARY KEY, customer TEXT, amount INTEGER)",
    "CREATE TABLE order_lines (order_id INTEGER, line_no INTEGER, sku TEXT, PRIMARY KEY (order_id, line_no))",
    "CREATE TABLE events (name TEXT, created DATETIME, amount INTEGER)",
    "CREATE TABLE empty_table (id INTEGER PRIMARY KEY)",
    "CREATE VIEW v_orders AS SELECT id, customer FROM orders",
    "INSERT INTO orders VALUES (1, 'alice', 10), (2, 'bob', 20)",
    "INSERT INTO order_lines VALUES (1, 1, 'A'), (1, 2, 'B')",
    "INSERT INTO events VALUES ('login', '2024-01-05 10:00:00', 5)",
]

INVENTORY_DDL = [
    "CREATE TABLE items (sku TEXT PRIMARY KEY, qty INTEGER)",
    "INSERT INTO items VALUES ('A', 3), ('B', 0), ('C', 7)",
]

# counting forces SQLite to walk every generated row before returning
SLOW_DDL = [
    "CREATE VIEW slow_total AS "
    "WITH RECURSIVE counter(n) AS (SELECT 1 UNION ALL SELECT n + 1 FROM counter WHERE n < 500000000) "
    "SELECT count(*) AS total FROM counter",
]


def _build_database(path, statements):
    engine = create_engine(f"sqlite:///{path}")
    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))
    engine.dispose()
    return f"sqlite:///{path}"


@pytest.fixture
def sales_url(tmp_path):
    return _build_database(tmp_path / "sales.db", SALES_DDL)


@pytest.fixture
def inventory_url(tmp_path):
    return _build_database(tmp_path / "inventory.db", INVENTORY_DDL)


@pytest.fixture
def slow_url(tmp_path):
    """Database with a view that takes many seconds to evaluate."""
    return _build_database(tmp_path / "slow.db", SLOW_DDL)


@pytest.fixture
def missing_url(tmp_path):
    """URL of a database whose parent directory does not exist."""
    return f"sqlite:///{tmp_path / 'missing' / 'nowhere.db'}"


@pytest.fixture
def memory_cache():
    return InMemoryCache()


@pytest.fixture
def make_settings():
    def _make(**overrides):
        values = {
            "sync_interval_seconds": 3600,
            "top_rows": 100,
            "retry_wait_seconds": 600,
            "cache_ttl_seconds": 3600,
            "sync_mode": SyncMode.TABLES,
            "source_urls": [],
            "table_key_mapping": {},
            "cache_backend": "memory",
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def make_context(make_settings, memory_cache):
    def _make(**overrides):
        return SyncContext.from_settings(make_settings(**overrides), cache=memory_cache)

    return _make


class SleepRecorder:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def hour():
    return timedelta(hours=1)
