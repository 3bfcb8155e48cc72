from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ColumnKind(str, Enum):
    INTEGER = "integer"
    DATETIME = "datetime"
    OTHER = "other"


class SyncTarget(BaseModel):
    """A table or view selected for mirroring in the current cycle."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    schema_name: str = Field(alias="schema")
    name: str
    is_table: bool

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.name}"


class ColumnInfo(BaseModel):
    """Declared column of a fetched relation, in natural column order."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: ColumnKind = ColumnKind.OTHER


class FetchedRows(BaseModel):
    columns: List[ColumnInfo]
    rows: List[Dict[str, Any]]

    def __len__(self) -> int:
        return len(self.rows)


class CacheEntry(BaseModel):
    key: str
    value: bytes
    ttl: timedelta


class WriteOutcome(BaseModel):
    key: str
    size: int
    backoffs: int = 0


class SourceResult(BaseModel):
    schema_name: str
    name: str
    rows_fetched: int = 0
    rows_written: int = 0


class ConnectionResult(BaseModel):
    database: str
    connected: bool = False
    sources_found: int = 0
    sources: List[SourceResult] = Field(default_factory=list)
    error: Optional[str] = None

    @property
    def rows_written(self) -> int:
        return sum(source.rows_written for source in self.sources)


class CycleResult(BaseModel):
    started_at: datetime
    finished_at: datetime
    connections: List[ConnectionResult]

    @property
    def rows_written(self) -> int:
        return sum(conn.rows_written for conn in self.connections)
