"""Cache key derivation for mirrored rows.

The identity columns are chosen once per source, in order of preference:
the table's primary key, an explicitly configured column, then the first
integer or date/time column (or simply the first column).
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Mapping, Optional, Sequence, Tuple

from .exceptions import KeyResolutionError
from .models import ColumnInfo, ColumnKind

logger = logging.getLogger(__name__)

KEY_SEPARATOR = ":"
HEURISTIC_KINDS = (ColumnKind.INTEGER, ColumnKind.DATETIME)


@dataclass(frozen=True)
class KeyStrategy:
    columns: Tuple[str, ...]
    origin: str  # "primary_key" | "mapping" | "heuristic"


def pick_heuristic_column(columns: Sequence[ColumnInfo]) -> str:
    if not columns:
        raise KeyResolutionError("Cannot derive a key column for a source without columns")
    for column in columns:
        if column.kind in HEURISTIC_KINDS:
            return column.name
    return columns[0].name


def resolve_strategy(
    source_name: str,
    primary_keys: Sequence[str],
    columns: Sequence[ColumnInfo],
    key_mapping: Optional[Mapping[str, str]] = None,
) -> KeyStrategy:
    if primary_keys:
        strategy = KeyStrategy(tuple(primary_keys), "primary_key")
    elif key_mapping and source_name in key_mapping:
        column = key_mapping[source_name]
        if column not in {c.name for c in columns}:
            raise KeyResolutionError(
                f"Key column '{column}' configured for '{source_name}' is not in its result set"
            )
        strategy = KeyStrategy((column,), "mapping")
    else:
        strategy = KeyStrategy((pick_heuristic_column(columns),), "heuristic")
    logger.debug("Key columns for %s: %s (%s)", source_name, strategy.columns, strategy.origin)
    return strategy


def format_key_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.hex()
    return str(value)


def row_identity(strategy: KeyStrategy, row: Mapping[str, Any]) -> str:
    return KEY_SEPARATOR.join(format_key_value(row[column]) for column in strategy.columns)


def cache_key(database: str, source_name: str, identity: str) -> str:
    return KEY_SEPARATOR.join((database, source_name, identity))
