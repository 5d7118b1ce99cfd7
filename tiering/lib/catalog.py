"""Catalog lookups: column metadata and object existence."""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Protocol, Sequence, Tuple

from tiering.lib.models import ColumnDefinition, ObjectIdentity
from tiering.lib.sql import render_identity

logger = logging.getLogger(__name__)

__all__ = ["CatalogLookup", "QueryRunner", "SqlServerCatalog", "column_from_row"]

COLUMNS_SQL = """
SELECT
    ORDINAL_POSITION,
    COLUMN_NAME,
    DATA_TYPE,
    CHARACTER_MAXIMUM_LENGTH,
    IS_NULLABLE,
    NUMERIC_PRECISION,
    NUMERIC_SCALE
FROM INFORMATION_SCHEMA.COLUMNS
WHERE TABLE_SCHEMA = ? AND TABLE_NAME = ?
ORDER BY ORDINAL_POSITION
""".strip()

OBJECT_EXISTS_SQL = "SELECT CASE WHEN OBJECT_ID(?) IS NULL THEN 0 ELSE 1 END"


class CatalogLookup(Protocol):
    def columns_of(self, identity: ObjectIdentity) -> List[ColumnDefinition]:
        """Columns of a table or view in ordinal order; empty if it does not exist."""
        ...

    def object_exists(self, identity: ObjectIdentity) -> bool:
        ...


class QueryRunner(Protocol):
    def query(self, sql: str, params: Sequence[Any] = ()) -> List[Tuple[Any, ...]]:
        ...


def column_from_row(row: Sequence[Any]) -> ColumnDefinition:
    """Build a ColumnDefinition from an INFORMATION_SCHEMA.COLUMNS row."""
    ordinal, name, data_type, max_length, is_nullable = row[:5]
    precision: Optional[int] = row[5] if len(row) > 5 else None
    scale: Optional[int] = row[6] if len(row) > 6 else None
    return ColumnDefinition(
        ordinal_position=int(ordinal),
        name=str(name),
        logical_type=str(data_type),
        max_length=None if max_length is None else int(max_length),
        is_nullable=str(is_nullable).upper() == "YES",
        precision=None if precision is None else int(precision),
        scale=None if scale is None else int(scale),
    )


class SqlServerCatalog:
    """CatalogLookup over INFORMATION_SCHEMA with bound parameters."""

    def __init__(self, runner: QueryRunner) -> None:
        self.runner = runner

    def columns_of(self, identity: ObjectIdentity) -> List[ColumnDefinition]:
        rows = self.runner.query(COLUMNS_SQL, (identity.schema_name, identity.table_name))
        logger.debug("Catalog returned %d columns for %s", len(rows), identity)
        return [column_from_row(r) for r in rows]

    def object_exists(self, identity: ObjectIdentity) -> bool:
        rows = self.runner.query(OBJECT_EXISTS_SQL, (render_identity(identity),))
        return bool(rows and rows[0][0])
