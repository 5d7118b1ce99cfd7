"""In-memory warehouse used by tests.

``FakeWarehouse`` implements both the catalog lookup and the statement
executor protocols. It interprets the structured statements directly:

- CREATE EXTERNAL TABLE registers a table over a location;
- CETAS records the partition it writes under the location's prefix;
- queries against an external table list the partitions written under its
  prefix, failing with a no-content error while there are none;
- queries against a source table return the distinct (year, month, day)
  of its stored dates, honouring the NULL and date-range filters.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Set, Tuple

from tiering.lib.errors import ErrorCategory, ExecutionError
from tiering.lib.models import ColumnDefinition, ObjectIdentity, PartitionKey
from tiering.lib.sql import (
    Comparison,
    CountAll,
    CreateExternalTable,
    CreateExternalTableAsSelect,
    CreateView,
    DateFromParts,
    DatePart,
    DropExternalTableIfExists,
    DropViewIfExists,
    Literal,
    NextDay,
    Script,
    Select,
    TableSource,
)


def no_content_error() -> ExecutionError:
    return ExecutionError(
        "External table is not accessible because content of directory cannot be listed. (16561)",
        category=ErrorCategory.NO_CONTENT,
        native_error=16561,
        sqlstate="42000",
    )


def location_prefix(location: str) -> str:
    """Part of a location before the first Year= folder."""
    return location.split("Year=", 1)[0]


def key_from_filter(query: Select) -> PartitionKey:
    parts: Dict[str, int] = {}
    for condition in query.where:
        if isinstance(condition, Comparison) and isinstance(condition.left, DatePart):
            assert isinstance(condition.right, Literal)
            parts[condition.left.part.upper()] = int(condition.right.value)
    return PartitionKey(parts["YEAR"], parts["MONTH"], parts["DAY"])


def column(ordinal: int, name: str, logical_type: str = "int", **kwargs) -> ColumnDefinition:
    return ColumnDefinition(ordinal_position=ordinal, name=name, logical_type=logical_type, **kwargs)


class FakeWarehouse:
    """Catalog, executor and storage in one object."""

    def __init__(self) -> None:
        self.tables: Dict[ObjectIdentity, List[ColumnDefinition]] = {}
        self.dates: Dict[ObjectIdentity, List[Optional[date]]] = {}
        self.external_tables: Dict[ObjectIdentity, str] = {}
        self.views: Dict[ObjectIdentity, Select] = {}
        self.files: Dict[str, Set[PartitionKey]] = {}
        self.sample_columns: List[ColumnDefinition] = []
        self.executed: List[Script] = []
        self.queries: List[Select] = []
        self.fail_on: Dict[PartitionKey, ExecutionError] = {}
        self.probe_errors: List[ExecutionError] = []

    # ------------------------------------------------------------------
    # Setup

    def add_source_table(
        self,
        identity: ObjectIdentity,
        columns: List[ColumnDefinition],
        dates: Iterable[Optional[date]],
    ) -> None:
        self.tables[identity] = list(columns)
        self.dates[identity] = list(dates)

    def written_keys(self, location: str) -> Set[PartitionKey]:
        return set(self.files.get(location_prefix(location), set()))

    # ------------------------------------------------------------------
    # CatalogLookup

    def columns_of(self, identity: ObjectIdentity) -> List[ColumnDefinition]:
        if identity in self.views:
            return list(self.sample_columns)
        return list(self.tables.get(identity, []))

    def object_exists(self, identity: ObjectIdentity) -> bool:
        return identity in self.tables or identity in self.external_tables or identity in self.views

    # ------------------------------------------------------------------
    # StatementExecutor

    def execute(self, script: Script) -> None:
        self.executed.append(script)
        for statement in script.statements:
            if isinstance(statement, DropExternalTableIfExists):
                self.external_tables.pop(statement.identity, None)
            elif isinstance(statement, DropViewIfExists):
                self.views.pop(statement.identity, None)
            elif isinstance(statement, CreateView):
                self.views[statement.identity] = statement.query
            elif isinstance(statement, CreateExternalTable):
                self.external_tables[statement.identity] = statement.options.location
            elif isinstance(statement, CreateExternalTableAsSelect):
                key = key_from_filter(statement.query)
                if key in self.fail_on:
                    raise self.fail_on[key]
                prefix = location_prefix(statement.options.location)
                self.files.setdefault(prefix, set()).add(key)
                self.external_tables[statement.identity] = statement.options.location

    def fetch_all(self, query: Select) -> List[Tuple]:
        self.queries.append(query)
        assert isinstance(query.source, TableSource)
        identity = query.source.identity

        if identity in self.external_tables:
            if self.probe_errors:
                raise self.probe_errors.pop(0)
            keys = self.written_keys(self.external_tables[identity])
            if not keys:
                raise no_content_error()
            if any(isinstance(c, CountAll) for c in query.columns):
                return [(0,)]
            return [(k.year, k.month, k.day) for k in sorted(keys)]

        if identity in self.dates:
            return [(k.year, k.month, k.day) for k in sorted(self._source_keys(identity, query))]

        raise ExecutionError(f"Invalid object name '{identity}'. (208)", native_error=208, sqlstate="42S02")

    def _source_keys(self, identity: ObjectIdentity, query: Select) -> Set[PartitionKey]:
        keys: Set[PartitionKey] = set()
        for value in self.dates[identity]:
            if value is None or not self._matches(value, query):
                continue
            keys.add(PartitionKey.from_date(value))
        return keys

    @staticmethod
    def _matches(value: date, query: Select) -> bool:
        for condition in query.where:
            if not isinstance(condition, Comparison):
                continue
            if isinstance(condition.right, DateFromParts) and condition.operator == ">=":
                if value < condition.right.value:
                    return False
            elif isinstance(condition.right, NextDay) and condition.operator == "<":
                if value >= condition.right.value + timedelta(days=1):
                    return False
        return True
