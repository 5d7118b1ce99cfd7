"""Partition reconciliation between a source table and its external copy.

The plan is the sorted set difference of the source's distinct
(year, month, day) tuples and the tuples already present in the external
table. When the external table has never been written to, the engine
cannot list its location (error 16561); that is the bootstrap case and the
whole source is planned.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from tiering.lib.errors import ExecutionError
from tiering.lib.execution import StatementExecutor
from tiering.lib.models import DateRange, ObjectIdentity, PartitionKey
from tiering.lib.resilience import RetryConfig, retry_operation
from tiering.lib.schema import DATE_PARTS, date_part_column_names
from tiering.lib.sql import (
    Aliased,
    ColumnRef,
    Comparison,
    CountAll,
    DateFromParts,
    DatePart,
    IsNotNull,
    Literal,
    NextDay,
    Select,
    TableSource,
)

logger = logging.getLogger(__name__)

__all__ = [
    "ProbeOutcome",
    "SyncPlan",
    "probe_query",
    "source_partitions_query",
    "target_partitions_query",
    "probe_target",
    "fetch_partition_keys",
    "build_sync_plan",
    "reconcile",
]


class ProbeOutcome(Enum):
    QUERYABLE = "queryable"
    BOOTSTRAP = "bootstrap"


@dataclass(frozen=True)
class SyncPlan:
    """Partitions to materialise, ascending and without duplicates."""

    keys: Tuple[PartitionKey, ...]
    bootstrap: bool = False
    date_range: DateRange = field(default_factory=DateRange)

    def __len__(self) -> int:
        return len(self.keys)

    def __iter__(self) -> Iterator[PartitionKey]:
        return iter(self.keys)

    @property
    def is_empty(self) -> bool:
        return not self.keys


def probe_query(external: ObjectIdentity, partition_column: str) -> Select:
    """Cheap existence check that fails with 16561 while the location is empty."""
    year_column = date_part_column_names(partition_column)[0]
    return Select(
        columns=(CountAll(),),
        source=TableSource(external),
        where=(Comparison(ColumnRef(year_column), "=", Literal(0)),),
    )


def source_partitions_query(
    source: ObjectIdentity,
    partition_column: str,
    date_range: DateRange = DateRange(),
) -> Select:
    """Distinct (year, month, day) of non-NULL partition dates in range.

    The upper bound is exclusive on the following day so every time of day
    on ``date_to`` is included for datetime columns.
    """
    column = ColumnRef(partition_column)
    where: List = [IsNotNull(column)]
    if date_range.date_from:
        where.append(Comparison(column, ">=", DateFromParts(date_range.date_from)))
    if date_range.date_to:
        where.append(Comparison(column, "<", NextDay(date_range.date_to)))
    return Select(
        columns=tuple(
            Aliased(DatePart(part, column), name)
            for part, name in zip(DATE_PARTS, date_part_column_names(partition_column))
        ),
        source=TableSource(source),
        where=tuple(where),
        distinct=True,
    )


def target_partitions_query(external: ObjectIdentity, partition_column: str) -> Select:
    return Select(
        columns=tuple(ColumnRef(name) for name in date_part_column_names(partition_column)),
        source=TableSource(external),
        distinct=True,
    )


def probe_target(
    executor: StatementExecutor,
    external: ObjectIdentity,
    partition_column: str,
    retry_config: Optional[RetryConfig] = None,
) -> ProbeOutcome:
    """Decide whether the external table can be queried yet.

    Transient failures are retried; a no-content failure means bootstrap;
    anything else propagates.
    """
    query = probe_query(external, partition_column)
    try:
        retry_operation(
            lambda: executor.fetch_all(query),
            retry_config or RetryConfig.default(),
            f"Probe of {external}",
        )
    except ExecutionError as e:
        if e.is_no_content:
            logger.info("%s has no content yet; synchronising every source partition", external)
            return ProbeOutcome.BOOTSTRAP
        raise
    return ProbeOutcome.QUERYABLE


def fetch_partition_keys(executor: StatementExecutor, query: Select) -> Set[PartitionKey]:
    """Run a (year, month, day) query, ignoring rows with NULL parts."""
    keys: Set[PartitionKey] = set()
    for row in executor.fetch_all(query):
        year, month, day = row[:3]
        if year is None or month is None or day is None:
            continue
        keys.add(PartitionKey(int(year), int(month), int(day)))
    return keys


def build_sync_plan(
    source_keys: Iterable[PartitionKey],
    existing_keys: Optional[Iterable[PartitionKey]],
    date_range: DateRange = DateRange(),
) -> SyncPlan:
    """Sorted ``source_keys - existing_keys``.

    ``existing_keys`` of None means the target could not be listed
    (bootstrap) and every source key is planned.
    """
    pending = set(source_keys)
    if existing_keys is not None:
        pending -= set(existing_keys)
    return SyncPlan(
        keys=tuple(sorted(pending)),
        bootstrap=existing_keys is None,
        date_range=date_range,
    )


def reconcile(
    executor: StatementExecutor,
    source: ObjectIdentity,
    external: ObjectIdentity,
    partition_column: str,
    date_range: DateRange = DateRange(),
    retry_config: Optional[RetryConfig] = None,
) -> SyncPlan:
    """Compute the partitions of ``source`` missing from ``external``."""
    logger.info("Determining synchronisation intervals for %s (%s)", source, date_range.describe())

    outcome = probe_target(executor, external, partition_column, retry_config)
    source_keys = fetch_partition_keys(executor, source_partitions_query(source, partition_column, date_range))

    existing: Optional[Sequence[PartitionKey]] = None
    if outcome is ProbeOutcome.QUERYABLE:
        existing = sorted(fetch_partition_keys(executor, target_partitions_query(external, partition_column)))

    plan = build_sync_plan(source_keys, existing, date_range)
    logger.info(
        "%d source partition(s), %s present, %d to synchronise",
        len(source_keys),
        "none" if existing is None else len(existing),
        len(plan),
    )
    return plan
