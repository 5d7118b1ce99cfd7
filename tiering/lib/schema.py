"""Schema inference for external tables.

Two sources of truth:

- sampled files: a transient view over OPENROWSET exposes the file
  schema through the catalog, then partition folders are appended as
  ``Partition_<field>`` columns;
- a source table: its catalog columns plus ``<col>Year``, ``<col>Month``
  and ``<col>Day`` integer columns read back from the partition folders.

Synthetic columns always follow the natural ones and are renumbered after
them.
"""

from __future__ import annotations

import logging
from typing import List, Sequence, Tuple

from tiering.lib.catalog import CatalogLookup
from tiering.lib.errors import ConfigurationError, SchemaNotFoundError
from tiering.lib.execution import StatementExecutor
from tiering.lib.models import ColumnDefinition, ColumnSource, ObjectIdentity
from tiering.lib.paths import PartitionScheme
from tiering.lib.sql import CreateView, DropViewIfExists, OpenRowset, Script, Select, Star

logger = logging.getLogger(__name__)

__all__ = [
    "DATE_PARTS",
    "PATH_COLUMN_PREFIX",
    "date_part_column_names",
    "path_column_name",
    "transient_view_identity",
    "infer_from_sample",
    "infer_from_source_table",
    "resolve_partition_column",
]

DATE_PARTS: Tuple[str, ...] = ("Year", "Month", "Day")
PATH_COLUMN_PREFIX = "Partition_"


def path_column_name(field_name: str) -> str:
    return f"{PATH_COLUMN_PREFIX}{field_name}"


def date_part_column_names(partition_column: str) -> Tuple[str, ...]:
    return tuple(f"{partition_column}{part}" for part in DATE_PARTS)


def transient_view_identity(target: ObjectIdentity) -> ObjectIdentity:
    return target.with_table(f"vw_{target.table_name}__tmp")


def _renumber(columns: Sequence[ColumnDefinition]) -> List[ColumnDefinition]:
    return [c.with_ordinal(i) for i, c in enumerate(columns, start=1)]


def _check_collisions(natural: Sequence[ColumnDefinition], synthetic: Sequence[str], object_name: str) -> None:
    """Fail when a stored column already uses a synthetic column's name."""
    existing = {c.name.lower(): c.name for c in natural}
    clashes = [existing[name.lower()] for name in synthetic if name.lower() in existing]
    if clashes:
        raise ConfigurationError(
            f"Column name(s) {', '.join(clashes)} collide with generated partition columns",
            field="columns",
            value=clashes,
            object_name=object_name,
            suggestion="Rename or drop the conflicting column(s) before virtualising",
        )


def resolve_partition_column(columns: Sequence[ColumnDefinition], name: str, object_name: str) -> ColumnDefinition:
    """Find the partition column (case-insensitively) and check it holds dates."""
    for column in columns:
        if column.name.lower() == name.lower():
            if not column.is_date_typed:
                raise ConfigurationError(
                    f"Partition column {column.name} has type {column.logical_type}, expected a date type",
                    field="partition_date_column",
                    value=column.name,
                    object_name=object_name,
                )
            return column
    raise ConfigurationError(
        f"Partition column {name} not found",
        field="partition_date_column",
        value=name,
        object_name=object_name,
        details={"columns": ", ".join(c.name for c in columns)},
    )


def infer_from_source_table(
    catalog: CatalogLookup,
    source: ObjectIdentity,
    partition_column: str,
    scheme: PartitionScheme,
) -> List[ColumnDefinition]:
    """Natural columns of ``source`` followed by its Year/Month/Day columns.

    Args:
        catalog: Catalog to read column metadata from
        source: Source table
        partition_column: Date column the export is partitioned by
        scheme: Partition scheme of the export location, whose fields
            supply the wildcard index of each date part

    Raises:
        SchemaNotFoundError: If the catalog has no columns for ``source``
        ConfigurationError: If the partition column is missing, not a date,
            or a natural column collides with a generated name
    """
    natural = catalog.columns_of(source)
    if not natural:
        raise SchemaNotFoundError(
            "No columns found for source table",
            object_name=source.qualified,
        )

    column = resolve_partition_column(natural, partition_column, source.qualified)
    names = date_part_column_names(column.name)
    _check_collisions(natural, names, source.qualified)

    synthetic = []
    for part, name in zip(DATE_PARTS, names):
        index = scheme.wildcard_index(part)
        if index is None:
            raise ConfigurationError(
                f"Partition folder {part}=* missing from {scheme.location}",
                field="location",
                value=scheme.location,
            )
        synthetic.append(
            ColumnDefinition(
                ordinal_position=0,
                name=name,
                logical_type="int",
                is_nullable=False,
                source=ColumnSource.DATE_PART,
                wildcard_index=index,
                date_part=part.upper(),
                derived_from=column.name,
            )
        )

    logger.debug("Inferred %d natural column(s) for %s", len(natural), source)
    return _renumber(list(natural) + synthetic)


def _path_columns(scheme: PartitionScheme) -> List[ColumnDefinition]:
    return [
        ColumnDefinition(
            ordinal_position=0,
            name=path_column_name(f.name),
            logical_type="varchar",
            max_length=-1,
            is_nullable=False,
            source=ColumnSource.PATH_CAPTURE,
            wildcard_index=f.wildcard_index,
        )
        for f in scheme.fields
    ]


def infer_from_sample(
    executor: StatementExecutor,
    catalog: CatalogLookup,
    target: ObjectIdentity,
    scheme: PartitionScheme,
    data_source: str,
    file_format: str = "parquet",
) -> List[ColumnDefinition]:
    """Infer columns by sampling files through a transient view.

    The view is dropped on every exit path. If the cleanup drop itself fails
    while another error is propagating, the cleanup failure is logged and the
    original error wins.

    Raises:
        SchemaNotFoundError: If the sampled location yields no columns
    """
    view = transient_view_identity(target)
    drop = Script.of(DropViewIfExists(view))
    create = Script.of(
        CreateView(view, Select(columns=(Star(),), source=OpenRowset(scheme.location, data_source, file_format)))
    )

    executor.execute(drop)
    try:
        executor.execute(create)
        natural = catalog.columns_of(view)
    except BaseException:
        try:
            executor.execute(drop)
        except Exception as cleanup_error:
            logger.warning("Could not drop transient view %s: %s", view, cleanup_error)
        raise
    executor.execute(drop)

    if not natural:
        raise SchemaNotFoundError(
            f"No columns inferred from {scheme.location}",
            object_name=target.qualified,
            suggestion="Check the path matches at least one file and the data source can list it",
        )

    _check_collisions(natural, [path_column_name(f.name) for f in scheme.fields], target.qualified)
    logger.debug("Sampled %d column(s) from %s", len(natural), scheme.location)
    return _renumber(list(natural) + _path_columns(scheme))
