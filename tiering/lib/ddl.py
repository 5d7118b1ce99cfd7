"""DDL generation for partitioned external tables.

Naming conventions for a source table ``dbo.FactInternetSales`` partitioned
by ``OrderDate``:

    external table   dbo.FactInternetSalesExternalPartitionedByOrderDate
    staging table    dbo.FactInternetSalesExternalPartitionedByOrderDate_Staging_20131201
    export location  dbo/FactInternetSales/OrderDate/Year=*/Month=*/Day=*/*.parquet
    partition folder dbo/FactInternetSales/OrderDate/Year=2013/Month=12/Day=1/

Every function here is pure: identical inputs produce identical scripts, and
nothing is executed.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from tiering.lib.models import ColumnDefinition, ColumnSource, ObjectIdentity, PartitionKey, StorageTarget
from tiering.lib.paths import PartitionScheme, parse_path_template
from tiering.lib.schema import DATE_PARTS
from tiering.lib.sql import (
    Aliased,
    ColumnRef,
    Comparison,
    CreateCredentialIfMissing,
    CreateDataSourceIfMissing,
    CreateExternalTable,
    CreateExternalTableAsSelect,
    CreateFileFormatIfMissing,
    CreateMasterKeyIfMissing,
    DatePart,
    DropExternalTableIfExists,
    ExternalTableOptions,
    Literal,
    Script,
    Select,
    TableSource,
)

__all__ = [
    "EXTERNAL_TABLE_INFIX",
    "STAGING_SUFFIX",
    "external_table_identity",
    "staging_table_identity",
    "source_table_path",
    "source_table_scheme",
    "partition_location",
    "partition_select",
    "build_definition_script",
    "build_materialization_script",
    "build_deployment_script",
]

EXTERNAL_TABLE_INFIX = "ExternalPartitionedBy"
STAGING_SUFFIX = "_Staging"


def external_table_identity(source: ObjectIdentity, partition_column: str) -> ObjectIdentity:
    return source.with_table(f"{source.table_name}{EXTERNAL_TABLE_INFIX}{partition_column}")


def staging_table_identity(source: ObjectIdentity, partition_column: str, key: PartitionKey) -> ObjectIdentity:
    """Per-partition name so different keys never share a staging object."""
    external = external_table_identity(source, partition_column)
    return external.with_table(f"{external.table_name}{STAGING_SUFFIX}_{key.tag}")


def source_table_path(source: ObjectIdentity, partition_column: str) -> str:
    """Folder under the namespaced data source that holds a table's export."""
    return f"{source.schema_name}/{source.table_name}/{partition_column}/"


def source_table_scheme(
    source: ObjectIdentity,
    partition_column: str,
    file_extension: str = "parquet",
) -> PartitionScheme:
    template = source_table_path(source, partition_column) + "/".join(f"{p}=*" for p in DATE_PARTS) + "/"
    return parse_path_template(template, file_extension)


def partition_location(source: ObjectIdentity, partition_column: str, key: PartitionKey) -> str:
    return f"{source_table_path(source, partition_column)}{key.path_segment()}/"


def build_definition_script(
    identity: ObjectIdentity,
    columns: Sequence[ColumnDefinition],
    scheme: PartitionScheme,
    data_source: str,
    file_format: str,
    drop_existing: bool = True,
) -> Script:
    """Script that (re)creates an external table over ``scheme.location``.

    Natural columns keep their catalog order; partition columns follow in
    scheme order so they line up with the folder hierarchy.

    Args:
        identity: External table to create
        columns: Inferred columns (natural and synthetic)
        scheme: Partition scheme of the location
        data_source: External data source name
        file_format: External file format name
        drop_existing: Drop an existing external table of the same name first
    """
    natural = [c for c in columns if not c.is_synthetic]
    synthetic = sorted(
        (c for c in columns if c.is_synthetic),
        key=lambda c: (c.wildcard_index or 0, c.ordinal_position),
    )

    statements: List = []
    if drop_existing:
        statements.append(DropExternalTableIfExists(identity))
    statements.append(
        CreateExternalTable(
            identity=identity,
            columns=tuple(natural + synthetic),
            options=ExternalTableOptions(
                location=scheme.location,
                data_source=data_source,
                file_format=file_format,
            ),
        )
    )
    return Script(tuple(statements))


def partition_select(
    source: ObjectIdentity,
    columns: Sequence[ColumnDefinition],
    partition_column: str,
    key: PartitionKey,
) -> Select:
    """Natural columns plus Year/Month/Day of ``partition_column`` for one key."""
    date_column = ColumnRef(partition_column)
    items: List = [ColumnRef(c.name) for c in columns if c.source is ColumnSource.NATURAL]
    items.extend(Aliased(DatePart(part, date_column), f"{partition_column}{part}") for part in DATE_PARTS)
    where = tuple(
        Comparison(DatePart(part, date_column), "=", Literal(value))
        for part, value in zip(DATE_PARTS, (key.year, key.month, key.day))
    )
    return Select(columns=tuple(items), source=TableSource(source), where=where)


def build_materialization_script(
    source: ObjectIdentity,
    columns: Sequence[ColumnDefinition],
    partition_column: str,
    key: PartitionKey,
    data_source: str,
    file_format: str,
    retain_staging: bool = False,
) -> Script:
    """Script that writes one partition of ``source`` to its folder.

    The staging definition is dropped again afterwards unless
    ``retain_staging`` is set; the written files are not affected by the
    drop.
    """
    staging = staging_table_identity(source, partition_column, key)
    statements: List = [
        DropExternalTableIfExists(staging),
        CreateExternalTableAsSelect(
            identity=staging,
            options=ExternalTableOptions(
                location=partition_location(source, partition_column, key),
                data_source=data_source,
                file_format=file_format,
                reject_value=None,
            ),
            query=partition_select(source, columns, partition_column, key),
        ),
    ]
    if not retain_staging:
        statements.append(DropExternalTableIfExists(staging))
    return Script(tuple(statements))


def build_deployment_script(
    target: StorageTarget,
    file_format: str,
    master_key_password: Optional[str] = None,
) -> Script:
    """Storage objects the generated tables depend on.

    Creates, when missing: the database master key (only if a password is
    given), a Managed Identity credential for the container, the container
    root data source, the namespaced data source, and the Snappy Parquet
    file format.
    """
    statements: List = []
    if master_key_password:
        statements.append(CreateMasterKeyIfMissing(master_key_password))
    statements.append(CreateCredentialIfMissing(target.credential_name))

    rooted = target.rooted()
    statements.append(CreateDataSourceIfMissing(rooted.data_source_name, rooted.location, target.credential_name))
    if target.namespace:
        statements.append(CreateDataSourceIfMissing(target.data_source_name, target.location, target.credential_name))

    statements.append(CreateFileFormatIfMissing(file_format))
    return Script(tuple(statements))
