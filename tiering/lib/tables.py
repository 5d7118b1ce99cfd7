"""High-level operations on external tables.

Each operation takes a ``TieringContext`` holding the settings, the
statement executor and the catalog, and accepts ``debug_only`` to return
the generated script instead of executing it.

Example:
    >>> settings = TieringSettings()
    >>> with connect(settings) as ctx:
    ...     create_external_table_from_source(ctx, "dbo.FactInternetSales", "OrderDate")
    ...     result = sync_external_table(ctx, "dbo.FactInternetSales", "OrderDate")
    ...     result.raise_for_status()
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import date
from functools import partial
from typing import Any, Callable, List, Optional, Sequence, Tuple, Union

from tiering.lib.catalog import CatalogLookup, SqlServerCatalog
from tiering.lib.ddl import (
    build_definition_script,
    build_deployment_script,
    build_materialization_script,
    external_table_identity,
    source_table_scheme,
)
from tiering.lib.errors import ConfigurationError, TieringError
from tiering.lib.execution import PyodbcExecutor, StatementExecutor
from tiering.lib.models import ColumnDefinition, ColumnSource, DateRange, ObjectIdentity, PartitionKey
from tiering.lib.paths import parse_path_template
from tiering.lib.reconcile import SyncPlan, build_sync_plan, fetch_partition_keys, reconcile, source_partitions_query
from tiering.lib.schema import infer_from_sample, infer_from_source_table
from tiering.lib.settings import SyncJobConfig, TieringSettings
from tiering.lib.sync import SyncProgress, SyncResult, run_sync_plan

logger = logging.getLogger(__name__)

__all__ = [
    "TieringContext",
    "JobResult",
    "connect",
    "create_external_table_from_path",
    "create_external_table_from_source",
    "load_partition",
    "plan_sync",
    "sync_external_table",
    "deploy_storage_objects",
    "run_jobs",
]


@dataclass
class TieringContext:
    """Collaborators shared by all operations of one run."""

    settings: TieringSettings
    executor: StatementExecutor
    catalog: CatalogLookup

    def close(self) -> None:
        close = getattr(self.executor, "close", None)
        if close is not None:
            close()

    def __enter__(self) -> "TieringContext":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def connect(settings: TieringSettings) -> TieringContext:
    """Build a context backed by a pyodbc connection.

    The connection itself is opened on first use, and only then is
    TIERING_CONNECTION_STRING required, so debug runs that never touch the
    database work without it.
    """
    executor = PyodbcExecutor(partial(settings.require, "connection_string"), timeout=settings.query_timeout)
    return TieringContext(settings=settings, executor=executor, catalog=SqlServerCatalog(executor))


def _parse(ctx: TieringContext, object_name: str) -> ObjectIdentity:
    return ObjectIdentity.parse(object_name, default_schema=ctx.settings.default_schema)


def _as_key(value: Union[PartitionKey, date]) -> PartitionKey:
    return value if isinstance(value, PartitionKey) else PartitionKey.from_date(value)


def _resolve_source(
    ctx: TieringContext,
    object_name: str,
    partition_column: str,
) -> Tuple[ObjectIdentity, str, List[ColumnDefinition]]:
    """Source identity, catalog spelling of the partition column, and columns.

    Storage paths are case-sensitive while object lookups are not, so every
    name derived from the partition column uses the catalog spelling.
    """
    source = _parse(ctx, object_name)
    scheme = source_table_scheme(source, partition_column, ctx.settings.file_extension)
    columns = infer_from_source_table(ctx.catalog, source, partition_column, scheme)
    spelling = next(c.derived_from for c in columns if c.source is ColumnSource.DATE_PART)
    return source, spelling or partition_column, columns


def create_external_table_from_path(
    ctx: TieringContext,
    storage_path: str,
    external_table: str,
    *,
    drop_existing: bool = True,
    debug_only: bool = False,
) -> str:
    """Create an external table over files matching a path template.

    The schema is sampled from the files, so this runs the sampling
    statements even when ``debug_only`` is set.

    Args:
        ctx: Run context
        storage_path: Path under the container root, e.g. "sales/year=*/month=*/"
        external_table: Name of the external table to create
        drop_existing: Drop an existing definition first
        debug_only: Return the definition script without executing it

    Returns:
        The definition script
    """
    settings = ctx.settings
    identity = _parse(ctx, external_table)
    scheme = parse_path_template(storage_path, settings.file_extension)
    data_source = settings.data_source_for(namespaced=False)

    columns = infer_from_sample(ctx.executor, ctx.catalog, identity, scheme, data_source, settings.file_extension)
    script = build_definition_script(
        identity, columns, scheme, data_source, settings.file_format_name, drop_existing=drop_existing
    )

    if not debug_only:
        ctx.executor.execute(script)
        logger.info(
            "Created external table %s over %s (%d partition field(s))",
            identity,
            scheme.location,
            len(scheme.fields),
        )
    return script.render()


def create_external_table_from_source(
    ctx: TieringContext,
    object_name: str,
    partition_date_column: str,
    *,
    drop_existing: bool = True,
    debug_only: bool = False,
) -> str:
    """Create the Year/Month/Day partitioned external table for a source table.

    Returns:
        The definition script
    """
    settings = ctx.settings
    source, partition_column, columns = _resolve_source(ctx, object_name, partition_date_column)
    scheme = source_table_scheme(source, partition_column, settings.file_extension)
    external = external_table_identity(source, partition_column)

    script = build_definition_script(
        external,
        columns,
        scheme,
        settings.data_source_for(namespaced=True),
        settings.file_format_name,
        drop_existing=drop_existing,
    )

    if not debug_only:
        ctx.executor.execute(script)
        logger.info("Created external table %s over %s", external, scheme.location)
    return script.render()


def load_partition(
    ctx: TieringContext,
    object_name: str,
    partition_date_column: str,
    key: Union[PartitionKey, date],
    *,
    debug_only: bool = False,
) -> str:
    """Materialise a single partition of a source table.

    Returns:
        The materialisation script
    """
    settings = ctx.settings
    source, partition_column, columns = _resolve_source(ctx, object_name, partition_date_column)
    key = _as_key(key)

    script = build_materialization_script(
        source,
        columns,
        partition_column,
        key,
        settings.data_source_for(namespaced=True),
        settings.file_format_name,
    )

    if not debug_only:
        ctx.executor.execute(script)
        logger.info("Loaded partition %s of %s", key, source)
    return script.render()


def plan_sync(
    ctx: TieringContext,
    object_name: str,
    partition_date_column: str,
    date_range: DateRange = DateRange(),
    *,
    allow_missing_target: bool = False,
) -> SyncPlan:
    """Partitions of the source not yet present in its external table.

    Args:
        allow_missing_target: Plan every source partition when the external
            table does not exist, instead of raising

    Raises:
        ConfigurationError: If the external table does not exist
    """
    source, partition_column, _ = _resolve_source(ctx, object_name, partition_date_column)
    external = external_table_identity(source, partition_column)

    if not ctx.catalog.object_exists(external):
        if not allow_missing_target:
            raise ConfigurationError(
                f"External table {external} does not exist",
                field="object_name",
                value=object_name,
                suggestion="Run create-from-table first",
            )
        logger.warning("%s does not exist yet; planning every source partition", external)
        source_keys = fetch_partition_keys(
            ctx.executor, source_partitions_query(source, partition_column, date_range)
        )
        return build_sync_plan(source_keys, None, date_range)

    return reconcile(
        ctx.executor,
        source,
        external,
        partition_column,
        date_range,
        ctx.settings.retry_config(),
    )


def sync_external_table(
    ctx: TieringContext,
    object_name: str,
    partition_date_column: str,
    *,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    debug_only: bool = False,
    on_progress: Optional[Callable[[SyncProgress], None]] = None,
) -> SyncResult:
    """Materialise every source partition missing from the external table.

    In debug mode the read-only reconciliation queries still run, and the
    per-partition scripts are collected on the result instead of executed.

    Returns:
        SyncResult; call ``raise_for_status()`` to turn an abort into an error
    """
    settings = ctx.settings
    source, partition_column, columns = _resolve_source(ctx, object_name, partition_date_column)
    date_range = DateRange(date_from, date_to)
    data_source = settings.data_source_for(namespaced=True)

    plan = plan_sync(ctx, object_name, partition_column, date_range, allow_missing_target=debug_only)
    scripts: List[str] = []

    def materialize(key: PartitionKey) -> None:
        script = build_materialization_script(
            source, columns, partition_column, key, data_source, settings.file_format_name
        )
        if debug_only:
            scripts.append(script.render())
        else:
            ctx.executor.execute(script)

    result = run_sync_plan(plan, materialize, on_progress)
    result.scripts = scripts
    return result


def deploy_storage_objects(
    ctx: TieringContext,
    *,
    create_master_key: bool = False,
    debug_only: bool = False,
) -> str:
    """Create the credential, data sources and file format if missing.

    A random master key password is generated when one is requested and
    ``TIERING_MASTER_KEY_PASSWORD`` is not set.

    Returns:
        The deployment script
    """
    settings = ctx.settings
    target = settings.storage_target(namespaced=bool(settings.database))

    password: Optional[str] = None
    if create_master_key:
        if settings.master_key_password is not None:
            password = settings.master_key_password.get_secret_value()
        else:
            password = secrets.token_urlsafe(32)
            logger.warning("Generated a random master key password; it is not stored anywhere")

    script = build_deployment_script(target, settings.file_format_name, password)
    if not debug_only:
        ctx.executor.execute(script)
        logger.info("Deployed storage objects for %s", target.location)
    return script.render()


@dataclass
class JobResult:
    """Outcome of one job from a job file."""

    job: SyncJobConfig
    definition_script: Optional[str] = None
    sync: Optional[SyncResult] = None
    error: Optional[TieringError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.sync is not None and self.sync.succeeded


def run_jobs(
    ctx: TieringContext,
    jobs: Sequence[SyncJobConfig],
    *,
    debug_only: bool = False,
) -> List[JobResult]:
    """Run each job in turn; a failing table does not stop the others."""
    results: List[JobResult] = []
    for number, job in enumerate(jobs, start=1):
        logger.info("Job %d/%d: %s by %s", number, len(jobs), job.object_name, job.partition_date_column)
        outcome = JobResult(job=job)
        try:
            if job.create:
                outcome.definition_script = create_external_table_from_source(
                    ctx,
                    job.object_name,
                    job.partition_date_column,
                    drop_existing=job.drop_existing,
                    debug_only=debug_only,
                )
            outcome.sync = sync_external_table(
                ctx,
                job.object_name,
                job.partition_date_column,
                date_from=job.date_from,
                date_to=job.date_to,
                debug_only=debug_only,
            )
        except TieringError as e:
            logger.error("Job %d/%d failed: %s", number, len(jobs), e.message)
            outcome.error = e
        results.append(outcome)
    return results
