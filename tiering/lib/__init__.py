"""Tiering library modules.

Schema inference, DDL generation and partition reconciliation for
date-partitioned external tables.
"""

from tiering.lib.catalog import CatalogLookup, SqlServerCatalog
from tiering.lib.ddl import (
    build_definition_script,
    build_deployment_script,
    build_materialization_script,
    external_table_identity,
    staging_table_identity,
)
from tiering.lib.errors import (
    ConfigurationError,
    ErrorCategory,
    ExecutionError,
    MalformedPathError,
    SchemaNotFoundError,
    SyncAbortedError,
    TieringError,
)
from tiering.lib.execution import PyodbcExecutor, StatementExecutor
from tiering.lib.models import (
    ColumnDefinition,
    ColumnSource,
    DateRange,
    ObjectIdentity,
    PartitionKey,
    StorageTarget,
)
from tiering.lib.paths import PartitionField, PartitionScheme, parse_path_template
from tiering.lib.reconcile import ProbeOutcome, SyncPlan, build_sync_plan, reconcile
from tiering.lib.schema import infer_from_sample, infer_from_source_table
from tiering.lib.settings import SyncJobConfig, TieringSettings, load_jobs_file
from tiering.lib.sync import SyncProgress, SyncResult, SyncStatus, run_sync_plan
from tiering.lib.tables import (
    JobResult,
    TieringContext,
    connect,
    create_external_table_from_path,
    create_external_table_from_source,
    deploy_storage_objects,
    load_partition,
    plan_sync,
    run_jobs,
    sync_external_table,
)

__all__ = [
    # Errors
    "TieringError",
    "ConfigurationError",
    "MalformedPathError",
    "SchemaNotFoundError",
    "ErrorCategory",
    "ExecutionError",
    "SyncAbortedError",
    # Model
    "ObjectIdentity",
    "ColumnDefinition",
    "ColumnSource",
    "PartitionKey",
    "DateRange",
    "StorageTarget",
    "PartitionField",
    "PartitionScheme",
    "parse_path_template",
    # Engine
    "CatalogLookup",
    "SqlServerCatalog",
    "StatementExecutor",
    "PyodbcExecutor",
    "infer_from_sample",
    "infer_from_source_table",
    "build_definition_script",
    "build_materialization_script",
    "build_deployment_script",
    "external_table_identity",
    "staging_table_identity",
    "ProbeOutcome",
    "SyncPlan",
    "build_sync_plan",
    "reconcile",
    "SyncStatus",
    "SyncProgress",
    "SyncResult",
    "run_sync_plan",
    # Settings
    "TieringSettings",
    "SyncJobConfig",
    "load_jobs_file",
    # Operations
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
