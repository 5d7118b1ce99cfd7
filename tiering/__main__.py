"""CLI entry point for external table tiering.

Usage:
    python -m tiering deploy --create-master-key
    python -m tiering create-from-path sales/year=*/month=*/ dbo.SalesArchive
    python -m tiering create-from-table dbo.FactInternetSales OrderDate
    python -m tiering load-partition dbo.FactInternetSales OrderDate --date 2013-12-01
    python -m tiering plan dbo.FactInternetSales OrderDate --from 2013-12-01
    python -m tiering sync dbo.FactInternetSales OrderDate --debug-only
    python -m tiering run-jobs jobs.yaml

Connection and storage settings come from TIERING_* environment variables
or a .env file (see tiering.lib.settings).

Exit codes:
    0  success
    1  a statement failed or synchronisation aborted
    2  invalid configuration, path or object name
"""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import date
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from tiering.lib.env import load_env_file
from tiering.lib.errors import ConfigurationError, ExecutionError, TieringError
from tiering.lib.logging import emit_long_text, setup_logging
from tiering.lib.models import DateRange
from tiering.lib.settings import TieringSettings, load_jobs_file
from tiering.lib.sync import SyncResult
from tiering.lib.tables import (
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

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def _iso_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected a date like 2013-12-01, got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cetas-tiering",
        description="Virtualise SQL tables as date-partitioned external Parquet tables",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m tiering create-from-table dbo.FactInternetSales OrderDate
  python -m tiering sync dbo.FactInternetSales OrderDate --from 2013-12-01 --to 2013-12-31
  python -m tiering sync dbo.FactInternetSales OrderDate --debug-only
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--json-logs", action="store_true", help="Output logs in JSON format")
    parser.add_argument("--log-file", help="Also write logs to this file")
    parser.add_argument("--env-file", help="Load environment variables from this file")

    subparsers = parser.add_subparsers(dest="command", required=True)

    def add_debug(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--debug-only",
            action="store_true",
            help="Print the generated script instead of executing it",
        )

    deploy = subparsers.add_parser("deploy", help="Create credential, data sources and file format")
    deploy.add_argument("--create-master-key", action="store_true", help="Also create the database master key")
    add_debug(deploy)

    from_path = subparsers.add_parser("create-from-path", help="External table over existing files")
    from_path.add_argument("storage_path", help="Path template, e.g. sales/year=*/month=*/")
    from_path.add_argument("external_table", help="Table to create, e.g. dbo.SalesArchive")
    from_path.add_argument("--keep-existing", action="store_true", help="Do not drop an existing definition")
    add_debug(from_path)

    from_table = subparsers.add_parser("create-from-table", help="Partitioned external table for a source table")
    from_table.add_argument("object_name", help="Source table, e.g. dbo.FactInternetSales")
    from_table.add_argument("partition_column", help="Date column to partition by")
    from_table.add_argument("--keep-existing", action="store_true", help="Do not drop an existing definition")
    add_debug(from_table)

    load = subparsers.add_parser("load-partition", help="Materialise one date partition")
    load.add_argument("object_name")
    load.add_argument("partition_column")
    load.add_argument("--date", required=True, type=_iso_date, help="Partition date (YYYY-MM-DD)")
    add_debug(load)

    for name, help_text in (
        ("plan", "List partitions missing from the external table"),
        ("sync", "Materialise partitions missing from the external table"),
    ):
        p = subparsers.add_parser(name, help=help_text)
        p.add_argument("object_name")
        p.add_argument("partition_column")
        p.add_argument("--from", dest="date_from", type=_iso_date, help="First date (inclusive)")
        p.add_argument("--to", dest="date_to", type=_iso_date, help="Last date (inclusive)")
        if name == "sync":
            add_debug(p)

    jobs = subparsers.add_parser("run-jobs", help="Run the tables listed in a YAML job file")
    jobs.add_argument("jobs_file")
    add_debug(jobs)

    return parser


def _print_script(script: str) -> None:
    emit_long_text(script)


def _report_sync(result: SyncResult, debug_only: bool) -> int:
    if debug_only:
        for script in result.scripts:
            _print_script(script)
    if result.succeeded:
        print(f"Synchronisation complete: {result.summary()}")
        return EXIT_OK
    print(f"Synchronisation aborted: {result.summary()}", file=sys.stderr)
    print(f"Last attempted partition: {result.failed_key}", file=sys.stderr)
    if result.error is not None:
        print(f"Error: {result.error}", file=sys.stderr)
    return EXIT_FAILED


def cmd_deploy(ctx: TieringContext, args: argparse.Namespace) -> int:
    script = deploy_storage_objects(ctx, create_master_key=args.create_master_key, debug_only=args.debug_only)
    if args.debug_only:
        _print_script(script)
    return EXIT_OK


def cmd_create_from_path(ctx: TieringContext, args: argparse.Namespace) -> int:
    script = create_external_table_from_path(
        ctx,
        args.storage_path,
        args.external_table,
        drop_existing=not args.keep_existing,
        debug_only=args.debug_only,
    )
    if args.debug_only:
        _print_script(script)
    return EXIT_OK


def cmd_create_from_table(ctx: TieringContext, args: argparse.Namespace) -> int:
    script = create_external_table_from_source(
        ctx,
        args.object_name,
        args.partition_column,
        drop_existing=not args.keep_existing,
        debug_only=args.debug_only,
    )
    if args.debug_only:
        _print_script(script)
    return EXIT_OK


def cmd_load_partition(ctx: TieringContext, args: argparse.Namespace) -> int:
    script = load_partition(ctx, args.object_name, args.partition_column, args.date, debug_only=args.debug_only)
    if args.debug_only:
        _print_script(script)
    return EXIT_OK


def cmd_plan(ctx: TieringContext, args: argparse.Namespace) -> int:
    plan = plan_sync(ctx, args.object_name, args.partition_column, DateRange(args.date_from, args.date_to))
    if plan.bootstrap:
        print("External table has no content yet; every source partition is planned")
    for key in plan:
        print(key)
    print(f"{len(plan)} partition(s) to synchronise")
    return EXIT_OK


def cmd_sync(ctx: TieringContext, args: argparse.Namespace) -> int:
    result = sync_external_table(
        ctx,
        args.object_name,
        args.partition_column,
        date_from=args.date_from,
        date_to=args.date_to,
        debug_only=args.debug_only,
    )
    return _report_sync(result, args.debug_only)


def cmd_run_jobs(ctx: TieringContext, args: argparse.Namespace) -> int:
    jobs = load_jobs_file(args.jobs_file)
    results = run_jobs(ctx, jobs, debug_only=args.debug_only)

    exit_code = EXIT_OK
    for outcome in results:
        label = f"{outcome.job.object_name} by {outcome.job.partition_date_column}"
        if args.debug_only and outcome.definition_script:
            _print_script(outcome.definition_script)
        if outcome.error is not None:
            print(f"[FAILED] {label}: {outcome.error.message}", file=sys.stderr)
            exit_code = max(exit_code, EXIT_FAILED)
            continue
        assert outcome.sync is not None
        print(f"[{outcome.sync.status.value.upper()}] {label}")
        if _report_sync(outcome.sync, args.debug_only) != EXIT_OK:
            exit_code = max(exit_code, EXIT_FAILED)
    return exit_code


COMMANDS: Dict[str, Callable[[TieringContext, argparse.Namespace], int]] = {
    "deploy": cmd_deploy,
    "create-from-path": cmd_create_from_path,
    "create-from-table": cmd_create_from_table,
    "load-partition": cmd_load_partition,
    "plan": cmd_plan,
    "sync": cmd_sync,
    "run-jobs": cmd_run_jobs,
}


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        load_env_file(args.env_file)
    except ConfigurationError as e:
        print(e.message, file=sys.stderr)
        return EXIT_CONFIG

    try:
        settings = TieringSettings()
    except ValidationError as e:
        print(f"Invalid TIERING_* settings:\n{e}", file=sys.stderr)
        return EXIT_CONFIG

    setup_logging(
        verbose=args.verbose,
        json_format=args.json_logs or settings.log_format == "json",
        log_file=args.log_file or settings.log_file,
        level=settings.log_level,
    )

    try:
        with connect(settings) as ctx:
            return COMMANDS[args.command](ctx, args)
    except ExecutionError as e:
        logger.error("Execution failed: %s", e)
        return EXIT_FAILED
    except TieringError as e:
        logger.error("%s", e)
        return EXIT_CONFIG


if __name__ == "__main__":
    sys.exit(main())
