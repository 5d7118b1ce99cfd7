"""Tests for tiering.lib.reconcile - partition reconciliation."""

from datetime import date
from unittest.mock import MagicMock

import pytest

from tests.helpers import no_content_error
from tiering.lib.errors import ErrorCategory, ExecutionError
from tiering.lib.models import DateRange, ObjectIdentity, PartitionKey
from tiering.lib.reconcile import (
    ProbeOutcome,
    build_sync_plan,
    fetch_partition_keys,
    probe_query,
    probe_target,
    reconcile,
    source_partitions_query,
    target_partitions_query,
)
from tiering.lib.resilience import RetryConfig
from tiering.lib.sql import DateFromParts, IsNotNull, NextDay
from tiering.lib.tables import create_external_table_from_source, load_partition

SOURCE = ObjectIdentity("dbo", "FactInternetSales")
EXTERNAL = ObjectIdentity("dbo", "FactInternetSalesExternalPartitionedByOrderDate")
NO_RETRY = RetryConfig(max_attempts=1, backoff_seconds=0.0, jitter=False)


def keys(*days):
    return [PartitionKey(2013, 12, d) for d in days]


# ============================================
# build_sync_plan (pure)
# ============================================


class TestBuildSyncPlan:
    """Set difference, ordering and bootstrap."""

    def test_plan_is_subset_of_source(self):
        source = keys(1, 2, 3, 4, 5)
        plan = build_sync_plan(source, keys(2, 4, 9))
        assert set(plan.keys) <= set(source)
        assert plan.keys == tuple(keys(1, 3, 5))

    def test_bootstrap_plans_whole_source(self):
        plan = build_sync_plan(keys(3, 1, 2), None)
        assert plan.keys == tuple(keys(1, 2, 3))
        assert plan.bootstrap

    def test_fully_synchronised_is_empty(self):
        plan = build_sync_plan(keys(1, 2), keys(1, 2))
        assert plan.is_empty
        assert len(plan) == 0
        assert not plan.bootstrap

    def test_strictly_ascending_without_duplicates(self):
        source = [PartitionKey(2014, 1, 1), PartitionKey(2013, 12, 31), PartitionKey(2013, 12, 31), PartitionKey(2013, 2, 1)]
        plan = build_sync_plan(source, [])
        assert all(a < b for a, b in zip(plan.keys, plan.keys[1:]))
        assert len(plan) == 3

    def test_second_run_after_success_is_empty(self):
        source = keys(1, 2, 3)
        first = build_sync_plan(source, None)
        second = build_sync_plan(source, list(first))
        assert second.is_empty

    def test_date_range_recorded(self):
        window = DateRange(date(2013, 12, 3), date(2013, 12, 4))
        assert build_sync_plan([], None, window).date_range == window


# ============================================
# Queries
# ============================================


class TestQueries:
    def test_probe_query(self):
        assert probe_query(EXTERNAL, "OrderDate").render() == (
            "SELECT\n"
            "    COUNT(1)\n"
            "FROM [dbo].[FactInternetSalesExternalPartitionedByOrderDate]\n"
            "WHERE [OrderDateYear] = 0"
        )

    def test_source_query_excludes_nulls(self):
        query = source_partitions_query(SOURCE, "OrderDate")
        assert query.distinct
        assert query.where == (IsNotNull(query.where[0].expression),)

    @pytest.mark.parametrize(
        "window,expected",
        [
            (DateRange(), []),
            (DateRange(date_from=date(2013, 12, 3)), [(">=", DateFromParts(date(2013, 12, 3)))]),
            (DateRange(date_to=date(2013, 12, 4)), [("<", NextDay(date(2013, 12, 4)))]),
            (
                DateRange(date(2013, 12, 3), date(2013, 12, 4)),
                [(">=", DateFromParts(date(2013, 12, 3))), ("<", NextDay(date(2013, 12, 4)))],
            ),
        ],
    )
    def test_source_query_date_filters(self, window, expected):
        query = source_partitions_query(SOURCE, "OrderDate", window)
        filters = [(c.operator, c.right) for c in query.where[1:]]
        assert filters == expected

    def test_date_to_includes_whole_day(self):
        rendered = source_partitions_query(SOURCE, "OrderDate", DateRange(date_to=date(2013, 12, 4))).render()
        assert "[OrderDate] < DATEADD(day, 1, DATEFROMPARTS(2013, 12, 4))" in rendered

    def test_target_query(self):
        rendered = target_partitions_query(EXTERNAL, "OrderDate").render()
        assert rendered.startswith("SELECT DISTINCT\n    [OrderDateYear],\n    [OrderDateMonth],\n    [OrderDateDay]")


# ============================================
# Probe
# ============================================


class TestProbeTarget:
    def test_queryable(self):
        executor = MagicMock()
        executor.fetch_all.return_value = [(0,)]
        assert probe_target(executor, EXTERNAL, "OrderDate", NO_RETRY) is ProbeOutcome.QUERYABLE

    def test_no_content_is_bootstrap(self):
        executor = MagicMock()
        executor.fetch_all.side_effect = no_content_error()
        assert probe_target(executor, EXTERNAL, "OrderDate", NO_RETRY) is ProbeOutcome.BOOTSTRAP

    def test_other_errors_propagate(self):
        executor = MagicMock()
        executor.fetch_all.side_effect = ExecutionError("Invalid object name", native_error=208)
        with pytest.raises(ExecutionError, match="Invalid object name"):
            probe_target(executor, EXTERNAL, "OrderDate", NO_RETRY)

    def test_transient_errors_retried(self):
        executor = MagicMock()
        executor.fetch_all.side_effect = [
            ExecutionError("link failure", category=ErrorCategory.TRANSIENT),
            [(0,)],
        ]
        config = RetryConfig(max_attempts=3, backoff_seconds=0.0, jitter=False)
        assert probe_target(executor, EXTERNAL, "OrderDate", config) is ProbeOutcome.QUERYABLE
        assert executor.fetch_all.call_count == 2

    def test_transient_then_no_content_is_bootstrap(self):
        executor = MagicMock()
        executor.fetch_all.side_effect = [
            ExecutionError("timeout", category=ErrorCategory.TRANSIENT),
            no_content_error(),
        ]
        config = RetryConfig(max_attempts=3, backoff_seconds=0.0, jitter=False)
        assert probe_target(executor, EXTERNAL, "OrderDate", config) is ProbeOutcome.BOOTSTRAP

    def test_no_content_not_retried(self):
        executor = MagicMock()
        executor.fetch_all.side_effect = no_content_error()
        config = RetryConfig(max_attempts=3, backoff_seconds=0.0, jitter=False)
        probe_target(executor, EXTERNAL, "OrderDate", config)
        assert executor.fetch_all.call_count == 1


# ============================================
# Fetching and full reconciliation
# ============================================


class TestFetchPartitionKeys:
    def test_rows_to_keys_skipping_nulls(self):
        executor = MagicMock()
        executor.fetch_all.return_value = [(2013, 12, 1), (None, None, None), (2013, 12, 1), (2013, 12, 2)]
        assert fetch_partition_keys(executor, MagicMock()) == set(keys(1, 2))


class TestReconcile:
    """Reconciliation against the in-memory warehouse."""

    def test_bootstrap_plans_every_source_partition(self, ctx, warehouse, source_identity):
        create_external_table_from_source(ctx, "dbo.FactInternetSales", "OrderDate")
        plan = reconcile(warehouse, source_identity, EXTERNAL, "OrderDate", retry_config=NO_RETRY)
        assert plan.bootstrap
        assert plan.keys == tuple(keys(1, 2, 3, 4, 5))

    def test_existing_partitions_excluded(self, ctx, warehouse, source_identity):
        create_external_table_from_source(ctx, "dbo.FactInternetSales", "OrderDate")
        for day in (1, 2, 3):
            load_partition(ctx, "dbo.FactInternetSales", "OrderDate", date(2013, 12, day))

        plan = reconcile(warehouse, source_identity, EXTERNAL, "OrderDate", retry_config=NO_RETRY)
        assert not plan.bootstrap
        assert plan.keys == tuple(keys(4, 5))

    def test_null_dates_excluded(self, warehouse, source_identity):
        warehouse.dates[source_identity].append(None)
        warehouse.external_tables[EXTERNAL] = "dbo/FactInternetSales/OrderDate/Year=*/Month=*/Day=*/*.parquet"
        plan = reconcile(warehouse, source_identity, EXTERNAL, "OrderDate", retry_config=NO_RETRY)
        assert len(plan) == 5

    def test_date_window(self, warehouse, source_identity):
        warehouse.external_tables[EXTERNAL] = "dbo/FactInternetSales/OrderDate/Year=*/Month=*/Day=*/*.parquet"
        window = DateRange(date(2013, 12, 3), date(2013, 12, 4))
        plan = reconcile(warehouse, source_identity, EXTERNAL, "OrderDate", window, retry_config=NO_RETRY)
        assert plan.keys == tuple(keys(3, 4))
