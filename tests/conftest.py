"""Pytest configuration and fixtures."""

import sys
from datetime import date
from pathlib import Path

import pytest

# Make the project root importable when running without installation
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from tests.helpers import FakeWarehouse, column  # noqa: E402
from tiering.lib.models import ObjectIdentity  # noqa: E402
from tiering.lib.settings import TieringSettings  # noqa: E402
from tiering.lib.tables import TieringContext  # noqa: E402

SOURCE = ObjectIdentity("dbo", "FactInternetSales")

FIVE_DAYS = [
    date(2013, 12, 1),
    date(2013, 12, 2),
    date(2013, 12, 3),
    date(2013, 12, 4),
    date(2013, 12, 5),
]


@pytest.fixture(autouse=True)
def _isolate_environment(monkeypatch, tmp_path):
    """Keep TIERING_* variables and .env files of the developer out of tests."""
    import os

    for name in list(os.environ):
        if name.startswith("TIERING_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def source_identity() -> ObjectIdentity:
    return SOURCE


@pytest.fixture
def source_columns():
    """Natural columns of a small sales fact table."""
    return [
        column(1, "SalesOrderNumber", "nvarchar", max_length=20, is_nullable=False),
        column(2, "ProductKey", "int", is_nullable=False),
        column(3, "OrderDate", "datetime"),
        column(4, "SalesAmount", "money"),
        column(5, "Comment", "nvarchar", max_length=-1),
    ]


@pytest.fixture
def settings() -> TieringSettings:
    return TieringSettings(
        connection_string="Driver={ODBC Driver 18 for SQL Server};Server=test",
        storage_account="contosolake",
        container="archive",
        database="AdventureWorksDW",
        probe_backoff_seconds=0.0,
    )


@pytest.fixture
def warehouse(source_columns) -> FakeWarehouse:
    """Warehouse with the five-day sales table and no external table."""
    wh = FakeWarehouse()
    wh.add_source_table(SOURCE, source_columns, FIVE_DAYS)
    return wh


@pytest.fixture
def ctx(settings, warehouse) -> TieringContext:
    return TieringContext(settings=settings, executor=warehouse, catalog=warehouse)


