"""Tests for tiering.lib.sql - statement rendering."""

from datetime import date

from tiering.lib.models import ColumnDefinition, ColumnSource, ObjectIdentity
from tiering.lib.sql import (
    Aliased,
    ColumnRef,
    Comparison,
    CountAll,
    CreateCredentialIfMissing,
    CreateDataSourceIfMissing,
    CreateExternalTable,
    CreateExternalTableAsSelect,
    CreateFileFormatIfMissing,
    CreateMasterKeyIfMissing,
    CreateView,
    DateFromParts,
    DatePart,
    DropExternalTableIfExists,
    DropViewIfExists,
    ExternalTableOptions,
    IsNotNull,
    Literal,
    NextDay,
    OpenRowset,
    Script,
    Select,
    Star,
    TableSource,
    quote_name,
    quote_string,
    render_column,
)

FACT = ObjectIdentity("dbo", "FactInternetSales")


class TestQuoting:
    def test_quote_name_escapes_closing_bracket(self):
        assert quote_name("Order]Date") == "[Order]]Date]"

    def test_quote_string(self):
        assert quote_string("O'Brien") == "'O''Brien'"
        assert quote_string("x", unicode=True) == "N'x'"

    def test_unicode_literal(self):
        assert Literal("it's").render() == "N'it''s'"
        assert Literal(2013).render() == "2013"


class TestRenderColumn:
    def test_natural_column(self):
        column = ColumnDefinition(1, "SalesOrderNumber", "nvarchar", max_length=20, is_nullable=False)
        assert render_column(column) == "[SalesOrderNumber] NVARCHAR(20) NOT NULL"

    def test_nullable_max_column(self):
        column = ColumnDefinition(1, "Comment", "nvarchar", max_length=-1)
        assert render_column(column) == "[Comment] NVARCHAR(MAX) NULL"

    def test_path_capture_column(self):
        column = ColumnDefinition(
            6, "Partition_year", "varchar", max_length=-1, source=ColumnSource.PATH_CAPTURE, wildcard_index=2
        )
        assert render_column(column) == "[Partition_year] AS filepath(2)"

    def test_date_part_column(self):
        column = ColumnDefinition(6, "OrderDateYear", "int", source=ColumnSource.DATE_PART, wildcard_index=1)
        assert render_column(column) == "[OrderDateYear] AS CAST(filepath(1) AS INT)"


class TestSelect:
    def test_distinct_with_filters(self):
        order_date = ColumnRef("OrderDate")
        query = Select(
            columns=(Aliased(DatePart("year", order_date), "OrderDateYear"),),
            source=TableSource(FACT),
            where=(
                IsNotNull(order_date),
                Comparison(order_date, ">=", DateFromParts(date(2013, 12, 3))),
                Comparison(order_date, "<", NextDay(date(2013, 12, 4))),
            ),
            distinct=True,
        )
        assert query.render() == (
            "SELECT DISTINCT\n"
            "    YEAR([OrderDate]) AS [OrderDateYear]\n"
            "FROM [dbo].[FactInternetSales]\n"
            "WHERE [OrderDate] IS NOT NULL\n"
            "  AND [OrderDate] >= DATEFROMPARTS(2013, 12, 3)\n"
            "  AND [OrderDate] < DATEADD(day, 1, DATEFROMPARTS(2013, 12, 4))"
        )

    def test_count_probe(self):
        query = Select(
            columns=(CountAll(),),
            source=TableSource(FACT),
            where=(Comparison(ColumnRef("OrderDateYear"), "=", Literal(0)),),
        )
        assert query.render() == (
            "SELECT\n    COUNT(1)\nFROM [dbo].[FactInternetSales]\nWHERE [OrderDateYear] = 0"
        )

    def test_openrowset_source(self):
        query = Select(columns=(Star(),), source=OpenRowset("sales/*.parquet", "lake-archive"))
        rendered = query.render()
        assert "BULK 'sales/*.parquet'" in rendered
        assert "DATA_SOURCE = 'lake-archive'" in rendered
        assert "FORMAT = 'parquet'" in rendered
        assert rendered.endswith(") AS [filerows]")


class TestStatements:
    def test_drop_external_table_if_exists(self):
        rendered = DropExternalTableIfExists(FACT).render()
        assert "sys.external_tables" in rendered
        assert "OBJECT_ID(N'[dbo].[FactInternetSales]')" in rendered
        assert rendered.endswith("DROP EXTERNAL TABLE [dbo].[FactInternetSales];")

    def test_drop_view(self):
        assert DropViewIfExists(FACT).render() == "DROP VIEW IF EXISTS [dbo].[FactInternetSales];"

    def test_create_view(self):
        view = FACT.with_table("vw_T__tmp")
        rendered = CreateView(view, Select((Star(),), OpenRowset("x/*.parquet", "ds"))).render()
        assert rendered.startswith("CREATE VIEW [dbo].[vw_T__tmp] AS\nSELECT\n    *\nFROM OPENROWSET(")
        assert rendered.endswith(";")

    def test_create_external_table(self):
        statement = CreateExternalTable(
            identity=FACT,
            columns=(
                ColumnDefinition(1, "ProductKey", "int", is_nullable=False),
                ColumnDefinition(2, "OrderDateYear", "int", source=ColumnSource.DATE_PART, wildcard_index=1),
            ),
            options=ExternalTableOptions("dbo/T/*.parquet", "lake-archive-db", "ParquetFileFormat"),
        )
        assert statement.render() == (
            "CREATE EXTERNAL TABLE [dbo].[FactInternetSales] (\n"
            "    [ProductKey] INT NOT NULL,\n"
            "    [OrderDateYear] AS CAST(filepath(1) AS INT)\n"
            ")\n"
            "WITH (\n"
            "    LOCATION = 'dbo/T/*.parquet',\n"
            "    DATA_SOURCE = [lake-archive-db],\n"
            "    FILE_FORMAT = [ParquetFileFormat],\n"
            "    REJECT_TYPE = VALUE,\n"
            "    REJECT_VALUE = 0\n"
            ");"
        )

    def test_cetas_without_reject_options(self):
        statement = CreateExternalTableAsSelect(
            identity=FACT.with_table("Staging"),
            options=ExternalTableOptions("dbo/T/Year=2013/", "ds", "ff", reject_value=None),
            query=Select((ColumnRef("ProductKey"),), TableSource(FACT)),
        )
        rendered = statement.render()
        assert "REJECT_TYPE" not in rendered
        assert rendered.startswith("CREATE EXTERNAL TABLE [dbo].[Staging]\nWITH (")
        assert "\nAS\nSELECT\n    [ProductKey]\nFROM [dbo].[FactInternetSales];" in rendered

    def test_deployment_statements(self):
        assert "CREATE MASTER KEY ENCRYPTION BY PASSWORD = 'p''w'" in CreateMasterKeyIfMissing("p'w").render()
        assert "WITH IDENTITY = 'Managed Identity'" in CreateCredentialIfMissing("lake-archive").render()
        source = CreateDataSourceIfMissing("ds", "abs://c@a.blob.core.windows.net", "cred").render()
        assert "LOCATION = 'abs://c@a.blob.core.windows.net'" in source
        assert "CREDENTIAL = [cred]" in source
        file_format = CreateFileFormatIfMissing("ParquetFileFormat").render()
        assert "FORMAT_TYPE = PARQUET" in file_format
        assert "SnappyCodec" in file_format

    def test_master_key_password_not_in_repr(self):
        assert "secret" not in repr(CreateMasterKeyIfMissing("secret"))


class TestScript:
    def test_render_joins_statements(self):
        script = Script.of(DropViewIfExists(FACT), DropViewIfExists(FACT.with_table("Other")))
        assert script.render() == (
            "DROP VIEW IF EXISTS [dbo].[FactInternetSales];\n\n"
            "DROP VIEW IF EXISTS [dbo].[Other];\n"
        )

    def test_add_and_find(self):
        script = Script.of(DropViewIfExists(FACT)) + Script.of(DropExternalTableIfExists(FACT))
        assert len(script.statements) == 2
        assert script.find(DropExternalTableIfExists) == [DropExternalTableIfExists(FACT)]
