"""Structured T-SQL statements for external table management.

Scripts are assembled from small frozen statement objects and rendered to
text only when they are handed to an executor (or printed in debug mode).
Keeping the statements structured lets tests and fakes inspect what would
run without parsing SQL.

Example:
    >>> script = Script((DropExternalTableIfExists(identity), create))
    >>> print(script.render())
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Optional, Sequence, Tuple, Union

from tiering.lib.models import ColumnDefinition, ColumnSource, ObjectIdentity

__all__ = [
    "quote_name",
    "quote_string",
    "render_identity",
    "render_column",
    "ColumnRef",
    "DatePart",
    "DateFromParts",
    "NextDay",
    "Literal",
    "CountAll",
    "Star",
    "Aliased",
    "Comparison",
    "IsNotNull",
    "TableSource",
    "OpenRowset",
    "Select",
    "DropExternalTableIfExists",
    "DropViewIfExists",
    "CreateView",
    "ExternalTableOptions",
    "CreateExternalTable",
    "CreateExternalTableAsSelect",
    "CreateMasterKeyIfMissing",
    "CreateCredentialIfMissing",
    "CreateDataSourceIfMissing",
    "CreateFileFormatIfMissing",
    "Script",
]

INDENT = "    "


def quote_name(name: str) -> str:
    """Delimit an identifier, e.g. Order]Date -> [Order]]Date]."""
    return "[" + name.replace("]", "]]") + "]"


def quote_string(value: str, unicode: bool = False) -> str:
    """Render a string literal with embedded quotes doubled."""
    escaped = value.replace("'", "''")
    return f"N'{escaped}'" if unicode else f"'{escaped}'"


def render_identity(identity: ObjectIdentity) -> str:
    return f"{quote_name(identity.schema_name)}.{quote_name(identity.table_name)}"


def render_column(column: ColumnDefinition) -> str:
    """Render one column of a CREATE EXTERNAL TABLE column list."""
    name = quote_name(column.name)
    if column.source is ColumnSource.PATH_CAPTURE:
        return f"{name} AS filepath({column.wildcard_index})"
    if column.source is ColumnSource.DATE_PART:
        return f"{name} AS CAST(filepath({column.wildcard_index}) AS INT)"
    nullability = "NULL" if column.is_nullable else "NOT NULL"
    return f"{name} {column.type_declaration()} {nullability}"


# ============================================
# Expressions
# ============================================


@dataclass(frozen=True)
class ColumnRef:
    name: str

    def render(self) -> str:
        return quote_name(self.name)


@dataclass(frozen=True)
class DatePart:
    """YEAR(col), MONTH(col) or DAY(col)."""

    part: str
    column: ColumnRef

    def render(self) -> str:
        return f"{self.part.upper()}({self.column.render()})"


@dataclass(frozen=True)
class DateFromParts:
    value: date

    def render(self) -> str:
        return f"DATEFROMPARTS({self.value.year}, {self.value.month}, {self.value.day})"


@dataclass(frozen=True)
class NextDay:
    """The day after ``value``, as an exclusive upper bound."""

    value: date

    def render(self) -> str:
        return f"DATEADD(day, 1, {DateFromParts(self.value).render()})"


@dataclass(frozen=True)
class Literal:
    value: Union[int, str]

    def render(self) -> str:
        if isinstance(self.value, str):
            return quote_string(self.value, unicode=True)
        return str(int(self.value))


@dataclass(frozen=True)
class CountAll:
    def render(self) -> str:
        return "COUNT(1)"


@dataclass(frozen=True)
class Star:
    def render(self) -> str:
        return "*"


Expression = Union[ColumnRef, DatePart, DateFromParts, NextDay, Literal, CountAll, Star]


@dataclass(frozen=True)
class Aliased:
    expression: Expression
    alias: str

    def render(self) -> str:
        return f"{self.expression.render()} AS {quote_name(self.alias)}"


SelectItem = Union[Expression, Aliased]


@dataclass(frozen=True)
class Comparison:
    left: Expression
    operator: str
    right: Expression

    def render(self) -> str:
        return f"{self.left.render()} {self.operator} {self.right.render()}"


@dataclass(frozen=True)
class IsNotNull:
    expression: Expression

    def render(self) -> str:
        return f"{self.expression.render()} IS NOT NULL"


Condition = Union[Comparison, IsNotNull]


# ============================================
# Row sources and SELECT
# ============================================


@dataclass(frozen=True)
class TableSource:
    identity: ObjectIdentity

    def render(self) -> str:
        return render_identity(self.identity)


@dataclass(frozen=True)
class OpenRowset:
    """Ad hoc read of files under an external data source."""

    location: str
    data_source: str
    file_format: str = "parquet"
    alias: str = "filerows"

    def render(self) -> str:
        return (
            f"OPENROWSET(\n"
            f"{INDENT}BULK {quote_string(self.location)},\n"
            f"{INDENT}DATA_SOURCE = {quote_string(self.data_source)},\n"
            f"{INDENT}FORMAT = {quote_string(self.file_format)}\n"
            f") AS {quote_name(self.alias)}"
        )


@dataclass(frozen=True)
class Select:
    columns: Tuple[SelectItem, ...]
    source: Union[TableSource, OpenRowset]
    where: Tuple[Condition, ...] = ()
    distinct: bool = False

    def render(self) -> str:
        keyword = "SELECT DISTINCT" if self.distinct else "SELECT"
        columns = f",\n{INDENT}".join(c.render() for c in self.columns)
        lines = [f"{keyword}\n{INDENT}{columns}", f"FROM {self.source.render()}"]
        for i, condition in enumerate(self.where):
            lines.append(f"{'WHERE' if i == 0 else '  AND'} {condition.render()}")
        return "\n".join(lines)


# ============================================
# Statements
# ============================================


@dataclass(frozen=True)
class DropExternalTableIfExists:
    identity: ObjectIdentity

    def render(self) -> str:
        target = render_identity(self.identity)
        return (
            f"IF EXISTS (SELECT 1 FROM sys.external_tables "
            f"WHERE [object_id] = OBJECT_ID({quote_string(target, unicode=True)}))\n"
            f"{INDENT}DROP EXTERNAL TABLE {target};"
        )


@dataclass(frozen=True)
class DropViewIfExists:
    identity: ObjectIdentity

    def render(self) -> str:
        return f"DROP VIEW IF EXISTS {render_identity(self.identity)};"


@dataclass(frozen=True)
class CreateView:
    """Must be the only statement of its batch."""

    identity: ObjectIdentity
    query: Select

    def render(self) -> str:
        return f"CREATE VIEW {render_identity(self.identity)} AS\n{self.query.render()};"


@dataclass(frozen=True)
class ExternalTableOptions:
    location: str
    data_source: str
    file_format: str
    reject_value: Optional[int] = 0

    def render(self) -> str:
        options = [
            f"LOCATION = {quote_string(self.location)}",
            f"DATA_SOURCE = {quote_name(self.data_source)}",
            f"FILE_FORMAT = {quote_name(self.file_format)}",
        ]
        if self.reject_value is not None:
            options.append("REJECT_TYPE = VALUE")
            options.append(f"REJECT_VALUE = {self.reject_value}")
        body = f",\n{INDENT}".join(options)
        return f"WITH (\n{INDENT}{body}\n)"


@dataclass(frozen=True)
class CreateExternalTable:
    identity: ObjectIdentity
    columns: Tuple[ColumnDefinition, ...]
    options: ExternalTableOptions

    def render(self) -> str:
        columns = f",\n{INDENT}".join(render_column(c) for c in self.columns)
        return (
            f"CREATE EXTERNAL TABLE {render_identity(self.identity)} (\n"
            f"{INDENT}{columns}\n"
            f")\n"
            f"{self.options.render()};"
        )


@dataclass(frozen=True)
class CreateExternalTableAsSelect:
    """CETAS: write the query result as files and register a table over them."""

    identity: ObjectIdentity
    options: ExternalTableOptions
    query: Select

    def render(self) -> str:
        return (
            f"CREATE EXTERNAL TABLE {render_identity(self.identity)}\n"
            f"{self.options.render()}\n"
            f"AS\n"
            f"{self.query.render()};"
        )


@dataclass(frozen=True)
class CreateMasterKeyIfMissing:
    password: str = field(repr=False)

    def render(self) -> str:
        return (
            "IF NOT EXISTS (SELECT 1 FROM sys.symmetric_keys "
            "WHERE [name] = '##MS_DatabaseMasterKey##')\n"
            f"{INDENT}CREATE MASTER KEY ENCRYPTION BY PASSWORD = {quote_string(self.password)};"
        )


@dataclass(frozen=True)
class CreateCredentialIfMissing:
    name: str
    identity: str = "Managed Identity"

    def render(self) -> str:
        return (
            f"IF NOT EXISTS (SELECT 1 FROM sys.database_scoped_credentials "
            f"WHERE [name] = {quote_string(self.name, unicode=True)})\n"
            f"{INDENT}CREATE DATABASE SCOPED CREDENTIAL {quote_name(self.name)}\n"
            f"{INDENT}WITH IDENTITY = {quote_string(self.identity)};"
        )


@dataclass(frozen=True)
class CreateDataSourceIfMissing:
    name: str
    location: str
    credential: str

    def render(self) -> str:
        return (
            f"IF NOT EXISTS (SELECT 1 FROM sys.external_data_sources "
            f"WHERE [name] = {quote_string(self.name, unicode=True)})\n"
            f"{INDENT}CREATE EXTERNAL DATA SOURCE {quote_name(self.name)}\n"
            f"{INDENT}WITH (\n"
            f"{INDENT}{INDENT}LOCATION = {quote_string(self.location)},\n"
            f"{INDENT}{INDENT}CREDENTIAL = {quote_name(self.credential)}\n"
            f"{INDENT});"
        )


@dataclass(frozen=True)
class CreateFileFormatIfMissing:
    name: str
    format_type: str = "PARQUET"
    compression: str = "org.apache.hadoop.io.compress.SnappyCodec"

    def render(self) -> str:
        return (
            f"IF NOT EXISTS (SELECT 1 FROM sys.external_file_formats "
            f"WHERE [name] = {quote_string(self.name, unicode=True)})\n"
            f"{INDENT}CREATE EXTERNAL FILE FORMAT {quote_name(self.name)}\n"
            f"{INDENT}WITH (\n"
            f"{INDENT}{INDENT}FORMAT_TYPE = {self.format_type},\n"
            f"{INDENT}{INDENT}DATA_COMPRESSION = {quote_string(self.compression)}\n"
            f"{INDENT});"
        )


Statement = Union[
    DropExternalTableIfExists,
    DropViewIfExists,
    CreateView,
    CreateExternalTable,
    CreateExternalTableAsSelect,
    CreateMasterKeyIfMissing,
    CreateCredentialIfMissing,
    CreateDataSourceIfMissing,
    CreateFileFormatIfMissing,
]


@dataclass(frozen=True)
class Script:
    """An ordered batch of statements executed together."""

    statements: Tuple[Statement, ...]

    @classmethod
    def of(cls, *statements: Statement) -> "Script":
        return cls(tuple(statements))

    def __add__(self, other: "Script") -> "Script":
        return Script(self.statements + other.statements)

    def find(self, kind: type) -> Sequence[Statement]:
        """Statements of the given type, in order."""
        return [s for s in self.statements if isinstance(s, kind)]

    def render(self) -> str:
        return "\n\n".join(s.render() for s in self.statements) + "\n"
