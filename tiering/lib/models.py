"""Value types shared by the tiering modules.

All types here are immutable. Object identities are parsed once from the
user-supplied qualified name and passed around structurally; nothing
downstream re-parses names.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from enum import Enum
from typing import List, Optional

from tiering.lib.errors import ConfigurationError

__all__ = [
    "ObjectIdentity",
    "ColumnSource",
    "ColumnDefinition",
    "PartitionKey",
    "DateRange",
    "StorageTarget",
    "DATE_TYPES",
]

# Types whose declaration carries a length, where -1 means MAX
LENGTH_TYPES = frozenset({"CHAR", "VARCHAR", "NCHAR", "NVARCHAR", "BINARY", "VARBINARY"})
PRECISION_TYPES = frozenset({"DECIMAL", "NUMERIC"})
DATE_TYPES = frozenset({"DATE", "DATETIME", "DATETIME2", "SMALLDATETIME", "DATETIMEOFFSET"})


def _split_name_parts(name: str) -> List[str]:
    """Split a multi-part name on dots, honouring [..] and ".." delimiters."""
    parts: List[str] = []
    current: List[str] = []
    i = 0
    while i < len(name):
        ch = name[i]
        if ch in "[\"":
            closer = "]" if ch == "[" else '"'
            i += 1
            while True:
                if i >= len(name):
                    raise ConfigurationError(
                        f"Unterminated {ch} in object name",
                        field="object_name",
                        value=name,
                    )
                if name[i] == closer:
                    if i + 1 < len(name) and name[i + 1] == closer:
                        current.append(closer)
                        i += 2
                        continue
                    break
                current.append(name[i])
                i += 1
        elif ch == ".":
            parts.append("".join(current).strip())
            current = []
        else:
            current.append(ch)
        i += 1
    parts.append("".join(current).strip())
    return parts


@dataclass(frozen=True)
class ObjectIdentity:
    """A relation identified by schema and table name."""

    schema_name: str
    table_name: str

    def __post_init__(self) -> None:
        if not self.schema_name or not self.table_name:
            raise ConfigurationError(
                "Object identity needs both a schema and a table name",
                field="object_name",
                value=f"{self.schema_name!r}.{self.table_name!r}",
            )

    @classmethod
    def parse(cls, name: str, default_schema: Optional[str] = None) -> "ObjectIdentity":
        """Parse `schema.table`, `[schema].[table]` or a bare table name.

        A bare table name is only accepted when ``default_schema`` is given.

        Example:
            >>> ObjectIdentity.parse("[dbo].[FactInternetSales]")
            ObjectIdentity(schema_name='dbo', table_name='FactInternetSales')
        """
        parts = _split_name_parts(name.strip())
        if len(parts) == 1 and default_schema:
            parts = [default_schema, parts[0]]
        if len(parts) != 2 or not all(parts):
            raise ConfigurationError(
                "Expected a two-part name such as 'dbo.FactInternetSales'",
                field="object_name",
                value=name,
            )
        return cls(schema_name=parts[0], table_name=parts[1])

    @property
    def qualified(self) -> str:
        return f"{self.schema_name}.{self.table_name}"

    def with_table(self, table_name: str) -> "ObjectIdentity":
        """Same schema, different table."""
        return replace(self, table_name=table_name)

    def __str__(self) -> str:
        return self.qualified


class ColumnSource(Enum):
    """Where a column's values come from."""

    NATURAL = "natural"  # stored in the files
    PATH_CAPTURE = "path_capture"  # value of a wildcard folder, as text
    DATE_PART = "date_part"  # integer year/month/day of the partition column


@dataclass(frozen=True)
class ColumnDefinition:
    """One column of an inferred schema.

    ``max_length`` is None when the type has no length and -1 for MAX.
    Synthetic columns record the 1-based wildcard they are read from and,
    for date parts, the part name and the column it is derived from.
    """

    ordinal_position: int
    name: str
    logical_type: str
    max_length: Optional[int] = None
    is_nullable: bool = True
    precision: Optional[int] = None
    scale: Optional[int] = None
    source: ColumnSource = ColumnSource.NATURAL
    wildcard_index: Optional[int] = None
    date_part: Optional[str] = None
    derived_from: Optional[str] = None

    @property
    def is_synthetic(self) -> bool:
        return self.source is not ColumnSource.NATURAL

    @property
    def is_date_typed(self) -> bool:
        return self.logical_type.upper() in DATE_TYPES

    def type_declaration(self) -> str:
        """Render the SQL type, e.g. NVARCHAR(50), VARBINARY(MAX), DECIMAL(19, 4)."""
        type_name = self.logical_type.upper()
        if type_name in LENGTH_TYPES and self.max_length is not None:
            length = "MAX" if self.max_length < 0 else str(self.max_length)
            return f"{type_name}({length})"
        if type_name in PRECISION_TYPES and self.precision is not None:
            return f"{type_name}({self.precision}, {self.scale or 0})"
        return type_name

    def with_ordinal(self, ordinal_position: int) -> "ColumnDefinition":
        return replace(self, ordinal_position=ordinal_position)


@dataclass(frozen=True, order=True)
class PartitionKey:
    """A (year, month, day) partition, ordered lexicographically."""

    year: int
    month: int
    day: int

    def __post_init__(self) -> None:
        try:
            date(self.year, self.month, self.day)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"Invalid partition date: {e}",
                field="partition_key",
                value=(self.year, self.month, self.day),
            ) from e

    @classmethod
    def from_date(cls, value: date) -> "PartitionKey":
        return cls(value.year, value.month, value.day)

    def as_date(self) -> date:
        return date(self.year, self.month, self.day)

    @property
    def tag(self) -> str:
        """Compact form used in object names, e.g. 20131201."""
        return f"{self.year:04d}{self.month:02d}{self.day:02d}"

    def path_segment(self) -> str:
        """Folder path of this partition, e.g. Year=2013/Month=12/Day=1."""
        return f"Year={self.year}/Month={self.month}/Day={self.day}"

    def __str__(self) -> str:
        return self.as_date().isoformat()


@dataclass(frozen=True)
class DateRange:
    """Optional inclusive bounds on the partition date."""

    date_from: Optional[date] = None
    date_to: Optional[date] = None

    def __post_init__(self) -> None:
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ConfigurationError(
                "date_from must not be after date_to",
                field="date_range",
                value=f"{self.date_from} > {self.date_to}",
            )

    @property
    def is_bounded(self) -> bool:
        return self.date_from is not None or self.date_to is not None

    def contains(self, value: date) -> bool:
        if self.date_from and value < self.date_from:
            return False
        if self.date_to and value > self.date_to:
            return False
        return True

    def describe(self) -> str:
        if not self.is_bounded:
            return "all dates"
        if self.date_from and self.date_to:
            return f"{self.date_from} to {self.date_to}"
        if self.date_from:
            return f"from {self.date_from}"
        return f"up to {self.date_to}"


@dataclass(frozen=True)
class StorageTarget:
    """Blob storage addressing for external data sources.

    The namespace (usually the database name) scopes source-table
    virtualisation to its own folder under the container.
    """

    account: str
    container: str
    namespace: Optional[str] = None

    @property
    def credential_name(self) -> str:
        return f"{self.account}-{self.container}"

    @property
    def data_source_name(self) -> str:
        if self.namespace:
            return f"{self.credential_name}-{self.namespace}"
        return self.credential_name

    @property
    def location(self) -> str:
        root = f"abs://{self.container}@{self.account}.blob.core.windows.net"
        return f"{root}/{self.namespace}" if self.namespace else root

    def rooted(self) -> "StorageTarget":
        """The same container without the namespace folder."""
        return replace(self, namespace=None)
