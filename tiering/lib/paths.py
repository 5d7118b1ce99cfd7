"""Partition scheme parsing for storage path templates.

A path template is a storage-relative path whose partition folders are
written as ``<field>=*``::

    sales/region=*/year=*/month=*/        -> fields region, year, month
    sales/year=*/part-0001.parquet        -> fields year; file filter replaced
    sales/                                -> unpartitioned

Each partition field remembers the 1-based position of its ``*`` among all
wildcards of the directory part, which is the argument ``filepath()`` takes
when the engine exposes the matched folder value as a column.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from tiering.lib.errors import MalformedPathError

__all__ = [
    "PartitionField",
    "PartitionScheme",
    "parse_path_template",
]

PARTITION_SEGMENT = re.compile(r"^(?P<name>[^=*\[\]\"'/]+)=\*$")


@dataclass(frozen=True)
class PartitionField:
    """A ``<name>=*`` folder and the wildcard position it occupies."""

    name: str
    wildcard_index: int


@dataclass(frozen=True)
class PartitionScheme:
    """Result of parsing a path template.

    Attributes:
        fields: Partition fields in path order
        base_prefix: Literal path before the first partition folder
        file_glob_suffix: File filter applied inside the leaf folders
        location: Full wildcard location passed to the engine
    """

    fields: Tuple[PartitionField, ...]
    base_prefix: str
    file_glob_suffix: str
    location: str

    @property
    def field_names(self) -> Tuple[str, ...]:
        return tuple(f.name for f in self.fields)

    @property
    def is_partitioned(self) -> bool:
        return bool(self.fields)

    def wildcard_index(self, name: str) -> Optional[int]:
        for f in self.fields:
            if f.name.lower() == name.lower():
                return f.wildcard_index
        return None


def _split_directory(path: str) -> Tuple[str, str]:
    """Split into (directory with trailing slash, trailing segment)."""
    head, sep, trailing = path.rpartition("/")
    directory = head + sep
    # A trailing `field=*` is a folder the caller forgot to close; a
    # `part=0.parquet` style name is still a file
    if "=" in trailing and "*" in trailing:
        return path + "/", ""
    return directory, trailing


def parse_path_template(path: str, file_extension: str = "parquet") -> PartitionScheme:
    """Parse a storage path template into a PartitionScheme.

    Args:
        path: Storage-relative path, optionally with `<field>=*` folders
        file_extension: Extension of the files to read inside leaf folders

    Returns:
        PartitionScheme with fields in path order

    Raises:
        MalformedPathError: For an empty path, a segment mixing `=` and `*`
            that is not exactly `<field>=*`, or a repeated field name
    """
    if not path or not path.strip():
        raise MalformedPathError("Storage path is empty", path=path)

    glob = f"*.{file_extension.lstrip('.')}"
    directory, _ = _split_directory(path.strip())

    fields: List[PartitionField] = []
    seen: set[str] = set()
    wildcard_count = 0
    base_prefix: Optional[str] = None
    consumed = ""

    for segment in directory.split("/")[:-1]:
        if "=" in segment:
            match = PARTITION_SEGMENT.match(segment)
            if match is None:
                if "*" in segment:
                    raise MalformedPathError(
                        f"Malformed partition folder '{segment}'",
                        path=path,
                        segment=segment,
                    )
                # literal key=value folder, e.g. a fixed region
                consumed += segment + "/"
                continue

            name = match.group("name").strip()
            if name.lower() in seen:
                raise MalformedPathError(
                    f"Partition field '{name}' appears more than once",
                    path=path,
                    segment=segment,
                )
            seen.add(name.lower())
            wildcard_count += 1
            fields.append(PartitionField(name=name, wildcard_index=wildcard_count))
            if base_prefix is None:
                base_prefix = consumed
        else:
            wildcard_count += segment.count("*")
        consumed += segment + "/"

    return PartitionScheme(
        fields=tuple(fields),
        base_prefix=directory if base_prefix is None else base_prefix,
        file_glob_suffix=glob,
        location=directory + glob,
    )
