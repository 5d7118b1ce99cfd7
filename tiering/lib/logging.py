"""Logging setup for tiering command line runs.

Console logs go to stderr, as plain text or one JSON object per line for
log shippers. Generated scripts are written to stdout through
``emit_long_text``, which splits them for sinks that cap message length.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

__all__ = [
    "setup_logging",
    "JSONFormatter",
    "iter_chunks",
    "emit_long_text",
    "DEFAULT_CHUNK_SIZE",
]

# The server-side PRINT limit for NVARCHAR text
DEFAULT_CHUNK_SIZE = 4000

CONSOLE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
CONSOLE_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Attributes every LogRecord carries; anything else came in through extra=
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    ``extra=`` attributes (for example ``partition``) are nested under
    ``"extra"`` unless listed in ``exclude_fields``::

        {"timestamp": "2013-12-06T02:00:00.000Z", "level": "INFO",
         "logger": "tiering.lib.sync", "message": "Synchronised 2013-12-01 (1/5)",
         "extra": {"partition": "2013-12-01"}}
    """

    def __init__(self, exclude_fields: Optional[List[str]] = None):
        super().__init__()
        self.exclude_fields = set(exclude_fields or ())

    def _extras(self, record: logging.LogRecord) -> Dict[str, Any]:
        return {
            name: value
            for name, value in vars(record).items()
            if name not in _STANDARD_ATTRS and name not in self.exclude_fields
        }

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: Dict[str, Any] = {
            "timestamp": stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        extras = self._extras(record)
        if extras:
            payload["extra"] = extras
        return json.dumps(payload, default=str)


def _resolve_level(verbose: bool, level: Optional[str]) -> int:
    if verbose:
        return logging.DEBUG
    return getattr(logging, (level or "INFO").upper(), logging.INFO)


def setup_logging(
    verbose: bool = False,
    json_format: bool = False,
    log_file: Optional[str] = None,
    level: Optional[str] = None,
) -> None:
    """Replace the root logger's handlers for a command line run.

    Args:
        verbose: Log at DEBUG, overriding ``level``
        json_format: Emit JSON lines instead of plain text
        log_file: Also append records to this file
        level: Level name such as ``"WARNING"``; defaults to INFO
    """
    log_level = _resolve_level(verbose, level)
    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(CONSOLE_FORMAT, datefmt=CONSOLE_DATEFMT)

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.setLevel(log_level)
    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        root.addHandler(handler)


def iter_chunks(text: str, max_chunk: int = DEFAULT_CHUNK_SIZE) -> Iterator[str]:
    """Split text into chunks of at most ``max_chunk`` characters.

    Chunks end at line breaks where possible; a single line longer than the
    limit is cut into limit-sized pieces. No characters are dropped.
    """
    if max_chunk < 1:
        raise ValueError("max_chunk must be positive")

    pending: Optional[str] = None
    for line in text.split("\n"):
        while len(line) > max_chunk:
            if pending is not None:
                yield pending
                pending = None
            yield line[:max_chunk]
            line = line[max_chunk:]
        if pending is None:
            pending = line
        elif len(pending) + 1 + len(line) <= max_chunk:
            pending = f"{pending}\n{line}"
        else:
            yield pending
            pending = line
    if pending is not None:
        yield pending


def emit_long_text(
    text: str,
    write: Optional[Callable[[str], Any]] = None,
    max_chunk: int = DEFAULT_CHUNK_SIZE,
) -> None:
    """Write text through a sink that truncates long messages, without loss."""
    sink = write or print
    for chunk in iter_chunks(text.rstrip("\n"), max_chunk):
        sink(chunk)
