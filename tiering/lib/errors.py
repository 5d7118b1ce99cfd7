"""Structured exception hierarchy for tiering.

Provides specific exception types for the failure modes of external table
generation and partition synchronisation, with context for troubleshooting.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from tiering.lib.models import PartitionKey

__all__ = [
    "TieringError",
    "ConfigurationError",
    "MalformedPathError",
    "SchemaNotFoundError",
    "ErrorCategory",
    "ExecutionError",
    "SyncAbortedError",
]


class TieringError(Exception):
    """Base exception for all tiering errors.

    Provides structured error information for debugging.
    """

    def __init__(
        self,
        message: str,
        *,
        object_name: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        self.object_name = object_name
        self.details = details or {}
        self.suggestion = suggestion

        parts = [message]

        if object_name:
            parts.insert(0, f"[{object_name}]")

        if self.details:
            parts.append("\nDetails:")
            parts.extend(f"  {k}: {v}" for k, v in self.details.items())
        if suggestion:
            parts.append(f"\nSuggestion: {suggestion}")

        super().__init__("\n".join(parts) if len(parts) > 1 else message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for structured logging."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "object_name": self.object_name,
            "details": self.details,
            "suggestion": self.suggestion,
        }


class ConfigurationError(TieringError):
    """Invalid settings, object names, date ranges or partition columns."""

    def __init__(
        self,
        message: str,
        *,
        field: Optional[str] = None,
        value: Any = None,
        **kwargs: Any,
    ) -> None:
        self.field = field
        self.value = value

        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = value

        super().__init__(message, details=details, **kwargs)


class MalformedPathError(TieringError):
    """A storage path template contains a segment that is not `<field>=*`."""

    def __init__(
        self,
        message: str,
        *,
        path: str,
        segment: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        self.path = path
        self.segment = segment

        details = kwargs.pop("details", {})
        details["path"] = path
        if segment is not None:
            details["segment"] = segment

        kwargs.setdefault(
            "suggestion",
            "Partition folders must look like 'field=*', e.g. 'sales/year=*/month=*/'",
        )
        super().__init__(message, details=details, **kwargs)


class SchemaNotFoundError(TieringError):
    """Schema inference found no columns.

    Raised for an empty sample location or a source object that does not
    exist.
    """

    def __init__(self, message: str, *, object_name: str, **kwargs: Any) -> None:
        kwargs.setdefault(
            "suggestion",
            "Check that the object exists and is visible to the connecting login",
        )
        super().__init__(message, object_name=object_name, **kwargs)


class ErrorCategory(Enum):
    """How the reconciler treats a failed statement."""

    NO_CONTENT = "no_content"  # external location is empty or cannot be listed
    TRANSIENT = "transient"  # connectivity or timeout, safe to retry reads
    OTHER = "other"


class ExecutionError(TieringError):
    """A statement failed in the target engine.

    Carries the classified category, the engine's native error number and
    SQLSTATE where the driver reported them, and the statement text.
    """

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory = ErrorCategory.OTHER,
        native_error: Optional[int] = None,
        sqlstate: Optional[str] = None,
        statement: Optional[str] = None,
        cause: Optional[BaseException] = None,
        **kwargs: Any,
    ) -> None:
        self.category = category
        self.native_error = native_error
        self.sqlstate = sqlstate
        self.statement = statement
        self.cause = cause

        details = kwargs.pop("details", {})
        details["category"] = category.value
        if native_error is not None:
            details["native_error"] = native_error
        if sqlstate:
            details["sqlstate"] = sqlstate
        if cause is not None:
            details["cause_type"] = type(cause).__name__

        super().__init__(message, details=details, **kwargs)

    @property
    def is_no_content(self) -> bool:
        return self.category is ErrorCategory.NO_CONTENT

    @property
    def is_transient(self) -> bool:
        return self.category is ErrorCategory.TRANSIENT


class SyncAbortedError(ExecutionError):
    """Synchronisation stopped at a partition whose materialisation failed."""

    def __init__(
        self,
        message: str,
        *,
        partition_key: "PartitionKey",
        completed: int = 0,
        **kwargs: Any,
    ) -> None:
        self.partition_key = partition_key
        self.completed = completed

        details = kwargs.pop("details", {})
        details["partition"] = str(partition_key)
        details["completed_partitions"] = completed

        super().__init__(message, details=details, **kwargs)
