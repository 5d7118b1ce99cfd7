"""Sequential execution of a sync plan.

Partitions are materialised one at a time in plan order. The first failure
stops the run: later partitions are not attempted, and nothing is retried.
Partitions completed before the failure stay materialised, so a re-run
resumes from the failed partition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from tiering.lib.errors import ExecutionError, SyncAbortedError
from tiering.lib.models import PartitionKey
from tiering.lib.reconcile import SyncPlan

logger = logging.getLogger(__name__)

__all__ = ["SyncStatus", "SyncProgress", "SyncResult", "run_sync_plan"]


class SyncStatus(Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass(frozen=True)
class SyncProgress:
    """Progress event emitted before ("started") and after ("finished") each key."""

    key: PartitionKey
    index: int
    total: int
    phase: str


@dataclass
class SyncResult:
    """Outcome of running a sync plan.

    In debug mode ``scripts`` holds the script generated for each key and
    nothing was executed.
    """

    status: SyncStatus
    plan: SyncPlan
    completed: List[PartitionKey] = field(default_factory=list)
    failed_key: Optional[PartitionKey] = None
    error: Optional[BaseException] = None
    scripts: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status is SyncStatus.COMPLETED

    def raise_for_status(self) -> None:
        """Raise SyncAbortedError if the run stopped at a failed partition."""
        if self.succeeded:
            return
        assert self.failed_key is not None
        cause = self.error
        kwargs: dict = {}
        if isinstance(cause, ExecutionError):
            kwargs = {
                "category": cause.category,
                "native_error": cause.native_error,
                "sqlstate": cause.sqlstate,
                "statement": cause.statement,
            }
        raise SyncAbortedError(
            f"Synchronisation stopped at partition {self.failed_key}: "
            f"{getattr(cause, 'message', cause)}",
            partition_key=self.failed_key,
            completed=len(self.completed),
            cause=cause,
            suggestion="Fix the cause and re-run; completed partitions are skipped",
            **kwargs,
        ) from cause

    def summary(self) -> str:
        if self.succeeded:
            return f"{len(self.completed)}/{len(self.plan)} partition(s) synchronised"
        return (
            f"aborted at {self.failed_key} after {len(self.completed)}/{len(self.plan)} "
            f"partition(s)"
        )


def run_sync_plan(
    plan: SyncPlan,
    materialize: Callable[[PartitionKey], Any],
    on_progress: Optional[Callable[[SyncProgress], None]] = None,
) -> SyncResult:
    """Materialise each planned key in order, stopping at the first failure.

    Args:
        plan: Keys to materialise
        materialize: Called once per key; raising marks the key as failed
        on_progress: Optional callback for progress events

    Returns:
        SyncResult with COMPLETED or ABORTED status
    """
    total = len(plan)
    result = SyncResult(status=SyncStatus.COMPLETED, plan=plan)

    if plan.is_empty:
        logger.info("Nothing to synchronise")
        return result

    for index, key in enumerate(plan, start=1):
        logger.info(
            "Synchronising year: %d, month: %d, day: %d (%d/%d)",
            key.year,
            key.month,
            key.day,
            index,
            total,
        )
        if on_progress:
            on_progress(SyncProgress(key, index, total, "started"))

        try:
            materialize(key)
        except Exception as e:
            logger.error(
                "Failed to synchronise %s (%d/%d): %s",
                key,
                index,
                total,
                getattr(e, "message", e),
            )
            result.status = SyncStatus.ABORTED
            result.failed_key = key
            result.error = e
            return result

        result.completed.append(key)
        logger.info("Synchronised %s (%d/%d)", key, index, total)
        if on_progress:
            on_progress(SyncProgress(key, index, total, "finished"))

    logger.info("Synchronisation complete: %d partition(s)", total)
    return result
