"""Retry policy for read-only warehouse queries.

Only idempotent reads (the reconciliation probe) go through here. A failed
CETAS may already have written files, so partition materialisation is never
retried automatically; re-running it is the operator's call.

Backed by tenacity.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

import tenacity
from tenacity.wait import wait_base

from tiering.lib.errors import ExecutionError

logger = logging.getLogger(__name__)

__all__ = ["RetryConfig", "retry_operation", "is_transient"]

T = TypeVar("T")

RetryPredicate = Callable[[BaseException], bool]


@dataclass(frozen=True)
class RetryConfig:
    """How often and how patiently to retry a read.

    The delay before attempt ``n + 1`` is ``backoff_seconds * 2 ** (n - 1)``
    when ``exponential`` is set, plus up to half of ``backoff_seconds`` of
    random jitter.
    """

    max_attempts: int = 3
    backoff_seconds: float = 1.0
    exponential: bool = True
    jitter: bool = True

    @classmethod
    def none(cls) -> "RetryConfig":
        """Single attempt."""
        return cls(max_attempts=1)

    @classmethod
    def default(cls) -> "RetryConfig":
        return cls()

    def wait_strategy(self) -> wait_base:
        strategy: wait_base
        if self.exponential:
            strategy = tenacity.wait_exponential(multiplier=self.backoff_seconds, min=self.backoff_seconds)
        else:
            strategy = tenacity.wait_fixed(self.backoff_seconds)
        if self.jitter and self.backoff_seconds > 0:
            strategy = strategy + tenacity.wait_random(0, self.backoff_seconds * 0.5)
        return strategy


def is_transient(exc: BaseException) -> bool:
    """True for execution errors classified as transient."""
    return isinstance(exc, ExecutionError) and exc.is_transient


def _describe(exc: Optional[BaseException]) -> str:
    if isinstance(exc, ExecutionError) and exc.sqlstate:
        return f"{exc.message} [SQLSTATE {exc.sqlstate}]"
    return str(getattr(exc, "message", exc))


def retry_operation(
    operation: Callable[[], T],
    config: RetryConfig,
    operation_name: str = "operation",
    retry_if: Optional[RetryPredicate] = None,
) -> T:
    """Call ``operation`` until it succeeds or a non-retryable error occurs.

    Args:
        operation: Zero-argument callable performing the read
        config: Attempts and backoff
        operation_name: Label for log messages
        retry_if: Predicate selecting retryable exceptions (default: transient
            execution errors)

    Returns:
        Result of the first successful call

    Raises:
        The last exception once attempts are exhausted, or the first one the
        predicate rejects.

    Example:
        rows = retry_operation(
            lambda: executor.fetch_all(probe),
            settings.retry_config(),
            "Probe of dbo.FactInternetSalesExternalPartitionedByOrderDate",
        )
    """

    def log_retry(state: tenacity.RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        logger.warning(
            "%s failed (attempt %d of %d): %s; retrying in %.1fs",
            operation_name,
            state.attempt_number,
            config.max_attempts,
            _describe(error),
            state.next_action.sleep if state.next_action else 0,
        )

    retryer = tenacity.Retrying(
        stop=tenacity.stop_after_attempt(config.max_attempts),
        wait=config.wait_strategy(),
        retry=tenacity.retry_if_exception(retry_if or is_transient),
        before_sleep=log_retry,
        reraise=True,
    )
    return retryer(operation)
