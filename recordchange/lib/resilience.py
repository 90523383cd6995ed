"""Retry helpers for watermark store I/O.

Passes themselves are never retried here: a failed pass leaves the
watermark untouched and the scheduler triggers the next one. Only the
individual store reads and writes can opt into a short retry when the
backing service is flaky.

Implementation: Uses tenacity library internally for retry logic.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Tuple, Type, TypeVar

import tenacity
from tenacity.wait import wait_base

logger = logging.getLogger(__name__)

__all__ = ["RetryConfig", "retry_operation"]

T = TypeVar("T")


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        exponential: bool = True,
        jitter: bool = True,
    ):
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.exponential = exponential
        self.jitter = jitter

    @classmethod
    def none(cls) -> "RetryConfig":
        """No retry - fail immediately."""
        return cls(max_attempts=1)

    @classmethod
    def default(cls) -> "RetryConfig":
        """Default retry: 3 attempts with exponential backoff."""
        return cls()

    def __repr__(self) -> str:
        return (
            f"RetryConfig(max_attempts={self.max_attempts}, "
            f"backoff_seconds={self.backoff_seconds})"
        )


def _wait_strategy(config: RetryConfig) -> wait_base:
    strategy: wait_base
    if config.exponential:
        strategy = tenacity.wait_exponential(
            multiplier=config.backoff_seconds, min=config.backoff_seconds
        )
    else:
        strategy = tenacity.wait_fixed(config.backoff_seconds)

    if config.jitter:
        strategy = strategy + tenacity.wait_random(0, config.backoff_seconds * 0.5)
    return strategy


def retry_operation(
    operation: Callable[[], T],
    config: RetryConfig,
    operation_name: str = "operation",
    retry_exceptions: Optional[Tuple[Type[BaseException], ...]] = None,
) -> T:
    """Execute an operation with retry logic.

    Args:
        operation: Callable to execute
        config: Retry configuration
        operation_name: Name for logging
        retry_exceptions: Only retry on these exceptions (default: all)

    Returns:
        Result of the operation

    Example:
        value = retry_operation(
            lambda: client.get(key),
            RetryConfig.default(),
            "redis get",
        )
    """
    if config.max_attempts <= 1:
        return operation()

    def before_sleep_handler(retry_state: tenacity.RetryCallState) -> None:
        """Log retry attempts."""
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "%s attempt %d/%d failed: %s. Retrying in %.1fs...",
            operation_name,
            retry_state.attempt_number,
            config.max_attempts,
            exception,
            retry_state.next_action.sleep if retry_state.next_action else 0,
        )

    retryer = tenacity.Retrying(
        stop=tenacity.stop_after_attempt(config.max_attempts),
        wait=_wait_strategy(config),
        retry=tenacity.retry_if_exception_type(retry_exceptions or (Exception,)),
        before_sleep=before_sleep_handler,
        reraise=True,
    )

    try:
        result: Any = retryer(operation)
    except Exception:
        logger.error(
            "%s failed after %d attempts",
            operation_name,
            config.max_attempts,
        )
        raise
    return result
