"""Retry/backoff helpers for storage contention and flaky token refreshes."""

from __future__ import annotations

import asyncio
import inspect
import logging
import sqlite3
import time
from typing import Awaitable, Callable, TypeVar, Union

T = TypeVar("T")

logger = logging.getLogger(__name__)

_CONTENTION_ERROR_NAMES = frozenset({"SQLITE_BUSY", "SQLITE_LOCKED", "SQLITE_FULL"})
_CONTENTION_PATTERNS = (
    "database is locked",
    "database table is locked",
    "database or disk is full",
    "busy",
    "locked",
)


class RetryConfig:
    """Exponential backoff schedule.

    ``max_retries`` counts retries after the first attempt, so an operation
    runs at most ``max_retries + 1`` times.
    """

    def __init__(
        self,
        *,
        max_retries: int = 5,
        initial_delay: float = 1.0,
        backoff_multiplier: float = 2.0,
        max_delay: float = 10.0,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be zero or positive")
        self.max_retries = max_retries
        self.initial_delay = initial_delay
        self.backoff_multiplier = backoff_multiplier
        self.max_delay = max_delay

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the failed ``attempt`` (zero based)."""
        return min(self.initial_delay * self.backoff_multiplier**attempt, self.max_delay)

    def __repr__(self) -> str:
        return (
            f"RetryConfig(max_retries={self.max_retries}, initial_delay={self.initial_delay}, "
            f"backoff_multiplier={self.backoff_multiplier}, max_delay={self.max_delay})"
        )


DEFAULT_STORE_RETRY = RetryConfig()
# 3 attempts, 100ms then 200ms.
NETWORK_RETRY = RetryConfig(max_retries=2, initial_delay=0.1, backoff_multiplier=2.0, max_delay=1.0)


def is_contention_error(exc: BaseException) -> bool:
    """Return True when SQLite reports that another connection holds the database."""
    if not isinstance(exc, sqlite3.DatabaseError):
        return False
    if getattr(exc, "sqlite_errorname", None) in _CONTENTION_ERROR_NAMES:
        return True
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    message = str(exc).lower()
    return any(pattern in message for pattern in _CONTENTION_PATTERNS)


def _log_retry(exc: BaseException, attempt: int, config: RetryConfig, delay: float, label: str) -> None:
    logger.info(
        "%s failed (%s); retrying in %.2fs (attempt %d/%d)",
        label,
        exc,
        delay,
        attempt + 1,
        config.max_retries,
        extra={"retry_attempt": attempt + 1, "retry_delay": delay, "retry_label": label},
    )


def _log_exhausted(exc: BaseException, config: RetryConfig, label: str) -> None:
    logger.warning(
        "%s failed after %d retries; giving up: %s",
        label,
        config.max_retries,
        exc,
        extra={"retry_attempt": config.max_retries, "retry_label": label},
    )


def run_with_retry(
    operation: Callable[[], T],
    *,
    config: RetryConfig | None = None,
    should_retry: Callable[[BaseException], bool] = is_contention_error,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "Database operation",
) -> T:
    """Run ``operation`` and retry it while ``should_retry`` accepts the failure.

    Blocks the calling thread between attempts with ``time.sleep``. Failures
    rejected by ``should_retry`` propagate immediately; after the last retry
    the final error propagates unchanged.
    """
    config = config or DEFAULT_STORE_RETRY
    attempt = 0
    while True:
        try:
            return operation()
        except Exception as exc:
            if not should_retry(exc):
                raise
            if attempt >= config.max_retries:
                _log_exhausted(exc, config, label)
                raise
            delay = config.delay_for(attempt)
            _log_retry(exc, attempt, config, delay, label)
            sleep(delay)
            attempt += 1


async def run_with_retry_async(
    operation: Callable[[], Union[T, Awaitable[T]]],
    *,
    config: RetryConfig | None = None,
    should_retry: Callable[[BaseException], bool] = is_contention_error,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    label: str = "Database operation",
) -> T:
    """Async counterpart of :func:`run_with_retry`.

    ``operation`` may be a plain callable or return an awaitable; waiting
    between attempts suspends only the current task.
    """
    config = config or DEFAULT_STORE_RETRY
    attempt = 0
    while True:
        try:
            result = operation()
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception as exc:
            if not should_retry(exc):
                raise
            if attempt >= config.max_retries:
                _log_exhausted(exc, config, label)
                raise
            delay = config.delay_for(attempt)
            _log_retry(exc, attempt, config, delay, label)
            await sleep(delay)
            attempt += 1


__all__ = [
    "DEFAULT_STORE_RETRY",
    "NETWORK_RETRY",
    "RetryConfig",
    "is_contention_error",
    "run_with_retry",
    "run_with_retry_async",
]
