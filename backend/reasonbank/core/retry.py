"""Resilient query execution for store operations.

Every repository call made by the pattern store and the spike network is
routed through a ResilientQueryExecutor:

- transient faults (connection resets, Postgres recovery, index rebuilds)
  are retried with exponential backoff, up to max_attempts
- permanent faults (constraint violations, validation failures) are
  re-raised immediately
- exhausting the budget raises StoreUnavailable
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, InterfaceError, OperationalError

from reasonbank.core.config import settings
from reasonbank.core.errors import LearningError, StoreTransientError, StoreUnavailable
from reasonbank.core.metrics import store_failures_total, store_retries_total

T = TypeVar("T")

logger = logging.getLogger(__name__)

_TRANSIENT_MESSAGES = (
    "connection refused",
    "connection reset",
    "connection terminated",
    "terminating connection",
    "recovery mode",
    "the database system is starting up",
    "server closed the connection",
    "index rebuild in progress",
)


def is_transient(exc: BaseException) -> bool:
    """Classify a store fault as retryable."""
    if isinstance(exc, StoreTransientError):
        return True
    if isinstance(exc, (LearningError, IntegrityError)):
        return False
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True

    msg = str(exc).lower()
    if any(m in msg for m in _TRANSIENT_MESSAGES):
        return True
    # asyncpg surfaces socket-level failures as plain OSError
    return isinstance(exc, OSError)


class RetryPolicy:
    """Retry policy configuration."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay_seconds: float = 1.0,
        backoff_factor: float = 3.0,
        max_delay_seconds: float = 10.0,
    ):
        """
        Args:
            max_attempts: Total attempts including the first call
            base_delay_seconds: Delay before the first retry
            backoff_factor: Multiplier applied per attempt (1s -> 3s -> 9s)
            max_delay_seconds: Upper bound for a single delay
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.backoff_factor = backoff_factor
        self.max_delay_seconds = max_delay_seconds

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        return cls(
            max_attempts=settings.STORE_RETRY_MAX_ATTEMPTS,
            base_delay_seconds=settings.STORE_RETRY_BASE_DELAY_SECONDS,
            backoff_factor=settings.STORE_RETRY_BACKOFF_FACTOR,
            max_delay_seconds=settings.STORE_RETRY_MAX_DELAY_SECONDS,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        delay = self.base_delay_seconds * (self.backoff_factor ** (attempt - 1))
        return min(delay, self.max_delay_seconds)


class ResilientQueryExecutor:
    """Bounded-retry wrapper for async store operations."""

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.policy = policy or RetryPolicy.from_settings()
        self._sleep = sleep

    async def run(self, operation: Callable[[], Awaitable[T]], *, name: str = "store") -> T:
        """
        Execute an operation with retry on transient faults.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt
            name: Operation label for logs and metrics

        Returns:
            The operation result

        Raises:
            StoreUnavailable: If every attempt failed with a transient fault
            Exception: The original exception for permanent faults
        """
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                return await operation()
            except Exception as exc:
                if not is_transient(exc):
                    store_failures_total.labels(operation=name, kind="permanent").inc()
                    raise

                last_error = exc
                if attempt >= self.policy.max_attempts:
                    break

                delay = self.policy.delay_for(attempt)
                store_retries_total.labels(operation=name).inc()
                logger.warning(
                    f"Store operation '{name}' attempt {attempt}/{self.policy.max_attempts} "
                    f"failed: {exc}. Retrying in {delay:.2f}s"
                )
                await self._sleep(delay)

        store_failures_total.labels(operation=name, kind="unavailable").inc()
        logger.error(
            f"Store operation '{name}' failed after {self.policy.max_attempts} attempt(s): {last_error}"
        )
        raise StoreUnavailable(
            f"Store operation '{name}' unavailable after {self.policy.max_attempts} attempt(s)",
            attempts=self.policy.max_attempts,
            last_error=last_error,
        ) from last_error


async def query_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: Optional[int] = None,
    backoff: Optional[RetryPolicy] = None,
    *,
    name: str = "store",
) -> T:
    """Run a single store operation under a (possibly overridden) retry policy."""
    policy = backoff or RetryPolicy.from_settings()
    if max_attempts is not None:
        policy = RetryPolicy(
            max_attempts=max_attempts,
            base_delay_seconds=policy.base_delay_seconds,
            backoff_factor=policy.backoff_factor,
            max_delay_seconds=policy.max_delay_seconds,
        )
    return await ResilientQueryExecutor(policy).run(operation, name=name)
