"""
Exponential backoff shared by the storage layer, the configuration manager and the catalog client.
"""

import asyncio
import dataclasses
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, FrozenSet, Optional, TypeVar

from .errors import ErrorCode
from ..util.logging import logger

T = TypeVar("T")

# Transient backend conditions an adapter retries locally
ADAPTER_RETRYABLE_CODES = frozenset({
    ErrorCode.DATABASE_LOCKED,
    ErrorCode.DATABASE_CONNECTION,
})

BLOB_RETRYABLE_CODES = frozenset({
    ErrorCode.DATABASE_CONNECTION,
    ErrorCode.SAVE_FAILED,
})

MANAGER_RETRYABLE_CODES = frozenset({
    ErrorCode.DATABASE_LOCKED,
    ErrorCode.DATABASE_CONNECTION,
    ErrorCode.SAVE_FAILED,
})

CATALOG_RETRYABLE_CODES = frozenset({408, 429, 500, 502, 503, 504})


def _error_code(error: BaseException) -> Any:
    return getattr(error, "code", None)


def _error_status(error: BaseException) -> Optional[int]:
    status = getattr(error, "status_code", None)
    return status if isinstance(status, int) else None


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 0.1
    max_delay: float = 5.0
    backoff_multiplier: float = 2.0
    retryable_codes: FrozenSet[Any] = field(default_factory=frozenset)
    retry_server_errors: bool = True

    def delay_for(self, attempt: int) -> float:
        """Backoff before the attempt following `attempt` (1-based)."""
        return min(self.base_delay * (self.backoff_multiplier ** (attempt - 1)), self.max_delay)

    def is_retryable(self, error: BaseException) -> bool:
        code = _error_code(error)
        status = _error_status(error)
        if code is not None and code in self.retryable_codes:
            return True
        if status is not None and status in self.retryable_codes:
            return True
        # Client errors are retried only when listed above
        return self.retry_server_errors and status is not None and 500 <= status < 600

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        return attempt < self.max_attempts and self.is_retryable(error)

    async def execute(self, operation: Callable[[], Awaitable[T]], label: str = "operation",
                      sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> T:
        """
        Await `operation()` until it succeeds or the policy gives up.

        The last error is re-raised unchanged once attempts are exhausted or the
        error is not retryable.
        """
        attempt = 1
        while True:
            try:
                return await operation()
            except Exception as e:
                if not self.should_retry(e, attempt):
                    raise
                delay = self.delay_for(attempt)
                logger.log_retry_attempt(label, attempt, self.max_attempts, delay, e)
                await sleep(delay)
                attempt += 1

    def with_delays(self, base_delay: float = 0.0, max_delay: float = 0.0) -> 'RetryPolicy':
        """Same policy with different delays; tests use zero."""
        return dataclasses.replace(self, base_delay=base_delay, max_delay=max_delay)


# Adapter presets apply when an adapter is called directly (scripts, backup
# routes). Calls made through the config manager run single-attempt at the
# adapter, so only the manager presets retry them.
RELATIONAL_POLICY = RetryPolicy(3, 0.1, 5.0, 2.0, ADAPTER_RETRYABLE_CODES, retry_server_errors=False)
FILE_POLICY = RetryPolicy(3, 0.1, 5.0, 2.0, ADAPTER_RETRYABLE_CODES, retry_server_errors=False)
BLOB_POLICY = RetryPolicy(3, 0.5, 5.0, 2.0, BLOB_RETRYABLE_CODES, retry_server_errors=False)
MANAGER_READ_POLICY = RetryPolicy(2, 0.25, 1.0, 2.0, MANAGER_RETRYABLE_CODES)
MANAGER_WRITE_POLICY = RetryPolicy(3, 0.5, 5.0, 2.0, MANAGER_RETRYABLE_CODES)
CATALOG_POLICY = RetryPolicy(3, 1.0, 10.0, 2.0, CATALOG_RETRYABLE_CODES)

_PLATFORM_POLICIES = {
    "relationalEmbedded": RELATIONAL_POLICY,
    "fileBased": FILE_POLICY,
    "blobStore": BLOB_POLICY,
}


def policy_for_platform(platform: str) -> RetryPolicy:
    return _PLATFORM_POLICIES.get(platform, FILE_POLICY)


@contextmanager
def best_effort(operation: str, platform: Optional[str] = None):
    """Attempt the block; on failure log a warning and continue."""
    try:
        yield
    except Exception as e:
        details = {"error": str(e)[:200]}
        if platform:
            details["platform"] = platform
        logger.log_operation(f"best_effort.{operation}", "failed", details, logging.WARNING)
