"""One retry loop for every remote call site.

``retry_with_classification`` re-runs an async operation while a predicate
classifies the raised error as transient, sleeping ``min(2**attempt * base,
cap)`` between attempts.  Anything the predicate rejects propagates on the
first failure.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from asset_catalog.core.errors import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 5
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number *attempt* (1-based)."""
        return min((2 ** attempt) * self.base_delay_s, self.max_delay_s)


def is_retryable_error(exc: BaseException) -> bool:
    """Default classifier: errors flagged ``retryable`` by the asset source."""
    return bool(getattr(exc, "retryable", False))


async def retry_with_classification(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    description: str,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    on_retry: Optional[Callable[[int, BaseException], Awaitable[None]]] = None,
) -> T:
    """Await ``operation()`` until it succeeds, fails permanently or runs out of attempts.

    Raises:
        RetryExhaustedError: every attempt failed with a retryable error.
        Exception: the first non-retryable error, unchanged.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc):
                raise
            if attempt >= policy.max_attempts:
                logger.error(
                    "%s failed after %d attempts: %s", description, attempt, exc
                )
                raise RetryExhaustedError(description, attempt, exc) from exc

            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                description,
                attempt,
                policy.max_attempts,
                delay,
                exc,
            )
            if on_retry is not None:
                await on_retry(attempt, exc)
            await asyncio.sleep(delay)
