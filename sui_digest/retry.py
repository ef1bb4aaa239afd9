"""Bounded exponential backoff for upstream calls."""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempt budget and delay schedule for one call site."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS
    jitter_seconds: float = 0.0

    def delay_for_attempt(self, attempt_number: int) -> float:
        """Return the wait after a failed attempt (attempts are counted from 1)."""
        delay = self.base_delay_seconds * (2**attempt_number)
        if self.jitter_seconds > 0:
            delay += random.uniform(0, self.jitter_seconds)
        return delay


async def _sleep_for_retry(seconds: float) -> None:
    """Sleep helper for retry delays (wrapped for deterministic tests)."""
    await asyncio.sleep(seconds)


async def with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy | None = None,
) -> T:
    """Run ``operation`` until it succeeds or the policy's attempts are used up.

    Every exception is retried the same way; the last one is re-raised.
    """
    active_policy = policy or RetryPolicy()
    if active_policy.max_attempts < 1:
        raise ValueError("RetryPolicy.max_attempts must be at least 1.")

    for attempt_number in range(1, active_policy.max_attempts + 1):
        try:
            return await operation()
        except Exception as error:
            if attempt_number >= active_policy.max_attempts:
                raise
            delay_seconds = active_policy.delay_for_attempt(attempt_number)
            logger.warning(
                "Retrying after %.1fs due to error: %s (attempt %d/%d)",
                delay_seconds,
                error,
                attempt_number,
                active_policy.max_attempts,
            )
            await _sleep_for_retry(delay_seconds)

    raise RuntimeError("Unexpected retry loop exit without a result.")
