"""Bounded retry with exponential backoff.

Only errors flagged ``retryable`` (rate limiting, 5xx, connection failures) are
retried. Whether an operation may be retried at all is decided by the caller.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

import tenacity
from tenacity import RetryCallState, retry_if_exception, stop_after_attempt, wait_exponential

from .errors import RateLimitError, is_retryable_error

logger = logging.getLogger(__name__)

R = TypeVar("R")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 10.0


class _WaitRetryAfter(tenacity.wait.wait_base):
    """Prefers the server's ``Retry-After`` over the fallback backoff."""

    def __init__(self, fallback: tenacity.wait.wait_base, cap: float) -> None:
        self.fallback = fallback
        self.cap = cap

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None and outcome.failed else None
        if isinstance(error, RateLimitError) and error.retry_after is not None:
            return min(max(error.retry_after, 0.0), self.cap)
        return self.fallback(retry_state)


class RetryPolicy:
    """Runs a callable up to ``max_attempts`` times.

    Attributes:
        max_attempts: Total attempts, including the first one.
        base_delay: Delay before the second attempt, doubled for each further one.
        max_delay: Upper bound for any single delay.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        *,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    def retrying(self, description: str = "request") -> tenacity.Retrying:
        """Build the tenacity controller for one call."""

        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                "%s failed (%s), retrying %d/%d in %.1fs",
                description,
                error,
                retry_state.attempt_number + 1,
                self.max_attempts,
                delay,
            )

        return tenacity.Retrying(
            retry=retry_if_exception(is_retryable_error),
            stop=stop_after_attempt(self.max_attempts),
            wait=_WaitRetryAfter(
                wait_exponential(multiplier=self.base_delay, max=self.max_delay),
                cap=self.max_delay,
            ),
            sleep=self._sleep,
            before_sleep=before_sleep,
            reraise=True,
        )

    def call(self, fn: Callable[[], R], *, description: str = "request") -> R:
        """Invoke ``fn``, retrying retryable failures.

        Raises:
            BSNError: The last error once attempts are exhausted, or the first
                non-retryable error.
        """
        return self.retrying(description)(fn)
