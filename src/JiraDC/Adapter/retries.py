"""Tenacity retry strategies and classification for the adapter.

Provides:
- Retryability classification over the typed error taxonomy
- Exponential backoff (base delay doubling per attempt, capped) without jitter, so
  delays between attempts strictly increase until the cap
- Retry-After aware waits for 429 responses
- Tenacity controller builder with injectable sleep for tests
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import tenacity
from tenacity import RetryCallState, retry_if_exception

from .errors import AdapterError, CircuitOpenError, RateLimitError

__all__ = ["RetryPolicy", "is_retryable", "build_retrying", "log_retry_sleep"]

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry bounds; ``max_attempts`` counts the first attempt."""

    max_attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0
    retry_after_cap_s: float = 60.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay_s < 0 or self.max_delay_s < 0:
            raise ValueError("delays must be >= 0")
        if self.max_delay_s < self.base_delay_s:
            raise ValueError("max_delay_s must be >= base_delay_s")

    def delay_for(self, attempt_number: int) -> float:
        """Backoff before attempt ``attempt_number + 1``."""
        return min(self.base_delay_s * (2 ** (attempt_number - 1)), self.max_delay_s)


def is_retryable(exception: BaseException) -> bool:
    """
    Determine if a failed attempt should be retried.

    Network errors, timeouts, 429 and 5xx are retryable. Other 4xx, authentication
    failures, decode errors and open circuits abort immediately.
    """

    if isinstance(exception, CircuitOpenError):
        return False
    if isinstance(exception, AdapterError):
        return exception.retryable
    return False


class _WaitBackoff(tenacity.wait.wait_base):
    """Exponential backoff that prefers a capped Retry-After from a 429."""

    def __init__(self, policy: RetryPolicy) -> None:
        self.policy = policy

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            error = outcome.exception()
            if isinstance(error, RateLimitError) and error.retry_after_s:
                wait_s = min(error.retry_after_s, self.policy.retry_after_cap_s)
                LOGGER.debug("Using Retry-After: %ss (cap %ss)", wait_s, self.policy.retry_after_cap_s)
                return wait_s
        return self.policy.delay_for(retry_state.attempt_number)


def build_retrying(
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], None] = time.sleep,
    before_sleep_hook: Optional[Callable[[RetryCallState], None]] = None,
) -> tenacity.Retrying:
    """Build a Tenacity Retrying controller.

    Args:
        policy: Attempt and delay bounds
        sleep: Sleep function (injectable for tests)
        before_sleep_hook: Optional hook to run before each sleep

    Returns:
        Configured Tenacity Retrying controller; the final error is re-raised
    """
    return tenacity.Retrying(
        retry=retry_if_exception(is_retryable),
        stop=tenacity.stop_after_attempt(policy.max_attempts),
        wait=_WaitBackoff(policy),
        sleep=sleep,
        before_sleep=before_sleep_hook or log_retry_sleep,
        reraise=True,
    )


def log_retry_sleep(retry_state: RetryCallState) -> None:
    """Log a ``retry.sleep`` event before tenacity sleeps."""
    next_action = retry_state.next_action
    wait_s = getattr(next_action, "sleep", 0.0) if next_action is not None else 0.0
    error = retry_state.outcome.exception() if retry_state.outcome is not None else None
    LOGGER.warning(
        "retry attempt=%s wait_ms=%s error=%s",
        retry_state.attempt_number,
        int(wait_s * 1000),
        error,
        extra={
            "extra_fields": {
                "event": "retry.sleep",
                "attempt": retry_state.attempt_number,
                "wait_ms": int(wait_s * 1000),
                "error_type": type(error).__name__ if error else None,
            }
        },
    )
