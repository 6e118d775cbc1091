#file: aqi_pipeline/retry.py

import random
from enum import Enum
from typing import Callable, Optional

from aqi_pipeline.config import RetryPolicy


class RetryState(str, Enum):
    ATTEMPTING = "attempting"
    BACKING_OFF = "backing_off"
    RATE_LIMITED = "rate_limited"
    EXHAUSTED = "exhausted"
    SUCCEEDED = "succeeded"


def backoff_delay(policy: RetryPolicy, attempt: int, rand: Callable[[], float] = random.random) -> float:
    """Exponential delay for the given zero-based retry, with 0-30% jitter, capped."""
    exponential = policy.base_delay * policy.multiplier ** attempt
    jitter = rand() * policy.jitter * exponential
    return min(exponential + jitter, policy.max_delay)


class RetryMachine:
    """
    Tracks one fetch through its retry budget.

    Every failed attempt (server error, network error or 429) consumes one slot
    of max_retries + 1 attempts. Server and network errors wait an exponential
    backoff; a 429 waits exactly what the server asked for (bounded by
    max_retry_after). The machine only decides; the caller sleeps.
    """

    def __init__(self, policy: RetryPolicy, rand: Callable[[], float] = random.random):
        self.policy = policy
        self.rand = rand
        self.state = RetryState.ATTEMPTING
        self.attempt = 0
        self.rate_limited = False
        self.last_error: Optional[str] = None

    @property
    def attempts_allowed(self) -> int:
        return self.policy.max_retries + 1

    @property
    def done(self) -> bool:
        return self.state in (RetryState.SUCCEEDED, RetryState.EXHAUSTED)

    def succeed(self) -> None:
        self.state = RetryState.SUCCEEDED

    def _consume(self) -> bool:
        self.attempt += 1
        if self.attempt >= self.attempts_allowed:
            self.state = RetryState.EXHAUSTED
            return False
        return True

    def fail(self, error: str) -> Optional[float]:
        """Record a retryable failure; returns the backoff delay, or None when exhausted."""
        self.last_error = error
        self.rate_limited = False
        if not self._consume():
            return None
        self.state = RetryState.BACKING_OFF
        return backoff_delay(self.policy, self.attempt - 1, self.rand)

    def throttle(self, retry_after: Optional[float]) -> Optional[float]:
        """Record a 429; returns the server-dictated wait, or None when exhausted."""
        self.last_error = "rate limited"
        self.rate_limited = True
        if not self._consume():
            return None
        self.state = RetryState.RATE_LIMITED
        wait = retry_after if retry_after is not None and retry_after >= 0 else self.policy.default_retry_after
        return min(wait, self.policy.max_retry_after)

    def resume(self) -> None:
        if not self.done:
            self.state = RetryState.ATTEMPTING
