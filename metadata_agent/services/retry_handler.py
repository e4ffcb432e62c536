"""Retry policy with exponential backoff for transient delivery failures."""

import random
from dataclasses import dataclass
from typing import Optional


@dataclass
class RetryState:
    """
    Bookkeeping for one send() call.

    Lives only for the duration of that call and is discarded afterwards.
    """

    attempt: int = 0
    next_delay: Optional[float] = None
    elapsed: float = 0.0  # Seconds spent in requests and backoff sleeps
    last_error: Optional[BaseException] = None


@dataclass(frozen=True)
class RetryPolicy:
    """
    Exponential backoff with jitter, bounded by attempts and total time.

    Useful for transient failures like network errors, server errors and
    rate limiting.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    max_total_delay: float = 120.0
    jitter_ratio: float = 0.1

    def backoff(self, attempt: int, rng: Optional[random.Random] = None) -> float:
        """
        Delay after the given failed attempt.

        Args:
            attempt: 1-based number of the attempt that just failed
            rng: Random source for jitter (module-level random by default)

        Returns:
            float: ``min(base * 2^(attempt-1), max_delay)`` plus 0-10% jitter
        """
        rng = rng or random
        delay = min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)
        jitter = rng.uniform(0, delay * self.jitter_ratio)
        return delay + jitter

    def next_delay(
        self,
        state: RetryState,
        retry_after: Optional[float] = None,
        rng: Optional[random.Random] = None
    ) -> Optional[float]:
        """
        Decide whether another attempt is allowed and how long to wait first.

        Args:
            state: Current retry state (``attempt`` = attempts made so far)
            retry_after: Server-supplied hint that overrides the backoff once
            rng: Random source for jitter

        Returns:
            Seconds to sleep, or None when the attempt or time budget is spent
        """
        if state.attempt >= self.max_attempts:
            return None

        delay = retry_after if retry_after is not None else self.backoff(state.attempt, rng)
        if state.elapsed + delay > self.max_total_delay:
            return None

        state.next_delay = delay
        return delay
