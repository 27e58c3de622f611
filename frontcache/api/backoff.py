"""
Provides the exponential backoff policy used between fetch attempts.
"""

import random


class ExponentialBackoff:
    """
    Doubles the delay after each failed attempt, adds random jitter and caps
    the result.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        jitter: float = 1.0,
        rng: random.Random | None = None,
    ):
        """
        Initializes the backoff policy.

        Args:
            max_attempts: Total number of attempts, the first one included.
            base_delay: Delay in seconds before the first retry.
            max_delay: Upper bound for any single delay, jitter included.
            jitter: Maximum random seconds added to each delay.
            rng: Random source, injectable for deterministic tests.
        """
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._rng = rng or random.Random()  # noqa: S311

    def can_retry(self, attempt: int) -> bool:
        """True when another attempt may follow the 1-based ``attempt``."""
        return attempt < self.max_attempts

    def delay_for(self, retry_index: int) -> float:
        """Delay in seconds before retry ``retry_index`` (0-based)."""
        delay = self.base_delay * (2**retry_index)
        if self.jitter:
            delay += self._rng.uniform(0, self.jitter)
        return min(delay, self.max_delay)

