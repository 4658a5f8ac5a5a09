"""Retry backoff policy for queued deliveries.

Failed deliveries are not retried in-process. The queue row is rescheduled
and a later worker run picks it up, so the policy only has to answer
"how long until the next attempt".
"""

from dataclasses import dataclass
from datetime import timedelta

from alert_relay.config import BackoffConfig

FIXED = "fixed"
EXPONENTIAL = "exponential"


@dataclass
class RetryPolicy:
    """Configuration for retry behavior."""

    strategy: str = FIXED
    base_minutes: float = 5.0
    max_minutes: float = 60.0

    @classmethod
    def from_config(cls, config: BackoffConfig) -> "RetryPolicy":
        """Build a policy from the `queue.backoff` section of config.yml."""
        return cls(
            strategy=config.strategy,
            base_minutes=config.base_minutes,
            max_minutes=config.max_minutes,
        )

    def delay(self, attempts: int) -> timedelta:
        """
        Delay before the next attempt, given attempts made so far.

        Fixed strategy always waits base_minutes. Exponential waits
        min(base_minutes * 2^(attempts - 1), max_minutes).

        Args:
            attempts: Number of attempts already made (>= 1 after a failure)

        Returns:
            Delay to add to the failure time
        """
        if self.strategy == EXPONENTIAL:
            minutes = min(self.base_minutes * (2 ** max(attempts - 1, 0)), self.max_minutes)
        else:
            minutes = self.base_minutes
        return timedelta(minutes=minutes)
