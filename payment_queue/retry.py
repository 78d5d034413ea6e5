"""Backoff policy for re-queued jobs."""

import random
from dataclasses import dataclass
from typing import Optional

from payment_queue.config import Settings, settings as default_settings


@dataclass
class RetryPolicy:
    """Exponential backoff with jitter, capped at ``max_delay``.

    A ``base_delay`` of 0 disables backoff and re-queues immediately.
    """

    base_delay: float = 2.0
    max_delay: float = 300.0
    jitter: float = 0.1

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "RetryPolicy":
        settings = settings or default_settings
        return cls(
            base_delay=settings.retry_backoff_base_seconds,
            max_delay=settings.retry_backoff_max_seconds,
            jitter=settings.retry_backoff_jitter,
        )

    def delay_for(self, attempts: int) -> float:
        """Delay in seconds before the job is retried after ``attempts`` failures."""
        if self.base_delay <= 0 or attempts <= 0:
            return 0.0
        delay = min(self.base_delay * 2 ** (attempts - 1), self.max_delay)
        if self.jitter > 0:
            delay += random.uniform(0, delay * self.jitter)
        return min(delay, self.max_delay)
