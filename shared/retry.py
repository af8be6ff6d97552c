"""
Retry policy for resilient upstream calls.
"""

import random
from typing import Optional


class RetryConfig:
    """Configuration for retry behavior.

    ``max_retries`` counts retries, not attempts: a call makes at most
    ``max_retries + 1`` attempts.
    """

    def __init__(self,
                 max_retries: int = 3,
                 attempt_timeout: float = 4.0,
                 base_delay: float = 0.2,
                 exponential_base: float = 2.0,
                 max_jitter: float = 0.12,
                 max_delay: Optional[float] = None):
        self.max_retries = max(0, max_retries)
        self.attempt_timeout = attempt_timeout
        self.base_delay = base_delay
        self.exponential_base = exponential_base
        self.max_jitter = max_jitter
        self.max_delay = max_delay

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Delay before the attempt following ``attempt`` (1-based).

    Exponential from ``base_delay`` (200, 400, 800ms by default) plus a
    uniform jitter in ``[0, max_jitter]``.
    """
    delay = config.base_delay * (config.exponential_base ** (attempt - 1))

    if config.max_delay is not None:
        delay = min(delay, config.max_delay)

    if config.max_jitter > 0:
        delay += random.uniform(0, config.max_jitter)

    return max(0.0, delay)
