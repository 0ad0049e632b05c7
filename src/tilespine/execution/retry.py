"""Retry strategies with exponential backoff and jitter.

The wrapper waits ``min(cap, base * 2^(attempt-1)) + jitter`` between
attempts, where ``jitter`` is uniform in ``[0, jitter_max]``. The cap
bounds retry storms; the jitter keeps many failing units from retrying
in lock-step.

Example:
    >>> from tilespine.execution.retry import ExponentialBackoff
    >>>
    >>> strategy = ExponentialBackoff(max_retries=3, base_delay=0.1, max_delay=1.0, jitter=0.0)
    >>> [strategy.next_delay(n) for n in (1, 2, 3)]
    [0.1, 0.2, 0.4]
"""

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from tilespine.core.errors import is_retryable
from tilespine.execution.config import UnitConfig


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before the next attempt.

        Args:
            attempt: One-based number of the attempt that just failed

        Returns:
            Delay in seconds
        """
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        """Determine if another attempt should be made.

        Args:
            attempt: One-based number of the attempt that just failed
            error: The failure of that attempt
        """
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Capped exponential backoff with additive jitter.

    Delay = min(max_delay, base_delay * multiplier ** (attempt - 1)) + U(0, jitter)

    Attributes:
        max_retries: Retries allowed after the first attempt
        base_delay: First delay in seconds
        max_delay: Cap on the exponential part, in seconds
        multiplier: Exponential base
        jitter: Upper bound of the uniform jitter, in seconds
    """

    max_retries: int = 2
    base_delay: float = 1.0
    max_delay: float = 5.0
    multiplier: float = 2.0
    jitter: float = 1.0
    rng: random.Random = field(default_factory=random.Random, repr=False, compare=False)

    @classmethod
    def from_config(cls, config: UnitConfig, rng: random.Random | None = None) -> "ExponentialBackoff":
        return cls(
            max_retries=config.max_retries,
            base_delay=config.backoff_base_ms / 1000.0,
            max_delay=config.backoff_cap_ms / 1000.0,
            jitter=config.jitter_ms / 1000.0,
            rng=rng or random.Random(),
        )

    def next_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay."""
        exponent = max(attempt - 1, 0)
        delay = min(self.max_delay, self.base_delay * (self.multiplier ** exponent))
        if self.jitter > 0:
            delay += self.rng.uniform(0.0, self.jitter)
        return delay

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        """Check if retry should be attempted."""
        if attempt > self.max_retries:
            return False
        if error is not None and not is_retryable(error):
            return False
        return True


@dataclass
class NoRetry(RetryStrategy):
    """No retry - fail immediately."""

    def next_delay(self, attempt: int) -> float:
        return 0.0

    def should_retry(self, attempt: int, error: BaseException | None = None) -> bool:
        return False


def strategy_for(config: UnitConfig) -> RetryStrategy:
    """Pick the retry strategy a unit config asks for."""
    if config.max_retries == 0:
        return NoRetry()
    return ExponentialBackoff.from_config(config)
