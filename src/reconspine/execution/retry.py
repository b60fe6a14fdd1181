"""Retry policy for failed operations.

Delay before the next attempt is ``min(base * 2^retry_count, cap)`` where
``retry_count`` is the number of failures before the one just recorded.
Jitter is off by default so schedules are reproducible.

Example:
    >>> strategy = ExponentialBackoff(max_retries=3, base_delay=30.0, max_delay=3600.0)
    >>> [strategy.next_delay(n) for n in range(3)]
    [30.0, 60.0, 120.0]
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta

from reconspine.core.errors import ConnectorError, ErrorKind
from reconspine.core.settings import ReconSettings


class RetryStrategy(ABC):
    """Base class for retry strategies."""

    max_retries: int

    @abstractmethod
    def next_delay(self, retry_count: int) -> float:
        """Seconds to wait before the retry following failure number ``retry_count + 1``."""

    def should_retry(
        self,
        failures: int,
        error: Exception | None = None,
        max_retries: int | None = None,
    ) -> bool:
        """Whether another automatic attempt is allowed after *failures* failures.

        Permanent connector errors never retry automatically. ``max_retries``
        overrides the strategy default (operations carry their own limit).
        """
        if isinstance(error, ConnectorError) and error.kind is ErrorKind.PERMANENT:
            return False
        limit = self.max_retries if max_retries is None else max_retries
        return failures < limit

    def next_retry_at(self, now: datetime, retry_count: int) -> datetime:
        return now + timedelta(seconds=self.next_delay(retry_count))


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** retry_count), max_delay) ± jitter

    Attributes:
        max_retries: Failed attempts before dead-lettering
        base_delay: Initial delay in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Growth factor per retry
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
    """

    max_retries: int = 3
    base_delay: float = 30.0
    max_delay: float = 3600.0
    multiplier: float = 2.0
    jitter: bool = False
    jitter_range: float = 0.25

    def __post_init__(self) -> None:
        if self.base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if not 0.0 <= self.jitter_range < 1.0:
            raise ValueError("jitter_range must be in [0, 1)")

    @classmethod
    def from_settings(cls, settings: ReconSettings) -> ExponentialBackoff:
        return cls(
            max_retries=settings.max_retries,
            base_delay=settings.backoff_base_seconds,
            max_delay=settings.backoff_max_seconds,
            jitter=settings.backoff_jitter,
        )

    def next_delay(self, retry_count: int) -> float:
        """Calculate exponential backoff delay (always > 0)."""
        delay = min(self.base_delay * (self.multiplier ** retry_count), self.max_delay)
        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
        return delay


__all__ = ["RetryStrategy", "ExponentialBackoff"]
