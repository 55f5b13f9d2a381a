"""
Retry policy for transactional units of work.

pyqldb's QldbDriver owns the retry loop: it replays a unit of work after an
OCC conflict, a 500/503 response, a connection failure or an expired
session, and lets everything else propagate on the first attempt.
RetryPolicy decides how many replays are allowed and how long to wait
between them. It is handed to pyqldb as a RetryConfig whose custom backoff
is also the hook through which callers observe each retry.
"""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol

from pyqldb.config.retry_config import RetryConfig

from ..config import DriverConfig

RetryObserver = Callable[[int], None]

# pyqldb calls this with (retry_attempt, error, transaction_id) and sleeps
# for the returned number of milliseconds.
BackoffHook = Callable[[int, Exception, Optional[str]], float]


class BackoffStrategy(Protocol):
    """Computes the delay before a retry."""

    def delay_ms(self, retry_attempt: int) -> float:
        """Delay in milliseconds before the given 1-based retry."""
        ...


@dataclass(frozen=True)
class ExponentialBackoff:
    """Capped exponential backoff with full jitter.

    Attributes:
        base_ms: Delay scale for the first retry
        cap_ms: Upper bound on any delay
    """

    base_ms: int = 10
    cap_ms: int = 5000

    def delay_ms(self, retry_attempt: int) -> float:
        ceiling = min(self.cap_ms, self.base_ms * (2 ** retry_attempt))
        return random.random() * ceiling


@dataclass(frozen=True)
class FixedBackoff:
    """Constant delay between retries."""

    interval_ms: int = 0

    def delay_ms(self, retry_attempt: int) -> float:
        return float(self.interval_ms)


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to replay a unit of work.

    Attributes:
        retry_limit: Retries allowed after the first attempt
        backoff: Delay strategy between attempts
    """

    retry_limit: int = 3
    backoff: BackoffStrategy = field(default_factory=ExponentialBackoff)

    @classmethod
    def from_config(cls, config: DriverConfig) -> RetryPolicy:
        """Build from a DriverConfig."""
        return cls(
            retry_limit=config.retry_limit,
            backoff=ExponentialBackoff(
                base_ms=config.backoff_base_ms,
                cap_ms=config.backoff_cap_ms,
            ),
        )

    def to_retry_config(self, on_backoff: Optional[BackoffHook] = None) -> RetryConfig:
        """Build the pyqldb RetryConfig for this policy.

        Args:
            on_backoff: Called before every retry with pyqldb's
                (retry_attempt, error, transaction_id); the policy's delay
                is used either way.
        """

        def backoff(retry_attempt: int, error: Exception, transaction_id: Any) -> float:
            if on_backoff is not None:
                on_backoff(retry_attempt, error, transaction_id)
            return self.backoff.delay_ms(retry_attempt)

        return RetryConfig(retry_limit=self.retry_limit, custom_backoff=backoff)
