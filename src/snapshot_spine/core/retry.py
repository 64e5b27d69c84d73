"""Retry strategies and the single retry policy injected into store clients.

Example:
    >>> policy = RetryPolicy(ExponentialBackoff(max_retries=3, base_delay=0.1))
    >>> policy.run(lambda: "ok")
    'ok'

Only errors for which :func:`~snapshot_spine.core.errors.is_retryable`
returns True are retried; a missing index or a not-found is raised on the
first attempt.
"""

from __future__ import annotations

import asyncio
import random
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from snapshot_spine.core.errors import is_retryable

T = TypeVar("T")


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (0-based)."""
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Whether another attempt is allowed after ``attempt`` attempts."""
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) +/- jitter

    ``max_retries`` counts total attempts, so ``max_retries=3`` means one
    call plus at most two retries.
    """

    max_retries: int = 3
    base_delay: float = 0.2
    max_delay: float = 5.0
    multiplier: float = 2.0
    jitter: bool = True
    jitter_range: float = 0.25

    def next_delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier**attempt), self.max_delay)
        if self.jitter:
            spread = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-spread, spread))
        return delay

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        if attempt >= self.max_retries:
            return False
        return error is None or is_retryable(error)


@dataclass
class NoRetry(RetryStrategy):
    """Fail immediately."""

    def next_delay(self, attempt: int) -> float:
        return 0.0

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        return False


@dataclass
class RetryPolicy:
    """
    Uniform retry behaviour for every store primitive.

    ``sleep`` / ``async_sleep`` are injectable so tests run without real
    delays. ``on_retry`` receives ``(attempt, error, delay)``.
    """

    strategy: RetryStrategy = field(default_factory=ExponentialBackoff)
    sleep: Callable[[float], None] = time.sleep
    async_sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    on_retry: Callable[[int, Exception, float], None] | None = None

    @classmethod
    def none(cls) -> RetryPolicy:
        return cls(NoRetry())

    def run(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return func(*args, **kwargs)
            except Exception as e:
                if not self.strategy.should_retry(attempt, e):
                    raise
                delay = self.strategy.next_delay(attempt - 1)
                if self.on_retry:
                    self.on_retry(attempt, e, delay)
                self.sleep(delay)

    async def run_async(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                if not self.strategy.should_retry(attempt, e):
                    raise
                delay = self.strategy.next_delay(attempt - 1)
                if self.on_retry:
                    self.on_retry(attempt, e, delay)
                await self.async_sleep(delay)


__all__ = ["RetryStrategy", "ExponentialBackoff", "NoRetry", "RetryPolicy"]
