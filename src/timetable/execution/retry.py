"""Retry policy for chain elements.

A chain element gets ``1 + retry_count`` attempts with a constant
``retry_interval_seconds`` between them. Failed attempts are results, not
exceptions: a runner reports failure through ``TaskResult``, and the retry
loop only ever sees ``asyncio.CancelledError`` escape, which it lets through
(including from the sleep between attempts).

Example:
    >>> ctx = RetryContext(strategy_for(element), on_retry=announce)
    >>> result = await ctx.run(attempt_once)
    >>> ctx.attempts
    3
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from timetable.core.models import ChainElement, TaskResult


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, retry: int) -> float:
        """Delay in seconds before retry number ``retry`` (zero-based)."""
        ...

    @abstractmethod
    def should_retry(self, retries_done: int) -> bool:
        ...


@dataclass
class ConstantBackoff(RetryStrategy):
    """Constant delay between retries."""

    max_retries: int = 3
    delay: float = 1.0

    def next_delay(self, retry: int) -> float:  # noqa: ARG002
        return max(self.delay, 0.0)

    def should_retry(self, retries_done: int) -> bool:
        return retries_done < self.max_retries


@dataclass
class NoRetry(RetryStrategy):
    """No retry - fail immediately."""

    def next_delay(self, retry: int) -> float:  # noqa: ARG002
        return 0.0

    def should_retry(self, retries_done: int) -> bool:  # noqa: ARG002
        return False


def strategy_for(element: ChainElement) -> RetryStrategy:
    """Retry strategy configured on a chain element."""
    if element.retry_count > 0:
        return ConstantBackoff(
            max_retries=element.retry_count,
            delay=element.retry_interval_seconds,
        )
    return NoRetry()


@dataclass
class RetryContext:
    """Runs attempts until one succeeds or the strategy gives up.

    ``on_retry(attempt, result, delay)`` is called after a failed attempt
    when another one will follow, before the delay starts.
    """

    strategy: RetryStrategy
    on_retry: Callable[[int, TaskResult, float], None] | None = None
    attempt: int = field(default=0, init=False)

    def should_retry(self) -> bool:
        return self.strategy.should_retry(self.attempt - 1)

    def next_delay(self) -> float:
        return self.strategy.next_delay(self.attempt - 1)

    @property
    def attempts(self) -> int:
        """Number of attempts made."""
        return self.attempt

    async def run(self, attempt_fn: Callable[[int], Awaitable[TaskResult]]) -> TaskResult:
        """Call ``attempt_fn(attempt_number)`` until success or exhaustion.

        Returns:
            The successful result, or the last failed one.
        """
        while True:
            self.attempt += 1
            result = await attempt_fn(self.attempt)
            if not result.failed:
                return result

            if not self.should_retry():
                return result

            delay = self.next_delay()
            if self.on_retry:
                self.on_retry(self.attempt, result, delay)
            await asyncio.sleep(delay)


__all__ = [
    "RetryStrategy",
    "ConstantBackoff",
    "NoRetry",
    "RetryContext",
    "strategy_for",
]
