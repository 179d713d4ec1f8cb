"""Tests for retry strategies and RetryContext."""

import asyncio

import pytest

from timetable.core.models import ChainElement, TaskKind, TaskResult
from timetable.execution.retry import ConstantBackoff, NoRetry, RetryContext, strategy_for

FAIL = TaskResult(error="boom")
OK = TaskResult(output="done")


def scripted(*results):
    """Attempt function returning ``results`` in order."""
    calls = []

    async def attempt(n):
        calls.append(n)
        return results[len(calls) - 1]

    return attempt, calls


class TestStrategies:
    """Strategy selection and decisions."""

    def test_no_retry(self):
        assert NoRetry().should_retry(0) is False

    def test_constant_backoff(self):
        strategy = ConstantBackoff(max_retries=2, delay=1.5)
        assert [strategy.should_retry(n) for n in range(3)] == [True, True, False]
        assert strategy.next_delay(1) == 1.5

    def test_negative_delay_clamped(self):
        assert ConstantBackoff(delay=-1).next_delay(0) == 0.0

    def test_strategy_for_element(self):
        element = ChainElement(
            task_id=1,
            chain_id=1,
            position=1,
            kind=TaskKind.BUILTIN,
            command="NoOp",
            retry_count=3,
            retry_interval_seconds=2,
        )
        strategy = strategy_for(element)
        assert isinstance(strategy, ConstantBackoff)
        assert (strategy.max_retries, strategy.delay) == (3, 2)

    def test_strategy_for_element_without_retries(self):
        element = ChainElement(task_id=1, chain_id=1, position=1, kind=TaskKind.SQL, command="SELECT 1")
        assert isinstance(strategy_for(element), NoRetry)


class TestRetryContext:
    """Attempt loop."""

    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self):
        attempt, calls = scripted(OK)
        ctx = RetryContext(ConstantBackoff(max_retries=3, delay=0))

        assert await ctx.run(attempt) is OK
        assert calls == [1]
        assert ctx.attempts == 1

    @pytest.mark.asyncio
    async def test_succeeds_after_retry(self):
        attempt, calls = scripted(FAIL, OK)
        announced = []
        ctx = RetryContext(
            ConstantBackoff(max_retries=3, delay=0),
            on_retry=lambda n, result, delay: announced.append((n, result.error, delay)),
        )

        assert await ctx.run(attempt) is OK
        assert calls == [1, 2]
        assert announced == [(1, "boom", 0)]

    @pytest.mark.asyncio
    async def test_exhausted_returns_last_failure(self):
        """1 + max_retries attempts; no announcement after the last one."""
        attempt, calls = scripted(FAIL, FAIL, FAIL)
        announced = []
        ctx = RetryContext(
            ConstantBackoff(max_retries=2, delay=0),
            on_retry=lambda n, result, delay: announced.append(n),
        )

        result = await ctx.run(attempt)

        assert result.failed
        assert calls == [1, 2, 3]
        assert announced == [1, 2]
        assert ctx.attempts == 3

    @pytest.mark.asyncio
    async def test_no_retry_single_attempt(self):
        attempt, calls = scripted(FAIL)
        await RetryContext(NoRetry()).run(attempt)
        assert calls == [1]

    @pytest.mark.asyncio
    async def test_cancel_during_delay(self):
        """The wait between attempts is cancellable."""
        attempt, calls = scripted(FAIL, OK)
        ctx = RetryContext(ConstantBackoff(max_retries=1, delay=30))
        task = asyncio.create_task(ctx.run(attempt))
        await asyncio.sleep(0.05)

        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert calls == [1]
