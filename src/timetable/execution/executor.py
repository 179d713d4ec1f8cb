"""Chain executor — runs one admitted chain from STARTED to a terminal state.

Manifesto:
    A chain run is a row in ``run_status`` before it is anything else. If
    that row cannot be written, nothing runs: a step whose outcome cannot
    be recorded must not execute. Once the row exists, every element that
    starts ends in exactly one ``execution_log`` record (SUCCEEDED, FAILED
    or IGNORED), and the run ends in exactly one terminal transition, or
    stays STARTED for crash recovery when even that write fails.

    - **Sequential steps:** one chain's elements never overlap
    - **Retries inside the step:** ``1 + retry_count`` attempts with a
      cancellable delay; a timeout is just a failed attempt
    - **Fail closed on bookkeeping:** a successful attempt whose record
      cannot be written counts as a failed attempt
    - **Cancellation wins:** ``asyncio.CancelledError`` is never caught;
      running children are killed by the runners and the run stays STARTED

Architecture:
    ::

        execute_chain(chain, elements)
          │
          ├── insert_run_status ──✗──► ERROR log event, return None
          │
          ├── for element in position order:
          │     ├── chain failed and not autonomous ──► skip (console log only)
          │     ├── update_run_progress (best effort)
          │     └── _execute_element
          │           ├── RetryContext.run(attempt)
          │           │     ├── runner.run(element, execution)
          │           │     ├── success ──► insert SUCCEEDED record
          │           │     └── failure ──► WARNING "retrying" event, sleep
          │           └── final failure
          │                 ├── ignore_error ──► IGNORED record, WARNING event
          │                 └── otherwise    ──► FAILED record, ERROR event
          │
          ├── update_run_status(CHAIN_DONE | CHAIN_FAILED) ──✗──► ERROR event, stays STARTED
          └── self_destruct and failed ──► delete_chain_config

Tags:
    timetable, execution, chain, state-machine, retry
"""

from __future__ import annotations

from collections.abc import Sequence

from timetable.core.errors import StoreError
from timetable.core.logging import LogContext, get_logger
from timetable.core.models import (
    ChainConfig,
    ChainElement,
    ChainElementExecution,
    ExecutionRecord,
    LogLevel,
    RunState,
    StepStatus,
    TaskKind,
    TaskResult,
    utcnow,
)
from timetable.core.store import Store
from timetable.execution.retry import RetryContext, strategy_for
from timetable.execution.runners import RunnerTable

logger = get_logger(__name__)


class ChainExecutor:
    """Executes chain runs against a store.

    Example:
        >>> executor = ChainExecutor(store)
        >>> state = await executor.execute_chain(chain, store.get_chain_elements(chain.chain_id))
        >>> state
        <RunState.CHAIN_DONE: 'CHAIN_DONE'>
    """

    def __init__(self, store: Store, runners: RunnerTable | None = None) -> None:
        self.store = store
        self.runners = runners or RunnerTable.default(store)

    async def execute_chain(
        self,
        chain: ChainConfig,
        elements: Sequence[ChainElement],
    ) -> RunState | None:
        """Run ``elements`` of ``chain`` as one chain run.

        Returns:
            The terminal state the run reached, or None when the run could
            not be started at all. The returned state is the outcome even if
            persisting it failed (the row then stays STARTED).

        Raises:
            asyncio.CancelledError: When cancelled; the run stays STARTED.
        """
        try:
            run_id = self.store.insert_run_status(chain.chain_id)
        except StoreError as e:
            self.store.log_event(
                LogLevel.ERROR,
                f"cannot start chain run, no step executed: {e}",
                chain_id=chain.chain_id,
            )
            return None

        async with LogContext(chain_id=chain.chain_id, run_id=run_id):
            logger.info("chain.started", chain_name=chain.name, elements=len(elements))
            failed = False
            for element in sorted(elements, key=lambda el: el.position):
                if failed and not element.autonomous:
                    logger.info("chain.element_skipped", task_id=element.task_id, task=element.label)
                    continue
                if await self._execute_element(run_id, element) is StepStatus.FAILED:
                    failed = True

            final = RunState.CHAIN_FAILED if failed else RunState.CHAIN_DONE
            try:
                self.store.update_run_status(run_id, final)
            except StoreError as e:
                self.store.log_event(
                    LogLevel.ERROR,
                    f"cannot record {final.value} for run {run_id}; left for crash recovery: {e}",
                    chain_id=chain.chain_id,
                )

            if chain.self_destruct and final is RunState.CHAIN_FAILED:
                self.store.delete_chain_config(chain.chain_id)

            logger.info("chain.finished", status=final.value)
            return final

    async def _execute_element(self, run_id: int, element: ChainElement) -> StepStatus:
        execution = ChainElementExecution.for_element(run_id, element)
        step_started = utcnow()

        try:
            self.store.update_run_progress(run_id, element.task_id)
        except StoreError as e:
            logger.warning("chain.progress_not_recorded", task_id=element.task_id, error=str(e))

        def announce_retry(attempt: int, result: TaskResult, delay: float) -> None:
            self.store.log_event(
                LogLevel.WARNING,
                f"task {element.label} attempt {attempt}/{1 + element.retry_count} failed: "
                f"{result.describe()}; retrying in {delay:g}s",
                chain_id=element.chain_id,
                task_id=element.task_id,
                attempt=attempt,
            )

        async def attempt_once(attempt: int) -> TaskResult:
            execution.attempt = attempt
            execution.mark_started()
            async with LogContext(task_id=element.task_id, attempt=attempt):
                result = await self._run_attempt(element, execution)
            execution.mark_finished()
            if result.failed:
                return result
            try:
                self.store.insert_execution_record(
                    self._record(element, execution, StepStatus.SUCCEEDED, result, step_started)
                )
            except StoreError as e:
                return TaskResult(
                    output=result.output,
                    exit_code=result.exit_code,
                    error=f"result could not be recorded: {e}",
                    duration=result.duration,
                )
            return result

        retry = RetryContext(strategy_for(element), on_retry=announce_retry)
        result = await retry.run(attempt_once)
        if not result.failed:
            logger.debug("chain.element_succeeded", task_id=element.task_id, attempts=retry.attempts)
            return StepStatus.SUCCEEDED

        status = StepStatus.IGNORED if element.ignore_error else StepStatus.FAILED
        try:
            self.store.insert_execution_record(
                self._record(element, execution, status, result, step_started)
            )
        except StoreError as e:
            logger.error("chain.record_failed", task_id=element.task_id, error=str(e))

        detail = (
            f"task {element.label} failed after {retry.attempts} attempt(s): {result.describe()}"
        )
        if element.ignore_error:
            self.store.log_event(
                LogLevel.WARNING,
                f"{detail}; error ignored",
                chain_id=element.chain_id,
                task_id=element.task_id,
                attempt=retry.attempts,
            )
        else:
            self.store.log_event(
                LogLevel.ERROR,
                detail,
                chain_id=element.chain_id,
                task_id=element.task_id,
                attempt=retry.attempts,
            )
        return status

    async def _run_attempt(
        self,
        element: ChainElement,
        execution: ChainElementExecution,
    ) -> TaskResult:
        try:
            runner = self.runners.get(element.kind)
            return await runner.run(element, execution)
        except Exception as e:
            logger.exception("chain.runner_crashed", task_id=element.task_id)
            return TaskResult(error=f"{type(e).__name__}: {e}")

    @staticmethod
    def _record(
        element: ChainElement,
        execution: ChainElementExecution,
        status: StepStatus,
        result: TaskResult,
        started_at,
    ) -> ExecutionRecord:
        exit_code = result.exit_code if element.kind is TaskKind.SHELL or result.exit_code else None
        return ExecutionRecord(
            run_id=execution.run_id,
            chain_id=element.chain_id,
            task_id=element.task_id,
            kind=element.kind,
            command=element.command,
            status=status,
            attempts=execution.attempt,
            started_at=started_at,
            finished_at=execution.finished_at or utcnow(),
            params=execution.params,
            exit_code=exit_code,
            output=result.output,
            error=result.describe() if status is not StepStatus.SUCCEEDED else None,
        )


__all__ = ["ChainExecutor"]
