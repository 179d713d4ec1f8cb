"""SQL task runner."""

from __future__ import annotations

import asyncio
import time

from timetable.core.errors import TimetableError
from timetable.core.logging import get_logger
from timetable.core.models import ChainElement, ChainElementExecution, TaskResult
from timetable.core.store import Store

logger = get_logger(__name__)

# how often a cancelled statement is re-interrupted until its thread returns
_INTERRUPT_EVERY = 0.1


class SqlRunner:
    """Runs an element's ``command`` as one SQL statement.

    The statement runs in its own unit of work: committed when it succeeds,
    rolled back when it fails or hits ``timeout_seconds``. Parameters are
    bound positionally using the target database's placeholder style.

    Each statement gets its own session (a fresh connection to the element's
    ``database_url``, or to the scheduler's database) and runs in a worker
    thread, so a slow statement never stalls the event loop. Cancelling the
    run interrupts the statement on the server.

    An in-memory SQLite store has no second connection to offer; there the
    statement runs inline on the store's connection and only its timeout
    bounds it.
    """

    def __init__(self, store: Store) -> None:
        self.store = store

    async def run(self, element: ChainElement, execution: ChainElementExecution) -> TaskResult:
        started = time.monotonic()
        timeout = element.timeout_seconds or None
        try:
            if element.database_url is None and self.store.shares_single_connection:
                output = self.store.execute_statement(
                    element.command, execution.params, timeout_seconds=timeout
                )
            else:
                output = await self._run_in_session(element, execution.params, timeout)
        except TimetableError as e:
            logger.debug("sql_task.failed", task_id=element.task_id, error=str(e))
            return TaskResult(error=str(e), duration=time.monotonic() - started)
        return TaskResult(output=output, duration=time.monotonic() - started)

    def _open_session(self, element: ChainElement) -> Store:
        if element.database_url:
            session = Store.from_url(
                element.database_url,
                client_name=self.store.client_name,
                connect_timeout=self.store.adapter.config.connect_timeout,
            )
        else:
            session = self.store.session()
        session.connect()
        return session

    async def _run_in_session(
        self,
        element: ChainElement,
        params: tuple,
        timeout: float | None,
    ) -> str:
        session = await asyncio.to_thread(self._open_session, element)
        job = asyncio.ensure_future(
            asyncio.to_thread(session.execute_statement, element.command, params, timeout_seconds=timeout)
        )
        try:
            return await asyncio.shield(job)
        except asyncio.CancelledError:
            while not job.done():
                session.interrupt()
                await asyncio.wait({job}, timeout=_INTERRUPT_EVERY)
            if not job.cancelled():  # the interrupt error is expected
                job.exception()
            logger.info("sql_task.interrupted", task_id=element.task_id, chain_id=element.chain_id)
            raise
        finally:
            session.close()


__all__ = ["SqlRunner"]
