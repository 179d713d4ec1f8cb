"""Scheduler service — the tick loop around identity, admission and execution.

Manifesto:
    The core components each make one decision. The service strings them
    together in the order that keeps the store consistent: become the one
    live scheduler for the client name, repair what a previous holder left
    behind, then poll. Every tick loads the live chains, picks the due ones,
    asks admission, and starts admitted runs as independent asyncio tasks.

Tags:
    timetable, scheduling, orchestrator, beat-as-poller, service

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER SERVICE                                                            │
│                                                                               │
│   start()                                                                     │
│     ├── wait_for_identity()   connect + try_acquire_identity() every interval │
│     └── repair_crashed_runs()                                                 │
│                                                                               │
│   tick()                                                    every interval    │
│     ├── identity still held? (reacquire once, else skip the tick)             │
│     ├── get_chain_configs(live_only=True)                                     │
│     ├── ScheduleEvaluator.due_chains(chains, now)                             │
│     └── for each due chain:                                                   │
│           ├── can_proceed(chain_id, max_instances) ──✗──► skipped             │
│           └── create_task(execute_chain(chain, elements))                     │
│                                                                               │
│   stop()                                                                      │
│     ├── cancel in-flight runs (they stay STARTED)                             │
│     ├── release identity                                                      │
│     └── store.close()                                                         │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from timetable.core.errors import StoreError
from timetable.core.logging import get_logger
from timetable.core.models import ChainConfig, LogLevel, RunState, utcnow
from timetable.core.settings import TimetableSettings
from timetable.core.store import Store
from timetable.execution.executor import ChainExecutor
from timetable.execution.runners import RunnerTable

from .admission import AdmissionController
from .identity import IdentityGuard
from .recovery import CrashRecovery
from .schedule import ScheduleEvaluator

logger = get_logger(__name__)


@dataclass
class SchedulerStats:
    """Statistics for scheduler service."""

    tick_count: int = 0
    chains_started: int = 0
    chains_skipped: int = 0
    chains_failed: int = 0
    runs_repaired: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "chains_started": self.chains_started,
            "chains_skipped": self.chains_skipped,
            "chains_failed": self.chains_failed,
            "runs_repaired": self.runs_repaired,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "last_error": self.last_error,
        }


class SchedulerService:
    """Main scheduler loop for one client name.

    Example:
        >>> settings = TimetableSettings(client_name="worker01")
        >>> service = SchedulerService(settings)
        >>> asyncio.run(service.run_forever())
    """

    def __init__(
        self,
        settings: TimetableSettings,
        store: Store | None = None,
        *,
        executor: ChainExecutor | None = None,
        evaluator: ScheduleEvaluator | None = None,
    ) -> None:
        self.settings = settings
        self.store = store or Store.from_settings(settings)
        self.identity = IdentityGuard(self.store, settings.client_name)
        self.recovery = CrashRecovery(self.store)
        self.admission = AdmissionController(self.store)
        self.executor = executor or ChainExecutor(
            self.store,
            RunnerTable.default(self.store, output_limit=settings.shell_output_limit_bytes),
        )
        self.evaluator = evaluator
        self.interval = settings.poll_interval_seconds

        self._stats = SchedulerStats()
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    # === Lifecycle ===

    async def start(self, *, create_schema: bool = True) -> None:
        """Connect, become the live scheduler, and repair crashed runs.

        Waits (in standby) for as long as the store is unreachable or another
        process holds the identity.
        """
        if self._running:
            logger.warning("scheduler.already_running")
            return

        await self.wait_for_identity(create_schema=create_schema)
        self._stats.runs_repaired = self.recovery.repair_crashed_runs()
        if self.evaluator is None:
            self.evaluator = ScheduleEvaluator(started_at=utcnow())
        self._running = True
        logger.info(
            "scheduler.started",
            client_name=self.settings.client_name,
            interval=self.interval,
            repaired=self._stats.runs_repaired,
        )

    async def wait_for_identity(self, *, create_schema: bool = True) -> None:
        while True:
            try:
                if not self.store.adapter.is_connected:
                    self.store.connect(create_schema=create_schema)
            except StoreError as e:
                logger.warning(
                    "scheduler.store_unreachable",
                    client_name=self.settings.client_name,
                    error=str(e),
                    retry_in=self.interval,
                )
                await asyncio.sleep(self.interval)
                continue
            if self.identity.try_acquire_identity():
                return
            logger.info(
                "scheduler.standby",
                client_name=self.settings.client_name,
                retry_in=self.interval,
            )
            await asyncio.sleep(self.interval)

    async def run_forever(self) -> None:
        """Start, then tick every ``poll_interval_seconds`` until cancelled."""
        await self.start()
        try:
            while True:
                await self.tick()
                await asyncio.sleep(self.interval)
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Cancel in-flight runs, release the identity and close the store."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info("scheduler.runs_cancelled", count=len(tasks))

        self.identity.release()
        self.store.close()
        self._running = False
        logger.info("scheduler.stopped", client_name=self.settings.client_name)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # === Tick Processing ===

    async def tick(self, now: datetime | None = None) -> list[asyncio.Task]:
        """Start every due, admitted chain. Returns the tasks started."""
        self._stats.tick_count += 1
        self._stats.last_tick = utcnow()
        now = now or self._stats.last_tick
        if self.evaluator is None:
            self.evaluator = ScheduleEvaluator(started_at=now)

        started: list[asyncio.Task] = []
        if not self.identity.held:
            logger.warning("scheduler.identity_lost", client_name=self.settings.client_name)
            if not self.identity.try_acquire_identity():
                return started

        try:
            chains = self.store.get_chain_configs(live_only=True)
            due = self.evaluator.due_chains(chains, now)
            if not due:
                logger.debug("scheduler.nothing_due", chains=len(chains))
                return started

            for chain in due:
                task = self._process_chain(chain)
                if task is not None:
                    started.append(task)
        except Exception as e:
            self._stats.last_error = str(e)
            logger.exception("scheduler.tick_failed", error=str(e))
        return started

    def _process_chain(self, chain: ChainConfig) -> asyncio.Task | None:
        if not self.admission.can_proceed(chain.chain_id, chain.max_instances):
            self._stats.chains_skipped += 1
            return None

        try:
            elements = self.store.get_chain_elements(chain.chain_id)
        except StoreError as e:
            self.store.log_event(
                LogLevel.ERROR, f"cannot load chain elements: {e}", chain_id=chain.chain_id
            )
            self._stats.chains_skipped += 1
            return None

        task = asyncio.create_task(
            self.executor.execute_chain(chain, elements),
            name=f"chain-{chain.chain_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_run_done)
        self._stats.chains_started += 1
        logger.info("scheduler.chain_dispatched", chain_id=chain.chain_id, chain_name=chain.name)
        return task

    def _on_run_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._stats.chains_failed += 1
            self._stats.last_error = str(error)
            logger.error("scheduler.run_crashed", task=task.get_name(), error=str(error))
        elif task.result() is not RunState.CHAIN_DONE:
            self._stats.chains_failed += 1

    async def wait_idle(self) -> None:
        """Wait until every in-flight run has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # === Health ===

    def get_stats(self) -> SchedulerStats:
        return self._stats

    def health(self) -> dict[str, Any]:
        alive = self.identity.is_alive()
        return {
            "healthy": alive and self._running and self.identity.held,
            "alive": alive,
            "identity_held": self.identity.held,
            "client_name": self.settings.client_name,
            "running": self._running,
            "in_flight": len(self._tasks),
            "stats": self._stats.to_dict(),
        }


__all__ = ["SchedulerService", "SchedulerStats"]
