"""Crash recovery for runs left STARTED by a previous process."""

from __future__ import annotations

from timetable.core.errors import StoreError
from timetable.core.logging import get_logger
from timetable.core.models import LogLevel, utcnow
from timetable.core.store import Store

logger = get_logger(__name__)


class CrashRecovery:
    """Marks orphaned runs of this client name as CHAIN_FAILED.

    Only valid while the caller holds the scheduler identity: any run still
    STARTED under our client name at that point belongs to a process that
    is gone. Running it twice changes nothing the second time.
    """

    def __init__(self, store: Store) -> None:
        self.store = store

    def repair_crashed_runs(self) -> int:
        """Fail every orphaned run.

        Returns:
            Number of runs moved to CHAIN_FAILED.

        Store failures are logged, never raised; a run that could not be
        repaired now is picked up by the next repair pass.
        """
        try:
            orphans = self.store.list_started_runs()
        except StoreError as e:
            self.store.log_event(LogLevel.ERROR, f"could not list crashed runs: {e}")
            return 0
        if not orphans:
            logger.debug("recovery.nothing_to_repair", client_name=self.store.client_name)
            return 0

        now = utcnow()
        repaired = 0
        for run in orphans:
            try:
                failed = self.store.fail_started_run(run.run_id, now)
            except StoreError as e:
                self.store.log_event(
                    LogLevel.ERROR,
                    f"could not repair run {run.run_id}: {e}",
                    chain_id=run.chain_id,
                )
                continue
            if failed:
                repaired += 1
                self.store.log_event(
                    LogLevel.WARNING,
                    f"run {run.run_id} was left running by a previous scheduler; marked failed",
                    chain_id=run.chain_id,
                    task_id=run.current_task_id,
                )

        logger.info("recovery.completed", repaired=repaired, found=len(orphans))
        return repaired


__all__ = ["CrashRecovery"]
