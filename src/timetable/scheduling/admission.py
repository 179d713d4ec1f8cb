"""Admission control: cap concurrently running instances of a chain.

Decision table for ``can_proceed(chain_id, max_instances)``::

    store answer                      decision
    ───────────────────────────────   ─────────────────────────────
    no rows (NoRowsError)             admit   (zero running instances)
    count >= max_instances            reject
    count <  max_instances            admit
    any other StoreError              reject  + ERROR log event

``max_instances <= 0`` admits only while nothing is running.

The check and the later ``insert_run_status`` are separate store calls.
Within one process a chain is admitted at most once per tick and its run
row is inserted before the next tick, so the window only opens between
schedulers with different client names that share a chain (its
``client_name`` is NULL). Both can see ``count < max`` and both start:
each racing check over-admits by at most one instance, which is tolerated.
"""

from __future__ import annotations

from timetable.core.errors import NoRowsError, StoreError
from timetable.core.logging import get_logger
from timetable.core.models import LogLevel
from timetable.core.store import Store

logger = get_logger(__name__)


class AdmissionController:
    """Fail-closed gate in front of the chain executor."""

    def __init__(self, store: Store) -> None:
        self.store = store

    def can_proceed(self, chain_id: int, max_instances: int) -> bool:
        try:
            running = self.store.count_running_instances(chain_id)
        except NoRowsError:
            logger.debug("admission.admitted", chain_id=chain_id, running=0)
            return True
        except StoreError as e:
            self.store.log_event(
                LogLevel.ERROR,
                f"cannot check running instances, chain not started: {e}",
                chain_id=chain_id,
            )
            return False

        if running >= max_instances:
            logger.info(
                "admission.rejected",
                chain_id=chain_id,
                running=running,
                max_instances=max_instances,
            )
            return False

        logger.debug("admission.admitted", chain_id=chain_id, running=running)
        return True


__all__ = ["AdmissionController"]
