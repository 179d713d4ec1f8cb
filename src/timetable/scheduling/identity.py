"""Scheduler identity guard.

Manifesto:
    Two schedulers running under the same client name would both repair
    each other's "crashed" runs and both fire every chain. The identity
    guard makes the client name exclusive: whoever holds the named advisory
    lock in the store is the one live scheduler for that name.

    - **Never raises:** a store error while trying the lock reads as
      "not acquired", so a flaky store keeps the process in standby
    - **Bound to the holder:** on PostgreSQL the lock dies with the
      session; on SQLite a lock row whose holder pid is gone from this
      host is taken over, so a crashed holder never blocks the name

Tags:
    timetable, scheduling, identity, advisory-lock
"""

from __future__ import annotations

from timetable.core.errors import StoreError
from timetable.core.logging import get_logger
from timetable.core.store import Store

logger = get_logger(__name__)


class IdentityGuard:
    """Exclusive scheduler identity for one client name.

    Example:
        >>> guard = IdentityGuard(store, "worker01")
        >>> if guard.try_acquire_identity():
        ...     run_scheduler()
    """

    def __init__(self, store: Store | None, client_name: str) -> None:
        self.store = store
        self.client_name = client_name
        self._held = False
        self._epoch = 0

    @property
    def held(self) -> bool:
        """Still ours: acquired, and the store session that took it is alive."""
        if not self._held or self.store is None:
            return False
        return self.store.session_epoch == self._epoch

    def try_acquire_identity(self) -> bool:
        """Try once, without blocking, to become the live scheduler.

        Returns:
            True if this process now holds the identity. False if another
            process holds it or the store could not be asked.
        """
        if self.store is None:
            return False
        try:
            acquired = self.store.try_acquire_named_lock(self.client_name)
        except StoreError as e:
            logger.error("identity.acquire_failed", client_name=self.client_name, error=str(e))
            return False

        if acquired and not self.held:
            logger.info("identity.acquired", client_name=self.client_name)
        elif not acquired:
            logger.debug("identity.held_elsewhere", client_name=self.client_name)
        self._held = acquired
        self._epoch = self.store.session_epoch
        return acquired

    def is_alive(self) -> bool:
        """Whether the store can currently be reached."""
        if self.store is None or self.store.closed:
            return False
        try:
            self.store.ping()
        except StoreError as e:
            logger.warning("identity.store_unreachable", error=str(e))
            return False
        return True

    def release(self) -> None:
        """Give the identity up. Safe to call when it is not held."""
        if not self.held:
            self._held = False
            return
        try:
            self.store.release_named_lock(self.client_name)
        except StoreError as e:
            logger.warning("identity.release_failed", client_name=self.client_name, error=str(e))
        else:
            logger.info("identity.released", client_name=self.client_name)
        finally:
            self._held = False


__all__ = ["IdentityGuard"]
