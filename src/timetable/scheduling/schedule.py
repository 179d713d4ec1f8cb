"""Schedule expressions and due-chain evaluation.

Supported ``run_at`` forms:

    ``* * * * *``     5-field cron expression, evaluated with croniter
    ``@reboot``       once, on the first tick after the scheduler starts
    ``@every 300``    every N seconds (``s``/``m``/``h`` suffixes allowed)

A chain is due when its next fire time, computed from the last time it
fired (or from scheduler start), is not after ``now``. Fire times missed
while the scheduler was busy collapse into a single run.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta

from croniter import croniter

from timetable.core.logging import get_logger
from timetable.core.models import ChainConfig, utcnow

logger = get_logger(__name__)

REBOOT = "@reboot"
EVERY_PREFIX = "@every"

_EVERY = re.compile(r"^@every\s+(\d+(?:\.\d+)?)\s*([smh]?)$", re.IGNORECASE)
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600}


@dataclass(frozen=True)
class Schedule:
    """A parsed ``run_at`` expression."""

    kind: str  # cron, reboot, interval
    expression: str
    interval_seconds: float | None = None

    @classmethod
    def parse(cls, run_at: str) -> Schedule:
        """Parse a schedule expression.

        Raises:
            ValueError: If the expression is not a valid schedule.
        """
        expr = (run_at or "").strip()
        if expr.lower() == REBOOT:
            return cls(kind="reboot", expression=expr)
        if expr.lower().startswith(EVERY_PREFIX):
            match = _EVERY.match(expr)
            if not match:
                raise ValueError(f"Invalid interval schedule: {run_at!r}")
            seconds = float(match.group(1)) * _UNIT_SECONDS[match.group(2).lower()]
            if seconds <= 0:
                raise ValueError(f"Interval must be positive: {run_at!r}")
            return cls(kind="interval", expression=expr, interval_seconds=seconds)
        if not croniter.is_valid(expr):
            raise ValueError(f"Invalid cron expression: {run_at!r}")
        return cls(kind="cron", expression=expr)

    def next_after(self, after: datetime) -> datetime | None:
        """Next fire time strictly after ``after``; None for ``@reboot``."""
        if self.kind == "reboot":
            return None
        if self.kind == "interval":
            return after + timedelta(seconds=self.interval_seconds)
        return croniter(self.expression, after).get_next(datetime)


class ScheduleEvaluator:
    """Decides, tick by tick, which chains are due.

    Keeps the last fire time of every chain in memory; nothing is persisted,
    so a restarted scheduler measures every schedule from its own start.
    """

    def __init__(self, started_at: datetime | None = None) -> None:
        self.started_at = started_at or utcnow()
        self._last_fired: dict[int, datetime] = {}
        self._invalid: set[int] = set()

    def is_due(self, chain: ChainConfig, now: datetime) -> bool:
        try:
            schedule = Schedule.parse(chain.run_at)
        except ValueError as e:
            if chain.chain_id not in self._invalid:
                logger.warning("schedule.invalid", chain_id=chain.chain_id, error=str(e))
                self._invalid.add(chain.chain_id)
            return False
        self._invalid.discard(chain.chain_id)

        last = self._last_fired.get(chain.chain_id)
        if schedule.kind == "reboot":
            return last is None

        next_fire = schedule.next_after(last or self.started_at)
        return next_fire is not None and next_fire <= now

    def mark_fired(self, chain_id: int, when: datetime) -> None:
        self._last_fired[chain_id] = when

    def due_chains(self, chains: list[ChainConfig], now: datetime | None = None) -> list[ChainConfig]:
        """Return the due subset of ``chains`` and record them as fired."""
        now = now or utcnow()
        due = [chain for chain in chains if self.is_due(chain, now)]
        for chain in due:
            self.mark_fired(chain.chain_id, now)
        return due


__all__ = ["Schedule", "ScheduleEvaluator"]
