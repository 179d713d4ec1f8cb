"""Tests for schedule parsing and due-chain evaluation."""

from datetime import UTC, datetime, timedelta

import pytest

from timetable.core.models import ChainConfig
from timetable.scheduling import Schedule, ScheduleEvaluator

T0 = datetime(2024, 1, 1, 0, 0, 30, tzinfo=UTC)


def chain(run_at: str, chain_id: int = 1) -> ChainConfig:
    return ChainConfig(chain_id=chain_id, name=f"c{chain_id}", run_at=run_at)


class TestScheduleParse:
    """Supported expression forms."""

    def test_cron(self):
        assert Schedule.parse("*/5 * * * *").kind == "cron"

    def test_reboot(self):
        schedule = Schedule.parse("@reboot")
        assert schedule.kind == "reboot"
        assert schedule.next_after(T0) is None

    @pytest.mark.parametrize(
        ("expr", "seconds"),
        [("@every 30", 30), ("@every 45s", 45), ("@every 5m", 300), ("@every 2h", 7200)],
    )
    def test_every(self, expr, seconds):
        assert Schedule.parse(expr).interval_seconds == seconds

    @pytest.mark.parametrize("expr", ["", "not a cron", "@every", "@every -3", "@every 0", "61 * * * *"])
    def test_invalid(self, expr):
        with pytest.raises(ValueError):
            Schedule.parse(expr)


class TestScheduleEvaluator:
    """Which chains are due on a tick."""

    def test_cron_due_at_next_minute(self):
        evaluator = ScheduleEvaluator(started_at=T0)
        every_minute = chain("* * * * *")

        assert evaluator.due_chains([every_minute], T0 + timedelta(seconds=29)) == []
        assert evaluator.due_chains([every_minute], T0 + timedelta(seconds=30)) == [every_minute]
        # fired at 00:01:00, next fire 00:02:00
        assert evaluator.due_chains([every_minute], T0 + timedelta(seconds=60)) == []
        assert evaluator.due_chains([every_minute], T0 + timedelta(seconds=90)) == [every_minute]

    def test_reboot_fires_once(self):
        evaluator = ScheduleEvaluator(started_at=T0)
        once = chain("@reboot")

        assert evaluator.due_chains([once], T0) == [once]
        assert evaluator.due_chains([once], T0 + timedelta(hours=1)) == []

    def test_interval(self):
        evaluator = ScheduleEvaluator(started_at=T0)
        every_ten = chain("@every 10")

        assert evaluator.due_chains([every_ten], T0 + timedelta(seconds=5)) == []
        assert evaluator.due_chains([every_ten], T0 + timedelta(seconds=10)) == [every_ten]
        assert evaluator.due_chains([every_ten], T0 + timedelta(seconds=15)) == []
        assert evaluator.due_chains([every_ten], T0 + timedelta(seconds=20)) == [every_ten]

    def test_missed_fires_collapse(self):
        """A long gap produces one run, not one per missed minute."""
        evaluator = ScheduleEvaluator(started_at=T0)
        every_minute = chain("* * * * *")

        later = T0 + timedelta(minutes=10)
        assert evaluator.due_chains([every_minute], later) == [every_minute]
        assert evaluator.due_chains([every_minute], later + timedelta(seconds=1)) == []

    def test_invalid_expression_never_due(self):
        evaluator = ScheduleEvaluator(started_at=T0)
        assert evaluator.due_chains([chain("whenever")], T0 + timedelta(days=1)) == []

    def test_chains_tracked_independently(self):
        evaluator = ScheduleEvaluator(started_at=T0)
        a, b = chain("@reboot", 1), chain("@reboot", 2)

        assert evaluator.due_chains([a], T0) == [a]
        assert evaluator.due_chains([a, b], T0) == [b]
