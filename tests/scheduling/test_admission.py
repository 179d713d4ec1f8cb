"""Tests for AdmissionController."""

from unittest.mock import patch

from timetable.core.errors import StoreError
from timetable.core.models import LogLevel, RunState
from timetable.scheduling import AdmissionController


class TestCanProceed:
    """Decision table."""

    def test_no_running_rows_admits(self, store):
        """No STARTED rows means zero running instances."""
        assert AdmissionController(store).can_proceed(1, max_instances=1) is True

    def test_at_capacity_rejects(self, store):
        store.insert_run_status(chain_id=1)
        assert AdmissionController(store).can_proceed(1, max_instances=1) is False

    def test_below_capacity_admits(self, store):
        store.insert_run_status(chain_id=1)
        assert AdmissionController(store).can_proceed(1, max_instances=2) is True

    def test_finished_runs_do_not_count(self, store):
        run_id = store.insert_run_status(chain_id=1)
        store.update_run_status(run_id, RunState.CHAIN_DONE)
        assert AdmissionController(store).can_proceed(1, max_instances=1) is True

    def test_zero_max_rejects_once_running(self, store):
        """With max_instances=0 only the empty case admits."""
        admission = AdmissionController(store)
        assert admission.can_proceed(1, max_instances=0) is True
        store.insert_run_status(chain_id=1)
        assert admission.can_proceed(1, max_instances=0) is False


class TestFailClosed:
    """Store errors reject and are logged."""

    def test_store_error_rejects_and_logs(self, store):
        admission = AdmissionController(store)
        with patch.object(store, "count_running_instances", side_effect=StoreError("timeout")):
            assert admission.can_proceed(5, max_instances=10) is False

        (event,) = store.list_log_events()
        assert event.level is LogLevel.ERROR
        assert event.chain_id == 5
        assert "timeout" in event.message


class TestCheckThenStartRace:
    """Check and insert are separate calls."""

    def test_two_checks_before_insert_both_admit(self, store):
        """Two checks racing before either run row exists both see room."""
        admission = AdmissionController(store)

        first = admission.can_proceed(1, max_instances=1)
        second = admission.can_proceed(1, max_instances=1)
        store.insert_run_status(chain_id=1)
        store.insert_run_status(chain_id=1)

        assert (first, second) == (True, True)
        assert store.count_running_instances(1) == 2
        assert admission.can_proceed(1, max_instances=1) is False
