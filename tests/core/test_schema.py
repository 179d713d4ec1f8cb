"""Tests for the bootstrap schema."""

from timetable.core.adapters import create_adapter
from timetable.core.schema import create_schema

TABLES = {"chain_config", "chain_element", "run_status", "execution_log", "log", "scheduler_lock"}


def table_names(adapter) -> set[str]:
    rows = adapter.query("SELECT name FROM sqlite_master WHERE type = 'table'")
    return {r["name"] for r in rows}


class TestCreateSchema:
    """Table creation on SQLite."""

    def test_creates_all_tables(self):
        adapter = create_adapter("sqlite:///:memory:")
        adapter.connect()
        create_schema(adapter)
        assert TABLES <= table_names(adapter)
        adapter.disconnect()

    def test_idempotent(self, tmp_path):
        """Existing tables and rows survive a second run."""
        adapter = create_adapter(f"sqlite:///{tmp_path / 's.db'}")
        adapter.connect()
        create_schema(adapter)
        with adapter.transaction() as conn:
            conn.execute("INSERT INTO log (ts, level, message) VALUES ('t', 'INFO', 'kept')")

        create_schema(adapter)

        assert adapter.query_one("SELECT message FROM log")["message"] == "kept"
        adapter.disconnect()
