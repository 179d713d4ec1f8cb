"""
Connection protocol shared by the store and the SQL task runner.

Any DB-API 2.0 connection whose ``execute`` returns a cursor satisfies it:
``sqlite3.Connection`` natively, and psycopg2 connections through
:class:`~timetable.core.adapters.postgresql.PsycopgConnection`.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Connection(Protocol):
    """Minimal synchronous connection interface."""

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute SQL statement with optional parameters, return a cursor."""
        ...

    def commit(self) -> None:
        """Commit the current transaction."""
        ...

    def rollback(self) -> None:
        """Roll back the current transaction."""
        ...

    def close(self) -> None:
        """Close the connection."""
        ...


__all__ = ["Connection"]
