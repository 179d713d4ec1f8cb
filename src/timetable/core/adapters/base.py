"""Database adapter base class.

Manifesto:
    The store and the SQL task runner never talk to a driver directly.
    An adapter owns one connection, knows its dialect, translates driver
    exceptions into :class:`~timetable.core.errors.StoreError`, and knows how
    to bound a statement's runtime.

Tags:
    timetable, database, abstract-base, adapter-pattern
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from timetable.core.dialect import Dialect, get_dialect
from timetable.core.protocols import Connection

from .types import DatabaseConfig


class DatabaseAdapter(ABC):
    """
    Abstract base class for database adapters.

    Subclasses implement connection lifecycle and the driver-specific
    pieces (error classes, generated ids, statement deadlines).
    """

    def __init__(self, config: DatabaseConfig):
        self._config = config
        self._dialect: Dialect = get_dialect(config.db_type.value)

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    @property
    def dialect(self) -> Dialect:
        """SQL dialect for this adapter's database type."""
        return self._dialect

    @property
    @abstractmethod
    def driver_errors(self) -> tuple[type[BaseException], ...]:
        """Exception classes raised by the underlying driver."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    def connect(self) -> None:
        """Establish connection to database."""
        ...

    @abstractmethod
    def disconnect(self) -> None:
        """Close connection to database."""
        ...

    @abstractmethod
    def get_connection(self) -> Connection:
        """Return the adapter's connection, connecting first if needed."""
        ...

    @abstractmethod
    def insert_returning_id(self, sql: str, params: tuple, id_column: str) -> int:
        """Run an INSERT and return the generated key."""
        ...

    @abstractmethod
    @contextmanager
    def deadline(self, seconds: float | None) -> Iterator[None]:
        """Abort statements issued inside the block after ``seconds``."""
        ...

    @abstractmethod
    def interrupt(self) -> None:
        """Abort the statement currently running on the connection, from any thread."""
        ...

    def is_disconnect(self, error: BaseException) -> bool:  # noqa: ARG002
        """Whether ``error`` left the connection unusable."""
        return False

    @contextmanager
    def transaction(self) -> Iterator[Connection]:
        """Commit on success, roll back on error."""
        conn = self.get_connection()
        try:
            yield conn
            conn.commit()
        except BaseException:
            conn.rollback()
            raise

    def execute(self, sql: str, params: tuple = ()) -> Any:
        """Execute SQL statement, return the cursor."""
        return self.get_connection().execute(sql, params)

    def query(self, sql: str, params: tuple = ()) -> list[dict[str, Any]]:
        """Execute query and return results as dicts."""
        cursor = self.execute(sql, params)
        columns = [desc[0] for desc in cursor.description]
        return [dict(zip(columns, row, strict=False)) for row in cursor.fetchall()]

    def query_one(self, sql: str, params: tuple = ()) -> dict[str, Any] | None:
        """Execute query and return the first row, if any."""
        results = self.query(sql, params)
        return results[0] if results else None


__all__ = ["DatabaseAdapter"]
