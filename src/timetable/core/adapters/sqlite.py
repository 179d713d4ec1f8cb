"""SQLite database adapter."""

from __future__ import annotations

import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from timetable.core.errors import StoreConnectionError

from .base import DatabaseAdapter
from .types import DatabaseConfig, DatabaseType

# Virtual machine instructions between deadline checks.
_PROGRESS_STEP = 1000


class SQLiteAdapter(DatabaseAdapter):
    """
    SQLite database adapter.

    Uses the built-in sqlite3 module. Suitable for:
    - Development and testing
    - Single-host deployments
    """

    def __init__(self, path: str = ":memory:", *, timeout: float = 5.0, **kwargs: Any):
        config = DatabaseConfig(
            db_type=DatabaseType.SQLITE,
            path=path,
            connect_timeout=timeout,
            options=kwargs,
        )
        super().__init__(config)
        self._conn: sqlite3.Connection | None = None

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> SQLiteAdapter:
        return cls(config.path or ":memory:", timeout=config.connect_timeout, **config.options)

    @property
    def driver_errors(self) -> tuple[type[BaseException], ...]:
        return (sqlite3.Error,)

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    def connect(self) -> None:
        """Connect to SQLite database."""
        if self._conn is not None:
            return

        path = self._config.path or ":memory:"
        uri = path.startswith("file:")

        try:
            conn = sqlite3.connect(
                path,
                timeout=self._config.connect_timeout,
                check_same_thread=False,
                uri=uri,
            )
            conn.execute("PRAGMA foreign_keys = ON")
            if not self._config.is_memory:
                # readers (SQL tasks) must not block the store's writes
                conn.execute("PRAGMA journal_mode = WAL")
        except sqlite3.Error as e:
            raise StoreConnectionError(f"Failed to connect to SQLite: {e}", cause=e) from e
        self._conn = conn

    def disconnect(self) -> None:
        """Close SQLite connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def get_connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self.connect()
        return self._conn

    def insert_returning_id(self, sql: str, params: tuple, id_column: str) -> int:  # noqa: ARG002
        cursor = self.get_connection().execute(sql, params)
        return int(cursor.lastrowid)

    def interrupt(self) -> None:
        if self._conn is not None:
            self._conn.interrupt()

    @contextmanager
    def deadline(self, seconds: float | None) -> Iterator[None]:
        """Interrupt the running statement once ``seconds`` have elapsed.

        The interrupted statement raises ``sqlite3.OperationalError``
        ("interrupted").
        """
        if not seconds or seconds <= 0:
            yield
            return

        conn = self.get_connection()
        expires = time.monotonic() + seconds

        def _check() -> int:
            return 1 if time.monotonic() > expires else 0

        conn.set_progress_handler(_check, _PROGRESS_STEP)
        try:
            yield
        finally:
            conn.set_progress_handler(None, 0)


__all__ = ["SQLiteAdapter"]
