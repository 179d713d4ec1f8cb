"""PostgreSQL database adapter.

One dedicated session per adapter: session-level advisory locks are tied
to the connection that took them, so the scheduler identity lives exactly
as long as this connection.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from timetable.core.errors import ConfigError, StoreConnectionError

from .base import DatabaseAdapter
from .types import DatabaseConfig, DatabaseType


class PsycopgConnection:
    """Gives a psycopg2 connection the ``execute() -> cursor`` shape."""

    def __init__(self, raw: Any):
        self.raw = raw

    def execute(self, sql: str, params: tuple = ()) -> Any:
        cursor = self.raw.cursor()
        cursor.execute(sql, params or None)
        return cursor

    def commit(self) -> None:
        self.raw.commit()

    def rollback(self) -> None:
        self.raw.rollback()

    def close(self) -> None:
        self.raw.close()


class PostgreSQLAdapter(DatabaseAdapter):
    """PostgreSQL adapter backed by psycopg2."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 5432,
        database: str = "",
        username: str | None = None,
        password: str | None = None,
        *,
        connect_timeout: float = 5.0,
        **kwargs: Any,
    ):
        config = DatabaseConfig(
            db_type=DatabaseType.POSTGRESQL,
            host=host,
            port=port,
            database=database,
            username=username,
            password=password,
            connect_timeout=connect_timeout,
            options=kwargs,
        )
        super().__init__(config)
        self._conn: PsycopgConnection | None = None
        self._errors: tuple[type[BaseException], ...] = ()

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> PostgreSQLAdapter:
        return cls(
            host=config.host,
            port=config.port,
            database=config.database,
            username=config.username,
            password=config.password,
            connect_timeout=config.connect_timeout,
            **config.options,
        )

    @property
    def driver_errors(self) -> tuple[type[BaseException], ...]:
        return self._errors

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    def connect(self) -> None:
        """Connect to PostgreSQL database."""
        if self._conn is not None:
            return

        try:
            import psycopg2
        except ImportError:
            raise ConfigError(
                "psycopg2 is required for PostgreSQL. Install with: pip install timetable[postgres]"
            ) from None

        self._errors = (psycopg2.Error,)
        try:
            raw = psycopg2.connect(
                host=self._config.host,
                port=self._config.port,
                dbname=self._config.database,
                user=self._config.username,
                password=self._config.password,
                connect_timeout=int(self._config.connect_timeout),
                application_name="timetable",
                **self._config.options,
            )
        except psycopg2.Error as e:
            raise StoreConnectionError(f"Failed to connect to PostgreSQL: {e}", cause=e) from e
        self._conn = PsycopgConnection(raw)

    def disconnect(self) -> None:
        """Close the session, releasing any advisory locks it holds."""
        if self._conn is not None:
            conn, self._conn = self._conn, None
            if not conn.raw.closed:
                conn.close()

    def get_connection(self) -> PsycopgConnection:
        if self._conn is None:
            self.connect()
        return self._conn

    def insert_returning_id(self, sql: str, params: tuple, id_column: str) -> int:
        cursor = self.get_connection().execute(f"{sql} RETURNING {id_column}", params)
        return int(cursor.fetchone()[0])

    def interrupt(self) -> None:
        """Ask the server to cancel the statement running on this session."""
        if self._conn is not None:
            self._conn.raw.cancel()

    def is_disconnect(self, error: BaseException) -> bool:
        """A broken session: libpq marks it closed, or psycopg2 refuses to use it."""
        import psycopg2

        if isinstance(error, psycopg2.InterfaceError):
            return True
        return self._conn is not None and bool(self._conn.raw.closed)

    @contextmanager
    def deadline(self, seconds: float | None) -> Iterator[None]:
        """Apply ``SET LOCAL statement_timeout`` to the current transaction."""
        if seconds and seconds > 0:
            self.get_connection().execute(self.dialect.statement_timeout(int(seconds * 1000)))
        yield


__all__ = ["PostgreSQLAdapter", "PsycopgConnection"]
