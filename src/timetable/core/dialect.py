"""SQL dialect abstraction for the store.

The store's queries are written once; anything backend-specific
(placeholders, the advisory lock primitive, statement timeouts) comes from
a ``Dialect``.

Architecture::

    ┌──────────────────────────────────────────────────────────────────┐
    │  Store                                                            │
    │    sql = f"... WHERE chain_id = {d.placeholder(0)}"              │
    └──────────────────────────────────────────────────────────────────┘
                 │                                   │
                 ▼                                   ▼
    ┌──────────────────────────┐       ┌───────────────────────────────┐
    │ SQLiteDialect            │       │ PostgreSQLDialect             │
    │ ?                        │       │ %s                            │
    │ lock row emulation       │       │ pg_try_advisory_lock(hashtext)│
    └──────────────────────────┘       └───────────────────────────────┘

Examples:
    >>> d = SQLiteDialect()
    >>> d.placeholders(3)
    '?, ?, ?'
    >>> get_dialect("postgresql").try_advisory_lock()
    'SELECT pg_try_advisory_lock(hashtext(%s))'
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class Dialect(Protocol):
    """SQL dialect contract. Every method returns a SQL fragment."""

    @property
    def name(self) -> str:
        ...

    @property
    def native_advisory_locks(self) -> bool:
        """Whether the backend has a session-scoped named lock primitive."""
        ...

    def placeholder(self, index: int) -> str:
        ...

    def placeholders(self, count: int) -> str:
        ...

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        ...

    def try_advisory_lock(self) -> str:
        """Query returning a single boolean: True if the lock was taken."""
        ...

    def advisory_unlock(self) -> str:
        ...

    def statement_timeout(self, milliseconds: int) -> str | None:
        """Statement enforcing a per-statement timeout, if supported."""
        ...


class SQLiteDialect:
    """SQLite dialect (sqlite3 module, ``?`` placeholders)."""

    @property
    def name(self) -> str:
        return "sqlite"

    @property
    def native_advisory_locks(self) -> bool:
        return False

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "?"

    def placeholders(self, count: int) -> str:
        return ", ".join("?" for _ in range(count))

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        return f"INSERT OR IGNORE INTO {table} ({cols}) VALUES ({self.placeholders(len(columns))})"

    def try_advisory_lock(self) -> str:
        raise NotImplementedError("SQLite has no advisory locks; the store emulates them")

    def advisory_unlock(self) -> str:
        raise NotImplementedError("SQLite has no advisory locks; the store emulates them")

    def statement_timeout(self, milliseconds: int) -> str | None:  # noqa: ARG002
        # Enforced with a progress handler by the SQLite adapter instead.
        return None


class PostgreSQLDialect:
    """PostgreSQL dialect (psycopg2, ``%s`` placeholders)."""

    @property
    def name(self) -> str:
        return "postgresql"

    @property
    def native_advisory_locks(self) -> bool:
        return True

    def placeholder(self, index: int) -> str:  # noqa: ARG002
        return "%s"

    def placeholders(self, count: int) -> str:
        return ", ".join("%s" for _ in range(count))

    def insert_or_ignore(self, table: str, columns: list[str]) -> str:
        cols = ", ".join(columns)
        return (
            f"INSERT INTO {table} ({cols}) VALUES ({self.placeholders(len(columns))}) "
            "ON CONFLICT DO NOTHING"
        )

    def try_advisory_lock(self) -> str:
        return "SELECT pg_try_advisory_lock(hashtext(%s))"

    def advisory_unlock(self) -> str:
        return "SELECT pg_advisory_unlock(hashtext(%s))"

    def statement_timeout(self, milliseconds: int) -> str | None:
        return f"SET LOCAL statement_timeout = {int(milliseconds)}"


_DIALECTS: dict[str, type] = {
    "sqlite": SQLiteDialect,
    "postgresql": PostgreSQLDialect,
    "postgres": PostgreSQLDialect,
}


def get_dialect(name: str) -> Dialect:
    """Return the dialect registered for a backend name."""
    try:
        return _DIALECTS[name.lower()]()
    except KeyError:
        raise ValueError(f"Unsupported database backend: {name}") from None


__all__ = [
    "Dialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "get_dialect",
]
