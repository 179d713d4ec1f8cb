"""Bootstrap DDL for development and test stores.

Production schema installation and migration are handled outside the
scheduler; this module only creates the tables the store's queries expect
when they do not exist yet, so a fresh SQLite file (or an empty Postgres
schema) is usable out of the box.
"""

from __future__ import annotations

from timetable.core.adapters import DatabaseAdapter, DatabaseType

_SQLITE_DDL = [
    """
    CREATE TABLE IF NOT EXISTS chain_config (
        chain_id        INTEGER PRIMARY KEY AUTOINCREMENT,
        chain_name      TEXT NOT NULL UNIQUE,
        run_at          TEXT NOT NULL DEFAULT '* * * * *',
        max_instances   INTEGER NOT NULL DEFAULT 1,
        self_destruct   INTEGER NOT NULL DEFAULT 0,
        live            INTEGER NOT NULL DEFAULT 1,
        client_name     TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chain_element (
        task_id                 INTEGER PRIMARY KEY AUTOINCREMENT,
        chain_id                INTEGER NOT NULL
            REFERENCES chain_config (chain_id) ON DELETE CASCADE,
        position                INTEGER NOT NULL,
        task_name               TEXT NOT NULL DEFAULT '',
        kind                    TEXT NOT NULL CHECK (kind IN ('SQL', 'SHELL', 'BUILTIN')),
        command                 TEXT NOT NULL,
        params                  TEXT NOT NULL DEFAULT '[]',
        ignore_error            INTEGER NOT NULL DEFAULT 0,
        autonomous              INTEGER NOT NULL DEFAULT 0,
        timeout_seconds         REAL NOT NULL DEFAULT 0,
        retry_count             INTEGER NOT NULL DEFAULT 0,
        retry_interval_seconds  REAL NOT NULL DEFAULT 0,
        database_url            TEXT,
        UNIQUE (chain_id, position)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS run_status (
        run_id          INTEGER PRIMARY KEY AUTOINCREMENT,
        chain_id        INTEGER NOT NULL,
        client_name     TEXT NOT NULL,
        status          TEXT NOT NULL,
        current_task_id INTEGER,
        started_at      TEXT NOT NULL,
        finished_at     TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_run_status_running
        ON run_status (chain_id, status)
    """,
    """
    CREATE TABLE IF NOT EXISTS execution_log (
        id              INTEGER PRIMARY KEY AUTOINCREMENT,
        run_id          INTEGER NOT NULL,
        chain_id        INTEGER NOT NULL,
        task_id         INTEGER NOT NULL,
        kind            TEXT NOT NULL,
        command         TEXT NOT NULL,
        params          TEXT NOT NULL DEFAULT '[]',
        status          TEXT NOT NULL,
        attempts        INTEGER NOT NULL,
        exit_code       INTEGER,
        output          TEXT NOT NULL DEFAULT '',
        error           TEXT,
        started_at      TEXT NOT NULL,
        finished_at     TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS log (
        id              INTEGER PRIMARY KEY AUTOINCREMENT,
        ts              TEXT NOT NULL,
        client_name     TEXT,
        level           TEXT NOT NULL,
        chain_id        INTEGER,
        task_id         INTEGER,
        message         TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS scheduler_lock (
        client_name     TEXT PRIMARY KEY,
        holder          TEXT NOT NULL,
        hostname        TEXT NOT NULL,
        pid             INTEGER NOT NULL,
        acquired_at     TEXT NOT NULL
    )
    """,
]

_POSTGRES_DDL = [
    """
    CREATE TABLE IF NOT EXISTS chain_config (
        chain_id        BIGSERIAL PRIMARY KEY,
        chain_name      TEXT NOT NULL UNIQUE,
        run_at          TEXT NOT NULL DEFAULT '* * * * *',
        max_instances   INTEGER NOT NULL DEFAULT 1,
        self_destruct   BOOLEAN NOT NULL DEFAULT FALSE,
        live            BOOLEAN NOT NULL DEFAULT TRUE,
        client_name     TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS chain_element (
        task_id                 BIGSERIAL PRIMARY KEY,
        chain_id                BIGINT NOT NULL
            REFERENCES chain_config (chain_id) ON DELETE CASCADE,
        position                INTEGER NOT NULL,
        task_name               TEXT NOT NULL DEFAULT '',
        kind                    TEXT NOT NULL CHECK (kind IN ('SQL', 'SHELL', 'BUILTIN')),
        command                 TEXT NOT NULL,
        params                  TEXT NOT NULL DEFAULT '[]',
        ignore_error            BOOLEAN NOT NULL DEFAULT FALSE,
        autonomous              BOOLEAN NOT NULL DEFAULT FALSE,
        timeout_seconds         DOUBLE PRECISION NOT NULL DEFAULT 0,
        retry_count             INTEGER NOT NULL DEFAULT 0,
        retry_interval_seconds  DOUBLE PRECISION NOT NULL DEFAULT 0,
        database_url            TEXT,
        UNIQUE (chain_id, position)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS run_status (
        run_id          BIGSERIAL PRIMARY KEY,
        chain_id        BIGINT NOT NULL,
        client_name     TEXT NOT NULL,
        status          TEXT NOT NULL,
        current_task_id BIGINT,
        started_at      TEXT NOT NULL,
        finished_at     TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_run_status_running
        ON run_status (chain_id, status)
    """,
    """
    CREATE TABLE IF NOT EXISTS execution_log (
        id              BIGSERIAL PRIMARY KEY,
        run_id          BIGINT NOT NULL,
        chain_id        BIGINT NOT NULL,
        task_id         BIGINT NOT NULL,
        kind            TEXT NOT NULL,
        command         TEXT NOT NULL,
        params          TEXT NOT NULL DEFAULT '[]',
        status          TEXT NOT NULL,
        attempts        INTEGER NOT NULL,
        exit_code       INTEGER,
        output          TEXT NOT NULL DEFAULT '',
        error           TEXT,
        started_at      TEXT NOT NULL,
        finished_at     TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS log (
        id              BIGSERIAL PRIMARY KEY,
        ts              TEXT NOT NULL,
        client_name     TEXT,
        level           TEXT NOT NULL,
        chain_id        BIGINT,
        task_id         BIGINT,
        message         TEXT NOT NULL
    )
    """,
]


def create_schema(adapter: DatabaseAdapter) -> None:
    """Create any missing scheduler tables."""
    statements = _POSTGRES_DDL if adapter.config.db_type is DatabaseType.POSTGRESQL else _SQLITE_DDL
    with adapter.transaction() as conn:
        for sql in statements:
            conn.execute(sql)


__all__ = ["create_schema"]
