"""Store access layer.

Manifesto:
    The backing relational store is the single source of truth for the
    scheduler: who is the active instance, which runs are in flight, what
    each step did. Every other component goes through ``Store``; none of
    them issue SQL or catch driver exceptions themselves.

    - **Typed failures:** driver exceptions become ``StoreError`` carrying
      the operation name and ids; an expected empty result is ``NoRowsError``
    - **One unit of work per call:** each method commits or rolls back
      before returning, so a failed call never leaves a half-open transaction
    - **Audit trail:** ``log_event`` writes the ``log`` table and mirrors the
      event to the console logger; it never raises

Architecture:
    ::

        ┌────────────────────────────────────────────────────────────────┐
        │                            Store                                │
        │                                                                 │
        │  Identity        try_acquire_named_lock / release_named_lock    │
        │  Runs            insert_run_status / update_run_status          │
        │                  update_run_progress / count_running_instances  │
        │                  list_started_runs / fail_started_run           │
        │  Chains          get_chain_configs / get_chain_elements         │
        │                  delete_chain_config                            │
        │  Steps           insert_execution_record / execute_statement    │
        │  Audit           insert_log_event / log_event                   │
        │  Liveness        ping                                           │
        │                                                                 │
        │            DatabaseAdapter (sqlite3 | psycopg2) + Dialect       │
        └────────────────────────────────────────────────────────────────┘

    Advisory locks: PostgreSQL uses ``pg_try_advisory_lock`` on the store's
    session. SQLite has no such primitive, so a ``scheduler_lock`` row is
    used instead; a row left by a process that is provably gone (same host,
    pid no longer alive) is taken over. There is no lease or TTL.

Tags:
    timetable, store, repository, advisory-lock, run-status
"""

from __future__ import annotations

import json
import os
import socket
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any
from uuid import uuid4

from timetable.core.adapters import DatabaseAdapter, adapter_for, create_adapter
from timetable.core.dialect import Dialect
from timetable.core.errors import (
    NoRowsError,
    StoreConnectionError,
    StoreError,
    TimetableError,
)
from timetable.core.logging import get_logger
from timetable.core.models import (
    ChainConfig,
    ChainElement,
    ExecutionRecord,
    LogEvent,
    LogLevel,
    RunState,
    RunStatus,
    TaskKind,
    utcnow,
)
from timetable.core.protocols import Connection
from timetable.core.schema import create_schema as install_schema
from timetable.core.settings import TimetableSettings

logger = get_logger(__name__)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def _rows(cursor: Any) -> list[dict[str, Any]]:
    columns = [desc[0] for desc in cursor.description]
    return [dict(zip(columns, row, strict=False)) for row in cursor.fetchall()]


def _pid_alive(pid: int) -> bool:
    """Whether a process with ``pid`` exists on this host."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class Store:
    """Scheduler persistence on top of a :class:`DatabaseAdapter`.

    Example:
        >>> store = Store.from_url("sqlite:///:memory:", client_name="worker01")
        >>> store.connect(create_schema=True)
        >>> run_id = store.insert_run_status(chain_id=1)
        >>> store.count_running_instances(1)
        1
    """

    def __init__(self, adapter: DatabaseAdapter, client_name: str) -> None:
        self._adapter = adapter
        self.client_name = client_name
        self.hostname = socket.gethostname()
        self.pid = os.getpid()
        self.holder = f"{self.hostname}:{self.pid}:{uuid4().hex[:8]}"
        self._closed = False
        # bumped whenever a lost connection is dropped; session-bound locks die with it
        self.session_epoch = 0

    @classmethod
    def from_url(cls, url: str, *, client_name: str, connect_timeout: float = 5.0) -> Store:
        return cls(create_adapter(url, connect_timeout=connect_timeout), client_name)

    @classmethod
    def from_settings(cls, settings: TimetableSettings) -> Store:
        return cls.from_url(
            settings.database_url,
            client_name=settings.client_name,
            connect_timeout=settings.database_timeout_seconds,
        )

    @property
    def adapter(self) -> DatabaseAdapter:
        return self._adapter

    @property
    def dialect(self) -> Dialect:
        return self._adapter.dialect

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def shares_single_connection(self) -> bool:
        """In-memory SQLite: no second connection can see this database."""
        return self._adapter.config.is_memory

    def session(self) -> Store:
        """An independent, unconnected store on the same database."""
        return Store(adapter_for(self._adapter.config), self.client_name)

    # === Lifecycle ===

    def connect(self, *, create_schema: bool = False) -> None:
        """Open the store session, optionally creating missing tables."""
        self._closed = False
        self._adapter.connect()
        if create_schema:
            try:
                install_schema(self._adapter)
            except self._adapter.driver_errors as e:
                raise StoreError(f"create_schema failed: {e}", cause=e) from e
        logger.debug("store.connected", backend=self.dialect.name, client_name=self.client_name)

    def close(self) -> None:
        """Close the session. Session-level advisory locks are released with it."""
        self._closed = True
        self._adapter.disconnect()

    @contextmanager
    def _operation(self, name: str, **context: Any) -> Iterator[Connection]:
        """Run one unit of work, translating driver errors into StoreError."""
        if self._closed:
            raise StoreConnectionError("store is closed").with_context(operation=name, **context)
        try:
            with self._adapter.transaction() as conn:
                yield conn
        except TimetableError:
            raise
        except self._adapter.driver_errors as e:
            if self._adapter.is_disconnect(e):
                self._drop_connection(name, e)
                raise StoreConnectionError(f"{name} failed, connection lost: {e}", cause=e).with_context(
                    operation=name, **context
                ) from e
            raise StoreError(f"{name} failed: {e}", cause=e).with_context(
                operation=name, **context
            ) from e

    def _drop_connection(self, operation: str, error: BaseException) -> None:
        """Forget a broken connection so the next call opens a fresh one."""
        self.session_epoch += 1
        logger.warning("store.connection_lost", operation=operation, error=str(error))
        try:
            self._adapter.disconnect()
        except self._adapter.driver_errors as e:
            logger.debug("store.disconnect_failed", error=str(e))

    def interrupt(self) -> None:
        """Abort the statement running on this store's connection. Thread-safe."""
        try:
            self._adapter.interrupt()
        except self._adapter.driver_errors as e:
            logger.debug("store.interrupt_failed", error=str(e))

    # === Liveness ===

    def ping(self) -> None:
        """Trivial round trip; raises StoreError if the store is unreachable."""
        with self._operation("ping") as conn:
            conn.execute("SELECT 1").fetchone()

    # === Identity ===

    def try_acquire_named_lock(self, name: str) -> bool:
        """Take the named advisory lock without blocking.

        Returns:
            True if this store session now holds the lock, False if another
            holder has it.

        Raises:
            StoreError: If the store could not answer.
        """
        if self.dialect.native_advisory_locks:
            with self._operation("try_acquire_named_lock", lock=name) as conn:
                row = conn.execute(self.dialect.try_advisory_lock(), (name,)).fetchone()
            return bool(row and row[0])
        return self._try_acquire_lock_row(name)

    def _try_acquire_lock_row(self, name: str) -> bool:
        ph = self.dialect.placeholder
        with self._operation("try_acquire_named_lock", lock=name) as conn:
            cursor = conn.execute(
                self.dialect.insert_or_ignore(
                    "scheduler_lock",
                    ["client_name", "holder", "hostname", "pid", "acquired_at"],
                ),
                (name, self.holder, self.hostname, self.pid, _ts(utcnow())),
            )
            if cursor.rowcount > 0:
                return True

            row = conn.execute(
                f"SELECT holder, hostname, pid FROM scheduler_lock WHERE client_name = {ph(0)}",
                (name,),
            ).fetchone()
            if row is None:
                return False
            holder, hostname, pid = row
            if holder == self.holder:
                return True
            if hostname != self.hostname or _pid_alive(int(pid)):
                return False

            # Previous holder died on this host without releasing.
            cursor = conn.execute(
                f"""
                UPDATE scheduler_lock
                SET holder = {ph(0)}, pid = {ph(1)}, acquired_at = {ph(2)}
                WHERE client_name = {ph(3)} AND holder = {ph(4)}
                """,
                (self.holder, self.pid, _ts(utcnow()), name, holder),
            )
            if cursor.rowcount > 0:
                logger.warning("store.lock_taken_over", lock=name, previous_holder=holder)
                return True
            return False

    def release_named_lock(self, name: str) -> bool:
        """Release the named lock if this session holds it."""
        if self.dialect.native_advisory_locks:
            with self._operation("release_named_lock", lock=name) as conn:
                row = conn.execute(self.dialect.advisory_unlock(), (name,)).fetchone()
            return bool(row and row[0])

        ph = self.dialect.placeholder
        with self._operation("release_named_lock", lock=name) as conn:
            cursor = conn.execute(
                f"DELETE FROM scheduler_lock WHERE client_name = {ph(0)} AND holder = {ph(1)}",
                (name, self.holder),
            )
            return cursor.rowcount > 0

    # === Run status ===

    def insert_run_status(self, chain_id: int, ts: datetime | None = None) -> int:
        """Insert a STARTED run row and return its run id."""
        ph = self.dialect.placeholder
        with self._operation("insert_run_status", chain_id=chain_id):
            return self._adapter.insert_returning_id(
                f"""
                INSERT INTO run_status (chain_id, client_name, status, started_at)
                VALUES ({ph(0)}, {ph(1)}, {ph(2)}, {ph(3)})
                """,
                (chain_id, self.client_name, RunState.STARTED.value, _ts(ts or utcnow())),
                "run_id",
            )

    def update_run_status(self, run_id: int, status: RunState, ts: datetime | None = None) -> None:
        """Move a STARTED run to a terminal state.

        Raises:
            NoRowsError: If the run is unknown or already terminal.
            StoreError: On any other store failure.
        """
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal run state")
        ph = self.dialect.placeholder
        with self._operation("update_run_status", run_id=run_id) as conn:
            cursor = conn.execute(
                f"""
                UPDATE run_status SET status = {ph(0)}, finished_at = {ph(1)}
                WHERE run_id = {ph(2)} AND status = {ph(3)}
                """,
                (status.value, _ts(ts or utcnow()), run_id, RunState.STARTED.value),
            )
            if cursor.rowcount == 0:
                raise NoRowsError("no STARTED run to update").with_context(run_id=run_id)

    def update_run_progress(self, run_id: int, task_id: int) -> None:
        """Record the element a STARTED run has most recently reached."""
        ph = self.dialect.placeholder
        with self._operation("update_run_progress", run_id=run_id, task_id=task_id) as conn:
            conn.execute(
                f"UPDATE run_status SET current_task_id = {ph(0)} WHERE run_id = {ph(1)}",
                (task_id, run_id),
            )

    def count_running_instances(self, chain_id: int) -> int:
        """Number of STARTED runs of ``chain_id``.

        Raises:
            NoRowsError: When there is no running instance at all. The query
                groups by chain, so "zero" is reported as an empty result.
        """
        ph = self.dialect.placeholder
        with self._operation("count_running_instances", chain_id=chain_id) as conn:
            row = conn.execute(
                f"""
                SELECT count(*) FROM run_status
                WHERE chain_id = {ph(0)} AND status = {ph(1)}
                GROUP BY chain_id
                """,
                (chain_id, RunState.STARTED.value),
            ).fetchone()
        if row is None:
            raise NoRowsError("no running instances").with_context(chain_id=chain_id)
        return int(row[0])

    def list_started_runs(self) -> list[RunStatus]:
        """STARTED runs owned by this client name."""
        ph = self.dialect.placeholder
        with self._operation("list_started_runs") as conn:
            rows = _rows(
                conn.execute(
                    f"""
                    SELECT * FROM run_status
                    WHERE client_name = {ph(0)} AND status = {ph(1)}
                    ORDER BY run_id
                    """,
                    (self.client_name, RunState.STARTED.value),
                )
            )
        return [self._to_run_status(r) for r in rows]

    def fail_started_run(self, run_id: int, ts: datetime | None = None) -> bool:
        """Force a STARTED run to CHAIN_FAILED. False if it was not STARTED."""
        try:
            self.update_run_status(run_id, RunState.CHAIN_FAILED, ts)
        except NoRowsError:
            return False
        return True

    def get_run_status(self, run_id: int) -> RunStatus | None:
        ph = self.dialect.placeholder
        with self._operation("get_run_status", run_id=run_id) as conn:
            rows = _rows(conn.execute(f"SELECT * FROM run_status WHERE run_id = {ph(0)}", (run_id,)))
        return self._to_run_status(rows[0]) if rows else None

    def list_run_statuses(self, chain_id: int | None = None, limit: int = 50) -> list[RunStatus]:
        ph = self.dialect.placeholder
        sql = "SELECT * FROM run_status"
        params: tuple = ()
        if chain_id is not None:
            sql += f" WHERE chain_id = {ph(0)}"
            params = (chain_id,)
        sql += f" ORDER BY run_id DESC LIMIT {int(limit)}"
        with self._operation("list_run_statuses") as conn:
            rows = _rows(conn.execute(sql, params))
        return [self._to_run_status(r) for r in rows]

    @staticmethod
    def _to_run_status(row: dict[str, Any]) -> RunStatus:
        return RunStatus(
            run_id=int(row["run_id"]),
            chain_id=int(row["chain_id"]),
            client_name=row["client_name"],
            started_at=_parse_ts(row["started_at"]),
            status=RunState(row["status"]),
            finished_at=_parse_ts(row["finished_at"]),
            current_task_id=row["current_task_id"],
        )

    # === Chains ===

    def get_chain_configs(self, *, live_only: bool = True) -> list[ChainConfig]:
        """Chains this client may run (its own and unscoped ones)."""
        ph = self.dialect.placeholder
        sql = f"SELECT * FROM chain_config WHERE (client_name IS NULL OR client_name = {ph(0)})"
        params: tuple = (self.client_name,)
        if live_only:
            sql += f" AND live = {ph(1)}"
            params += (True,)
        with self._operation("get_chain_configs") as conn:
            rows = _rows(conn.execute(sql + " ORDER BY chain_id", params))
        return [self._to_chain_config(r) for r in rows]

    def get_chain_config(self, chain_id: int) -> ChainConfig | None:
        ph = self.dialect.placeholder
        with self._operation("get_chain_config", chain_id=chain_id) as conn:
            rows = _rows(
                conn.execute(f"SELECT * FROM chain_config WHERE chain_id = {ph(0)}", (chain_id,))
            )
        return self._to_chain_config(rows[0]) if rows else None

    def get_chain_elements(self, chain_id: int) -> list[ChainElement]:
        """Elements of a chain in ordinal order."""
        ph = self.dialect.placeholder
        with self._operation("get_chain_elements", chain_id=chain_id) as conn:
            rows = _rows(
                conn.execute(
                    f"SELECT * FROM chain_element WHERE chain_id = {ph(0)} ORDER BY position",
                    (chain_id,),
                )
            )
        return [self._to_chain_element(r) for r in rows]

    def create_chain(self, chain: ChainConfig) -> int:
        """Insert a chain definition, returning its id (``chain.chain_id`` is ignored)."""
        ph = self.dialect.placeholders
        with self._operation("create_chain"):
            return self._adapter.insert_returning_id(
                f"""
                INSERT INTO chain_config
                    (chain_name, run_at, max_instances, self_destruct, live, client_name)
                VALUES ({ph(6)})
                """,
                (
                    chain.name,
                    chain.run_at,
                    chain.max_instances,
                    chain.self_destruct,
                    chain.live,
                    chain.client_name,
                ),
                "chain_id",
            )

    def add_chain_element(self, element: ChainElement) -> int:
        """Insert a chain element, returning its id (``element.task_id`` is ignored)."""
        ph = self.dialect.placeholders
        with self._operation("add_chain_element", chain_id=element.chain_id):
            return self._adapter.insert_returning_id(
                f"""
                INSERT INTO chain_element
                    (chain_id, position, task_name, kind, command, params, ignore_error,
                     autonomous, timeout_seconds, retry_count, retry_interval_seconds,
                     database_url)
                VALUES ({ph(12)})
                """,
                (
                    element.chain_id,
                    element.position,
                    element.name,
                    element.kind.value,
                    element.command,
                    json.dumps(list(element.params)),
                    element.ignore_error,
                    element.autonomous,
                    element.timeout_seconds,
                    element.retry_count,
                    element.retry_interval_seconds,
                    element.database_url,
                ),
                "task_id",
            )

    def delete_chain_config(self, chain_id: int) -> bool:
        """Delete a chain definition (self-destruct).

        The deletion is announced in the log table first. Store failures are
        logged and reported as False, never raised.
        """
        self.log_event(LogLevel.INFO, "deleting chain configuration", chain_id=chain_id)
        ph = self.dialect.placeholder
        try:
            with self._operation("delete_chain_config", chain_id=chain_id) as conn:
                cursor = conn.execute(
                    f"DELETE FROM chain_config WHERE chain_id = {ph(0)}", (chain_id,)
                )
                return cursor.rowcount > 0
        except StoreError as e:
            self.log_event(
                LogLevel.ERROR,
                f"failed to delete chain configuration: {e}",
                chain_id=chain_id,
            )
            return False

    @staticmethod
    def _to_chain_config(row: dict[str, Any]) -> ChainConfig:
        return ChainConfig(
            chain_id=int(row["chain_id"]),
            name=row["chain_name"],
            run_at=row["run_at"],
            max_instances=int(row["max_instances"]),
            self_destruct=bool(row["self_destruct"]),
            live=bool(row["live"]),
            client_name=row["client_name"],
        )

    @staticmethod
    def _to_chain_element(row: dict[str, Any]) -> ChainElement:
        params = json.loads(row["params"] or "[]")
        if not isinstance(params, list):
            params = [params]
        return ChainElement(
            task_id=int(row["task_id"]),
            chain_id=int(row["chain_id"]),
            position=int(row["position"]),
            kind=TaskKind(row["kind"]),
            command=row["command"],
            name=row["task_name"] or "",
            params=tuple(params),
            ignore_error=bool(row["ignore_error"]),
            autonomous=bool(row["autonomous"]),
            timeout_seconds=float(row["timeout_seconds"] or 0),
            retry_count=int(row["retry_count"] or 0),
            retry_interval_seconds=float(row["retry_interval_seconds"] or 0),
            database_url=row["database_url"],
        )

    # === Steps ===

    def insert_execution_record(self, record: ExecutionRecord) -> None:
        ph = self.dialect.placeholders
        with self._operation(
            "insert_execution_record",
            chain_id=record.chain_id,
            task_id=record.task_id,
            run_id=record.run_id,
        ) as conn:
            conn.execute(
                f"""
                INSERT INTO execution_log
                    (run_id, chain_id, task_id, kind, command, params, status, attempts,
                     exit_code, output, error, started_at, finished_at)
                VALUES ({ph(13)})
                """,
                (
                    record.run_id,
                    record.chain_id,
                    record.task_id,
                    record.kind.value,
                    record.command,
                    record.params_json,
                    record.status.value,
                    record.attempts,
                    record.exit_code,
                    record.output,
                    record.error,
                    _ts(record.started_at),
                    _ts(record.finished_at),
                ),
            )

    def list_execution_records(self, run_id: int) -> list[dict[str, Any]]:
        ph = self.dialect.placeholder
        with self._operation("list_execution_records", run_id=run_id) as conn:
            return _rows(
                conn.execute(
                    f"SELECT * FROM execution_log WHERE run_id = {ph(0)} ORDER BY id", (run_id,)
                )
            )

    def execute_statement(
        self,
        sql: str,
        params: tuple = (),
        *,
        timeout_seconds: float | None = None,
    ) -> str:
        """Execute a task's SQL in its own unit of work.

        Returns:
            A short description of the result ("3 row(s)").
        """
        with self._operation("execute_statement") as conn:
            with self._adapter.deadline(timeout_seconds):
                cursor = conn.execute(sql, tuple(params))
                if cursor.description is not None:
                    return f"{len(cursor.fetchall())} row(s)"
                return f"{max(cursor.rowcount, 0)} row(s)"

    # === Audit ===

    def insert_log_event(
        self,
        level: LogLevel,
        message: str,
        chain_id: int | None = None,
        task_id: int | None = None,
    ) -> None:
        """Append a row to the log table. Raises StoreError on failure."""
        ph = self.dialect.placeholders
        with self._operation("insert_log_event", chain_id=chain_id, task_id=task_id) as conn:
            conn.execute(
                f"""
                INSERT INTO log (ts, client_name, level, chain_id, task_id, message)
                VALUES ({ph(6)})
                """,
                (_ts(utcnow()), self.client_name, level.value, chain_id, task_id, message),
            )

    def log_event(
        self,
        level: LogLevel,
        message: str,
        *,
        chain_id: int | None = None,
        task_id: int | None = None,
        **fields: Any,
    ) -> bool:
        """Mirror an audit event to the console logger and the log table.

        Never raises; returns False when the table write failed.
        """
        log_method = getattr(logger, level.value.lower())
        log_method(message, chain_id=chain_id, task_id=task_id, **fields)
        try:
            self.insert_log_event(level, message, chain_id, task_id)
        except StoreError as e:
            logger.error("store.log_event_failed", error=str(e), chain_id=chain_id, task_id=task_id)
            return False
        return True

    def list_log_events(self, limit: int = 100) -> list[LogEvent]:
        with self._operation("list_log_events") as conn:
            rows = _rows(conn.execute(f"SELECT * FROM log ORDER BY id LIMIT {int(limit)}"))
        return [
            LogEvent(
                ts=_parse_ts(r["ts"]),
                level=LogLevel(r["level"]),
                message=r["message"],
                client_name=r["client_name"],
                chain_id=r["chain_id"],
                task_id=r["task_id"],
            )
            for r in rows
        ]

__all__ = ["Store"]
