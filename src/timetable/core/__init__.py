"""Timetable core -- errors, logging, settings, models and store access.

Architecture::

    Layer 1 -- Type System & Errors
        errors.py          Error hierarchy (TimetableError, StoreError, ...)
        models.py          Chains, elements, runs, log events
        protocols.py       Connection protocol

    Layer 2 -- Database
        dialect.py         SQLite / PostgreSQL SQL fragments
        adapters/          sqlite3 and psycopg2 adapters
        schema.py          Bootstrap DDL
        store.py           Store: every scheduler query

    Layer 3 -- Runtime
        settings.py        TimetableSettings (pydantic-settings)
        logging.py         structlog configuration
"""

from timetable.core.errors import (
    LAUNCH_FAILURE_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
    BuiltinNotFoundError,
    CommandTimeoutError,
    ConfigError,
    ErrorCategory,
    ExecutionError,
    LaunchError,
    NoRowsError,
    StoreConnectionError,
    StoreError,
    TimetableError,
)
from timetable.core.models import (
    ChainConfig,
    ChainElement,
    ChainElementExecution,
    ExecutionRecord,
    LogEvent,
    LogLevel,
    RunState,
    RunStatus,
    StepStatus,
    TaskKind,
    TaskResult,
)
from timetable.core.settings import TimetableSettings
from timetable.core.store import Store

__all__ = [
    "LAUNCH_FAILURE_EXIT_CODE",
    "TIMEOUT_EXIT_CODE",
    "BuiltinNotFoundError",
    "CommandTimeoutError",
    "ConfigError",
    "ErrorCategory",
    "ExecutionError",
    "LaunchError",
    "NoRowsError",
    "StoreConnectionError",
    "StoreError",
    "TimetableError",
    "ChainConfig",
    "ChainElement",
    "ChainElementExecution",
    "ExecutionRecord",
    "LogEvent",
    "LogLevel",
    "RunState",
    "RunStatus",
    "StepStatus",
    "TaskKind",
    "TaskResult",
    "TimetableSettings",
    "Store",
]
