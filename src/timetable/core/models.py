"""Scheduler domain models.

Defines the data structures that flow between the store, the admission
controller and the chain executor:

- ChainConfig: a schedulable chain (read-only to the engine)
- ChainElement: one ordered step of a chain
- ChainElementExecution: the runtime instance of a step for one run
- RunStatus: the persisted state machine row of a chain run
- LogEvent: an append-only audit record
- ExecutionRecord: the persisted outcome of one step

Run state transitions::

    STARTED → CHAIN_DONE | CHAIN_FAILED
    CHAIN_DONE   → (terminal)
    CHAIN_FAILED → (terminal)
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


class TaskKind(str, Enum):
    """Closed set of task kinds a chain element can have."""

    SQL = "SQL"
    SHELL = "SHELL"
    BUILTIN = "BUILTIN"


class RunState(str, Enum):
    """Status of a chain run."""

    STARTED = "STARTED"
    CHAIN_DONE = "CHAIN_DONE"
    CHAIN_FAILED = "CHAIN_FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not RunState.STARTED


class StepStatus(str, Enum):
    """Persisted outcome of one chain element execution."""

    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    IGNORED = "IGNORED"


class LogLevel(str, Enum):
    """Severity of a LogEvent row."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass(frozen=True)
class ChainConfig:
    """A schedulable chain.

    Attributes:
        chain_id: Primary key
        name: Human-readable name
        run_at: Schedule expression (cron, ``@reboot``, ``@every <seconds>``)
        max_instances: Maximum concurrently running instances
        self_destruct: Delete the chain after a failed run
        live: Disabled chains are never scheduled
        client_name: Only the scheduler with this identity runs the chain;
            None means any scheduler may
    """

    chain_id: int
    name: str
    run_at: str = "* * * * *"
    max_instances: int = 1
    self_destruct: bool = False
    live: bool = True
    client_name: str | None = None


@dataclass(frozen=True)
class ChainElement:
    """One ordered step within a chain. Immutable during a run."""

    task_id: int
    chain_id: int
    position: int
    kind: TaskKind
    command: str
    name: str = ""
    params: tuple[Any, ...] = ()
    ignore_error: bool = False
    autonomous: bool = False
    timeout_seconds: float = 0.0
    retry_count: int = 0
    retry_interval_seconds: float = 0.0
    database_url: str | None = None

    @property
    def label(self) -> str:
        return self.name or f"{self.kind.value.lower()}:{self.task_id}"


@dataclass
class ChainElementExecution:
    """Runtime instance of a ChainElement for one chain run."""

    run_id: int
    chain_id: int
    task_id: int
    params: tuple[Any, ...] = ()
    attempt: int = 0
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @classmethod
    def for_element(cls, run_id: int, element: ChainElement) -> ChainElementExecution:
        return cls(
            run_id=run_id,
            chain_id=element.chain_id,
            task_id=element.task_id,
            params=tuple(element.params),
        )

    def mark_started(self) -> None:
        self.started_at = utcnow()
        self.finished_at = None

    def mark_finished(self) -> None:
        self.finished_at = utcnow()


@dataclass
class RunStatus:
    """Persisted state of one chain run."""

    run_id: int
    chain_id: int
    client_name: str
    started_at: datetime
    status: RunState = RunState.STARTED
    finished_at: datetime | None = None
    current_task_id: int | None = None


@dataclass(frozen=True)
class LogEvent:
    """Append-only audit record."""

    ts: datetime
    level: LogLevel
    message: str
    client_name: str | None = None
    chain_id: int | None = None
    task_id: int | None = None


@dataclass
class ExecutionRecord:
    """Persisted outcome of one chain element execution."""

    run_id: int
    chain_id: int
    task_id: int
    kind: TaskKind
    command: str
    status: StepStatus
    attempts: int
    started_at: datetime
    finished_at: datetime
    params: tuple[Any, ...] = ()
    exit_code: int | None = None
    output: str = ""
    error: str | None = None

    @property
    def params_json(self) -> str:
        return json.dumps(list(self.params), default=str)


@dataclass
class TaskResult:
    """What a task runner reports back for a single attempt.

    A result is a failure when ``error`` is set or ``exit_code`` is non-zero.
    """

    output: str = ""
    exit_code: int = 0
    error: str | None = None
    duration: float = 0.0
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.error is not None or self.exit_code != 0

    def describe(self) -> str:
        if self.error is not None:
            return self.error
        if self.exit_code != 0:
            return f"exit code {self.exit_code}"
        return "ok"


__all__ = [
    "utcnow",
    "TaskKind",
    "RunState",
    "StepStatus",
    "LogLevel",
    "ChainConfig",
    "ChainElement",
    "ChainElementExecution",
    "RunStatus",
    "LogEvent",
    "ExecutionRecord",
    "TaskResult",
]
