"""Task runners — one per task kind, selected from a dispatch table.

ARCHITECTURE
────────────
::

    RunnerTable
      ├── TaskKind.SQL      → SqlRunner       statement on the store (or database_url)
      ├── TaskKind.SHELL    → ShellRunner     argv via execute_shell_command
      └── TaskKind.BUILTIN  → BuiltinRunner   in-process procedure from BuiltinRegistry

Every runner implements ``async run(element, execution) -> TaskResult`` and
reports failure in the result instead of raising. Only
``asyncio.CancelledError`` escapes a runner.

Tags:
    timetable, execution, runners, dispatch-table
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from timetable.core.models import ChainElement, ChainElementExecution, TaskKind, TaskResult


@runtime_checkable
class TaskRunner(Protocol):
    """Executes one attempt of a chain element."""

    async def run(self, element: ChainElement, execution: ChainElementExecution) -> TaskResult:
        ...


class RunnerTable:
    """Maps each task kind to its runner."""

    def __init__(self, runners: dict[TaskKind, TaskRunner] | None = None) -> None:
        self._runners: dict[TaskKind, TaskRunner] = dict(runners or {})

    @classmethod
    def default(cls, store, *, output_limit: int | None = None) -> RunnerTable:
        """Table with the SQL, shell and built-in runners wired to ``store``."""
        from .builtin import BuiltinRunner
        from .shell import ShellRunner
        from .sql import SqlRunner

        shell = ShellRunner() if output_limit is None else ShellRunner(output_limit=output_limit)
        return cls(
            {
                TaskKind.SQL: SqlRunner(store),
                TaskKind.SHELL: shell,
                TaskKind.BUILTIN: BuiltinRunner(store),
            }
        )

    def register(self, kind: TaskKind, runner: TaskRunner) -> None:
        self._runners[kind] = runner

    def get(self, kind: TaskKind) -> TaskRunner:
        try:
            return self._runners[kind]
        except KeyError:
            raise LookupError(f"No runner registered for task kind {kind.value}") from None

    def has(self, kind: TaskKind) -> bool:
        return kind in self._runners


__all__ = ["RunnerTable", "TaskRunner"]
