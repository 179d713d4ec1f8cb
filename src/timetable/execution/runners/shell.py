"""Shell task runner."""

from __future__ import annotations

import json
import time
from typing import Any

from timetable.core.errors import CommandTimeoutError, ExecutionError
from timetable.core.models import ChainElement, ChainElementExecution, TaskResult
from timetable.execution.process import DEFAULT_OUTPUT_LIMIT, execute_shell_command


def shell_arg(value: Any) -> str:
    """Render one task parameter as a literal argv entry."""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, dict)):
        return json.dumps(value)
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class ShellRunner:
    """Runs ``command`` with the element's params as its argv tail. No shell."""

    def __init__(self, output_limit: int = DEFAULT_OUTPUT_LIMIT) -> None:
        self.output_limit = output_limit

    async def run(self, element: ChainElement, execution: ChainElementExecution) -> TaskResult:
        started = time.monotonic()
        args = [shell_arg(p) for p in execution.params]
        try:
            result = await execute_shell_command(
                element.command,
                args,
                timeout=element.timeout_seconds or None,
                output_limit=self.output_limit,
            )
        except ExecutionError as e:
            output = e.output if isinstance(e, CommandTimeoutError) else ""
            return TaskResult(
                output=output,
                exit_code=e.exit_code,
                error=e.message,
                duration=time.monotonic() - started,
            )

        return TaskResult(
            output=result.output,
            exit_code=result.exit_code,
            duration=result.duration,
            extra={"pid": result.pid, "truncated": result.truncated},
        )


__all__ = ["ShellRunner", "shell_arg"]
