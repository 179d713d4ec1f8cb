"""Chain execution: executor, retry policy, task runners and subprocesses."""

from .executor import ChainExecutor
from .process import DEFAULT_OUTPUT_LIMIT, ShellResult, execute_shell_command
from .retry import ConstantBackoff, NoRetry, RetryContext, RetryStrategy, strategy_for
from .runners import RunnerTable, TaskRunner
from .runners.builtin import BuiltinRegistry, BuiltinRunner, builtin
from .runners.shell import ShellRunner
from .runners.sql import SqlRunner

__all__ = [
    "ChainExecutor",
    "DEFAULT_OUTPUT_LIMIT",
    "ShellResult",
    "execute_shell_command",
    "ConstantBackoff",
    "NoRetry",
    "RetryContext",
    "RetryStrategy",
    "strategy_for",
    "RunnerTable",
    "TaskRunner",
    "BuiltinRegistry",
    "BuiltinRunner",
    "builtin",
    "ShellRunner",
    "SqlRunner",
]
