"""Tests for the SQL, shell and built-in task runners."""

import asyncio
import sys
import time

import pytest

from timetable.core.errors import BuiltinNotFoundError
from timetable.core.models import ChainElement, ChainElementExecution, LogLevel, TaskKind
from timetable.core.store import Store
from timetable.execution.runners import RunnerTable
from timetable.execution.runners.builtin import (
    BuiltinRegistry,
    BuiltinRunner,
    builtin,
    get_default_registry,
)
from timetable.execution.runners.shell import ShellRunner, shell_arg
from timetable.execution.runners.sql import SqlRunner


def element(kind: TaskKind, command: str, *params, **fields) -> ChainElement:
    return ChainElement(
        task_id=fields.pop("task_id", 11),
        chain_id=fields.pop("chain_id", 22),
        position=1,
        kind=kind,
        command=command,
        params=params,
        **fields,
    )


async def run(runner, el: ChainElement):
    return await runner.run(el, ChainElementExecution.for_element(run_id=1, element=el))


ENDLESS = "WITH RECURSIVE c(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM c) SELECT count(*) FROM c"


class TestRunnerTable:
    """Dispatch by task kind."""

    def test_default_covers_every_kind(self, store):
        table = RunnerTable.default(store)
        assert all(table.has(kind) for kind in TaskKind)
        assert isinstance(table.get(TaskKind.SQL), SqlRunner)

    def test_unknown_kind(self):
        with pytest.raises(LookupError):
            RunnerTable().get(TaskKind.SHELL)


class TestSqlRunner:
    """SQL statements on an in-memory store, run inline."""

    @pytest.mark.asyncio
    async def test_statement_with_params(self, store):
        result = await run(SqlRunner(store), element(TaskKind.SQL, "SELECT ?, ?", 1, "two"))
        assert not result.failed
        assert result.output == "1 row(s)"

    @pytest.mark.asyncio
    async def test_bad_statement_fails_the_attempt(self, store):
        result = await run(SqlRunner(store), element(TaskKind.SQL, "SELEC 1"))
        assert result.failed
        assert "syntax error" in result.error

    @pytest.mark.asyncio
    async def test_statement_timeout(self, store):
        result = await run(SqlRunner(store), element(TaskKind.SQL, ENDLESS, timeout_seconds=0.05))
        assert result.failed

    @pytest.mark.asyncio
    async def test_remote_database(self, store, tmp_path):
        """Elements with their own database_url run there, not on the store."""
        url = f"sqlite:///{tmp_path / 'remote.db'}"
        runner = SqlRunner(store)

        await run(runner, element(TaskKind.SQL, "CREATE TABLE t (x INTEGER)", database_url=url))
        result = await run(runner, element(TaskKind.SQL, "INSERT INTO t VALUES (?)", 5, database_url=url))

        assert result.output == "1 row(s)"
        remote = Store.from_url(url, client_name="check")
        remote.connect()
        try:
            assert remote.adapter.query_one("SELECT x FROM t")["x"] == 5
        finally:
            remote.close()


class TestSqlRunnerSession:
    """Statements on a file database run off the event loop."""

    @pytest.mark.asyncio
    async def test_loop_keeps_running_during_statement(self, store_factory):
        runner = SqlRunner(store_factory())
        beats: list[float] = []

        async def heartbeat():
            while True:
                beats.append(time.monotonic())
                await asyncio.sleep(0.01)

        ticker = asyncio.create_task(heartbeat())
        try:
            result = await run(runner, element(TaskKind.SQL, ENDLESS, timeout_seconds=0.5))
        finally:
            ticker.cancel()

        assert result.failed
        assert len(beats) > 10
        assert max(b - a for a, b in zip(beats, beats[1:])) < 0.25

    @pytest.mark.asyncio
    async def test_cancel_interrupts_statement(self, store_factory):
        store = store_factory()
        task = asyncio.create_task(run(SqlRunner(store), element(TaskKind.SQL, ENDLESS)))
        await asyncio.sleep(0.3)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await asyncio.wait_for(task, timeout=2)
        store.ping()

    @pytest.mark.asyncio
    async def test_write_visible_to_store(self, store_factory):
        store = store_factory()
        runner = SqlRunner(store)

        await run(runner, element(TaskKind.SQL, "CREATE TABLE t (x INTEGER)"))
        result = await run(runner, element(TaskKind.SQL, "INSERT INTO t VALUES (?)", 7))

        assert result.output == "1 row(s)"
        assert store.adapter.query_one("SELECT x FROM t")["x"] == 7

    @pytest.mark.asyncio
    async def test_bad_statement_fails_the_attempt(self, store_factory):
        result = await run(SqlRunner(store_factory()), element(TaskKind.SQL, "SELEC 1"))
        assert result.failed
        assert "syntax error" in result.error

    @pytest.mark.asyncio
    async def test_unreachable_database(self, store, tmp_path):
        url = f"sqlite:///{tmp_path / 'missing' / 'remote.db'}"
        result = await run(SqlRunner(store), element(TaskKind.SQL, "SELECT 1", database_url=url))
        assert result.failed


class TestShellArg:
    """Rendering of task parameters."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [("a b", "a b"), (3, "3"), (1.5, "1.5"), (True, "true"), ([1, "x"], '[1, "x"]'), ({"k": 1}, '{"k": 1}')],
    )
    def test_shell_arg(self, value, expected):
        assert shell_arg(value) == expected


class TestShellRunner:
    """SHELL tasks."""

    @pytest.mark.asyncio
    async def test_params_become_argv(self):
        el = element(TaskKind.SHELL, sys.executable, "-c", "import sys; print(sys.argv[1:])", 7, True)
        result = await run(ShellRunner(), el)
        assert result.output.strip() == "['7', 'true']"
        assert result.extra["truncated"] is False

    @pytest.mark.asyncio
    async def test_non_zero_exit(self):
        el = element(TaskKind.SHELL, sys.executable, "-c", "import sys; sys.exit(5)")
        result = await run(ShellRunner(), el)
        assert result.failed
        assert result.exit_code == 5
        assert result.describe() == "exit code 5"

    @pytest.mark.asyncio
    async def test_launch_failure(self):
        result = await run(ShellRunner(), element(TaskKind.SHELL, "/nonexistent/cmd"))
        assert result.exit_code == -1
        assert result.error

    @pytest.mark.slow
    @pytest.mark.asyncio
    async def test_timeout(self):
        el = element(
            TaskKind.SHELL,
            sys.executable,
            "-c",
            "import time; print('begin', flush=True); time.sleep(30)",
            timeout_seconds=0.5,
        )
        result = await run(ShellRunner(), el)
        assert result.exit_code == -2
        assert "begin" in result.output

    @pytest.mark.asyncio
    async def test_output_limit(self):
        el = element(TaskKind.SHELL, sys.executable, "-c", "print('y' * 5000)")
        result = await run(ShellRunner(output_limit=10), el)
        assert result.output == "y" * 10
        assert result.extra["truncated"] is True


class TestBuiltinRegistry:
    """Name lookup."""

    def test_shipped_builtins(self):
        assert {"NoOp", "Sleep", "Log"} <= set(get_default_registry().list_builtins())

    def test_unknown_name(self):
        with pytest.raises(BuiltinNotFoundError, match="Available"):
            BuiltinRegistry().get("Missing")

    def test_decorator_with_private_registry(self):
        registry = BuiltinRegistry()

        @builtin("Echo", registry=registry)
        async def echo(ctx):
            """Echo params."""
            return " ".join(map(str, ctx.params))

        assert registry.has("Echo")
        assert registry.describe("Echo") == "Echo params."


class TestBuiltinRunner:
    """BUILTIN tasks."""

    @pytest.mark.asyncio
    async def test_noop(self, store):
        result = await run(BuiltinRunner(store), element(TaskKind.BUILTIN, "NoOp"))
        assert not result.failed
        assert result.output == ""

    @pytest.mark.asyncio
    async def test_log_writes_event(self, store):
        result = await run(BuiltinRunner(store), element(TaskKind.BUILTIN, "Log", "hello"))

        (event,) = store.list_log_events()
        assert result.output == "hello"
        assert event.level is LogLevel.INFO
        assert (event.chain_id, event.task_id) == (22, 11)

    @pytest.mark.asyncio
    async def test_log_several_params(self, store):
        result = await run(BuiltinRunner(store), element(TaskKind.BUILTIN, "Log", "a", 1))
        assert result.output == '["a", 1]'

    @pytest.mark.asyncio
    async def test_sleep(self, store):
        result = await run(BuiltinRunner(store), element(TaskKind.BUILTIN, "Sleep", "0.01"))
        assert result.output == "slept 0.01s"

    @pytest.mark.asyncio
    async def test_sleep_negative_fails(self, store):
        result = await run(BuiltinRunner(store), element(TaskKind.BUILTIN, "Sleep", "-1"))
        assert result.failed
        assert "non-negative" in result.error

    @pytest.mark.asyncio
    async def test_unknown_builtin_fails_the_attempt(self, store):
        result = await run(BuiltinRunner(store), element(TaskKind.BUILTIN, "Nope"))
        assert result.failed
        assert "Nope" in result.error

    @pytest.mark.asyncio
    async def test_timeout(self, store):
        el = element(TaskKind.BUILTIN, "Sleep", "5", timeout_seconds=0.05)
        result = await run(BuiltinRunner(store), el)
        assert result.exit_code == -2
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_custom_registry(self, store):
        registry = BuiltinRegistry()

        @builtin("Fail", registry=registry)
        async def fail(ctx):
            raise RuntimeError("kaput")

        result = await run(BuiltinRunner(store, registry), element(TaskKind.BUILTIN, "Fail"))
        assert result.error == "kaput"

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, store):
        el = element(TaskKind.BUILTIN, "Sleep", "30")
        task = asyncio.create_task(run(BuiltinRunner(store), el))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
