"""
Root Typer application for the timetable CLI.

Commands::

    timetable run          start the scheduler for a client name
    timetable test-task    run one command through the subprocess runner
    timetable status       recent chain runs
    timetable logs         recent log events
    timetable health       store liveness
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import signal

import typer

from timetable.cli.utils import (
    console,
    fail,
    load_settings,
    open_store,
    output_dict,
    output_rows,
)
from timetable.core.errors import ExecutionError, TimetableError
from timetable.core.logging import get_logger

logger = get_logger(__name__)

app = typer.Typer(
    name="timetable",
    help="timetable — chain scheduler backed by a relational store.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("timetable")
        except PackageNotFoundError:
            from timetable import __version__ as v
        typer.echo(f"timetable {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """timetable CLI — run the scheduler and inspect its store."""


# ── run ──────────────────────────────────────────────────────────────────


async def _serve(service) -> None:
    loop = asyncio.get_running_loop()
    main_task = asyncio.current_task()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, main_task.cancel)
    try:
        await service.run_forever()
    except asyncio.CancelledError:
        logger.info("scheduler.shutdown_requested")


@app.command()
def run(
    client_name: str | None = typer.Option(None, "--client-name", "-c", help="Scheduler identity."),
    database_url: str | None = typer.Option(None, "--database-url", "-d"),
    poll_interval: float | None = typer.Option(None, "--poll-interval", help="Seconds between ticks."),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
    log_format: str | None = typer.Option(None, "--log-format", help="console or json"),
) -> None:
    """Start the scheduler; waits in standby while another process holds the identity."""
    from timetable.scheduling.service import SchedulerService

    settings = load_settings(
        client_name=client_name,
        database_url=database_url,
        poll_interval_seconds=poll_interval,
        verbose=verbose or None,
        log_format=log_format,
    )
    service = SchedulerService(settings)
    try:
        asyncio.run(_serve(service))
    except TimetableError as e:
        fail(e)


# ── test-task ────────────────────────────────────────────────────────────


@app.command("test-task")
def test_task(
    cmd: str = typer.Option(..., "--cmd", help="Command to run."),
    arg: str = typer.Option("[]", "--arg", help="Arguments as a JSON array."),
    timeout: float | None = typer.Option(None, "--timeout", help="Seconds before the command is killed."),
) -> None:
    """Run one command through the subprocess runner and print its exit code."""
    from timetable.execution.process import execute_shell_command
    from timetable.execution.runners.shell import shell_arg

    settings = load_settings()
    try:
        args = json.loads(arg)
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"not valid JSON: {e}", param_hint="--arg") from e
    if not isinstance(args, list):
        raise typer.BadParameter("must be a JSON array", param_hint="--arg")

    try:
        result = asyncio.run(
            execute_shell_command(
                cmd,
                [shell_arg(a) for a in args],
                timeout=timeout,
                output_limit=settings.shell_output_limit_bytes,
            )
        )
    except ExecutionError as e:
        typer.echo(f"Error: {e.message}")
        typer.echo(f"Exit code: {e.exit_code}")
        return

    if result.output:
        typer.echo(result.output.rstrip("\n"))
    if result.truncated:
        typer.echo("(output truncated)")
    typer.echo(f"Exit code: {result.exit_code}")


# ── inspection ───────────────────────────────────────────────────────────


@app.command()
def status(
    chain_id: int | None = typer.Option(None, "--chain", help="Only runs of this chain."),
    limit: int = typer.Option(20, "--limit", "-n"),
    database_url: str | None = typer.Option(None, "--database-url", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show recent chain runs."""
    settings = load_settings(database_url=database_url)
    store = open_store(settings)
    try:
        runs = store.list_run_statuses(chain_id=chain_id, limit=limit)
    except TimetableError as e:
        fail(e)
    finally:
        store.close()

    rows = [
        {
            "run_id": r.run_id,
            "chain_id": r.chain_id,
            "client_name": r.client_name,
            "status": r.status.value,
            "current_task_id": r.current_task_id,
            "started_at": r.started_at.isoformat() if r.started_at else None,
            "finished_at": r.finished_at.isoformat() if r.finished_at else None,
        }
        for r in runs
    ]
    output_rows(rows, as_json=json_out, title="Runs")


@app.command()
def logs(
    limit: int = typer.Option(50, "--limit", "-n"),
    database_url: str | None = typer.Option(None, "--database-url", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show log events in the order they were written."""
    settings = load_settings(database_url=database_url)
    store = open_store(settings)
    try:
        events = store.list_log_events(limit=limit)
    except TimetableError as e:
        fail(e)
    finally:
        store.close()

    rows = [
        {
            "ts": e.ts.isoformat(),
            "level": e.level.value,
            "chain_id": e.chain_id,
            "task_id": e.task_id,
            "message": e.message,
        }
        for e in events
    ]
    output_rows(rows, as_json=json_out, title="Log events")


@app.command()
def health(
    database_url: str | None = typer.Option(None, "--database-url", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Check that the store is reachable."""
    from timetable.scheduling.identity import IdentityGuard

    settings = load_settings(database_url=database_url)
    store = open_store(settings)
    try:
        alive = IdentityGuard(store, settings.client_name).is_alive()
        data = {
            "alive": alive,
            "client_name": settings.client_name,
            "backend": store.dialect.name,
        }
    finally:
        store.close()

    output_dict(data, as_json=json_out, title="Health")
    if not alive:
        console.print("[bold red]store unreachable[/bold red]")
        raise typer.Exit(code=1)
