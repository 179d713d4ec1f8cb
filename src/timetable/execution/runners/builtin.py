"""Built-in tasks — in-process procedures looked up by name.

ARCHITECTURE
────────────
::

    BuiltinRegistry
      ├── .register(name, handler)   ─ store handler
      ├── .get(name)                 ─ lookup, BuiltinNotFoundError if absent
      ├── .has(name)                 ─ existence check
      └── .list_builtins()           ─ registered names

    @builtin(name)                   ─ register into the default registry

    Shipped built-ins:
      NoOp    does nothing, succeeds
      Sleep   waits params[0] seconds (cancellable)
      Log     writes the params to the log table

A handler is ``async def handler(ctx: BuiltinContext) -> str``; its return
value becomes the step output and any exception it raises becomes the step
error.

Tags:
    timetable, execution, builtin, registry
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from timetable.core.errors import TIMEOUT_EXIT_CODE, BuiltinNotFoundError
from timetable.core.logging import get_logger
from timetable.core.models import (
    ChainElement,
    ChainElementExecution,
    LogLevel,
    TaskResult,
)
from timetable.core.store import Store

logger = get_logger(__name__)


@dataclass
class BuiltinContext:
    """What a built-in procedure gets to see."""

    store: Store
    element: ChainElement
    execution: ChainElementExecution

    @property
    def params(self) -> tuple[Any, ...]:
        return self.execution.params


BuiltinHandler = Callable[[BuiltinContext], Awaitable[str]]


class BuiltinRegistry:
    """Injectable name → built-in procedure lookup."""

    def __init__(self) -> None:
        self._handlers: dict[str, BuiltinHandler] = {}
        self._descriptions: dict[str, str | None] = {}

    def register(self, name: str, handler: BuiltinHandler, description: str | None = None) -> None:
        self._handlers[name] = handler
        self._descriptions[name] = description

    def get(self, name: str) -> BuiltinHandler:
        if name not in self._handlers:
            raise BuiltinNotFoundError(
                f"No built-in task named {name!r}. Available: {self.list_builtins() or 'none'}"
            )
        return self._handlers[name]

    def has(self, name: str) -> bool:
        return name in self._handlers

    def describe(self, name: str) -> str | None:
        return self._descriptions.get(name)

    def list_builtins(self) -> list[str]:
        return sorted(self._handlers)


# === DEFAULT REGISTRY ===

_default_registry = BuiltinRegistry()


def get_default_registry() -> BuiltinRegistry:
    return _default_registry


def builtin(name: str, registry: BuiltinRegistry | None = None, description: str | None = None):
    """Decorator registering a built-in procedure.

    Example:
        >>> @builtin("Echo")
        ... async def echo(ctx):
        ...     return " ".join(map(str, ctx.params))
    """
    target = registry or _default_registry

    def decorator(func: BuiltinHandler) -> BuiltinHandler:
        target.register(name, func, description=description or func.__doc__)
        return func

    return decorator


@builtin("NoOp")
async def noop(ctx: BuiltinContext) -> str:  # noqa: ARG001
    """Do nothing."""
    return ""


@builtin("Sleep")
async def sleep(ctx: BuiltinContext) -> str:
    """Sleep for params[0] seconds."""
    seconds = float(ctx.params[0]) if ctx.params else 0.0
    if seconds < 0:
        raise ValueError(f"Sleep needs a non-negative duration, got {seconds}")
    await asyncio.sleep(seconds)
    return f"slept {seconds:g}s"


@builtin("Log")
async def log(ctx: BuiltinContext) -> str:
    """Write the params to the log table."""
    if len(ctx.params) == 1 and isinstance(ctx.params[0], str):
        message = ctx.params[0]
    else:
        message = json.dumps(list(ctx.params), default=str)
    ctx.store.insert_log_event(
        LogLevel.INFO,
        message,
        chain_id=ctx.element.chain_id,
        task_id=ctx.element.task_id,
    )
    return message


# === RUNNER ===


class BuiltinRunner:
    """Runs the built-in named by the element's ``command``."""

    def __init__(self, store: Store, registry: BuiltinRegistry | None = None) -> None:
        self.store = store
        self.registry = registry or get_default_registry()

    async def run(self, element: ChainElement, execution: ChainElementExecution) -> TaskResult:
        started = time.monotonic()
        try:
            handler = self.registry.get(element.command)
        except BuiltinNotFoundError as e:
            return TaskResult(error=e.message)

        ctx = BuiltinContext(store=self.store, element=element, execution=execution)
        timeout = element.timeout_seconds or None
        try:
            if timeout:
                output = await asyncio.wait_for(handler(ctx), timeout)
            else:
                output = await handler(ctx)
        except asyncio.TimeoutError:
            return TaskResult(
                exit_code=TIMEOUT_EXIT_CODE,
                error=f"built-in {element.command!r} timed out after {timeout}s",
                duration=time.monotonic() - started,
            )
        except Exception as e:
            logger.debug("builtin.failed", name=element.command, error=str(e))
            return TaskResult(error=str(e) or type(e).__name__, duration=time.monotonic() - started)

        return TaskResult(output=output or "", duration=time.monotonic() - started)


__all__ = [
    "BuiltinContext",
    "BuiltinRegistry",
    "BuiltinRunner",
    "builtin",
    "get_default_registry",
]
