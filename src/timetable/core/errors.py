"""
Structured error types for timetable.

Every failure the scheduler can observe is classified into a small typed
hierarchy so callers can decide, without string matching, whether a
condition is a coordination problem, a persistence problem, or an
execution problem.

Manifesto:
    - **Typed hierarchy:** one class per failure domain
    - **Rich context:** chain id, task id and attempt travel with the error
    - **Error chaining:** the underlying driver/OS exception is kept as cause
    - **Exit codes:** execution errors carry the exit code reported upward

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                       TimetableError                          │
        │        (category, retryable, context, cause)                  │
        ├──────────────────────────────────────────────────────────────┤
        │  ConfigError        StoreError             ExecutionError     │
        │  (CONFIG)           (STORE)                (EXECUTION)        │
        │                        │                        │             │
        │                   NoRowsError             LaunchError         │
        │                   StoreConnectionError    CommandTimeoutError │
        │                                           BuiltinNotFoundError│
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> err = StoreError("insert failed").with_context(chain_id=7, task_id=3)
    >>> err.to_dict()["context"]
    {'chain_id': 7, 'task_id': 3}

Tags:
    exception, error-hierarchy, error-context, timetable
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Exit code reported when a command could not be started at all.
LAUNCH_FAILURE_EXIT_CODE = -1
# Exit code reported when a command was killed after exceeding its timeout.
TIMEOUT_EXIT_CODE = -2


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    CONFIG = "CONFIG"
    COORDINATION = "COORDINATION"
    STORE = "STORE"
    EXECUTION = "EXECUTION"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error."""

    chain_id: int | None = None
    task_id: int | None = None
    run_id: int | None = None
    attempt: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {}
        for key in ("chain_id", "task_id", "run_id", "attempt"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class TimetableError(Exception):
    """
    Base exception for all timetable errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that a
    bare ``raise StoreError("...")`` is already classified.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> TimetableError:
        """
        Add context to this error (fluent API).

        Usage:
            raise StoreError("update failed").with_context(run_id=12)
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __str__(self) -> str:
        context_dict = self.context.to_dict()
        if not context_dict:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in context_dict.items())
        return f"{self.message} ({details})"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION
# =============================================================================


class ConfigError(TimetableError):
    """Missing or invalid configuration. Never retryable."""

    default_category = ErrorCategory.CONFIG


# =============================================================================
# STORE
# =============================================================================


class StoreError(TimetableError):
    """A backing store operation failed."""

    default_category = ErrorCategory.STORE
    default_retryable = True


class NoRowsError(StoreError):
    """
    A query expected to return a row returned none.

    This is an expected empty-result condition, not a failure: the
    admission controller treats it as "zero running instances".
    """

    default_retryable = False


class StoreConnectionError(StoreError):
    """The store could not be reached."""


# =============================================================================
# EXECUTION
# =============================================================================


class ExecutionError(TimetableError):
    """A task could not be executed to completion."""

    default_category = ErrorCategory.EXECUTION

    def __init__(self, message: str, *, exit_code: int | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.exit_code = exit_code

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.exit_code is not None:
            result["exit_code"] = self.exit_code
        return result


class LaunchError(ExecutionError):
    """The command could not be started (not found, permission denied, ...)."""

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("exit_code", LAUNCH_FAILURE_EXIT_CODE)
        super().__init__(message, **kwargs)


class CommandTimeoutError(ExecutionError):
    """The command exceeded its deadline and was killed."""

    default_retryable = True

    def __init__(
        self,
        message: str,
        *,
        pid: int | None = None,
        output: str = "",
        **kwargs: Any,
    ):
        kwargs.setdefault("exit_code", TIMEOUT_EXIT_CODE)
        super().__init__(message, **kwargs)
        self.pid = pid
        self.output = output


class BuiltinNotFoundError(ExecutionError):
    """No built-in procedure is registered under the requested name."""


__all__ = [
    "LAUNCH_FAILURE_EXIT_CODE",
    "TIMEOUT_EXIT_CODE",
    "ErrorCategory",
    "ErrorContext",
    "TimetableError",
    "ConfigError",
    "StoreError",
    "NoRowsError",
    "StoreConnectionError",
    "ExecutionError",
    "LaunchError",
    "CommandTimeoutError",
    "BuiltinNotFoundError",
]
