"""
Shared pytest fixtures for timetable tests.

This module provides:
- An in-memory SQLite store with the bootstrap schema
- A file-backed store factory for tests that need two sessions
- A chain factory that persists a chain and its elements
- A helper to build a python command line for shell tasks

Usage:
    def test_something(store, make_chain):
        chain, elements = make_chain(elements=[{"kind": "BUILTIN", "command": "NoOp"}])
"""

import itertools
import sys
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
import structlog

# Ensure timetable package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from timetable.core.models import ChainConfig, ChainElement, TaskKind
from timetable.core.store import Store

CLIENT_NAME = "test-client"


# =============================================================================
# Logging isolation
# =============================================================================


@pytest.fixture(autouse=True)
def reset_structlog() -> Generator[None, None, None]:
    """Undo any logging configuration a test (or the CLI) installed."""
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def store() -> Generator[Store, None, None]:
    """Connected in-memory store with all tables created."""
    s = Store.from_url("sqlite:///:memory:", client_name=CLIENT_NAME)
    s.connect(create_schema=True)
    yield s
    s.close()


@pytest.fixture
def store_factory(tmp_path: Path) -> Generator[Callable[..., Store], None, None]:
    """Factory for stores sharing one SQLite file (separate sessions)."""
    url = f"sqlite:///{tmp_path / 'timetable.db'}"
    opened: list[Store] = []

    def _make(client_name: str = CLIENT_NAME) -> Store:
        s = Store.from_url(url, client_name=client_name)
        s.connect(create_schema=True)
        opened.append(s)
        return s

    yield _make
    for s in opened:
        s.close()


# =============================================================================
# Chain Fixtures
# =============================================================================


@pytest.fixture
def make_chain(store: Store) -> Callable[..., tuple[ChainConfig, list[ChainElement]]]:
    """Persist a chain with elements and return them as loaded from the store.

    Each element is given as a dict of ChainElement fields; ``kind`` defaults to
    BUILTIN and ``command`` to NoOp. Positions follow list order.
    """
    counter = itertools.count(1)

    def _make(
        name: str | None = None,
        *,
        elements: list[dict[str, Any]] = (),
        **chain_fields: Any,
    ) -> tuple[ChainConfig, list[ChainElement]]:
        chain_id = store.create_chain(
            ChainConfig(chain_id=0, name=name or f"chain-{next(counter)}", **chain_fields)
        )
        for position, given in enumerate(elements, start=1):
            fields = dict(given)
            kind = TaskKind(fields.pop("kind", "BUILTIN"))
            command = fields.pop("command", "NoOp")
            if "params" in fields:
                fields["params"] = tuple(fields["params"])
            store.add_chain_element(
                ChainElement(
                    task_id=0,
                    chain_id=chain_id,
                    position=fields.pop("position", position),
                    kind=kind,
                    command=command,
                    **fields,
                )
            )
        return store.get_chain_config(chain_id), store.get_chain_elements(chain_id)

    return _make


# =============================================================================
# Shell helpers
# =============================================================================


def python_task(code: str) -> dict[str, Any]:
    """Element fields running ``python -c code`` as a SHELL task."""
    return {"kind": "SHELL", "command": sys.executable, "params": ["-c", code]}


@pytest.fixture
def python_cmd() -> Callable[[str], dict[str, Any]]:
    return python_task
