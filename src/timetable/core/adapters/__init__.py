"""Database adapters for the store and for SQL tasks on other databases."""

from __future__ import annotations

from .base import DatabaseAdapter
from .postgresql import PostgreSQLAdapter
from .sqlite import SQLiteAdapter
from .types import DatabaseConfig, DatabaseType


def create_adapter(url: str, *, connect_timeout: float = 5.0) -> DatabaseAdapter:
    """Build an (unconnected) adapter from a database URL."""
    return adapter_for(DatabaseConfig.from_url(url, connect_timeout=connect_timeout))


def adapter_for(config: DatabaseConfig) -> DatabaseAdapter:
    """Build an (unconnected) adapter from a parsed configuration."""
    if config.db_type is DatabaseType.POSTGRESQL:
        return PostgreSQLAdapter.from_config(config)
    return SQLiteAdapter.from_config(config)


__all__ = [
    "DatabaseAdapter",
    "DatabaseConfig",
    "DatabaseType",
    "PostgreSQLAdapter",
    "SQLiteAdapter",
    "adapter_for",
    "create_adapter",
]
