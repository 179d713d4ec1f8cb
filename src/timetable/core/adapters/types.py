"""Database types and configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any
from urllib.parse import unquote, urlparse

from timetable.core.errors import ConfigError


class DatabaseType(str, Enum):
    """Supported database types."""

    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


@dataclass
class DatabaseConfig:
    """
    Configuration for a database connection.

    Different fields are used by different database types.
    """

    db_type: DatabaseType = DatabaseType.SQLITE

    # SQLite
    path: str | None = None

    # PostgreSQL
    host: str = "localhost"
    port: int = 5432
    database: str = ""
    username: str | None = None
    password: str | None = None

    connect_timeout: float = 5.0
    options: dict[str, Any] = field(default_factory=dict)

    @property
    def is_memory(self) -> bool:
        """SQLite database that lives only inside its one connection."""
        if self.db_type is not DatabaseType.SQLITE:
            return False
        path = self.path or ":memory:"
        return path == ":memory:" or path.startswith("file::memory:")

    @classmethod
    def from_url(cls, url: str, *, connect_timeout: float = 5.0) -> DatabaseConfig:
        """Parse ``sqlite:///path`` or ``postgresql://user:pw@host:port/db``."""
        parsed = urlparse(url)
        scheme = parsed.scheme.split("+", 1)[0].lower()

        if scheme == "sqlite":
            # sqlite:///relative.db -> "relative.db"; sqlite:////abs.db -> "/abs.db"
            path = url.split("://", 1)[1]
            path = path[1:] if path.startswith("/") else path
            return cls(
                db_type=DatabaseType.SQLITE,
                path=path or ":memory:",
                connect_timeout=connect_timeout,
            )

        if scheme in ("postgresql", "postgres"):
            return cls(
                db_type=DatabaseType.POSTGRESQL,
                host=parsed.hostname or "localhost",
                port=parsed.port or 5432,
                database=parsed.path.lstrip("/"),
                username=unquote(parsed.username) if parsed.username else None,
                password=unquote(parsed.password) if parsed.password else None,
                connect_timeout=connect_timeout,
            )

        raise ConfigError(f"Unsupported database URL scheme: {parsed.scheme!r}")


__all__ = ["DatabaseType", "DatabaseConfig"]
