"""
Scheduler settings.

One validated, immutable settings object is created at startup and passed
to every component that needs configuration. Nothing reads configuration
from module globals.

All fields can be set via ``TIMETABLE_*`` environment variables (e.g.
``TIMETABLE_CLIENT_NAME=worker01``) or a ``.env`` file.

Examples:
    >>> settings = TimetableSettings(client_name="worker01",
    ...                              database_url="sqlite:///:memory:")
    >>> settings.log_level
    'INFO'
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TimetableSettings(BaseSettings):
    """Configuration consumed by the identity guard, store and tick loop."""

    model_config = SettingsConfigDict(
        env_prefix="TIMETABLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ── Identity ─────────────────────────────────────────────────
    client_name: str = Field(
        default="timetable",
        min_length=1,
        description="Name of the scheduler identity; one live process per name",
    )

    # ── Store ────────────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite:///timetable.db",
        description="sqlite:///path, sqlite:///:memory: or postgresql://...",
    )
    database_timeout_seconds: float = Field(default=5.0, gt=0)

    # ── Scheduling ───────────────────────────────────────────────
    poll_interval_seconds: float = Field(default=60.0, gt=0)

    # ── Shell tasks ──────────────────────────────────────────────
    shell_output_limit_bytes: int = Field(default=64 * 1024, ge=0)

    # ── Logging ──────────────────────────────────────────────────
    verbose: bool = Field(default=False)
    log_format: str = Field(default="console")

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("console", "json"):
            raise ValueError("log_format must be 'console' or 'json'")
        return value

    @property
    def log_level(self) -> str:
        return "DEBUG" if self.verbose else "INFO"

    @property
    def json_logs(self) -> bool:
        return self.log_format == "json"


__all__ = ["TimetableSettings"]
