"""Tests for timetable.core.settings."""

import pytest
from pydantic import ValidationError

from timetable.core.settings import TimetableSettings


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    """Isolate from TIMETABLE_* variables and any .env in the cwd."""
    import os

    for key in list(os.environ):
        if key.startswith("TIMETABLE_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)


class TestDefaults:
    """Defaults without any environment."""

    def test_defaults(self):
        settings = TimetableSettings()
        assert settings.client_name == "timetable"
        assert settings.database_url == "sqlite:///timetable.db"
        assert settings.poll_interval_seconds == 60.0
        assert settings.shell_output_limit_bytes == 64 * 1024
        assert settings.log_level == "INFO"
        assert settings.json_logs is False

    def test_verbose_means_debug(self):
        assert TimetableSettings(verbose=True).log_level == "DEBUG"


class TestEnvironment:
    """TIMETABLE_* variables and .env files."""

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("TIMETABLE_CLIENT_NAME", "worker01")
        monkeypatch.setenv("TIMETABLE_POLL_INTERVAL_SECONDS", "5")

        settings = TimetableSettings()
        assert settings.client_name == "worker01"
        assert settings.poll_interval_seconds == 5.0

    def test_dotenv_file(self, tmp_path):
        (tmp_path / ".env").write_text("TIMETABLE_LOG_FORMAT=json\n")
        assert TimetableSettings().json_logs is True

    def test_explicit_values_win(self, monkeypatch):
        monkeypatch.setenv("TIMETABLE_CLIENT_NAME", "from-env")
        assert TimetableSettings(client_name="explicit").client_name == "explicit"


class TestValidation:
    """Invalid values are rejected at startup."""

    def test_bad_log_format(self):
        with pytest.raises(ValidationError):
            TimetableSettings(log_format="xml")

    def test_empty_client_name(self):
        with pytest.raises(ValidationError):
            TimetableSettings(client_name="")

    def test_non_positive_interval(self):
        with pytest.raises(ValidationError):
            TimetableSettings(poll_interval_seconds=0)

    def test_frozen(self):
        settings = TimetableSettings()
        with pytest.raises(ValidationError):
            settings.client_name = "changed"
