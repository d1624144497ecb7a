"""Tests for environment-driven settings."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from logstream.config import Settings


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    for name in (
        "LOGSTREAM_BATCH_SIZE",
        "LOGSTREAM_CHANNEL_CAPACITY",
        "LOGSTREAM_REFRESH_INTERVAL",
        "LOGSTREAM_EXPENSIVE_SESSION_LIMIT",
        "LOGSTREAM_COST_ALERT_FACTOR",
        "LOGSTREAM_VERBOSE",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults() -> None:
    settings = Settings()

    assert settings.batch_size == 100
    assert settings.channel_capacity is None
    assert settings.refresh_interval == 5.0
    assert settings.expensive_session_limit == 10
    assert settings.cost_alert_factor == 1.5
    assert settings.verbose is False


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOGSTREAM_BATCH_SIZE", "25")
    monkeypatch.setenv("LOGSTREAM_CHANNEL_CAPACITY", "5")
    monkeypatch.setenv("LOGSTREAM_VERBOSE", "true")

    settings = Settings()

    assert settings.batch_size == 25
    assert settings.channel_capacity == 5
    assert settings.verbose is True


def test_dotenv_file_is_read(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text("LOGSTREAM_COST_ALERT_FACTOR=2.5\n", encoding="utf-8")

    assert Settings().cost_alert_factor == 2.5


def test_rejects_non_positive_batch_size(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LOGSTREAM_BATCH_SIZE", "0")

    with pytest.raises(ValidationError):
        Settings()
