"""Tests for the configuration management subsystem."""

import logging
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from git_tracker.config import Config, parse_size, parse_time
from git_tracker.constants import AUTH_URL_ENV, BACKEND_URL_ENV, DEFAULT_BACKEND_URL


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(BACKEND_URL_ENV, raising=False)
    monkeypatch.delenv(AUTH_URL_ENV, raising=False)


def test_config_defaults() -> None:
    """Verifies that the configuration initializes with sensible defaults."""
    conf = Config()
    assert conf.core.author is None
    assert conf.remote.base_url == DEFAULT_BACKEND_URL
    assert conf.remote.timeout == 10.0
    assert conf.daemon.session_check_interval == 600  # Default 10 mins
    assert conf.daemon.sync_interval == 3600  # Default 1 hour
    assert conf.limits.git_timeout == 30.0


def test_config_load_from_file(tmp_path: Path) -> None:
    """Verifies that sections in the TOML file override the defaults.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
    """
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        '[core]\nauthor = "Jane Doe"\n'
        '[remote]\nbase_url = "https://tracker.example.com/api"\ntimeout = "30s"\n'
        '[daemon]\nsync_interval = "2hr"\nmax_workers = 8\n'
        '[limits]\nmax_log_size = "10mb"\n'
    )

    conf = Config.load(config_path)

    assert conf.core.author == "Jane Doe"
    assert conf.remote.base_url == "https://tracker.example.com/api"
    assert conf.remote.timeout == 30
    assert conf.daemon.sync_interval == 7200
    assert conf.daemon.max_workers == 8
    assert conf.limits.max_log_size == 10 * 1024 * 1024


def test_global_config_is_cached(tmp_path: Path, mocker: MagicMock) -> None:
    """Verifies the global file is parsed once and copies are independent.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        mocker (MagicMock): Pytest fixture for mocking.
    """
    global_config_path = tmp_path / "config.toml"
    global_config_path.write_text('[core]\nauthor = "Jane Doe"\n')
    mocker.patch("git_tracker.config.CONFIG_FILE", global_config_path)

    first = Config.load()
    global_config_path.write_text('[core]\nauthor = "Someone Else"\n')
    second = Config.load()

    assert first.core.author == second.core.author == "Jane Doe"
    assert first is not second


def test_environment_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text('[remote]\nbase_url = "https://from-file/api"\n')
    monkeypatch.setenv(BACKEND_URL_ENV, "https://from-env/api")
    monkeypatch.setenv(AUTH_URL_ENV, "https://auth-env")

    conf = Config.load(config_path)

    assert conf.remote.base_url == "https://from-env/api"
    assert conf.remote.auth_url == "https://auth-env"


def test_missing_file_uses_defaults(tmp_path: Path) -> None:
    conf = Config.load(tmp_path / "absent.toml")

    assert conf == Config()


def test_syntax_error_keeps_defaults(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("[core\nauthor = ")

    conf = Config.load(config_path)

    assert conf.core.author is None
    assert "Config syntax error" in caplog.text


def test_parse_size() -> None:
    """Verifies that human-readable sizes are correctly converted to bytes."""
    assert parse_size(100) == 100
    assert parse_size("100kb") == 102400
    assert parse_size("10 MB") == 10485760
    assert parse_size("1.5gb") == int(1.5 * 1024**3)

    with pytest.raises(ValueError, match=r"Invalid size format '100 bits'"):
        parse_size("100 bits")


def test_parse_time() -> None:
    """Verifies that human-readable times are correctly converted to seconds."""
    assert parse_time(50) == 50
    assert parse_time("30s") == 30
    assert parse_time("10 min") == 600
    assert parse_time("2 hrs") == 7200
    assert parse_time("1.5h") == 5400

    with pytest.raises(ValueError, match=r"Invalid time format '10 lightyears'"):
        parse_time("10 lightyears")


def test_config_invalid_keys_and_values(
    tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    """Verifies that unknown keys are ignored and invalid values fallback to defaults.

    Args:
        tmp_path (Path): Pytest fixture for a temporary directory.
        caplog (pytest.LogCaptureFixture): Pytest fixture for capturing logs.
    """
    caplog.set_level(logging.WARNING)

    config_path = tmp_path / "config.toml"
    config_path.write_text(
        "[daemon]\n"
        'sync_interval = "fast"\n'
        'fake_setting = "ignored"\n'
        "[limits]\n"
        'max_log_size = "10 gallons"\n'
    )

    conf = Config.load(config_path)

    # Assert fallbacks to defaults
    assert conf.daemon.sync_interval == 3600
    assert conf.limits.max_log_size == 5242880

    # Assert warnings were logged
    assert "Unknown config keys in [daemon]: fake_setting" in caplog.text
    assert "Config error in [daemon].sync_interval: Invalid time format" in caplog.text
    assert "Config error in [limits].max_log_size: Invalid size format" in caplog.text
