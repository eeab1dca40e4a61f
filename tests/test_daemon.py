"""Tests for the background daemon: session keeping, sync cycles and logging."""

import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest

from git_tracker import daemon
from git_tracker.config import Config
from git_tracker.errors import NoSessionError, RemoteUnavailableError
from git_tracker.models import BatchReport
from git_tracker.session import SessionState


@pytest.fixture
def restore_handlers() -> Any:
    """Removes handlers installed by `setup_logging` during a test."""
    before = list(daemon.logger.handlers)
    yield
    for handler in daemon.logger.handlers[:]:
        if handler not in before:
            daemon.logger.removeHandler(handler)
            handler.close()


@pytest.fixture
def tracker(mocker: MagicMock) -> MagicMock:
    mocker.patch.object(daemon.SYSTEM, "is_under_load", return_value=False)
    mock = mocker.MagicMock()
    mock.config = Config()
    return mock


def test_keeper_notifies_once_per_expiry(mocker: MagicMock) -> None:
    """Verifies a fully expired session notifies once until it becomes valid again.

    Args:
        mocker (MagicMock): Pytest fixture for mocking.
    """
    notify = mocker.patch.object(daemon.SYSTEM, "notify")
    sessions = MagicMock()
    sessions.refresh_if_needed.side_effect = [
        SessionState.FULLY_EXPIRED,
        SessionState.FULLY_EXPIRED,
        SessionState.VALID,
        SessionState.FULLY_EXPIRED,
    ]
    keeper = daemon.SessionKeeper(sessions, 600, threading.Event())

    for _ in range(4):
        keeper.check()

    assert notify.call_count == 2


def test_keeper_survives_transient_errors(mocker: MagicMock, caplog: pytest.LogCaptureFixture) -> None:
    notify = mocker.patch.object(daemon.SYSTEM, "notify")
    sessions = MagicMock()
    sessions.refresh_if_needed.side_effect = RemoteUnavailableError("refresh", "http://auth")
    keeper = daemon.SessionKeeper(sessions, 600, threading.Event())

    assert keeper.check() is None
    assert "will retry" in caplog.text
    notify.assert_not_called()


def test_keeper_thread_stops_on_event() -> None:
    stop = threading.Event()
    sessions = MagicMock()

    def refresh() -> SessionState:
        stop.set()
        return SessionState.VALID

    sessions.refresh_if_needed.side_effect = refresh
    keeper = daemon.SessionKeeper(sessions, 0.01, stop)

    keeper.start()
    keeper.join(timeout=2)

    assert not keeper.is_alive()
    sessions.refresh_if_needed.assert_called_once()


def test_run_sync_without_session_skips_delivery(
    tracker: MagicMock, caplog: pytest.LogCaptureFixture
) -> None:
    tracker.sync_all.side_effect = NoSessionError()

    assert daemon.run_sync(tracker) is None
    assert "delivery skipped" in caplog.text


def test_run_sync_logs_failures(tracker: MagicMock, caplog: pytest.LogCaptureFixture) -> None:
    tracker.sync_all.return_value = BatchReport(
        succeeded=[{"repoId": "1", "path": "/a"}],
        failed=[{"repoId": "2", "path": "/b", "error": "boom"}],
    )

    report = daemon.run_sync(tracker)

    assert report is not None and report.total == 2
    assert "SYNC: 1 succeeded, 1 failed." in caplog.text
    assert "SYNC FAILED /b: boom" in caplog.text


def test_run_forever_runs_both_schedules(tracker: MagicMock) -> None:
    """Verifies the first loop iteration runs a sync cycle and a status sweep."""
    stop = threading.Event()
    tracker.sync_all.return_value = BatchReport()

    def sweep() -> BatchReport:
        stop.set()
        return BatchReport()

    tracker.check_all_statuses.side_effect = sweep

    daemon.run_forever(tracker, stop)

    tracker.sync_all.assert_called_once()
    tracker.check_all_statuses.assert_called_once()


def test_run_forever_survives_unexpected_errors(
    tracker: MagicMock, caplog: pytest.LogCaptureFixture
) -> None:
    stop = threading.Event()
    tracker.sync_all.side_effect = RuntimeError("disk full")
    tracker.check_all_statuses.side_effect = lambda: stop.set() or BatchReport()

    daemon.run_forever(tracker, stop)

    assert "LOOP ERROR sync" in caplog.text


def test_setup_logging_daemon_mode_rotates(
    tmp_path: Path, mocker: MagicMock, restore_handlers: Any
) -> None:
    log_file = tmp_path / "daemon.log"
    mocker.patch("git_tracker.daemon.LOG_FILE", log_file)

    daemon.setup_logging(interactive=False, max_log_size=1024)

    file_handlers = [
        h for h in daemon.logger.handlers if isinstance(h, RotatingFileHandler)
    ]
    assert file_handlers and file_handlers[-1].maxBytes == 1024


def test_main_interactive_runs_single_pass(
    mocker: MagicMock, tracker: MagicMock, restore_handlers: Any
) -> None:
    mocker.patch("git_tracker.daemon.Config.load", return_value=Config())
    mocker.patch("git_tracker.daemon.Tracker.from_config", return_value=tracker)
    tracker.sync_all.return_value = BatchReport()
    write_pid = mocker.patch("git_tracker.daemon._write_pid_file")

    daemon.main(interactive=True)

    tracker.sync_all.assert_called_once()
    tracker.close.assert_called_once()
    write_pid.assert_not_called()


def test_run_forever_defers_sync_under_load(
    tracker: MagicMock, mocker: MagicMock, caplog: pytest.LogCaptureFixture
) -> None:
    mocker.patch.object(daemon.SYSTEM, "is_under_load", return_value=True)
    stop = threading.Event()
    tracker.check_all_statuses.side_effect = lambda: stop.set() or BatchReport()

    daemon.run_forever(tracker, stop)

    tracker.sync_all.assert_not_called()
    assert "SKIPPED sync: System under load" in caplog.text
