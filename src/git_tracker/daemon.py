import atexit
import logging
import os
import signal
import sys
import threading
import time
from logging.handlers import RotatingFileHandler
from types import FrameType

from rich.console import Console

from .config import Config
from .constants import APP_NAME, LOG_FILE, PID_FILE
from .errors import NoSessionError, ReauthenticationRequiredError, TransientError
from .models import BatchReport
from .ops import Tracker
from .session import SessionManager, SessionState
from .system import get_system

SYSTEM = get_system()

logger = logging.getLogger(APP_NAME)
logger.setLevel(logging.INFO)

console = Console()

# Seconds before a sync deferred by system load is attempted again.
LOAD_RETRY_DELAY = 300


class SessionKeeper(threading.Thread):
    """Background thread that keeps the access token fresh.

    Runs one check immediately, then one every `interval` seconds until `stop`
    is set. A fully expired session produces a single desktop notification
    until the user logs in again.
    """

    def __init__(self, sessions: SessionManager, interval: float, stop: threading.Event):
        super().__init__(name="session-keeper", daemon=True)
        self.sessions = sessions
        self.interval = interval
        self.stop = stop
        self._notified = False

    def check(self) -> SessionState | None:
        try:
            state = self.sessions.refresh_if_needed()
        except TransientError as e:
            logger.warning(f"SESSION: Check failed, will retry next tick ({e})")
            return None
        except Exception:
            logger.exception("SESSION KEEPER ERROR")
            return None

        if state == SessionState.FULLY_EXPIRED:
            if not self._notified:
                SYSTEM.notify("Git Tracker", "Re-authentication required. Run 'git-tracker login'.")
                self._notified = True
        elif state == SessionState.VALID:
            self._notified = False
        return state

    def run(self) -> None:
        logger.info(f"SESSION: Background check started (every {self.interval:.0f}s).")
        while not self.stop.is_set():
            self.check()
            self.stop.wait(self.interval)
        logger.info("SESSION: Background check stopped.")


def _log_report(label: str, report: BatchReport) -> None:
    logger.info(f"{label}: {len(report.succeeded)} succeeded, {len(report.failed)} failed.")
    for entry in report.failed:
        logger.warning(f"{label} FAILED {entry['path']}: {entry['error']}")


def run_sync(tracker: Tracker) -> BatchReport | None:
    """One extract-and-deliver cycle. Session problems skip delivery only."""
    try:
        report = tracker.sync_all()
    except (NoSessionError, ReauthenticationRequiredError) as e:
        logger.warning(f"SYNC: Commits staged locally, delivery skipped ({e})")
        return None
    except TransientError as e:
        logger.warning(f"OFFLINE: Commits staged locally, delivery skipped ({e})")
        return None
    _log_report("SYNC", report)
    return report


def run_status_sweep(tracker: Tracker) -> BatchReport | None:
    try:
        report = tracker.check_all_statuses()
    except (NoSessionError, ReauthenticationRequiredError, TransientError) as e:
        logger.warning(f"STATUS: Sweep skipped ({e})")
        return None
    _log_report("STATUS", report)
    return report


def run_forever(tracker: Tracker, stop: threading.Event) -> None:
    """Schedules sync cycles and status sweeps until `stop` is set."""
    cadence = tracker.config.daemon
    next_sync = next_status = time.monotonic()

    while not stop.is_set():
        now = time.monotonic()
        if now >= next_sync:
            if SYSTEM.is_under_load():
                logger.info("SKIPPED sync: System under load")
                next_sync = now + min(cadence.sync_interval, LOAD_RETRY_DELAY)
            else:
                try:
                    run_sync(tracker)
                except Exception:
                    logger.exception("LOOP ERROR sync")
                next_sync = now + cadence.sync_interval
        if now >= next_status:
            try:
                run_status_sweep(tracker)
            except Exception:
                logger.exception("LOOP ERROR status")
            next_status = now + cadence.status_interval

        stop.wait(max(0.0, min(next_sync, next_status) - time.monotonic()))


def setup_logging(interactive: bool, max_log_size: int) -> None:
    """Configures the logging subsystem.

    Args:
        interactive (bool): If True, logs to stdout. If False, logs to file/stderr
                            with rotation enabled.
        max_log_size (int): Bytes before the daemon log is rotated.
    """
    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"
    )

    # Always log to stderr (captured by systemd/launchd).
    stream_handler = logging.StreamHandler(
        sys.stderr if not interactive else sys.stdout
    )
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if not interactive:
        file_handler = RotatingFileHandler(
            LOG_FILE,
            maxBytes=max_log_size,
            backupCount=5,
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)


def _write_pid_file() -> None:
    try:
        with open(PID_FILE, "w") as f:
            f.write(str(os.getpid()))

        # Ensure cleanup on exit.
        atexit.register(lambda: PID_FILE.unlink(missing_ok=True))
    except OSError as e:
        logger.warning(f"Could not write PID file: {e}")


def main(interactive: bool = False) -> None:
    """The daemon entry point.

    Args:
        interactive (bool, optional): Whether to run a single pass (CLI 'now' command).
                                      Defaults to False.
    """
    config = Config.load()
    setup_logging(interactive, config.limits.max_log_size)
    tracker = Tracker.from_config(config)

    try:
        if interactive:
            with console.status("[bold blue]Extracting and delivering...", spinner="dots"):
                report = run_sync(tracker)
            if report is None:
                console.print(
                    "[yellow]Commits staged locally. Log in to deliver them.[/yellow]"
                )
            elif report.all_succeeded:
                console.print(
                    f"[bold green]✔ Sync complete:[/bold green] {report.total} step(s)."
                )
            else:
                console.print(
                    f"[bold yellow]⚠ Sync finished with {len(report.failed)} failure(s).[/bold yellow]"
                )
            return

        _write_pid_file()
        stop = threading.Event()

        def shutdown_handler(signum: int, _frame: FrameType | None) -> None:
            logger.info(f"Received signal {signum}, shutting down.")
            stop.set()

        signal.signal(signal.SIGTERM, shutdown_handler)
        signal.signal(signal.SIGINT, shutdown_handler)

        keeper = SessionKeeper(tracker.sessions, config.daemon.session_check_interval, stop)
        keeper.start()
        run_forever(tracker, stop)
        keeper.join(timeout=5)
    finally:
        tracker.close()


if __name__ == "__main__":
    main()
