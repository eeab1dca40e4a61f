import os
from pathlib import Path

"""Global constants and filesystem layout for Git Tracker.

This module defines the state and configuration paths (adhering to XDG
standards where applicable), application identifiers, and the sentinel values
shared by the extractor, ledger and reconciliation code.
"""

# --- Identity ---
APP_NAME = "git-tracker"
"""str: The human-readable application name."""

# --- Paths ---
_XDG_STATE = os.environ.get("XDG_STATE_HOME")
_BASE_STATE = Path(_XDG_STATE) if _XDG_STATE else Path.home() / ".local/state"

STATE_DIR = _BASE_STATE / "git-tracker"
"""Path: The directory for runtime state data (logs, ledger database)."""

# Ensure state directory exists immediately upon module import.
STATE_DIR.mkdir(parents=True, exist_ok=True)

DB_FILE = STATE_DIR / "tracker.sqlite"
"""Path: The SQLite database holding repositories, commits and the session."""

LOG_FILE = STATE_DIR / "daemon.log"
"""Path: The file path for the daemon process logs."""

PID_FILE = STATE_DIR / "daemon.pid"
"""Path: The file path storing the daemon's process ID."""

# --- Configuration Paths ---
CONFIG_DIR: Path = Path.home() / ".config/git-tracker"
"""Path: The directory for user configuration files."""

CONFIG_FILE: Path = CONFIG_DIR / "config.toml"
"""Path: The main configuration file path."""

# --- Remote ---
DEFAULT_BACKEND_URL = "http://localhost:3001/api"
"""str: Base URL of the backend API when none is configured."""

BACKEND_URL_ENV = "GIT_TRACKER_BACKEND_URL"
AUTH_URL_ENV = "GIT_TRACKER_AUTH_URL"

DEVELOPER_USER_TYPE = "developer"
"""str: The only principal type allowed to establish a session."""

# --- Git / Extraction Constants ---
UNKNOWN_BRANCH = "unknown"
"""str: Branch attribution used when no local branch contains a commit."""

SESSION_ROW_ID = 1
"""int: Primary key of the singleton session row."""
