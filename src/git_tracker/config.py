import logging
import os
import re
import tomllib
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from .constants import (
    APP_NAME,
    AUTH_URL_ENV,
    BACKEND_URL_ENV,
    CONFIG_FILE,
    DB_FILE,
    DEFAULT_BACKEND_URL,
)

logger = logging.getLogger(APP_NAME)


def parse_size(value: int | str) -> int:
    """Converts human-readable size strings (e.g., '100MB') to bytes."""
    if isinstance(value, int):
        return value
    match = re.match(r"^(\d+(?:\.\d+)?)\s*([kmg]b?)$", str(value).strip().lower())
    if not match:
        raise ValueError(f"Invalid size format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {
        "k": 1024,
        "kb": 1024,
        "m": 1024**2,
        "mb": 1024**2,
        "g": 1024**3,
        "gb": 1024**3,
    }
    return int(num * multiplier[unit])


def parse_time(value: int | float | str) -> float:
    """Converts human-readable time strings (e.g., '1hr', '30m') to seconds."""
    if isinstance(value, (int, float)):
        return value
    match = re.match(
        r"^(\d+(?:\.\d+)?)\s*(s|sec|m|min|h|hr)s?$", str(value).strip().lower()
    )
    if not match:
        raise ValueError(f"Invalid time format '{value}'")
    num, unit = float(match.group(1)), match.group(2)
    multiplier = {"s": 1, "sec": 1, "m": 60, "min": 60, "h": 3600, "hr": 3600}
    return num * multiplier[unit]


@dataclass
class CoreConfig:
    """Core application settings.

    Attributes:
        author (str | None): Author filter for extraction. Falls back to the
            repository's `git config user.name` when unset.
        db_path (str): Location of the SQLite ledger.
    """

    author: str | None = None
    db_path: str = str(DB_FILE)


@dataclass
class RemoteConfig:
    """Backend connection settings.

    Attributes:
        base_url (str): Base URL of the backend API.
        auth_url (str | None): Base URL of the auth endpoints (defaults to base_url).
        timeout (float): Seconds before an outbound call is abandoned.
        batch_size (int): Commits per ingestion request.
    """

    base_url: str = DEFAULT_BACKEND_URL
    auth_url: str | None = None
    timeout: float = 10.0
    batch_size: int = 200


@dataclass
class DaemonConfig:
    """Background cadence settings.

    Attributes:
        session_check_interval (float): Seconds between background session checks.
        sync_interval (float): Seconds between extract-and-deliver cycles.
        status_interval (float): Seconds between fleet-wide status sweeps.
        max_workers (int): Repositories processed in parallel per batch.
    """

    session_check_interval: float = 600
    sync_interval: float = 3600
    status_interval: float = 3600
    max_workers: int = 4


@dataclass
class LimitsConfig:
    """Resource limitation settings.

    Attributes:
        max_log_size (int): Max bytes for log files before rotation.
        git_timeout (float): Seconds before a git subprocess is abandoned.
    """

    max_log_size: int = 5 * 1024 * 1024
    git_timeout: float = 30.0


@dataclass
class Config:
    """Global configuration aggregator.

    Attributes:
        core (CoreConfig): Core settings.
        remote (RemoteConfig): Backend settings.
        daemon (DaemonConfig): Daemon behavior settings.
        limits (LimitsConfig): Resource limits.
    """

    core: CoreConfig = field(default_factory=CoreConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    daemon: DaemonConfig = field(default_factory=DaemonConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    # Cache for the base global configuration
    _global_cache: "Config | None" = None

    @classmethod
    def load(cls, path: Path | None = None) -> "Config":
        """Loads configuration from defaults, the global file and the environment.

        Args:
            path (Path | None): An explicit config file, bypassing the cache.

        Returns:
            Config: The fully merged configuration object.
        """
        if path is not None:
            instance = cls()
            if path.exists():
                instance._merge_from_file(path)
            instance._apply_env()
            return instance

        if cls._global_cache is None:
            instance = cls()
            if CONFIG_FILE.exists():
                instance._merge_from_file(CONFIG_FILE)
            cls._global_cache = instance

        instance = replace(cls._global_cache)
        instance._apply_env()
        return instance

    def _apply_env(self) -> None:
        """Environment variables win over file settings."""
        if base_url := os.environ.get(BACKEND_URL_ENV):
            self.remote = replace(self.remote, base_url=base_url)
        if auth_url := os.environ.get(AUTH_URL_ENV):
            self.remote = replace(self.remote, auth_url=auth_url)

    def _merge_from_file(self, path: Path) -> None:
        """Parses a TOML file and merges it into the current instance.

        Args:
            path (Path): Path to the TOML file.
        """
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)

            if not data:
                return

            for section in ("core", "remote", "daemon", "limits"):
                if section in data:
                    updated = self._update_dataclass(
                        section, getattr(self, section), data[section]
                    )
                    setattr(self, section, updated)

        except tomllib.TOMLDecodeError as e:
            logger.error(f"Config syntax error in {path}: {e}")
        except OSError as e:
            logger.warning(f"Failed to load config from {path}: {e}")

    @staticmethod
    def _update_dataclass(section_name: str, instance: Any, updates: dict) -> Any:
        """Updates a dataclass, warning on invalid keys and parsing human-readable formats."""
        valid_keys = instance.__dataclass_fields__.keys()
        filtered_updates = {}

        invalid_keys = set(updates.keys()) - set(valid_keys)
        if invalid_keys:
            logger.warning(
                f"Unknown config keys in [{section_name}]: {', '.join(sorted(invalid_keys))}. Ignoring."
            )

        for k, v in updates.items():
            if k not in valid_keys:
                continue

            try:
                if k == "max_log_size":
                    filtered_updates[k] = parse_size(v)
                elif k in (
                    "timeout",
                    "git_timeout",
                    "session_check_interval",
                    "sync_interval",
                    "status_interval",
                ):
                    filtered_updates[k] = parse_time(v)
                else:
                    filtered_updates[k] = v
            except ValueError as e:
                logger.warning(
                    f"Config error in [{section_name}].{k}: {e}. Falling back to default."
                )

        return replace(instance, **filtered_updates)
