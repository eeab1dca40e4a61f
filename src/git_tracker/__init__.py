"""Git Tracker: Offline-first git activity sync for developer machines.

This package provides the command-line interface, background daemon, and core
operational logic for validating local repositories, mining their commit
history into a durable local ledger, and delivering that history to the
backend once a session and network are available.
"""

from . import (
    cli,
    config,
    constants,
    daemon,
    diffstat,
    errors,
    extractor,
    git_wrapper,
    ledger,
    models,
    ops,
    reconcile,
    remote,
    session,
    system,
    validator,
)

__all__ = [
    "cli",
    "config",
    "constants",
    "daemon",
    "diffstat",
    "errors",
    "extractor",
    "git_wrapper",
    "ledger",
    "models",
    "ops",
    "reconcile",
    "remote",
    "session",
    "system",
    "validator",
]
