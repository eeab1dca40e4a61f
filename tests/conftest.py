"""Shared fixtures: throwaway git repositories and an isolated ledger."""

import shutil
import subprocess
from pathlib import Path
from typing import Any

import pytest

from git_tracker.config import Config
from git_tracker.ledger import Ledger

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")

AUTHOR_NAME = "Test Dev"
AUTHOR_EMAIL = "dev@example.com"


def git(repo: Path, *args: str) -> str:
    """Runs a git command inside `repo` and returns its stripped stdout."""
    res = subprocess.run(
        ["git", *args], cwd=repo, capture_output=True, text=True, check=True
    )
    return res.stdout.strip()


def init_repo(path: Path, branch: str = "main") -> Path:
    """Creates an empty repository with a local identity."""
    path.mkdir(parents=True, exist_ok=True)
    git(path, "init", "-q")
    git(path, "symbolic-ref", "HEAD", f"refs/heads/{branch}")
    git(path, "config", "user.name", AUTHOR_NAME)
    git(path, "config", "user.email", AUTHOR_EMAIL)
    git(path, "config", "commit.gpgsign", "false")
    return path


def commit_file(repo: Path, name: str, content: str, message: str) -> str:
    """Writes `name`, commits it and returns the new commit hash."""
    target = repo / name
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content)
    git(repo, "add", name)
    git(repo, "commit", "-q", "-m", message)
    return git(repo, "rev-parse", "HEAD")


@pytest.fixture(autouse=True)
def clear_config_cache() -> Any:
    """Ensures every test starts with a clean config cache."""
    Config._global_cache = None
    yield
    Config._global_cache = None


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A repository on `main` holding a single initial commit."""
    repo = init_repo(tmp_path / "project")
    commit_file(repo, "README.md", "hello\n", "Initial commit")
    return repo


@pytest.fixture
def ledger(tmp_path: Path) -> Ledger:
    return Ledger(tmp_path / "state" / "tracker.sqlite")
