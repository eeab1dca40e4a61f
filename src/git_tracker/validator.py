"""Repository validation and live status probing.

Both entry points are read-only: they inspect the filesystem and ask git
questions, but never touch the working copy.
"""

import hashlib
import logging
import os
from pathlib import Path

from .constants import APP_NAME
from .errors import (
    EmptyHistoryError,
    NotAVersionControlRootError,
    PathNotFoundError,
)
from .git_wrapper import GitRepo
from .models import RepoStatus

logger = logging.getLogger(APP_NAME)


def compute_fingerprint(toplevel: Path, root_commit: str) -> str:
    """Derives the stable identity of a physical repository.

    The same working-copy root hosting the same history always yields the
    same value, regardless of how many times it is registered.
    """
    digest = hashlib.sha256()
    digest.update(str(toplevel).encode("utf-8"))
    digest.update(b"\0")
    digest.update(root_commit.encode("ascii"))
    return digest.hexdigest()


def _check_accessible(path: Path) -> None:
    if not path.is_dir() or not os.access(path, os.R_OK | os.X_OK):
        raise PathNotFoundError(str(path))


def open_repository(path: str | Path, timeout: float | None = None) -> GitRepo:
    """Returns a GitRepo for the working copy at or above `path`.

    Raises:
        PathNotFoundError: If the path does not exist or is not readable.
        NotAVersionControlRootError: If no git working copy contains it.
    """
    target = Path(path).expanduser()
    _check_accessible(target)
    try:
        toplevel = GitRepo.toplevel(target, timeout=timeout)
        return GitRepo(toplevel, timeout=timeout)
    except (RuntimeError, ValueError) as e:
        logger.debug(f"Git metadata lookup failed for {target}: {e}")
        raise NotAVersionControlRootError(str(target)) from e


def _fingerprint(repo: GitRepo) -> str:
    """Fingerprints an opened working copy.

    Raises:
        EmptyHistoryError: If the repository has no commit to anchor on.
        RuntimeError: If git cannot walk the history (corrupt or partial clone).
    """
    roots = repo.root_commits()
    if not roots:
        raise EmptyHistoryError(str(repo.path))
    return compute_fingerprint(repo.path, roots[0])


def validate(path: str | Path, timeout: float | None = None) -> str:
    """Confirms `path` is a usable git working copy and fingerprints it.

    Args:
        path (str | Path): The root of, or a directory inside, a working copy.
        timeout (float | None): Per-git-command timeout in seconds.

    Returns:
        str: The repository fingerprint (hex SHA-256).

    Raises:
        PathNotFoundError: If the path does not exist or is not accessible.
        NotAVersionControlRootError: If no valid repository metadata is found.
        EmptyHistoryError: If the repository has no commit to anchor on.
    """
    repo = open_repository(path, timeout=timeout)
    try:
        return _fingerprint(repo)
    except RuntimeError as e:
        logger.debug(f"History walk failed for {repo.path}: {e}")
        raise NotAVersionControlRootError(str(repo.path)) from e


def probe_status(
    path: str | Path, recorded_fingerprint: str, timeout: float | None = None
) -> RepoStatus:
    """Re-runs validation against a recorded fingerprint and maps the outcome.

    `path` is the working-copy root recorded at registration. If it now
    resolves into an enclosing working copy, its own metadata is gone.

    Returns:
        RepoStatus: ACTIVE when the path still hosts the recorded history,
        MISSING when the path is gone, DELETED when the git metadata is gone,
        MOVED when the path now hosts a different, empty or unreadable history.
    """
    target = Path(path).expanduser()
    try:
        repo = open_repository(target, timeout=timeout)
        if repo.path != target.resolve():
            logger.info(f"METADATA GONE {path}: now inside the working copy at {repo.path}.")
            return RepoStatus.DELETED
        fingerprint = _fingerprint(repo)
    except PathNotFoundError:
        return RepoStatus.MISSING
    except NotAVersionControlRootError:
        return RepoStatus.DELETED
    except EmptyHistoryError:
        return RepoStatus.MOVED
    except RuntimeError as e:
        logger.warning(f"PROBE ERROR {path}: {e}")
        return RepoStatus.MOVED

    if fingerprint != recorded_fingerprint:
        logger.info(f"FINGERPRINT MISMATCH {path}: directory hosts a different history.")
        return RepoStatus.MOVED
    return RepoStatus.ACTIVE
