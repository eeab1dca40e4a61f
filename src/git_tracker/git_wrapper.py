import datetime
import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .constants import APP_NAME
from .errors import GitTimeoutError

logger = logging.getLogger(APP_NAME)

# Field and record separators for `git log --format`.
_FS = "\x1f"
_RS = "\x1e"
_LOG_FORMAT = f"%H{_FS}%P{_FS}%aI{_FS}%B{_RS}"


@dataclass(frozen=True)
class LogEntry:
    """One commit as reported by `git log`.

    Attributes:
        commit_hash (str): Full SHA-1.
        parents (tuple[str, ...]): Parent SHA-1s, first parent first.
        authored_at (datetime.datetime): Author timestamp (timezone-aware).
        message (str): Full commit message, stripped.
    """

    commit_hash: str
    parents: tuple[str, ...]
    authored_at: datetime.datetime
    message: str


def _git(
    args: list[str], cwd: Path, timeout: float | None, env: dict | None = None
) -> str:
    """Runs a git command in `cwd` and returns its stripped stdout.

    Raises:
        RuntimeError: If the git command returns a non-zero exit code.
        GitTimeoutError: If the command does not finish within `timeout`.
    """
    try:
        res = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
            env=env,
            timeout=timeout,
        )
        return res.stdout.strip()
    except subprocess.CalledProcessError as e:
        raise RuntimeError(f"Git error: {e.stderr or e}") from e
    except subprocess.TimeoutExpired as e:
        raise GitTimeoutError(f"git {args[0]}", str(cwd), f"no answer after {timeout}s") from e


class GitRepo:
    """A read-only wrapper around the Git command-line interface for one repository.

    Every method shells out to `git` with a bounded timeout; nothing here ever
    writes to the working copy, the index or the refs.

    Attributes:
        path (Path): The file system path to the repository root.
        timeout (float | None): Per-command timeout in seconds.
    """

    def __init__(self, path: Path, timeout: float | None = None):
        """Initializes the GitRepo instance.

        Args:
            path (Path): The path to the repository root directory.
            timeout (float | None): Per-command timeout in seconds.

        Raises:
            ValueError: If the specified path does not contain a .git entry.
        """
        self.path = path
        self.timeout = timeout
        if not (self.path / ".git").exists():
            raise ValueError(f"Not a git repository: {self.path}")

    @staticmethod
    def toplevel(path: Path, timeout: float | None = None) -> Path:
        """Resolves the working-copy root containing `path`.

        Raises:
            RuntimeError: If `path` is not inside a git working copy.
        """
        return Path(_git(["rev-parse", "--show-toplevel"], path, timeout)).resolve()

    def _run(self, args: list[str]) -> str:
        return _git(args, self.path, self.timeout)

    def current_branch(self) -> str:
        """Retrieves the name of the currently checked-out branch ('' when detached)."""
        return self._run(["branch", "--show-current"])

    def rev_parse(self, rev: str) -> str | None:
        """Resolves a revision to a full SHA-1 hash, or None if it does not resolve."""
        try:
            return self._run(["rev-parse", "--verify", "--quiet", f"{rev}^{{commit}}"])
        except RuntimeError as e:
            logger.debug(f"rev-parse failed for '{rev}': {e}")
            return None

    def root_commits(self) -> list[str]:
        """Lists the parentless commits reachable from HEAD, sorted.

        Returns:
            list[str]: Root commit hashes. Empty when HEAD is unborn.
        """
        if self.rev_parse("HEAD") is None:
            return []
        output = self._run(["rev-list", "--max-parents=0", "HEAD"])
        return sorted(output.splitlines()) if output else []

    def _list_refs(self, pattern: str) -> list[str]:
        output = self._run(["for-each-ref", "--format=%(refname:short)", pattern])
        return sorted(output.splitlines()) if output else []

    def local_branches(self) -> list[str]:
        """Local branch names in lexical order."""
        return self._list_refs("refs/heads")

    def remote_branches(self) -> list[str]:
        """Remote-tracking branch names (e.g. 'origin/main') in lexical order."""
        return [b for b in self._list_refs("refs/remotes") if not b.endswith("/HEAD")]

    def config_get(self, key: str) -> str | None:
        """Reads a git config value, returning None when it is not set."""
        try:
            return self._run(["config", "--get", key]) or None
        except RuntimeError:
            return None

    def log(
        self,
        author: str | None = None,
        since: datetime.datetime | None = None,
        branch: str | None = None,
    ) -> list[LogEntry]:
        """Lists commits oldest-first, optionally filtered by author and date.

        Args:
            author (str | None): Fixed-string author filter (matched against
                'Name <email>').
            since (datetime | None): Only commits with a commit date at or after
                this instant.
            branch (str | None): Restrict to commits reachable from this ref.
                All refs are walked when omitted.

        Returns:
            list[LogEntry]: The matching commits in chronological order.
        """
        cmd = ["log", "--reverse", f"--format={_LOG_FORMAT}", "--fixed-strings"]
        if author:
            cmd.append(f"--author={author}")
        if since:
            utc = since.astimezone(datetime.timezone.utc)
            cmd.append(f"--since={utc.strftime('%Y-%m-%d %H:%M:%S +0000')}")
        cmd.append(branch if branch else "--all")
        cmd.append("--")

        output = self._run(cmd)
        entries = []
        for record in output.split(_RS):
            record = record.strip("\n")
            if not record:
                continue
            parts = record.split(_FS, 3)
            if len(parts) != 4:
                logger.warning(f"Skipping malformed log record in {self.path}: {record[:80]!r}")
                continue
            sha, parents, authored, message = parts
            entries.append(
                LogEntry(
                    commit_hash=sha,
                    parents=tuple(parents.split()),
                    authored_at=datetime.datetime.fromisoformat(authored),
                    message=message.strip(),
                )
            )
        return entries

    def show_numstat(self, commit_hash: str) -> str:
        """Returns the per-file numstat lines followed by the shortstat summary."""
        return self._run(
            ["show", "--numstat", "--shortstat", "--format=", "--no-color", commit_hash]
        )

    def rev_list(self, ref: str) -> set[str]:
        """Returns every commit hash reachable from `ref`."""
        output = self._run(["rev-list", ref])
        return set(output.splitlines()) if output else set()
