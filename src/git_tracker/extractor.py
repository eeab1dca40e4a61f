import logging

from .constants import APP_NAME, UNKNOWN_BRANCH
from .diffstat import parse_diff_summary
from .errors import (
    AuthorNotConfiguredError,
    BranchNotFoundError,
    RepositoryNotActiveError,
)
from .git_wrapper import GitRepo, LogEntry
from .ledger import Ledger
from .models import (
    CommitRecord,
    ExtractionResult,
    RepoStatus,
    RepositoryRecord,
    utcnow,
)
from .validator import open_repository, probe_status

logger = logging.getLogger(APP_NAME)


class BranchResolver:
    """Attributes commits to the most relevant local branch.

    Rule: the checked-out branch if it contains the commit, otherwise the
    first local branch in lexical order that contains it, otherwise
    UNKNOWN_BRANCH (detached history, deleted branches).

    Reachability sets are computed lazily, once per branch per extraction run.
    """

    def __init__(self, repo: GitRepo):
        self.repo = repo
        self.current = repo.current_branch()
        self.branches = repo.local_branches()
        self._reachable: dict[str, set[str]] = {}

    def _contains(self, branch: str, commit_hash: str) -> bool:
        if branch not in self._reachable:
            self._reachable[branch] = self.repo.rev_list(f"refs/heads/{branch}")
        return commit_hash in self._reachable[branch]

    def attribute(self, commit_hash: str) -> str:
        if self.current and self._contains(self.current, commit_hash):
            return self.current
        for branch in self.branches:
            if self._contains(branch, commit_hash):
                return branch
        return UNKNOWN_BRANCH


def available_branches(repo: GitRepo) -> list[str]:
    """Local and remote-tracking branch names, locals first."""
    return repo.local_branches() + repo.remote_branches()


def resolve_author(repo: GitRepo, configured: str | None) -> str:
    """The configured author filter, or the repository's `user.name`.

    Raises:
        AuthorNotConfiguredError: If neither is set.
    """
    if configured:
        return configured
    author = repo.config_get("user.name")
    if not author:
        raise AuthorNotConfiguredError(str(repo.path))
    return author


def build_record(repo: GitRepo, entry: LogEntry, branch: str) -> CommitRecord:
    """Turns a log entry into a ledger record, parsing its diff summary."""
    stats = parse_diff_summary(repo.show_numstat(entry.commit_hash))
    return CommitRecord(
        commit_hash=entry.commit_hash,
        message=entry.message,
        timestamp=entry.authored_at,
        branch=branch,
        parent_commit=entry.parents[0] if entry.parents else None,
        stats=stats,
    )


def extract_new_commits(
    ledger: Ledger,
    record: RepositoryRecord,
    author: str | None = None,
    branch: str | None = None,
    timeout: float | None = None,
) -> ExtractionResult:
    """Mines the repository for commits not yet in the ledger.

    Steps:
    1. Probes the repository; refuses to run unless it is ACTIVE.
    2. Validates the optional branch constraint.
    3. Lists the author's commits since the watermark (all history on first run).
    4. Builds records for hashes the ledger does not know yet and stores them.
    5. Advances the watermark to the completion time.

    Args:
        ledger (Ledger): The sync ledger holding the repository's scope.
        record (RepositoryRecord): The repository to extract from.
        author (str | None): Author filter; defaults to `git config user.name`.
        branch (str | None): Restrict extraction to this branch.
        timeout (float | None): Per-git-command timeout in seconds.

    Returns:
        ExtractionResult: The newly stored commits plus everything in scope.

    Raises:
        RepositoryNotActiveError: If the repository is missing, moved or deleted.
        BranchNotFoundError: If `branch` does not exist.
        AuthorNotConfiguredError: If no author filter can be determined.
    """
    status = probe_status(record.path, record.fingerprint, timeout=timeout)
    if status != record.status:
        ledger.update_status(record.id, status)
    if status != RepoStatus.ACTIVE:
        logger.error(f"Repository with ID {record.ref} is not active ({status.value}).")
        raise RepositoryNotActiveError(record.ref, status.value)

    repo = open_repository(record.path, timeout=timeout)

    if branch:
        branches = available_branches(repo)
        if branch not in branches:
            logger.error(f"Branch {branch} does not exist in repository {record.ref}")
            logger.info(f"Available branches: {', '.join(branches)}")
            raise BranchNotFoundError(branch, record.ref, branches)

    author = resolve_author(repo, author)
    scope = record.scope
    previous = record.last_synced_at

    entries = repo.log(author=author, since=previous, branch=branch)
    known = ledger.known_hashes(scope)
    resolver = None if branch else BranchResolver(repo)

    candidates = []
    for entry in entries:
        if entry.commit_hash in known:
            logger.debug(f"Skipping existing commit: {entry.commit_hash}")
            continue
        attributed = branch or resolver.attribute(entry.commit_hash)  # type: ignore[union-attr]
        candidates.append(build_record(repo, entry, attributed))
        known.add(entry.commit_hash)

    new_commits = ledger.upsert_commits(scope, candidates)
    for commit in new_commits:
        logger.info(f"EXTRACTED {record.name}: {commit.commit_hash[:10]} on {commit.branch}")

    completed_at = utcnow()
    ledger.set_watermark(record.id, completed_at)

    return ExtractionResult(
        repo=ledger.get_repository(record.id),
        new_commits=new_commits,
        all_commits=ledger.commits_for(scope, branch=branch),
        last_synced_at=completed_at,
        previous_synced_at=previous,
        author=author or "",
    )
