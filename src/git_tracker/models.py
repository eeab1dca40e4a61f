"""Record types shared by the ledger, extractor, reconciliation and session code."""

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def utcnow() -> datetime.datetime:
    """Returns the current time as a timezone-aware UTC datetime."""
    return datetime.datetime.now(datetime.timezone.utc)


def to_iso(value: datetime.datetime | None) -> str | None:
    """Serializes a datetime to an ISO-8601 UTC string (None passes through)."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc).isoformat()


def from_iso(value: str | None) -> datetime.datetime | None:
    """Parses an ISO-8601 string, assuming UTC when no offset is present."""
    if not value:
        return None
    parsed = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


class RepoStatus(str, Enum):
    """Live status of a tracked repository, as reported by the status probe."""

    ACTIVE = "active"
    MISSING = "missing"
    MOVED = "moved"
    DELETED = "deleted"


class SyncClass(str, Enum):
    """Relationship of a repository to the remote repository set."""

    SYNCED = "synced"
    MISSING_LOCAL = "missing_local"
    MISSING_REMOTE = "missing_remote"


@dataclass(frozen=True)
class FileChange:
    """Per-file line counts for a single commit."""

    path: str
    added: int = 0
    removed: int = 0


@dataclass(frozen=True)
class CommitStats:
    """Change statistics parsed from a commit's diff summary.

    Attributes:
        files_changed (int): Number of files touched.
        insertions (int): Total lines added.
        deletions (int): Total lines removed.
        changes (tuple[FileChange, ...]): Per-file line counts, in diff order.
    """

    files_changed: int = 0
    insertions: int = 0
    deletions: int = 0
    changes: tuple[FileChange, ...] = ()

    @property
    def file_names(self) -> list[str]:
        return [c.path for c in self.changes]

    def to_dict(self) -> dict[str, Any]:
        return {
            "filesChanged": self.files_changed,
            "insertions": self.insertions,
            "deletions": self.deletions,
            "fileNames": self.file_names,
        }

    def changes_to_list(self) -> list[dict[str, Any]]:
        return [
            {"file": c.path, "added": c.added, "removed": c.removed}
            for c in self.changes
        ]

    @classmethod
    def from_json(cls, stats: dict[str, Any], changes: list[dict[str, Any]]) -> "CommitStats":
        return cls(
            files_changed=int(stats.get("filesChanged", 0)),
            insertions=int(stats.get("insertions", 0)),
            deletions=int(stats.get("deletions", 0)),
            changes=tuple(
                FileChange(c["file"], int(c.get("added", 0)), int(c.get("removed", 0)))
                for c in changes
            ),
        )


@dataclass(frozen=True)
class LedgerScope:
    """The (repository, owner) tuple commit-hash uniqueness is evaluated within.

    Attributes:
        repo_id (int): Local primary key of the repository.
        owner (str): Developer id owning the repository ('' when unknown).
    """

    repo_id: int
    owner: str = ""


@dataclass
class CommitRecord:
    """A single extracted commit as staged in the ledger."""

    commit_hash: str
    message: str
    timestamp: datetime.datetime
    branch: str
    parent_commit: str | None = None
    stats: CommitStats = field(default_factory=CommitStats)
    synced: bool = False
    created_at: datetime.datetime = field(default_factory=utcnow)


@dataclass
class RepositoryRecord:
    """A locally tracked repository.

    Attributes:
        id (int): Local primary key.
        name (str): Display name.
        path (str): Filesystem path the repository was registered at.
        fingerprint (str): Stable identity derived from repository metadata.
        external_id (str | None): Identifier assigned by the backend, if registered.
        status (RepoStatus): Last probed status. Informational only.
        last_synced_at (datetime | None): Extraction watermark.
    """

    id: int
    name: str
    path: str
    fingerprint: str
    external_id: str | None = None
    description: str = ""
    status: RepoStatus = RepoStatus.ACTIVE
    developer_id: str | None = None
    project_id: str | None = None
    permission: str = "read"
    last_synced_at: datetime.datetime | None = None
    created_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None

    @property
    def scope(self) -> LedgerScope:
        return LedgerScope(self.id, self.developer_id or "")

    @property
    def ref(self) -> str:
        """The identifier callers use for this repository."""
        return self.external_id or str(self.id)


@dataclass(frozen=True)
class RemoteRepository:
    """A repository as listed by the backend for the current principal."""

    external_id: str
    name: str = ""
    description: str = ""
    path: str = ""
    fingerprint: str = ""
    project_id: str | None = None
    status: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "RemoteRepository":
        return cls(
            external_id=str(data.get("_id") or data.get("id")),
            name=data.get("name", ""),
            description=data.get("description") or "",
            path=data.get("path", ""),
            fingerprint=data.get("repoFingerprint", ""),
            project_id=data.get("projectId"),
            status=data.get("status"),
        )


@dataclass(frozen=True)
class Session:
    """The singleton credential pair for the authenticated principal."""

    access_token: str
    access_expires_at: datetime.datetime
    refresh_token: str
    refresh_expires_at: datetime.datetime
    user_id: str
    email: str = ""
    user_type: str = ""


@dataclass(frozen=True)
class ValidSession:
    """What callers of the session manager receive: a usable access token."""

    user_id: str
    access_token: str


@dataclass
class ExtractionResult:
    """Outcome of one extraction run over a repository."""

    repo: RepositoryRecord
    new_commits: list[CommitRecord]
    all_commits: list[CommitRecord]
    last_synced_at: datetime.datetime
    previous_synced_at: datetime.datetime | None
    author: str


@dataclass
class BatchReport:
    """Partial-result report for an operation fanned out over repositories.

    Attributes:
        succeeded (list[dict]): One entry per repository that completed.
        failed (list[dict]): One entry per repository that raised, with its error.
    """

    succeeded: list[dict[str, Any]] = field(default_factory=list)
    failed: list[dict[str, Any]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.succeeded) + len(self.failed)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed
