"""Classification of local vs. remote repository sets and the consolidated view.

Everything in here is read-only composition: no extraction, no writes.
"""

import datetime
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from .models import (
    RemoteRepository,
    RepositoryRecord,
    RepoStatus,
    SyncClass,
    to_iso,
    utcnow,
)

StatusProbe = Callable[[str, str], RepoStatus]


@dataclass
class Reconciliation:
    """The partition of L ∪ R into the three sync classes.

    Attributes:
        synced (list[tuple[RepositoryRecord, RemoteRepository]]): Present on both sides.
        missing_local (list[RemoteRepository]): Known remotely only.
        missing_remote (list[RepositoryRecord]): Known locally only (including
            repositories never registered remotely).
    """

    synced: list[tuple[RepositoryRecord, RemoteRepository]] = field(default_factory=list)
    missing_local: list[RemoteRepository] = field(default_factory=list)
    missing_remote: list[RepositoryRecord] = field(default_factory=list)

    def counts(self) -> dict[str, int]:
        return {
            SyncClass.SYNCED.value: len(self.synced),
            SyncClass.MISSING_LOCAL.value: len(self.missing_local),
            SyncClass.MISSING_REMOTE.value: len(self.missing_remote),
        }


def classify(
    local: Iterable[RepositoryRecord], remote: Iterable[RemoteRepository]
) -> Reconciliation:
    """Classifies every repository of either side by external-id membership.

    Args:
        local (Iterable[RepositoryRecord]): The locally tracked repositories.
        remote (Iterable[RemoteRepository]): The backend's repositories for
            the current principal.

    Returns:
        Reconciliation: Each element of L ∪ R appears in exactly one class.
    """
    remote_by_id: dict[str, RemoteRepository] = {}
    for repo in remote:
        remote_by_id.setdefault(repo.external_id, repo)

    result = Reconciliation()
    matched: set[str] = set()

    for repo in local:
        ext = repo.external_id
        if ext and ext in remote_by_id and ext not in matched:
            result.synced.append((repo, remote_by_id[ext]))
            matched.add(ext)
        else:
            result.missing_remote.append(repo)

    for ext, repo in remote_by_id.items():
        if ext not in matched:
            result.missing_local.append(repo)

    return result


def format_time_since(moment: datetime.datetime | None, now: datetime.datetime | None = None) -> str:
    """Renders a timestamp as '3 hours ago' style text ('never synced' for None)."""
    if moment is None:
        return "never synced"
    now = now or utcnow()
    seconds = max(0, int((now - moment).total_seconds()))
    minutes, hours, days = seconds // 60, seconds // 3600, seconds // 86400

    def plural(n: int, unit: str) -> str:
        return f"{n} {unit}{'s' if n != 1 else ''} ago"

    if days > 0:
        return plural(days, "day")
    if hours > 0:
        return plural(hours, "hour")
    if minutes > 0:
        return plural(minutes, "minute")
    return plural(seconds, "second")


@dataclass
class ViewEntry:
    """One annotated row of the consolidated repository view."""

    sync_class: SyncClass
    name: str
    path: str
    external_id: str | None
    local_id: int | None
    status: RepoStatus
    last_synced_at: datetime.datetime | None
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "syncState": self.sync_class.value,
            "name": self.name,
            "path": self.path,
            "repoId": self.external_id,
            "localId": self.local_id,
            "status": self.status.value,
            "lastSyncedAt": to_iso(self.last_synced_at),
            "timeSinceLastSync": format_time_since(self.last_synced_at),
            "description": self.description,
        }


@dataclass
class ConsolidatedView:
    """The annotated report consumed by presentation layers."""

    entries: list[ViewEntry]
    counts: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": "Repository view built.",
            "summary": self.counts,
            "data": [e.to_dict() for e in self.entries],
        }


def build_consolidated_view(reconciliation: Reconciliation, probe: StatusProbe) -> ConsolidatedView:
    """Annotates each classified repository with its live status.

    Args:
        reconciliation (Reconciliation): Output of `classify`.
        probe (StatusProbe): `(path, fingerprint) -> RepoStatus`, typically
            `validator.probe_status`.

    Returns:
        ConsolidatedView: Entries ordered synced, missing_remote, missing_local.
    """
    entries: list[ViewEntry] = []

    for local, remote in reconciliation.synced:
        entries.append(
            ViewEntry(
                sync_class=SyncClass.SYNCED,
                name=local.name or remote.name,
                path=local.path,
                external_id=local.external_id,
                local_id=local.id,
                status=probe(local.path, local.fingerprint),
                last_synced_at=local.last_synced_at,
                description=local.description,
            )
        )

    for local in reconciliation.missing_remote:
        entries.append(
            ViewEntry(
                sync_class=SyncClass.MISSING_REMOTE,
                name=local.name,
                path=local.path,
                external_id=local.external_id,
                local_id=local.id,
                status=probe(local.path, local.fingerprint),
                last_synced_at=local.last_synced_at,
                description=local.description,
            )
        )

    for remote in reconciliation.missing_local:
        # Registered from elsewhere: the path may not exist on this machine.
        status = (
            probe(remote.path, remote.fingerprint)
            if remote.path
            else RepoStatus.MISSING
        )
        entries.append(
            ViewEntry(
                sync_class=SyncClass.MISSING_LOCAL,
                name=remote.name,
                path=remote.path,
                external_id=remote.external_id,
                local_id=None,
                status=status,
                last_synced_at=None,
                description=remote.description,
            )
        )

    return ConsolidatedView(entries=entries, counts=reconciliation.counts())
