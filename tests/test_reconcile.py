"""Tests for repository-set reconciliation and the consolidated view."""

import datetime

from hypothesis import given
from hypothesis import strategies as st

from git_tracker.models import RemoteRepository, RepositoryRecord, RepoStatus, SyncClass
from git_tracker.reconcile import (
    build_consolidated_view,
    classify,
    format_time_since,
)


def local(local_id: int, external_id: str | None) -> RepositoryRecord:
    return RepositoryRecord(
        id=local_id,
        name=f"local-{local_id}",
        path=f"/src/{local_id}",
        fingerprint=f"fp-{local_id}",
        external_id=external_id,
    )


def remote(external_id: str, path: str = "") -> RemoteRepository:
    return RemoteRepository(external_id=external_id, name=f"remote-{external_id}", path=path)


def test_classify_three_way() -> None:
    """Verifies one repository lands in each class."""
    result = classify(
        [local(1, "x"), local(2, "y"), local(3, None)],
        [remote("x"), remote("z")],
    )

    assert [(loc.id, rem.external_id) for loc, rem in result.synced] == [(1, "x")]
    assert [r.id for r in result.missing_remote] == [2, 3]
    assert [r.external_id for r in result.missing_local] == ["z"]
    assert result.counts() == {"synced": 1, "missing_local": 1, "missing_remote": 2}


def test_classify_empty_sides() -> None:
    assert classify([], []).counts() == {"synced": 0, "missing_local": 0, "missing_remote": 0}


external_ids = st.one_of(st.none(), st.sampled_from(["a", "b", "c", "d", "e"]))


@given(
    local_ids=st.lists(external_ids, max_size=8),
    remote_ids=st.lists(st.sampled_from(["a", "b", "c", "d", "e", "f"]), max_size=8, unique=True),
)
def test_classification_is_a_partition(local_ids: list[str | None], remote_ids: list[str]) -> None:
    """Property: every local and remote repository appears in exactly one class."""
    # External ids are unique on the local side too.
    seen: set[str] = set()
    locals_ = []
    for i, ext in enumerate(local_ids):
        if ext in seen:
            ext = None
        if ext:
            seen.add(ext)
        locals_.append(local(i, ext))
    remotes = [remote(ext) for ext in remote_ids]

    result = classify(locals_, remotes)

    placed_local = [loc.id for loc, _ in result.synced] + [loc.id for loc in result.missing_remote]
    placed_remote = [r.external_id for _, r in result.synced] + [
        r.external_id for r in result.missing_local
    ]
    assert sorted(placed_local) == sorted(loc.id for loc in locals_)
    assert sorted(placed_remote) == sorted(remote_ids)
    for loc, rem in result.synced:
        assert loc.external_id == rem.external_id


def test_consolidated_view_probes_and_orders() -> None:
    """Verifies entries are annotated with probed status, synced first."""
    result = classify([local(1, "x"), local(2, None)], [remote("x"), remote("z", path="/elsewhere")])
    probed = []

    def probe(path: str, fingerprint: str) -> RepoStatus:
        probed.append(path)
        return RepoStatus.ACTIVE if path == "/src/1" else RepoStatus.MISSING

    view = build_consolidated_view(result, probe)

    assert [e.sync_class for e in view.entries] == [
        SyncClass.SYNCED,
        SyncClass.MISSING_REMOTE,
        SyncClass.MISSING_LOCAL,
    ]
    assert [e.status for e in view.entries] == [
        RepoStatus.ACTIVE,
        RepoStatus.MISSING,
        RepoStatus.MISSING,
    ]
    assert probed == ["/src/1", "/src/2", "/elsewhere"]

    payload = view.to_dict()
    assert payload["summary"] == {"synced": 1, "missing_local": 1, "missing_remote": 1}
    assert payload["data"][0]["timeSinceLastSync"] == "never synced"


def test_remote_only_without_path_is_not_probed() -> None:
    result = classify([], [remote("z")])

    def probe(path: str, fingerprint: str) -> RepoStatus:
        raise AssertionError("probe should not run")

    view = build_consolidated_view(result, probe)

    assert view.entries[0].status == RepoStatus.MISSING
    assert view.entries[0].local_id is None


def test_format_time_since() -> None:
    now = datetime.datetime(2024, 5, 10, 12, 0, tzinfo=datetime.timezone.utc)

    assert format_time_since(None, now) == "never synced"
    assert format_time_since(now - datetime.timedelta(seconds=1), now) == "1 second ago"
    assert format_time_since(now - datetime.timedelta(minutes=5), now) == "5 minutes ago"
    assert format_time_since(now - datetime.timedelta(hours=1, minutes=59), now) == "1 hour ago"
    assert format_time_since(now - datetime.timedelta(days=3), now) == "3 days ago"
    # Clock skew never produces negative durations.
    assert format_time_since(now + datetime.timedelta(minutes=1), now) == "0 seconds ago"
