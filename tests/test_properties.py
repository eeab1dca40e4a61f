import datetime
import tempfile
from pathlib import Path

from hypothesis import given, settings
from hypothesis import strategies as st

from git_tracker.ledger import Ledger
from git_tracker.models import CommitRecord

BASE_TIME = datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)

# Strategy: unique 40-char hex strings (simulating commit hashes).
hashes_strategy = st.lists(
    st.text(alphabet="0123456789abcdef", min_size=40, max_size=40),
    unique=True,
    max_size=30,
)


def make_commits(hashes: list[str]) -> list[CommitRecord]:
    return [
        CommitRecord(
            commit_hash=h,
            message=f"commit {i}",
            timestamp=BASE_TIME + datetime.timedelta(minutes=i),
            branch="main",
        )
        for i, h in enumerate(hashes)
    ]


@settings(max_examples=25, deadline=None)
@given(hashes=hashes_strategy, data=st.data())
def test_mark_synced_leaves_exact_complement(hashes: list[str], data: st.DataObject) -> None:
    """
    Property: After re-staging the same commits and delivering any subset of
    them, exactly the undelivered commits remain unsynced, in insertion order.
    """
    delivered = data.draw(st.sets(st.sampled_from(hashes)) if hashes else st.just(set()))

    with tempfile.TemporaryDirectory() as tmp:
        ledger = Ledger(Path(tmp) / "tracker.sqlite")
        repo = ledger.add_repository("demo", "/src/demo", "fp")
        commits = make_commits(hashes)

        first = ledger.upsert_commits(repo.scope, commits)
        second = ledger.upsert_commits(repo.scope, commits)
        marked = ledger.mark_synced(repo.scope, delivered)

        assert len(first) == len(hashes)
        assert second == []
        assert marked == len(delivered)
        assert ledger.count_commits(repo.scope) == len(hashes)

        remaining = [c.commit_hash for c in ledger.unsynced_for(repo.scope)]
        assert remaining == [h for h in hashes if h not in delivered]


@settings(max_examples=25, deadline=None)
@given(hashes=hashes_strategy)
def test_marking_twice_is_a_noop(hashes: list[str]) -> None:
    """
    Property: Delivering the same batch again never transitions any more rows.
    """
    with tempfile.TemporaryDirectory() as tmp:
        ledger = Ledger(Path(tmp) / "tracker.sqlite")
        repo = ledger.add_repository("demo", "/src/demo", "fp")
        ledger.upsert_commits(repo.scope, make_commits(hashes))

        assert ledger.mark_synced(repo.scope, hashes) == len(hashes)
        assert ledger.mark_synced(repo.scope, hashes) == 0
        assert ledger.unsynced_for(repo.scope) == []
