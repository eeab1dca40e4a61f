"""Tests for the diff-summary grammar."""

from hypothesis import given
from hypothesis import strategies as st

from git_tracker.diffstat import parse_diff_summary, parse_line
from git_tracker.models import CommitStats, FileChange


def test_numstat_with_shortstat_uses_aggregate_totals() -> None:
    """Verifies the aggregate line wins over summed per-file counts."""
    text = (
        "10\t2\tsrc/app.py\n"
        "3\t0\tREADME.md\n"
        "\n"
        " 2 files changed, 13 insertions(+), 2 deletions(-)\n"
    )
    stats = parse_diff_summary(text)

    assert stats.files_changed == 2
    assert stats.insertions == 13
    assert stats.deletions == 2
    assert stats.file_names == ["src/app.py", "README.md"]
    assert stats.changes[0] == FileChange("src/app.py", 10, 2)


def test_aggregate_clauses_are_optional() -> None:
    """Verifies insertion-only, deletion-only and bare aggregate lines."""
    assert parse_line(" 1 file changed, 10 insertions(+)") == ("aggregate", (1, 10, 0))
    assert parse_line(" 2 files changed, 12 deletions(-)") == ("aggregate", (2, 0, 12))
    assert parse_line(" 1 file changed") == ("aggregate", (1, 0, 0))
    assert parse_line(" 1 file changed, 1 insertion(+), 1 deletion(-)") == (
        "aggregate",
        (1, 1, 1),
    )


def test_binary_numstat_counts_as_zero() -> None:
    stats = parse_diff_summary("-\t-\tassets/logo.png\n")

    assert stats.files_changed == 1
    assert stats.insertions == 0
    assert stats.changes == (FileChange("assets/logo.png", 0, 0),)


def test_stat_lines_only_trust_file_names() -> None:
    """Verifies `--stat` graph widths are not mistaken for line counts."""
    text = " src/app.py | 12 +++++-----\n assets/logo.png | Bin 0 -> 1024 bytes\n"
    stats = parse_diff_summary(text)

    assert stats.file_names == ["src/app.py", "assets/logo.png"]
    assert stats.files_changed == 2
    assert stats.insertions == 0


def test_without_aggregate_totals_are_summed() -> None:
    stats = parse_diff_summary("4\t1\ta.py\n6\t3\tb.py\n")

    assert (stats.files_changed, stats.insertions, stats.deletions) == (2, 10, 4)


def test_unrecognised_lines_are_ignored() -> None:
    text = "commit abc\nrename src/{a => b}.py (100%)\nnot a diff line\n5\t5\tok.txt\n"
    stats = parse_diff_summary(text)

    assert stats.file_names == ["ok.txt"]


def test_empty_input_yields_zero_stats() -> None:
    assert parse_diff_summary("") == CommitStats()


@given(st.text())
def test_parser_never_raises(text: str) -> None:
    """Property: arbitrary text always parses to non-negative statistics."""
    stats = parse_diff_summary(text)

    assert stats.files_changed >= 0
    assert stats.insertions >= 0
    assert stats.deletions >= 0
