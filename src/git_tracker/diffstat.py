"""Grammar for per-commit diff summaries.

Three line shapes are recognised. Everything else (blank lines, commit
headers, rename summaries, garbage) is skipped and contributes nothing; the
parser never raises.

Aggregate line (``git diff --shortstat``). The insertion and deletion
clauses are independently optional::

     3 files changed, 25 insertions(+), 4 deletions(-)
     1 file changed, 10 insertions(+)
     2 files changed, 12 deletions(-)
     1 file changed

Numstat line (``git diff --numstat``), tab separated. Binary files report
``-`` for both counts, which is read as zero::

    10<TAB>2<TAB>src/app.py
    -<TAB>-<TAB>assets/logo.png

Stat line (``git diff --stat``). Only the file name is trusted, since the
``+``/``-`` graph is scaled to the terminal width::

     src/app.py | 12 +++++-----
     assets/logo.png | Bin 0 -> 1024 bytes

When an aggregate line is present its totals win. Otherwise totals are summed
from the per-file lines.
"""

import re

from .models import CommitStats, FileChange

AGGREGATE_RE = re.compile(
    r"^\s*(?P<files>\d+)\s+files?\s+changed"
    r"(?:,\s+(?P<ins>\d+)\s+insertions?\(\+\))?"
    r"(?:,\s+(?P<dels>\d+)\s+deletions?\(-\))?\s*$"
)
NUMSTAT_RE = re.compile(r"^(?P<added>\d+|-)\t(?P<removed>\d+|-)\t(?P<path>.+)$")
STAT_RE = re.compile(r"^\s*(?P<path>.+?)\s+\|\s+(?:\d+|Bin\b)")


def _count(token: str | None) -> int:
    if not token or token == "-":
        return 0
    return int(token)


def parse_line(line: str) -> tuple[str, object] | None:
    """Classifies one line of diff-summary output.

    Returns:
        tuple | None: ``("aggregate", (files, insertions, deletions))``,
        ``("file", FileChange)`` or None for unrecognised lines.
    """
    if m := AGGREGATE_RE.match(line):
        return "aggregate", (
            int(m.group("files")),
            _count(m.group("ins")),
            _count(m.group("dels")),
        )
    if m := NUMSTAT_RE.match(line):
        return "file", FileChange(
            m.group("path").strip(), _count(m.group("added")), _count(m.group("removed"))
        )
    if m := STAT_RE.match(line):
        return "file", FileChange(m.group("path").strip())
    return None


def parse_diff_summary(text: str) -> CommitStats:
    """Parses a diff summary into CommitStats.

    Args:
        text (str): Raw output of `git show --numstat --shortstat` (or --stat).

    Returns:
        CommitStats: Parsed statistics. All zeros for empty or unparseable input.
    """
    aggregate: tuple[int, int, int] | None = None
    changes: list[FileChange] = []

    for line in (text or "").splitlines():
        parsed = parse_line(line)
        if parsed is None:
            continue
        kind, value = parsed
        if kind == "aggregate":
            aggregate = value  # type: ignore[assignment]
        else:
            changes.append(value)  # type: ignore[arg-type]

    if aggregate is not None:
        files, insertions, deletions = aggregate
    else:
        files = len(changes)
        insertions = sum(c.added for c in changes)
        deletions = sum(c.removed for c in changes)

    return CommitStats(
        files_changed=files,
        insertions=insertions,
        deletions=deletions,
        changes=tuple(changes),
    )
