"""Durable local state: tracked repositories, staged commits and the session row.

Everything lives in a single SQLite file. Connections are opened per
operation so the ledger can be shared between the daemon's worker threads;
writes run inside ``BEGIN IMMEDIATE`` transactions, reads see the last
committed state (WAL mode).

Tables:

* ``repositories``: unique ``external_id`` and unique ``fingerprint``.
* ``git_commits``: unique ``(commit_hash, repo_id, owner)``, cascading
  delete from ``repositories``.
* ``session``: at most one row (``CHECK (id = 1)``).
"""

import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from .constants import APP_NAME, SESSION_ROW_ID
from .errors import (
    DuplicateRepositoryError,
    LedgerConflictError,
    RepositoryNotFoundError,
)
from .models import (
    CommitRecord,
    CommitStats,
    LedgerScope,
    RepositoryRecord,
    RepoStatus,
    Session,
    from_iso,
    to_iso,
    utcnow,
)

logger = logging.getLogger(APP_NAME)

# SQLite caps host parameters per statement; stay well below it.
_CHUNK = 500

SCHEMA = """
CREATE TABLE IF NOT EXISTS repositories (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    external_id TEXT UNIQUE,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    path TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'active'
        CHECK (status IN ('active', 'missing', 'moved', 'deleted')),
    developer_id TEXT,
    project_id TEXT,
    permission TEXT NOT NULL DEFAULT 'read',
    fingerprint TEXT NOT NULL UNIQUE,
    last_synced_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS git_commits (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    repo_id INTEGER NOT NULL REFERENCES repositories(id) ON DELETE CASCADE,
    owner TEXT NOT NULL DEFAULT '',
    commit_hash TEXT NOT NULL,
    branch TEXT NOT NULL,
    message TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    stats TEXT NOT NULL DEFAULT '{}',
    changes TEXT NOT NULL DEFAULT '[]',
    parent_commit TEXT,
    synced INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    UNIQUE (commit_hash, repo_id, owner)
);

CREATE INDEX IF NOT EXISTS idx_git_commits_unsynced
    ON git_commits (repo_id, owner, synced);

CREATE TABLE IF NOT EXISTS session (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    access_token TEXT NOT NULL,
    refresh_token TEXT NOT NULL,
    access_expires_at TEXT NOT NULL,
    refresh_expires_at TEXT NOT NULL,
    user_id TEXT NOT NULL,
    email TEXT NOT NULL DEFAULT '',
    user_type TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);
"""


def init_db(db_path: Path | str) -> None:
    """Creates the database file and schema if needed."""
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    try:
        conn.execute("PRAGMA journal_mode=WAL")
        conn.executescript(SCHEMA)
        conn.commit()
    finally:
        conn.close()


@contextmanager
def connect(db_path: Path | str) -> Iterator[sqlite3.Connection]:
    """Opens a configured connection in autocommit mode and closes it on exit."""
    conn = sqlite3.connect(str(db_path), timeout=30, isolation_level=None)
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(db_path: Path | str) -> Iterator[sqlite3.Connection]:
    """Opens a connection holding the write lock until the block exits.

    Commits on success, rolls back if the block raises.
    """
    with connect(db_path) as conn:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")


def _chunks(items: list[str], size: int = _CHUNK) -> Iterator[list[str]]:
    for i in range(0, len(items), size):
        yield items[i : i + size]


def _row_to_repo(row: sqlite3.Row) -> RepositoryRecord:
    return RepositoryRecord(
        id=row["id"],
        name=row["name"],
        path=row["path"],
        fingerprint=row["fingerprint"],
        external_id=row["external_id"],
        description=row["description"],
        status=RepoStatus(row["status"]),
        developer_id=row["developer_id"],
        project_id=row["project_id"],
        permission=row["permission"],
        last_synced_at=from_iso(row["last_synced_at"]),
        created_at=from_iso(row["created_at"]),
        updated_at=from_iso(row["updated_at"]),
    )


def _row_to_commit(row: sqlite3.Row) -> CommitRecord:
    return CommitRecord(
        commit_hash=row["commit_hash"],
        message=row["message"],
        timestamp=from_iso(row["timestamp"]),  # type: ignore[arg-type]
        branch=row["branch"],
        parent_commit=row["parent_commit"],
        stats=CommitStats.from_json(json.loads(row["stats"]), json.loads(row["changes"])),
        synced=bool(row["synced"]),
        created_at=from_iso(row["created_at"]),  # type: ignore[arg-type]
    )


class Ledger:
    """The Sync Ledger plus the local repository table.

    Attributes:
        db_path (Path): Location of the SQLite database.
    """

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        init_db(self.db_path)

    # --- Commits ---

    def _check_same_history(self, conn: sqlite3.Connection, scope: LedgerScope, record: CommitRecord) -> None:
        row = conn.execute(
            "SELECT message, timestamp, parent_commit FROM git_commits "
            "WHERE commit_hash = ? AND repo_id = ? AND owner = ?",
            (record.commit_hash, scope.repo_id, scope.owner),
        ).fetchone()
        if row is None:
            return
        if row["message"] != record.message:
            raise LedgerConflictError(record.commit_hash, "message")
        if row["parent_commit"] != record.parent_commit:
            raise LedgerConflictError(record.commit_hash, "parent commit")
        if from_iso(row["timestamp"]) != record.timestamp:
            raise LedgerConflictError(record.commit_hash, "timestamp")

    def _insert(self, conn: sqlite3.Connection, scope: LedgerScope, record: CommitRecord) -> bool:
        cur = conn.execute(
            """
            INSERT INTO git_commits (
                repo_id, owner, commit_hash, branch, message, timestamp,
                stats, changes, parent_commit, synced, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (commit_hash, repo_id, owner) DO NOTHING
            """,
            (
                scope.repo_id,
                scope.owner,
                record.commit_hash,
                record.branch,
                record.message,
                to_iso(record.timestamp),
                json.dumps(record.stats.to_dict()),
                json.dumps(record.stats.changes_to_list()),
                record.parent_commit,
                int(record.synced),
                to_iso(record.created_at),
            ),
        )
        if cur.rowcount == 0:
            self._check_same_history(conn, scope, record)
            return False
        return True

    def upsert_commit(self, scope: LedgerScope, record: CommitRecord) -> bool:
        """Stores a commit unless the same (hash, scope) is already present.

        Returns:
            bool: True if a row was inserted, False if it already existed.

        Raises:
            LedgerConflictError: If the stored commit disagrees on message,
                parent or timestamp. The stored row is left untouched.
        """
        with transaction(self.db_path) as conn:
            return self._insert(conn, scope, record)

    def upsert_commits(self, scope: LedgerScope, records: Iterable[CommitRecord]) -> list[CommitRecord]:
        """Stores a batch of commits in one transaction.

        Returns:
            list[CommitRecord]: The records that were actually inserted.
        """
        inserted = []
        with transaction(self.db_path) as conn:
            for record in records:
                if self._insert(conn, scope, record):
                    inserted.append(record)
        return inserted

    def known_hashes(self, scope: LedgerScope) -> set[str]:
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT commit_hash FROM git_commits WHERE repo_id = ? AND owner = ?",
                (scope.repo_id, scope.owner),
            ).fetchall()
        return {row["commit_hash"] for row in rows}

    def unsynced_for(self, scope: LedgerScope) -> list[CommitRecord]:
        """Returns every not-yet-delivered commit in the scope, in insertion order."""
        with connect(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM git_commits WHERE repo_id = ? AND owner = ? AND synced = 0 "
                "ORDER BY id",
                (scope.repo_id, scope.owner),
            ).fetchall()
        return [_row_to_commit(row) for row in rows]

    def commits_for(self, scope: LedgerScope, branch: str | None = None) -> list[CommitRecord]:
        """Returns every stored commit in the scope, newest first."""
        query = "SELECT * FROM git_commits WHERE repo_id = ? AND owner = ?"
        params: list[Any] = [scope.repo_id, scope.owner]
        if branch:
            query += " AND branch = ?"
            params.append(branch)
        query += " ORDER BY timestamp DESC, id DESC"
        with connect(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_commit(row) for row in rows]

    def mark_synced(self, scope: LedgerScope, commit_hashes: Iterable[str] | None) -> int:
        """Flags commits as delivered.

        Args:
            scope (LedgerScope): The repository/owner scope.
            commit_hashes (Iterable[str] | None): The exact hashes that were
                delivered. None marks every unsynced commit in scope.

        Returns:
            int: Number of rows that transitioned from unsynced to synced.
        """
        base = "UPDATE git_commits SET synced = 1 WHERE repo_id = ? AND owner = ? AND synced = 0"
        changed = 0
        with transaction(self.db_path) as conn:
            if commit_hashes is None:
                changed = conn.execute(base, (scope.repo_id, scope.owner)).rowcount
            else:
                for chunk in _chunks(list(dict.fromkeys(commit_hashes))):
                    placeholders = ",".join("?" * len(chunk))
                    changed += conn.execute(
                        f"{base} AND commit_hash IN ({placeholders})",
                        (scope.repo_id, scope.owner, *chunk),
                    ).rowcount
        return changed

    def count_commits(self, scope: LedgerScope) -> int:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS n FROM git_commits WHERE repo_id = ? AND owner = ?",
                (scope.repo_id, scope.owner),
            ).fetchone()
        return int(row["n"])

    # --- Repositories ---

    def add_repository(
        self,
        name: str,
        path: str,
        fingerprint: str,
        description: str = "",
        external_id: str | None = None,
        developer_id: str | None = None,
        project_id: str | None = None,
        permission: str = "read",
    ) -> RepositoryRecord:
        """Inserts a repository row.

        Raises:
            DuplicateRepositoryError: If the fingerprint or external id is taken.
        """
        now = to_iso(utcnow())
        try:
            with transaction(self.db_path) as conn:
                cur = conn.execute(
                    """
                    INSERT INTO repositories (
                        external_id, name, description, path, developer_id,
                        project_id, permission, fingerprint, created_at, updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        external_id,
                        name,
                        description or "",
                        path,
                        developer_id,
                        project_id,
                        permission,
                        fingerprint,
                        now,
                        now,
                    ),
                )
                repo_id = cur.lastrowid
        except sqlite3.IntegrityError as e:
            raise DuplicateRepositoryError(path) from e
        logger.info(f"Repository saved locally with ID {repo_id}")
        return self.get_repository(repo_id)  # type: ignore[arg-type]

    def get_repository(self, repo_id: int) -> RepositoryRecord:
        with connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM repositories WHERE id = ?", (repo_id,)).fetchone()
        if row is None:
            raise RepositoryNotFoundError(str(repo_id))
        return _row_to_repo(row)

    def find_by_fingerprint(self, fingerprint: str) -> RepositoryRecord | None:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM repositories WHERE fingerprint = ?", (fingerprint,)
            ).fetchone()
        return _row_to_repo(row) if row else None

    def resolve(self, ref: str | int) -> RepositoryRecord:
        """Finds a repository by external id, falling back to the local id.

        Raises:
            RepositoryNotFoundError: If neither matches.
        """
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM repositories WHERE external_id = ?", (str(ref),)
            ).fetchone()
            if row is None and str(ref).isdigit():
                row = conn.execute(
                    "SELECT * FROM repositories WHERE id = ?", (int(ref),)
                ).fetchone()
        if row is None:
            raise RepositoryNotFoundError(str(ref))
        return _row_to_repo(row)

    def list_repositories(self, developer_id: str | None = None) -> list[RepositoryRecord]:
        """Lists repositories, optionally only those owned by a developer.

        Unregistered repositories without an owner are always included.
        """
        query = "SELECT * FROM repositories"
        params: tuple[Any, ...] = ()
        if developer_id is not None:
            query += " WHERE developer_id = ? OR developer_id IS NULL"
            params = (developer_id,)
        with connect(self.db_path) as conn:
            rows = conn.execute(query + " ORDER BY id", params).fetchall()
        return [_row_to_repo(row) for row in rows]

    def _update(self, repo_id: int, assignments: str, params: tuple[Any, ...]) -> None:
        with transaction(self.db_path) as conn:
            cur = conn.execute(
                f"UPDATE repositories SET {assignments}, updated_at = ? WHERE id = ?",
                (*params, to_iso(utcnow()), repo_id),
            )
            if cur.rowcount == 0:
                raise RepositoryNotFoundError(str(repo_id))

    def update_status(self, repo_id: int, status: RepoStatus) -> None:
        self._update(repo_id, "status = ?", (status.value,))

    def set_watermark(self, repo_id: int, synced_at) -> None:
        self._update(repo_id, "last_synced_at = ?", (to_iso(synced_at),))

    def update_metadata(
        self, repo_id: int, name: str | None = None, description: str | None = None
    ) -> None:
        current = self.get_repository(repo_id)
        self._update(
            repo_id,
            "name = ?, description = ?",
            (
                name if name is not None else current.name,
                description if description is not None else current.description,
            ),
        )

    def assign_external_id(
        self,
        repo_id: int,
        external_id: str,
        developer_id: str | None,
        project_id: str | None = None,
    ) -> None:
        """Records the backend identity of a repository registered after the fact.

        Staged commits follow the repository into the new owner scope.
        """
        with transaction(self.db_path) as conn:
            row = conn.execute(
                "SELECT developer_id FROM repositories WHERE id = ?", (repo_id,)
            ).fetchone()
            if row is None:
                raise RepositoryNotFoundError(str(repo_id))
            owner = developer_id or row["developer_id"]
            conn.execute(
                "UPDATE repositories SET external_id = ?, developer_id = ?, "
                "project_id = COALESCE(?, project_id), updated_at = ? WHERE id = ?",
                (external_id, owner, project_id, to_iso(utcnow()), repo_id),
            )
            conn.execute(
                "UPDATE git_commits SET owner = ? WHERE repo_id = ?",
                (owner or "", repo_id),
            )

    def remove_repository(self, repo_id: int) -> bool:
        """Deletes a repository and, by cascade, all of its staged commits."""
        with transaction(self.db_path) as conn:
            cur = conn.execute("DELETE FROM repositories WHERE id = ?", (repo_id,))
        return cur.rowcount > 0


class SqliteSessionStore:
    """Single-row session storage implementing the SessionStore capability."""

    def __init__(self, db_path: Path | str):
        self.db_path = Path(db_path)
        init_db(self.db_path)

    def get(self) -> Session | None:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM session WHERE id = ?", (SESSION_ROW_ID,)
            ).fetchone()
        if row is None:
            return None
        return Session(
            access_token=row["access_token"],
            access_expires_at=from_iso(row["access_expires_at"]),  # type: ignore[arg-type]
            refresh_token=row["refresh_token"],
            refresh_expires_at=from_iso(row["refresh_expires_at"]),  # type: ignore[arg-type]
            user_id=row["user_id"],
            email=row["email"],
            user_type=row["user_type"],
        )

    def replace(self, session: Session) -> None:
        """Atomically swaps the stored session for `session`."""
        with transaction(self.db_path) as conn:
            conn.execute("DELETE FROM session")
            conn.execute(
                """
                INSERT INTO session (
                    id, access_token, refresh_token, access_expires_at,
                    refresh_expires_at, user_id, email, user_type, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    SESSION_ROW_ID,
                    session.access_token,
                    session.refresh_token,
                    to_iso(session.access_expires_at),
                    to_iso(session.refresh_expires_at),
                    session.user_id,
                    session.email,
                    session.user_type,
                    to_iso(utcnow()),
                ),
            )

    def clear(self) -> None:
        with transaction(self.db_path) as conn:
            conn.execute("DELETE FROM session")
