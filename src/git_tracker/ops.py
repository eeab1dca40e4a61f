import logging
import re
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

from . import extractor, validator
from .config import Config
from .constants import APP_NAME
from .errors import (
    DuplicateRepositoryError,
    GitTimeoutError,
    InvalidIdentifierError,
    RemoteRejectedError,
    RepositoryNotActiveError,
    RepositoryNotRegisteredError,
    TransientError,
)
from .ledger import Ledger, SqliteSessionStore
from .models import (
    BatchReport,
    ExtractionResult,
    RepositoryRecord,
    RepoStatus,
    ValidSession,
)
from .reconcile import (
    ConsolidatedView,
    Reconciliation,
    build_consolidated_view,
    classify,
)
from .remote import BackendClient
from .session import SessionManager

logger = logging.getLogger(APP_NAME)

_OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")


def is_valid_identifier(ref: str) -> bool:
    """Backend ids are 24-hex object ids; local ids are plain integers."""
    return bool(_OBJECT_ID_RE.match(ref)) or ref.isdigit()


def _assigned_id(data: Any) -> str:
    """Extracts the backend id from a registration response.

    Raises:
        RemoteRejectedError: If the response carries no `_id`.
    """
    if not isinstance(data, dict) or not data.get("_id"):
        raise RemoteRejectedError("register", 422, "response carries no repository id")
    return str(data["_id"])


@dataclass
class DeliveryResult:
    """Outcome of delivering one repository's unsynced commits."""

    repo: RepositoryRecord
    delivered: int
    marked: int
    responses: list[Any]


class Tracker:
    """Orchestrates validation, extraction, delivery and reconciliation.

    Holds no mutable state of its own: the ledger, the session store and the
    backend are injected, so the daemon and the CLI can share one instance
    across threads.
    """

    def __init__(
        self,
        config: Config,
        ledger: Ledger,
        sessions: SessionManager,
        remote: BackendClient,
    ):
        self.config = config
        self.ledger = ledger
        self.sessions = sessions
        self.remote = remote

    @classmethod
    def from_config(cls, config: Config | None = None) -> "Tracker":
        config = config or Config.load()
        remote = BackendClient(
            config.remote.base_url,
            auth_url=config.remote.auth_url,
            timeout=config.remote.timeout,
        )
        ledger = Ledger(config.core.db_path)
        sessions = SessionManager(
            SqliteSessionStore(config.core.db_path),
            remote,
            timeout=config.remote.timeout,
        )
        return cls(config, ledger, sessions, remote)

    def close(self) -> None:
        self.remote.close()

    @property
    def git_timeout(self) -> float:
        return self.config.limits.git_timeout

    def probe(self, path: str, fingerprint: str) -> RepoStatus:
        """Status probe that treats a stalled path as missing."""
        try:
            return validator.probe_status(path, fingerprint, timeout=self.git_timeout)
        except GitTimeoutError as e:
            logger.warning(f"TIMEOUT {path}: {e}")
            return RepoStatus.MISSING

    def _run_batch(
        self,
        label: str,
        repos: Iterable[RepositoryRecord],
        task: Callable[[RepositoryRecord], dict[str, Any]],
    ) -> BatchReport:
        """Runs `task` per repository in parallel, isolating failures."""
        repos = list(repos)
        report = BatchReport()
        if not repos:
            return report

        with ThreadPoolExecutor(max_workers=self.config.daemon.max_workers) as pool:
            futures = [pool.submit(task, repo) for repo in repos]
            for repo, future in zip(repos, futures):
                try:
                    report.succeeded.append(future.result())
                except Exception as e:
                    logger.error(f"{label} ERROR {repo.name} ({repo.ref}): {e}")
                    report.failed.append(
                        {"repoId": repo.ref, "path": repo.path, "error": str(e)}
                    )
        return report

    # --- Registration ---

    def _registration_payload(
        self, repo: RepositoryRecord, developer_id: str | None
    ) -> dict[str, Any]:
        return {
            "name": repo.name,
            "description": repo.description,
            "path": repo.path,
            "projectId": repo.project_id,
            "developerId": developer_id,
            "permission": repo.permission,
            "repoFingerprint": repo.fingerprint,
        }

    def register_repository(
        self,
        name: str,
        path: str,
        description: str = "",
        project_id: str | None = None,
        permission: str = "read",
    ) -> RepositoryRecord:
        """Validates a working copy and registers it locally and remotely.

        If the backend is unreachable, the repository is kept locally without
        an external id and registered by the next `register_pending` run.

        Raises:
            PathNotFoundError, NotAVersionControlRootError, EmptyHistoryError:
                If validation fails.
            DuplicateRepositoryError: If the same repository is already tracked.
            NoSessionError, ReauthenticationRequiredError: Without a usable session.
            RemoteRejectedError: If the backend refuses the repository or answers
                without an id.
        """
        # Repositories are always recorded at their working-copy root.
        resolved = str(validator.open_repository(path, timeout=self.git_timeout).path)
        fingerprint = validator.validate(resolved, timeout=self.git_timeout)
        logger.info(f"Local validation successful for path \"{resolved}\"")

        if self.ledger.find_by_fingerprint(fingerprint):
            raise DuplicateRepositoryError(resolved)

        draft = RepositoryRecord(
            id=0,
            name=name,
            path=resolved,
            fingerprint=fingerprint,
            description=description,
            project_id=project_id,
            permission=permission,
        )

        try:
            session = self.sessions.get_valid_session()
            data = self.remote.register_repository(
                session.access_token, self._registration_payload(draft, session.user_id)
            )
        except TransientError as e:
            logger.warning(f"OFFLINE {name}: Registered locally, remote registration deferred ({e}).")
            return self.ledger.add_repository(
                name=name,
                path=resolved,
                fingerprint=fingerprint,
                description=description,
                developer_id=self.sessions.principal(),
                project_id=project_id,
                permission=permission,
            )

        external_id = _assigned_id(data)
        return self.ledger.add_repository(
            name=data.get("name", name),
            path=resolved,
            fingerprint=fingerprint,
            description=data.get("description", description) or "",
            external_id=external_id,
            developer_id=data.get("developerId", session.user_id),
            project_id=data.get("projectId", project_id),
            permission=data.get("permission", permission),
        )

    def register_pending(self, session: ValidSession | None = None) -> BatchReport:
        """Registers every repository that was only stored locally."""
        session = session or self.sessions.get_valid_session()
        pending = [r for r in self.ledger.list_repositories() if not r.external_id]

        def register(repo: RepositoryRecord) -> dict[str, Any]:
            data = self.remote.register_repository(
                session.access_token, self._registration_payload(repo, session.user_id)
            )
            external_id = _assigned_id(data)
            self.ledger.assign_external_id(
                repo.id, external_id, session.user_id, data.get("projectId")
            )
            logger.info(f"REGISTERED {repo.name}: {external_id}")
            return {"repoId": external_id, "path": repo.path}

        return self._run_batch("REGISTER", pending, register)

    # --- Extraction & delivery ---

    def extract_commits(self, ref: str, branch: str | None = None) -> ExtractionResult:
        """Extracts new commits for one repository into the ledger."""
        record = self.ledger.resolve(ref)
        return extractor.extract_new_commits(
            self.ledger,
            record,
            author=self.config.core.author,
            branch=branch,
            timeout=self.git_timeout,
        )

    def deliver_unsynced(
        self, ref: str, session: ValidSession | None = None
    ) -> DeliveryResult:
        """Delivers staged commits and marks exactly the delivered ones synced.

        A crash between delivery and marking causes re-delivery next time;
        the backend deduplicates on (repoId, commitHash).

        Raises:
            RepositoryNotRegisteredError: If the repository has no external id yet.
        """
        repo = self.ledger.resolve(ref)
        if not repo.external_id:
            raise RepositoryNotRegisteredError(repo.ref)
        session = session or self.sessions.get_valid_session()

        unsynced = self.ledger.unsynced_for(repo.scope)
        if not unsynced:
            logger.debug(f"Repository {repo.ref} is already in sync.")
            return DeliveryResult(repo, 0, 0, [])
        logger.info(f"Found {len(unsynced)} unsynced commits for repo {repo.ref}.")

        size = max(1, self.config.remote.batch_size)
        marked = 0
        responses = []
        for start in range(0, len(unsynced), size):
            batch = unsynced[start : start + size]
            responses.append(self.remote.ingest_commits(session.access_token, repo, batch))
            marked += self.ledger.mark_synced(repo.scope, [c.commit_hash for c in batch])

        logger.info(f"SYNCED {repo.name}: {marked} commits delivered.")
        return DeliveryResult(repo, len(unsynced), marked, responses)

    def _extract_one(self, repo: RepositoryRecord) -> dict[str, Any]:
        result = extractor.extract_new_commits(
            self.ledger, repo, author=self.config.core.author, timeout=self.git_timeout
        )
        return {
            "stage": "extract",
            "repoId": repo.ref,
            "path": repo.path,
            "newCommits": len(result.new_commits),
        }

    def extract_all(self) -> BatchReport:
        """Extracts every tracked repository. Needs no session or network."""
        return self._run_batch("EXTRACT", self.ledger.list_repositories(), self._extract_one)

    def sync_all(self) -> BatchReport:
        """Extracts every repository, then registers and delivers what is pending.

        Extraction always runs, so history is staged even while offline.
        Acquiring the session is the only batch-fatal step.
        """
        report = self.extract_all()

        session = self.sessions.get_valid_session()
        registered = self.register_pending(session)

        def deliver(repo: RepositoryRecord) -> dict[str, Any]:
            result = self.deliver_unsynced(repo.ref, session=session)
            return {
                "stage": "deliver",
                "repoId": repo.ref,
                "path": repo.path,
                "delivered": result.marked,
            }

        registered_repos = [
            r for r in self.ledger.list_repositories(session.user_id) if r.external_id
        ]
        delivered = self._run_batch("DELIVER", registered_repos, deliver)

        for part in (registered, delivered):
            report.succeeded.extend(part.succeeded)
            report.failed.extend(part.failed)
        return report

    # --- Status sweep ---

    def check_all_statuses(self) -> BatchReport:
        """Probes every repository, pushes the status remotely, then stores it."""
        session = self.sessions.get_valid_session()

        def check(repo: RepositoryRecord) -> dict[str, Any]:
            status = self.probe(repo.path, repo.fingerprint)
            if repo.external_id:
                self.remote.update_repository(
                    session.access_token, repo.external_id, {"status": status.value}
                )
            self.ledger.update_status(repo.id, status)
            return {"repoId": repo.ref, "path": repo.path, "status": status.value}

        return self._run_batch(
            "STATUS", self.ledger.list_repositories(session.user_id), check
        )

    # --- Reconciliation ---

    def compare_repositories(self) -> Reconciliation:
        session = self.sessions.get_valid_session()
        remote_repos = self.remote.list_repositories(session.access_token)
        local_repos = self.ledger.list_repositories(session.user_id)
        return classify(local_repos, remote_repos)

    def repository_view(self) -> ConsolidatedView:
        return build_consolidated_view(self.compare_repositories(), self.probe)

    # --- Metadata ---

    def update_repository(
        self, ref: str, name: str | None = None, description: str | None = None
    ) -> RepositoryRecord:
        """Updates name/description, backend first, then the local copy."""
        if not is_valid_identifier(ref):
            raise InvalidIdentifierError(ref)
        repo = self.ledger.resolve(ref)

        if repo.external_id:
            changes = {k: v for k, v in (("name", name), ("description", description)) if v is not None}
            session = self.sessions.get_valid_session()
            self.remote.update_repository(session.access_token, repo.external_id, changes)
            logger.info(f"Backend successfully updated for repo {repo.ref}.")

        self.ledger.update_metadata(repo.id, name=name, description=description)
        logger.info(f"Local cache successfully updated for repo {repo.ref}.")
        return self.ledger.get_repository(repo.id)

    def remove_repository(self, ref: str) -> RepositoryRecord:
        """Stops tracking a repository locally, dropping its staged commits."""
        repo = self.ledger.resolve(ref)
        self.ledger.remove_repository(repo.id)
        logger.info(f"REMOVED {repo.name} ({repo.ref}) from local tracking.")
        return repo

    def list_branches(self, ref: str) -> list[str]:
        repo = self.ledger.resolve(ref)
        status = self.probe(repo.path, repo.fingerprint)
        if status != RepoStatus.ACTIVE:
            raise RepositoryNotActiveError(repo.ref, status.value)
        return extractor.available_branches(
            validator.open_repository(repo.path, timeout=self.git_timeout)
        )
