"""HTTP client for the Git Tracker backend.

All calls are synchronous, bounded by a timeout, and never retried here:
failures are classified into the error taxonomy and handed back to the
caller's schedule.

Response bodies are expected in the backend's envelope form
``{"data": ..., "message": ...}``.
"""

import datetime
import logging
from collections.abc import Iterable
from typing import Any

import httpx

from .constants import APP_NAME
from .errors import (
    RemoteRejectedError,
    RemoteTimeoutError,
    RemoteUnavailableError,
)
from .models import (
    CommitRecord,
    RemoteRepository,
    RepositoryRecord,
    from_iso,
    to_iso,
)

logger = logging.getLogger(APP_NAME)


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)


def commit_payload(repo: RepositoryRecord, commit: CommitRecord) -> dict[str, Any]:
    """Serializes a staged commit for the ingestion endpoint."""
    return {
        "repoId": repo.external_id,
        "developerId": repo.developer_id,
        "projectId": repo.project_id,
        "commitHash": commit.commit_hash,
        "message": commit.message,
        "branch": commit.branch,
        "timestamp": to_iso(commit.timestamp),
        "stats": commit.stats.to_dict(),
        "changes": commit.stats.changes_to_list(),
        "parentCommit": commit.parent_commit,
        "desktopSyncedAt": to_iso(commit.created_at),
    }


class BackendClient:
    """Thin wrapper over `httpx.Client` for the backend and auth endpoints.

    Attributes:
        base_url (str): Root of the repository/commit API.
        auth_url (str): Root of the auth API (defaults to base_url).
        timeout (float): Default per-call timeout in seconds.
    """

    def __init__(
        self,
        base_url: str,
        auth_url: str | None = None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.auth_url = (auth_url or base_url).rstrip("/")
        self.timeout = timeout
        self._client = httpx.Client(transport=transport)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "BackendClient":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _request(
        self,
        operation: str,
        method: str,
        url: str,
        token: str | None = None,
        json: Any = None,
        timeout: float | None = None,
    ) -> Any:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = self._client.request(
                method,
                url,
                json=json,
                headers=headers,
                timeout=timeout if timeout is not None else self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.error(f"REMOTE TIMEOUT {operation}: {url}")
            raise RemoteTimeoutError(operation, url, str(e)) from e
        except httpx.RequestError as e:
            logger.error(f"REMOTE UNREACHABLE {operation}: {url} ({e})")
            raise RemoteUnavailableError(operation, url, str(e)) from e

        if response.status_code >= 500:
            message = _error_message(response)
            logger.error(f"REMOTE ERROR {operation}: {response.status_code} {message}")
            raise RemoteUnavailableError(operation, url, f"{response.status_code} {message}")
        if response.status_code >= 400:
            raise RemoteRejectedError(operation, response.status_code, _error_message(response))

        if not response.content:
            return None
        body = response.json()
        if isinstance(body, dict) and "data" in body:
            return body["data"]
        return body

    # --- Auth ---

    def login(self, email: str, password: str, timeout: float | None = None) -> dict[str, Any]:
        """Exchanges credentials for `{access_token, refresh_token, user}`."""
        return self._request(
            "login",
            "POST",
            f"{self.auth_url}/auth/login",
            json={"email": email, "password": password, "rememberMe": True},
            timeout=timeout,
        )

    def check_token(self, token: str, timeout: float | None = None) -> datetime.datetime:
        """Asks the auth service when `token` expires."""
        data = self._request(
            "check-token",
            "POST",
            f"{self.auth_url}/auth/check-token",
            json={"token": token},
            timeout=timeout,
        )
        expires = from_iso(str(data["expirationDate"])) if data else None
        if expires is None:
            raise RemoteRejectedError("check-token", 422, "missing expirationDate")
        return expires

    def refresh(self, refresh_token: str, timeout: float | None = None) -> str:
        """Trades a refresh token for a new access token."""
        data = self._request(
            "refresh",
            "POST",
            f"{self.auth_url}/auth/refresh",
            json={"refreshToken": refresh_token},
            timeout=timeout,
        )
        return data["access_token"]

    # --- Repositories ---

    def register_repository(
        self, token: str, payload: dict[str, Any], timeout: float | None = None
    ) -> dict[str, Any]:
        """Registers a repository; the response carries the assigned `_id`."""
        return self._request(
            "register",
            "POST",
            f"{self.base_url}/repositories/register",
            token=token,
            json=payload,
            timeout=timeout,
        )

    def update_repository(
        self, token: str, external_id: str, changes: dict[str, Any], timeout: float | None = None
    ) -> Any:
        return self._request(
            "update",
            "PATCH",
            f"{self.base_url}/repositories/{external_id}",
            token=token,
            json=changes,
            timeout=timeout,
        )

    def list_repositories(self, token: str, timeout: float | None = None) -> list[RemoteRepository]:
        data = self._request(
            "list-repositories",
            "GET",
            f"{self.base_url}/repositories/me/developer",
            token=token,
            timeout=timeout,
        )
        return [RemoteRepository.from_api(item) for item in data or []]

    # --- Commits ---

    def ingest_commits(
        self,
        token: str,
        repo: RepositoryRecord,
        commits: Iterable[CommitRecord],
        timeout: float | None = None,
    ) -> Any:
        """Delivers a batch of commits; the backend dedups on (repoId, commitHash)."""
        payload = [commit_payload(repo, c) for c in commits]
        return self._request(
            "deliver",
            "POST",
            f"{self.base_url}/git-data/commits",
            token=token,
            json=payload,
            timeout=timeout,
        )
