"""Exception hierarchy for Git Tracker.

Errors are grouped by how a caller is expected to react:

* ``InputError``: the request itself is wrong. Surface it, never retry.
* ``StateError``: the system is in a state that blocks the operation
  (inactive repository, missing or expired session). The caller decides the
  next step (re-register, re-authenticate).
* ``TransientError``: infrastructure trouble (remote down, timeout, 5xx).
  Carries the operation and target so a scheduler can retry later.
* ``IntegrityError``: the ledger refused a write that would rewrite history.
"""


class TrackerError(Exception):
    """Base class for every error raised by Git Tracker."""


# --- Input errors ---


class InputError(TrackerError):
    """The caller supplied an invalid path, branch or identifier."""


class PathNotFoundError(InputError):
    def __init__(self, path: str):
        super().__init__(f"Path does not exist or is not accessible: {path}")
        self.path = path


class NotAVersionControlRootError(InputError):
    def __init__(self, path: str):
        super().__init__(f"Not a git repository: {path}")
        self.path = path


class EmptyHistoryError(InputError):
    def __init__(self, path: str):
        super().__init__(f"Repository has no commits: {path}")
        self.path = path


class BranchNotFoundError(InputError):
    def __init__(self, branch: str, repo: str, available: list[str]):
        listing = ", ".join(available) if available else "(none)"
        super().__init__(
            f"Branch '{branch}' does not exist in repository {repo}. "
            f"Available branches: {listing}"
        )
        self.branch = branch
        self.available = available


class AuthorNotConfiguredError(InputError):
    def __init__(self, path: str):
        super().__init__(
            f"No commit author configured for {path}. "
            "Set [core] author or `git config user.name`."
        )
        self.path = path


class InvalidIdentifierError(InputError):
    def __init__(self, identifier: str):
        super().__init__(f"Invalid repository ID format: {identifier!r}")
        self.identifier = identifier


class DuplicateRepositoryError(InputError):
    def __init__(self, path: str):
        super().__init__(f"Repository at path {path} is already registered.")
        self.path = path


# --- State errors ---


class StateError(TrackerError):
    """The operation is blocked by the current local state."""


class RepositoryNotFoundError(StateError):
    def __init__(self, ref: str):
        super().__init__(f"Repository with ID {ref} not found.")
        self.ref = ref


class RepositoryNotActiveError(StateError):
    def __init__(self, ref: str, status: str):
        super().__init__(f"Repository with ID {ref} is not active ({status}).")
        self.ref = ref
        self.status = status


class RepositoryNotRegisteredError(StateError):
    def __init__(self, ref: str):
        super().__init__(f"Repository {ref} has not been registered remotely yet.")
        self.ref = ref


class NoSessionError(StateError):
    def __init__(self) -> None:
        super().__init__("No active session. Please authenticate.")


class ReauthenticationRequiredError(StateError):
    def __init__(self, reason: str = "Session expired. Please re-authenticate."):
        super().__init__(reason)


class LoginRejectedError(StateError):
    def __init__(self, user_type: str):
        super().__init__(f"Only developers can login (user type: {user_type}).")
        self.user_type = user_type


# --- Transient infrastructure errors ---


class TransientError(TrackerError):
    """A retryable infrastructure failure.

    Attributes:
        operation (str): What was being attempted (e.g. 'refresh', 'deliver').
        target (str): The URL, host or repository involved.
    """

    def __init__(self, operation: str, target: str, detail: str = ""):
        message = f"{operation} failed for {target}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.operation = operation
        self.target = target
        self.detail = detail


class RemoteUnavailableError(TransientError):
    """The backend is unreachable or answered with a 5xx status."""


class RemoteTimeoutError(TransientError):
    """An outbound call exceeded its timeout."""


class GitTimeoutError(TransientError):
    """A git subprocess exceeded its timeout (e.g. a stalled network mount)."""


class RemoteRejectedError(TrackerError):
    """The backend refused the request with a 4xx status."""

    def __init__(self, operation: str, status_code: int, message: str):
        super().__init__(f"{operation} rejected ({status_code}): {message}")
        self.operation = operation
        self.status_code = status_code
        self.message = message


# --- Data integrity ---


class IntegrityError(TrackerError):
    """A write would have silently diverged from stored history."""


class LedgerConflictError(IntegrityError):
    def __init__(self, commit_hash: str, field: str):
        super().__init__(
            f"Commit {commit_hash} already recorded with a different {field}; "
            "refusing to overwrite."
        )
        self.commit_hash = commit_hash
        self.field = field
