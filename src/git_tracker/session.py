"""Credential lifecycle for the singleton session.

State machine::

    NO_SESSION --login--> VALID --(access expiry)--> ACCESS_EXPIRED
    ACCESS_EXPIRED --refresh--> VALID
    ACCESS_EXPIRED --(refresh expiry)--> FULLY_EXPIRED
    FULLY_EXPIRED --login--> VALID

Foreground requests (`get_valid_session`) and the daemon's background
cadence (`refresh_if_needed`) drive the same transitions. The refresh and
login transitions run under one lock: at most one refresh call is in flight,
and a caller that waited on the lock re-reads the store and reuses the
refreshed token instead of refreshing again.
"""

import datetime
import logging
import threading
from collections.abc import Callable
from dataclasses import replace
from enum import Enum
from typing import Any, Protocol

from .constants import APP_NAME, DEVELOPER_USER_TYPE
from .errors import (
    LoginRejectedError,
    NoSessionError,
    ReauthenticationRequiredError,
    RemoteRejectedError,
)
from .models import Session, ValidSession, utcnow

logger = logging.getLogger(APP_NAME)


class SessionStore(Protocol):
    """Single-row storage for the session."""

    def get(self) -> Session | None: ...

    def replace(self, session: Session) -> None: ...

    def clear(self) -> None: ...


class AuthClient(Protocol):
    """The auth endpoints the session manager needs from the backend."""

    def login(self, email: str, password: str, timeout: float | None = None) -> dict[str, Any]: ...

    def check_token(self, token: str, timeout: float | None = None) -> datetime.datetime: ...

    def refresh(self, refresh_token: str, timeout: float | None = None) -> str: ...


class SessionState(str, Enum):
    NO_SESSION = "no_session"
    VALID = "valid"
    ACCESS_EXPIRED = "access_expired"
    FULLY_EXPIRED = "fully_expired"


def classify_session(session: Session | None, now: datetime.datetime) -> SessionState:
    """Maps a stored session and the current time onto the state machine."""
    if session is None:
        return SessionState.NO_SESSION
    if now < session.access_expires_at:
        return SessionState.VALID
    if now < session.refresh_expires_at:
        return SessionState.ACCESS_EXPIRED
    return SessionState.FULLY_EXPIRED


class SessionManager:
    """Hands out valid access tokens, refreshing them when needed.

    Attributes:
        store (SessionStore): Where the singleton session lives.
        auth (AuthClient): The backend's auth endpoints.
        timeout (float | None): Bound for each auth call.
    """

    def __init__(
        self,
        store: SessionStore,
        auth: AuthClient,
        clock: Callable[[], datetime.datetime] = utcnow,
        timeout: float | None = None,
    ):
        self.store = store
        self.auth = auth
        self.clock = clock
        self.timeout = timeout
        self._lock = threading.Lock()

    def state(self) -> SessionState:
        return classify_session(self.store.get(), self.clock())

    def principal(self) -> str | None:
        """The stored principal's id, regardless of token validity."""
        session = self.store.get()
        return session.user_id if session else None

    def login(self, email: str, password: str) -> Session:
        """Authenticates and atomically replaces any prior session.

        Raises:
            LoginRejectedError: If the principal is not a developer.
        """
        data = self.auth.login(email, password, timeout=self.timeout)
        user = data["user"]
        user_type = user.get("userType", "")
        if user_type != DEVELOPER_USER_TYPE:
            logger.warning(f"SESSION: Access denied. UserType: {user_type}")
            raise LoginRejectedError(user_type)

        access_token = data["access_token"]
        refresh_token = data["refresh_token"]
        session = Session(
            access_token=access_token,
            access_expires_at=self.auth.check_token(access_token, timeout=self.timeout),
            refresh_token=refresh_token,
            refresh_expires_at=self.auth.check_token(refresh_token, timeout=self.timeout),
            user_id=str(user.get("_id") or user.get("id")),
            email=user.get("email", ""),
            user_type=user_type,
        )
        with self._lock:
            self.store.replace(session)
        logger.info(f"SESSION: Login successful for user: {session.email}")
        return session

    def logout(self) -> None:
        with self._lock:
            self.store.clear()
        logger.info("SESSION: Logged out.")

    def _refresh(self, session: Session) -> Session:
        """Performs the ACCESS_EXPIRED -> VALID transition. Caller holds the lock."""
        logger.warning("SESSION: Access token expired, attempting refresh...")
        try:
            access_token = self.auth.refresh(session.refresh_token, timeout=self.timeout)
            access_expires_at = self.auth.check_token(access_token, timeout=self.timeout)
        except RemoteRejectedError as e:
            logger.error(f"SESSION: Refresh rejected: {e}")
            raise ReauthenticationRequiredError(
                "Failed to refresh session. Please re-authenticate."
            ) from e

        if self.clock() >= session.refresh_expires_at:
            raise ReauthenticationRequiredError()

        refreshed = replace(
            session, access_token=access_token, access_expires_at=access_expires_at
        )
        self.store.replace(refreshed)
        logger.info("SESSION: Access token refreshed and session updated.")
        return refreshed

    def get_valid_session(self) -> ValidSession:
        """Returns a usable access token, refreshing transparently.

        Raises:
            NoSessionError: If nobody has logged in.
            ReauthenticationRequiredError: If both tokens are expired or the
                refresh token was rejected.
            TransientError: If the auth service is unreachable or slow. The
                stored session is left untouched.
        """
        session = self.store.get()
        state = classify_session(session, self.clock())
        if state == SessionState.VALID:
            return ValidSession(session.user_id, session.access_token)  # type: ignore[union-attr]

        with self._lock:
            # Another caller may have refreshed (or logged in) while we waited.
            session = self.store.get()
            state = classify_session(session, self.clock())
            if state == SessionState.NO_SESSION:
                raise NoSessionError()
            if state == SessionState.FULLY_EXPIRED:
                logger.error("SESSION: Refresh token also expired. Manual re-authentication required.")
                raise ReauthenticationRequiredError()
            if state == SessionState.ACCESS_EXPIRED:
                session = self._refresh(session)  # type: ignore[arg-type]

        return ValidSession(session.user_id, session.access_token)  # type: ignore[union-attr]

    def refresh_if_needed(self) -> SessionState:
        """Background check-and-refresh. Returns the resulting state.

        Transient failures propagate so the caller can log them and retry on
        its next tick.
        """
        state = self.state()
        if state == SessionState.NO_SESSION:
            logger.warning("SESSION: No session found, skipping check")
            return state
        if state == SessionState.VALID:
            logger.debug("SESSION: Access token still valid. No action needed.")
            return state
        try:
            self.get_valid_session()
        except ReauthenticationRequiredError:
            return SessionState.FULLY_EXPIRED
        except NoSessionError:
            return SessionState.NO_SESSION
        return SessionState.VALID
