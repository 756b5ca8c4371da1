"""Authenticated session shared by every transfer worker.

One SessionManager is created per process and injected into both the export
and import pipelines. It serialises sign-in so that concurrent workers
trigger a single authorization exchange.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Protocol

from dicomsync.core.auth import Authorizer
from dicomsync.core.exceptions import AuthError

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

MAX_SIGN_IN_ATTEMPTS = 4
EXPIRY_SKEW = timedelta(seconds=60)


class CredentialStore(Protocol):
    """Anything that can discard cached credentials."""

    def clear(self) -> bool: ...


SessionListener = Callable[["Session"], None]


# =============================================================================
# Session
# =============================================================================


@dataclass
class Session:
    """Current authentication state.

    ``access_token`` is non-empty exactly when ``signed_in`` is true.
    """

    signed_in: bool = False
    access_token: str = ""
    retry_count: int = 0
    expires_at: datetime | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        """Check if the token is past (or within a minute of) its expiry."""
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now >= self.expires_at - EXPIRY_SKEW

    @property
    def is_usable(self) -> bool:
        return self.signed_in and not self.is_expired()


# =============================================================================
# SessionManager
# =============================================================================


class SessionManager:
    """Owns the single authenticated session and its sign-in lifecycle."""

    def __init__(
        self,
        authorizer: Authorizer,
        cache: CredentialStore | None = None,
        *,
        max_attempts: int = MAX_SIGN_IN_ATTEMPTS,
        retry_delay: float = 0.0,
    ):
        """Initialize session manager.

        Args:
            authorizer: Identity exchange producing access tokens.
            cache: Credential cache cleared after a failed first attempt.
            max_attempts: Sign-in attempts before giving up.
            retry_delay: Base delay in seconds between attempts, doubled each
                time. Zero retries immediately.
        """
        self.authorizer = authorizer
        self.cache = cache
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self._session = Session()
        self._lock = threading.RLock()
        self._listeners: list[SessionListener] = []

    # =========================================================================
    # State
    # =========================================================================

    @property
    def session(self) -> Session:
        """Snapshot of the current session."""
        return replace(self._session)

    @property
    def is_signed_in(self) -> bool:
        return self._session.is_usable

    @property
    def access_token(self) -> str:
        return self._session.access_token

    # =========================================================================
    # Listeners
    # =========================================================================

    def add_listener(self, listener: SessionListener) -> None:
        """Register a callback invoked after every successful sign-in."""
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _notify(self, session: Session) -> None:
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception:
                logger.exception("Session listener %r failed", listener)

    # =========================================================================
    # Sign-in
    # =========================================================================

    def ensure_signed_in(self) -> Session:
        """Return the current session, signing in first if needed.

        Returns:
            Snapshot of the signed-in session.

        Raises:
            AuthError: If every sign-in attempt failed.
        """
        if self._session.is_usable:
            return self.session

        with self._lock:
            # Another worker may have finished signing in while we waited
            if self._session.is_usable:
                return self.session
            return self._sign_in()

    def _sign_in(self) -> Session:
        if self._session.signed_in:
            logger.info("Access token expired, signing in again")
        self._session = Session()
        last_error: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                grant = self.authorizer.authorize()
                if not grant.token:
                    raise ValueError("Authorization returned an empty access token")
                self._validate_token(grant.token)
            except Exception as e:
                last_error = e
                logger.error(
                    "Error occurred during authorization (attempt %d/%d): %s",
                    attempt,
                    self.max_attempts,
                    e,
                )
                if attempt == 1 and self.cache is not None:
                    logger.info("Clearing cached credentials before retrying")
                    self.cache.clear()
                if attempt < self.max_attempts and self.retry_delay > 0:
                    time.sleep(self.retry_delay * 2 ** (attempt - 1))
                continue

            self._session = Session(
                signed_in=True,
                access_token=grant.token,
                retry_count=attempt - 1,
                expires_at=grant.expires_at,
            )
            logger.info("Signed in after %d attempt(s)", attempt)
            snapshot = self.session
            self._notify(snapshot)
            return snapshot

        raise AuthError(self.max_attempts, last_error) from last_error

    def _validate_token(self, access_token: str) -> None:
        """Compare the token audience with our client id; a mismatch is only logged."""
        info = self.authorizer.token_info(access_token)
        expected = self.authorizer.client_id
        audience = info.get("aud") or info.get("audience")
        if expected and audience != expected:
            logger.error(
                "Token audience %s does not match our client id %s", audience, expected
            )

    def reset(self) -> bool:
        """Discard cached credentials unless a session is active.

        Returns:
            True if the credential cache was cleared.
        """
        with self._lock:
            if self._session.signed_in or self.cache is None:
                return False
            return self.cache.clear()
