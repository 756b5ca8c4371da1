"""Authentication collaborators for dicomsync.

Handles the on-disk OAuth credential cache and the Google installed-app
authorization exchange that yields access tokens.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow

from dicomsync.core.config import CREDENTIALS_FILE, DEFAULT_CLIENT_SECRETS
from dicomsync.core.exceptions import ConfigurationError, TransportError

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

SCOPES = [
    "https://www.googleapis.com/auth/cloud-healthcare",
    "https://www.googleapis.com/auth/cloud-platform",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/userinfo.email",
]
TOKENINFO_URL = "https://oauth2.googleapis.com/tokeninfo"


# =============================================================================
# Access Grant
# =============================================================================


@dataclass(frozen=True)
class AccessGrant:
    """Access token produced by an authorization exchange."""

    token: str
    expires_at: datetime | None = None


class Authorizer(Protocol):
    """Identity exchange used by the session manager."""

    @property
    def client_id(self) -> str | None: ...

    def authorize(self) -> AccessGrant: ...

    def token_info(self, access_token: str) -> dict[str, Any]: ...


# =============================================================================
# Credential Cache
# =============================================================================


class CredentialCache:
    """On-disk cache of the authorized-user credentials."""

    def __init__(self, cache_file: Path | None = None):
        """Initialize credential cache.

        Args:
            cache_file: Path to the cached token file.
        """
        self.cache_file = cache_file or CREDENTIALS_FILE

    def exists(self) -> bool:
        return self.cache_file.exists()

    def load(self, scopes: list[str] | None = None) -> Credentials | None:
        """Load cached credentials.

        Returns:
            Credentials if the cache is readable, None otherwise.
        """
        if not self.cache_file.exists():
            return None

        try:
            return Credentials.from_authorized_user_file(str(self.cache_file), scopes)
        except (ValueError, KeyError, json.JSONDecodeError) as e:
            logger.warning("Discarding unreadable credential cache %s: %s", self.cache_file, e)
            self.clear()
            return None

    def save(self, credentials: Credentials) -> None:
        """Write credentials to the cache with owner-only permissions."""
        self.cache_file.parent.mkdir(parents=True, exist_ok=True)

        with open(self.cache_file, "w") as f:
            f.write(credentials.to_json())

        try:
            os.chmod(self.cache_file, 0o600)
        except OSError:
            pass  # May fail on some systems

    def clear(self) -> bool:
        """Delete the cached credentials.

        Returns:
            True if a cache file was removed.
        """
        if self.cache_file.exists():
            try:
                self.cache_file.unlink()
                return True
            except OSError as e:
                logger.warning("Could not delete credential cache %s: %s", self.cache_file, e)
        return False


# =============================================================================
# Google Authorizer
# =============================================================================


class GoogleAuthorizer:
    """Installed-application OAuth exchange against Google."""

    def __init__(
        self,
        client_secrets: Path | str | None = None,
        cache: CredentialCache | None = None,
        *,
        scopes: list[str] | None = None,
        open_browser: bool = True,
        timeout: float = 20.0,
    ):
        self.client_secrets = Path(client_secrets or DEFAULT_CLIENT_SECRETS)
        self.cache = cache or CredentialCache()
        self.scopes = scopes or list(SCOPES)
        self.open_browser = open_browser
        self.timeout = timeout
        self._client_id: str | None = None

    @property
    def client_id(self) -> str | None:
        """Client id registered in the client-secrets file."""
        if self._client_id is None:
            self._client_id = self._load_client_config().get("client_id")
        return self._client_id

    def _load_client_config(self) -> dict[str, Any]:
        if not self.client_secrets.exists():
            raise ConfigurationError(
                "Client secrets file not found",
                field="client_secrets",
                value=str(self.client_secrets),
            )
        try:
            data = json.loads(self.client_secrets.read_text())
        except json.JSONDecodeError as e:
            raise ConfigurationError(
                f"Client secrets file is not valid JSON: {e}",
                field="client_secrets",
            ) from e

        config = data.get("installed") or data.get("web") or {}
        client_id = config.get("client_id", "")
        client_secret = config.get("client_secret", "")
        if not client_id or client_id.startswith("Enter") or client_secret.startswith("Enter"):
            raise ConfigurationError(
                "Client secrets file has no client id; generate one in the Google Cloud console",
                field="client_secrets",
                value=str(self.client_secrets),
            )
        return config

    def authorize(self) -> AccessGrant:
        """Obtain an access token, reusing or refreshing cached credentials.

        Falls back to the interactive browser flow when nothing usable is cached.
        """
        credentials = self.cache.load(self.scopes)

        if credentials and credentials.expired and credentials.refresh_token:
            try:
                logger.info("Refreshing expired credentials...")
                credentials.refresh(Request())
            except GoogleAuthError as e:
                logger.warning("Credential refresh failed: %s", e)
                credentials = None

        if not credentials or not credentials.valid:
            self._load_client_config()
            logger.info("Starting OAuth2 flow...")
            flow = InstalledAppFlow.from_client_secrets_file(str(self.client_secrets), self.scopes)
            credentials = flow.run_local_server(port=0, open_browser=self.open_browser)

        self.cache.save(credentials)

        expires_at = credentials.expiry
        if expires_at is not None and expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return AccessGrant(token=credentials.token, expires_at=expires_at)

    def token_info(self, access_token: str) -> dict[str, Any]:
        """Look up token metadata (audience, scopes, expiry)."""
        try:
            resp = httpx.get(
                TOKENINFO_URL,
                params={"access_token": access_token},
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            raise TransportError(TOKENINFO_URL, str(e)) from e
        resp.raise_for_status()
        return resp.json()
