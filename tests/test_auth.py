"""Tests for dicomsync.core.auth module."""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock, patch

import httpx
import pytest
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials

from dicomsync.core.auth import SCOPES, TOKENINFO_URL, CredentialCache, GoogleAuthorizer
from dicomsync.core.exceptions import ConfigurationError, TransportError

from conftest import CLIENT_ID


def _write_secrets(path: Path, client_id: str = CLIENT_ID, secret: str = "shh") -> Path:
    path.write_text(json.dumps({"installed": {"client_id": client_id, "client_secret": secret}}))
    return path


def _credentials(*, valid=True, expired=False, refresh_token="refresh", expiry=None):
    creds = MagicMock()
    creds.valid = valid
    creds.expired = expired
    creds.refresh_token = refresh_token
    creds.token = "access-token"
    creds.expiry = expiry
    return creds


# =============================================================================
# Credential Cache Tests
# =============================================================================


class TestCredentialCache:
    """Tests for CredentialCache."""

    def test_save_and_load(self, temp_dir: Path):
        cache = CredentialCache(temp_dir / "creds" / "token.json")
        creds = Credentials(
            token="tok",
            refresh_token="refresh",
            token_uri="https://oauth2.googleapis.com/token",
            client_id=CLIENT_ID,
            client_secret="shh",
            scopes=SCOPES,
        )

        cache.save(creds)
        loaded = cache.load(SCOPES)

        assert cache.exists()
        assert loaded is not None
        assert loaded.refresh_token == "refresh"
        assert loaded.client_id == CLIENT_ID

    def test_load_missing(self, temp_dir: Path):
        assert CredentialCache(temp_dir / "none.json").load() is None

    def test_corrupt_cache_discarded(self, temp_dir: Path):
        path = temp_dir / "token.json"
        path.write_text("{not json")
        cache = CredentialCache(path)

        assert cache.load() is None
        assert not path.exists()

    def test_clear(self, temp_dir: Path):
        path = temp_dir / "token.json"
        path.write_text("{}")
        cache = CredentialCache(path)

        assert cache.clear() is True
        assert cache.clear() is False


# =============================================================================
# Google Authorizer Tests
# =============================================================================


class TestGoogleAuthorizer:
    """Tests for GoogleAuthorizer."""

    def test_client_id(self, temp_dir: Path):
        authorizer = GoogleAuthorizer(_write_secrets(temp_dir / "secrets.json"))
        assert authorizer.client_id == CLIENT_ID

    def test_missing_secrets_file(self, temp_dir: Path):
        authorizer = GoogleAuthorizer(temp_dir / "missing.json")
        with pytest.raises(ConfigurationError) as excinfo:
            authorizer.client_id
        assert excinfo.value.field == "client_secrets"

    def test_placeholder_client_id(self, temp_dir: Path):
        secrets = _write_secrets(temp_dir / "secrets.json", "Enter Client ID", "Enter Secret")
        with pytest.raises(ConfigurationError):
            GoogleAuthorizer(secrets).client_id

    def test_cached_credentials_reused(self, temp_dir: Path):
        cache = MagicMock()
        creds = _credentials(expiry=datetime(2030, 1, 1, 12, 0))
        cache.load.return_value = creds
        authorizer = GoogleAuthorizer(temp_dir / "unused.json", cache)

        with patch("dicomsync.core.auth.InstalledAppFlow") as flow_cls:
            grant = authorizer.authorize()

        flow_cls.from_client_secrets_file.assert_not_called()
        cache.save.assert_called_once_with(creds)
        assert grant.token == "access-token"
        assert grant.expires_at == datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_expired_credentials_refreshed(self, temp_dir: Path):
        cache = MagicMock()
        creds = _credentials(expired=True)
        cache.load.return_value = creds
        authorizer = GoogleAuthorizer(temp_dir / "unused.json", cache)

        with patch("dicomsync.core.auth.InstalledAppFlow") as flow_cls:
            authorizer.authorize()

        creds.refresh.assert_called_once()
        flow_cls.from_client_secrets_file.assert_not_called()

    def test_failed_refresh_falls_back_to_browser(self, temp_dir: Path):
        secrets = _write_secrets(temp_dir / "secrets.json")
        cache = MagicMock()
        stale = _credentials(expired=True)
        stale.refresh.side_effect = RefreshError("token revoked")
        cache.load.return_value = stale
        fresh = _credentials()
        authorizer = GoogleAuthorizer(secrets, cache, open_browser=False)

        with patch("dicomsync.core.auth.InstalledAppFlow") as flow_cls:
            flow_cls.from_client_secrets_file.return_value.run_local_server.return_value = fresh
            authorizer.authorize()

        flow_cls.from_client_secrets_file.assert_called_once_with(str(secrets), SCOPES)
        flow_cls.from_client_secrets_file.return_value.run_local_server.assert_called_once_with(
            port=0, open_browser=False
        )
        cache.save.assert_called_once_with(fresh)

    def test_browser_flow_needs_valid_secrets(self, temp_dir: Path):
        cache = MagicMock()
        cache.load.return_value = None
        authorizer = GoogleAuthorizer(temp_dir / "missing.json", cache)

        with pytest.raises(ConfigurationError):
            authorizer.authorize()

    def test_token_info(self, temp_dir: Path):
        response = httpx.Response(
            200,
            json={"aud": CLIENT_ID},
            request=httpx.Request("GET", TOKENINFO_URL),
        )
        authorizer = GoogleAuthorizer(temp_dir / "secrets.json", MagicMock())

        with patch("dicomsync.core.auth.httpx.get", return_value=response) as get:
            info = authorizer.token_info("tok")

        assert info == {"aud": CLIENT_ID}
        assert get.call_args.kwargs["params"] == {"access_token": "tok"}

    def test_token_info_network_failure(self, temp_dir: Path):
        authorizer = GoogleAuthorizer(temp_dir / "secrets.json", MagicMock())

        with patch(
            "dicomsync.core.auth.httpx.get",
            side_effect=httpx.ConnectError("unreachable"),
        ):
            with pytest.raises(TransportError):
                authorizer.token_info("tok")
