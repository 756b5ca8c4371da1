"""Pytest configuration and fixtures for dicomsync tests."""

from __future__ import annotations

import tempfile
import threading
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Generator, Optional

import pytest

from dicomsync.core.auth import AccessGrant
from dicomsync.core.session import SessionManager
from dicomsync.core.status import TransferStatusSink
from dicomsync.models.store import StoreDescriptor

CLIENT_ID = "1234-test.apps.googleusercontent.com"


class FakeAuthorizer:
    """Authorizer returning canned grants, optionally failing first."""

    def __init__(
        self,
        *,
        failures: int = 0,
        token: str = "access-token",
        delay: float = 0.0,
        audience: Optional[str] = CLIENT_ID,
        lifetime: timedelta = timedelta(hours=1),
    ):
        self.failures = failures
        self.token = token
        self.delay = delay
        self.audience = audience
        self.lifetime = lifetime
        self.calls = 0
        self._lock = threading.Lock()

    @property
    def client_id(self) -> str:
        return CLIENT_ID

    def authorize(self) -> AccessGrant:
        with self._lock:
            self.calls += 1
            call = self.calls
        if self.delay:
            time.sleep(self.delay)
        if call <= self.failures:
            raise RuntimeError(f"authorization failed (call {call})")
        return AccessGrant(
            token=self.token,
            expires_at=datetime.now(timezone.utc) + self.lifetime,
        )

    def token_info(self, access_token: str) -> dict[str, Any]:
        return {"aud": self.audience, "expires_in": 3599}


class FakeCache:
    """Credential cache counting clears.

    With an authorizer attached, each clear also records how many sign-in
    attempts had been made at that point.
    """

    def __init__(self, authorizer: FakeAuthorizer | None = None) -> None:
        self.authorizer = authorizer
        self.clears = 0
        self.attempts_at_clear: list[int] = []

    def clear(self) -> bool:
        self.clears += 1
        if self.authorizer is not None:
            self.attempts_at_clear.append(self.authorizer.calls)
        return True


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store() -> StoreDescriptor:
    """Destination store used across tests."""
    return StoreDescriptor(
        project_id="my-project",
        location_id="us-central1",
        dataset_name="imaging",
        store_name="incoming",
    )


@pytest.fixture
def authorizer() -> FakeAuthorizer:
    return FakeAuthorizer()


@pytest.fixture
def cache() -> FakeCache:
    return FakeCache()


@pytest.fixture
def session_manager(authorizer: FakeAuthorizer, cache: FakeCache) -> SessionManager:
    """Session manager backed by the fake authorizer."""
    return SessionManager(authorizer, cache)


@pytest.fixture
def sink() -> TransferStatusSink:
    return TransferStatusSink()


@pytest.fixture
def sample_config_yaml() -> str:
    """Sample config YAML content."""
    return """
default_profile: research
output_format: table

profiles:
  research:
    project_id: my-project
    location_id: us-central1
    dataset_name: imaging
    store_name: incoming
    import_directory: /data/incoming
    poll_interval_ms: 5000
    max_export_workers: 3

  clinical:
    project_id: clinical-project
    location_id: europe-west4
    dataset_name: pacs
    store_name: archive
"""
