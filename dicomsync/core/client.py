"""HTTP client for the Cloud Healthcare DICOMweb and resource APIs.

Provides bearer authentication through the shared session, retry on
transient gateway errors for metadata calls, and single-shot streaming
transfer calls.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from dicomsync.core.config import (
    DEFAULT_BASE_URL,
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_READ_TIMEOUT,
)
from dicomsync.core.exceptions import (
    AuthorizationDenied,
    RemoteOperationError,
    RetryExhaustedError,
    TransportError,
)
from dicomsync.models.store import (
    CloudProject,
    Dataset,
    DicomStore,
    Location,
    StoreDescriptor,
    StudyRecord,
)
from dicomsync.transfer.constants import DICOM_JSON_CONTENT_TYPE, WADO_ACCEPT

if TYPE_CHECKING:
    from dicomsync.core.session import SessionManager
    from dicomsync.transfer.multipart import MultipartEncoder

logger = logging.getLogger(__name__)

# =============================================================================
# Constants
# =============================================================================

DEFAULT_MAX_RETRIES = 3
RETRY_BACKOFF_BASE = 2
RETRYABLE_STATUS_CODES = {502, 503, 504}
RESOURCE_MANAGER_URL = "https://cloudresourcemanager.googleapis.com/v1"


# =============================================================================
# HealthcareClient
# =============================================================================


@dataclass
class HealthcareClient:
    """HTTP client for one Cloud Healthcare API endpoint."""

    session: SessionManager
    base_url: str = DEFAULT_BASE_URL
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    read_timeout: float = DEFAULT_READ_TIMEOUT
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_backoff_base: float = RETRY_BACKOFF_BASE
    transport: httpx.BaseTransport | None = field(default=None, repr=False)
    _client: httpx.Client | None = field(init=False, default=None, repr=False)
    _client_lock: threading.Lock = field(init=False, default_factory=threading.Lock, repr=False)

    def __post_init__(self) -> None:
        self.base_url = self.base_url.rstrip("/")

    # =========================================================================
    # Client Management
    # =========================================================================

    def _get_client(self) -> httpx.Client:
        """Get or create the shared HTTP client."""
        with self._client_lock:
            if self._client is None:
                self._client = httpx.Client(
                    timeout=httpx.Timeout(self.read_timeout, connect=self.connect_timeout),
                    follow_redirects=True,
                    transport=self.transport,
                )
            return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        with self._client_lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def __enter__(self) -> HealthcareClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def _auth_headers(self) -> dict[str, str]:
        token = self.session.ensure_signed_in().access_token
        return {"Authorization": f"Bearer {token}"}

    # =========================================================================
    # URLs
    # =========================================================================

    def dataset_url(self, store: StoreDescriptor) -> str:
        return f"{self.base_url}/{store.dataset_path}"

    def store_url(self, store: StoreDescriptor) -> str:
        return f"{self.base_url}/{store.store_path}"

    def studies_url(self, store: StoreDescriptor) -> str:
        return f"{self.store_url(store)}/dicomWeb/studies"

    def study_url(self, store: StoreDescriptor, study_uid: str) -> str:
        return f"{self.studies_url(store)}/{study_uid}"

    # =========================================================================
    # Transfers
    # =========================================================================

    def store_instance(
        self,
        store: StoreDescriptor,
        encoder: MultipartEncoder,
    ) -> httpx.Response:
        """POST one encoded instance to the store (STOW-RS).

        The request is sent once; the caller interprets the status code.

        Raises:
            TransportError: On network failure.
        """
        url = self.studies_url(store)
        headers = {
            **self._auth_headers(),
            **encoder.headers,
            "Accept": DICOM_JSON_CONTENT_TYPE,
        }
        try:
            return self._get_client().post(url, content=encoder, headers=headers)
        except httpx.TransportError as e:
            raise TransportError(url, f"{type(e).__name__}: {e}") from e

    @contextmanager
    def open_study(self, url: str) -> Iterator[httpx.Response]:
        """Open a streaming WADO-RS GET for a study.

        Yields:
            The unread response; the caller checks the status and iterates
            the body.

        Raises:
            TransportError: On network failure while connecting or reading.
        """
        headers = {**self._auth_headers(), "Accept": WADO_ACCEPT}
        try:
            with self._get_client().stream("GET", url, headers=headers) as response:
                yield response
        except httpx.TransportError as e:
            raise TransportError(url, f"{type(e).__name__}: {e}") from e

    def list_study_ids(self, store: StoreDescriptor) -> list[str]:
        """List the Study Instance UIDs in a store (QIDO-RS).

        A single request; the server may cap the number of results.
        """
        resp = self._request(
            "GET",
            self.studies_url(store),
            headers={"Accept": DICOM_JSON_CONTENT_TYPE},
        )
        if resp.status_code == 204 or not resp.content:
            return []

        study_ids: list[str] = []
        for item in self._json(resp, "list studies"):
            try:
                study_ids.append(StudyRecord.model_validate(item).study_instance_uid)
            except ValidationError as e:
                logger.warning("Skipping study entry without a Study Instance UID: %s", e)
        return study_ids

    # =========================================================================
    # Metadata Requests
    # =========================================================================

    def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any | None = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Execute an idempotent API request with retry logic.

        Raises:
            AuthorizationDenied: On HTTP 401/403.
            RemoteOperationError: On any other error status.
            RetryExhaustedError: If all retries fail.
        """
        client = self._get_client()
        last_error: Exception | None = None

        for attempt in range(self.max_retries + 1):
            try:
                resp = client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers={**self._auth_headers(), **(headers or {})},
                )

                if resp.status_code in (401, 403):
                    raise AuthorizationDenied(url, resp.status_code)

                if resp.status_code in RETRYABLE_STATUS_CODES:
                    last_error = TransportError(url, f"HTTP {resp.status_code}")
                else:
                    if resp.status_code >= 400:
                        raise RemoteOperationError(
                            f"{method} {url}",
                            self._error_message(resp),
                            resp.status_code,
                        )
                    return resp

            except httpx.TransportError as e:
                last_error = TransportError(url, f"{type(e).__name__}: {e}")

            if attempt < self.max_retries:
                delay = self.retry_backoff_base ** (attempt + 1)
                logger.warning(
                    "%s %s: %s on attempt %d/%d, retrying in %ss",
                    method,
                    url,
                    last_error,
                    attempt + 1,
                    self.max_retries + 1,
                    delay,
                )
                time.sleep(delay)

        raise RetryExhaustedError(url, self.max_retries + 1, last_error)

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            error = resp.json().get("error") or {}
            return error.get("message") or f"HTTP {resp.status_code}"
        except (ValueError, AttributeError):
            return f"HTTP {resp.status_code}: {resp.text[:200]}"

    @staticmethod
    def _json(resp: httpx.Response, operation: str) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise RemoteOperationError(operation, f"Invalid JSON response: {e}") from e

    # =========================================================================
    # Store Discovery
    # =========================================================================

    def list_projects(self, page_size: int = 100) -> Iterator[CloudProject]:
        """Iterate over all visible Cloud projects, following page tokens."""
        url = f"{RESOURCE_MANAGER_URL}/projects"
        params: dict[str, Any] = {"pageSize": page_size}

        while True:
            data = self._json(self._request("GET", url, params=params), "list projects")
            for item in data.get("projects") or []:
                yield CloudProject.model_validate(item)

            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params = {"pageSize": page_size, "pageToken": page_token}

    def list_locations(self, project_id: str) -> list[Location]:
        url = f"{self.base_url}/projects/{project_id}/locations"
        data = self._json(self._request("GET", url), "list locations")
        return [Location.model_validate(item) for item in data.get("locations") or []]

    def list_datasets(self, project_id: str, location_id: str) -> list[Dataset]:
        url = f"{self.base_url}/projects/{project_id}/locations/{location_id}/datasets"
        data = self._json(self._request("GET", url), "list datasets")
        return [Dataset.model_validate(item) for item in data.get("datasets") or []]

    def list_dicom_stores(self, store: StoreDescriptor) -> list[DicomStore]:
        """List the DICOM stores in the descriptor's dataset."""
        url = f"{self.dataset_url(store)}/dicomStores"
        data = self._json(self._request("GET", url), "list DICOM stores")
        return [DicomStore.model_validate(item) for item in data.get("dicomStores") or []]

    def create_dicom_store(self, store: StoreDescriptor) -> DicomStore:
        """Create the descriptor's DICOM store.

        Raises:
            RemoteOperationError: If the API reports an error.
        """
        url = f"{self.dataset_url(store)}/dicomStores"
        resp = self._request("POST", url, params={"dicomStoreId": store.store_name}, json={})
        data = self._json(resp, "create DICOM store")
        if error := data.get("error"):
            raise RemoteOperationError(
                "create DICOM store", f"DICOM store save error: {error.get('message')}"
            )
        return DicomStore.model_validate(data)

    def ensure_dicom_store(self, store: StoreDescriptor) -> bool:
        """Create the DICOM store if the dataset does not have it yet.

        Returns:
            True if the store was created.
        """
        existing = {s.short_name for s in self.list_dicom_stores(store)}
        if store.store_name in existing:
            return False
        created = self.create_dicom_store(store)
        logger.info("DICOM store created: %s", created.name)
        return True
