"""Tests for dicomsync.transfer.importer module."""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from pathlib import Path
from unittest.mock import MagicMock

import httpx
import pytest

from dicomsync.core.exceptions import ConfigurationError, ProtocolError, RemoteOperationError
from dicomsync.models.transfer import Direction, PollerState, RemoteObjectRef
from dicomsync.transfer.importer import ImportService
from dicomsync.transfer.multipart import MultipartEncoder

STUDIES = "https://healthcare.example/dicomWeb/studies"
MULTIPART_TYPE = 'multipart/related; type="application/dicom"; boundary=bnd'


def _single_part(payload: bytes, **headers: str) -> httpx.Response:
    encoder = MultipartEncoder(payload, boundary="bnd")
    return httpx.Response(
        200,
        headers={"Content-Type": encoder.content_type, **headers},
        content=encoder.to_bytes(),
    )


def _multi_part(*payloads: bytes) -> httpx.Response:
    body = b"preamble\r\n"
    for payload in payloads:
        body += b"--bnd\r\nContent-Type: application/dicom\r\n\r\n" + payload + b"\r\n"
    body += b"--bnd--\r\n"
    return httpx.Response(200, headers={"Content-Type": MULTIPART_TYPE}, content=body)


class FakeClient:
    """Healthcare client serving canned study listings and downloads."""

    def __init__(self, study_ids: list[str], responses: dict[str, httpx.Response] | None = None):
        self.study_ids = study_ids
        self.responses = responses or {}
        self.list_error: Exception | None = None
        self.listings = 0
        self.requested: list[str] = []
        self.on_list = None
        self._lock = threading.Lock()

    def list_study_ids(self, store) -> list[str]:
        self.listings += 1
        if self.on_list:
            self.on_list()
        if self.list_error:
            raise self.list_error
        return list(self.study_ids)

    def study_url(self, store, study_uid: str) -> str:
        return f"{STUDIES}/{study_uid}"

    @contextmanager
    def open_study(self, url: str):
        with self._lock:
            self.requested.append(url)
        uid = url.rsplit("/", 1)[-1]
        yield self.responses.get(uid, httpx.Response(404))


@pytest.fixture
def import_dir(temp_dir: Path) -> Path:
    return temp_dir / "incoming"


def _service(client, session_manager, store, sink, import_dir, **kwargs) -> ImportService:
    return ImportService(client, session_manager, store, sink, import_dir, **kwargs)


# =============================================================================
# Construction Tests
# =============================================================================


class TestConstruction:
    """Tests for ImportService settings validation."""

    def test_creates_import_directory(self, session_manager, store, sink, import_dir):
        _service(FakeClient([]), session_manager, store, sink, import_dir)
        assert import_dir.is_dir()

    def test_rejects_file_as_import_directory(self, session_manager, store, sink, temp_dir):
        path = temp_dir / "file"
        path.write_text("x")

        with pytest.raises(ConfigurationError) as excinfo:
            _service(FakeClient([]), session_manager, store, sink, path)

        assert excinfo.value.field == "import_directory"

    def test_rejects_invalid_settings(self, session_manager, store, sink, import_dir):
        with pytest.raises(ConfigurationError):
            _service(FakeClient([]), session_manager, store, sink, import_dir, workers=0)
        with pytest.raises(ConfigurationError):
            _service(FakeClient([]), session_manager, store, sink, import_dir, interval=0)


# =============================================================================
# Download Tests
# =============================================================================


class TestDownload:
    """Tests for downloading one study."""

    def test_saves_single_part(self, session_manager, store, sink, import_dir):
        client = FakeClient(["1.2.3"], {"1.2.3": _single_part(b"DICM-one")})
        received = []
        service = _service(
            client, session_manager, store, sink, import_dir, on_file_received=received.append
        )

        files = service.download(RemoteObjectRef("1.2.3", f"{STUDIES}/1.2.3"))

        assert files == [import_dir / "1.2.3"]
        assert files[0].read_bytes() == b"DICM-one"
        assert received == files
        outcome = sink.get(Direction.DOWNLOAD, f"{STUDIES}/1.2.3")
        assert outcome.ok
        assert outcome.detail == "1 file(s)"

    def test_response_disposition_names_file(self, session_manager, store, sink, import_dir):
        response = _single_part(b"DICM", **{"Content-Disposition": 'attachment; filename="s.dcm"'})
        client = FakeClient(["9"], {"9": response})
        service = _service(client, session_manager, store, sink, import_dir)

        files = service.download(RemoteObjectRef("9", f"{STUDIES}/9"))

        assert files == [import_dir / "s.dcm"]

    def test_one_file_per_part(self, session_manager, store, sink, import_dir):
        client = FakeClient(["7"], {"7": _multi_part(b"first", b"second", b"third")})
        service = _service(client, session_manager, store, sink, import_dir, chunk_size=3)

        files = service.download(RemoteObjectRef("7", f"{STUDIES}/7"))

        assert [f.name for f in files] == ["7", "7_1", "7_2"]
        assert [f.read_bytes() for f in files] == [b"first", b"second", b"third"]

    def test_non_200_is_not_recorded(self, session_manager, store, sink, import_dir):
        service = _service(FakeClient(["x"]), session_manager, store, sink, import_dir)

        assert service.download(RemoteObjectRef("x", f"{STUDIES}/x")) is None
        assert sink.outcomes() == []
        assert list(import_dir.iterdir()) == []

    def test_malformed_body_removes_partial_files(self, session_manager, store, sink, import_dir):
        truncated = httpx.Response(
            200,
            headers={"Content-Type": MULTIPART_TYPE},
            content=b"--bnd\r\nContent-Type: application/dicom\r\n\r\npartial data",
        )
        client = FakeClient(["5"], {"5": truncated})
        received = []
        service = _service(
            client, session_manager, store, sink, import_dir, on_file_received=received.append
        )

        with pytest.raises(ProtocolError):
            service.download(RemoteObjectRef("5", f"{STUDIES}/5"))

        assert list(import_dir.iterdir()) == []
        assert received == []
        assert sink.outcomes() == []

    def test_consumer_failure_is_contained(self, session_manager, store, sink, import_dir):
        client = FakeClient(["1"], {"1": _single_part(b"DICM")})
        consumer = MagicMock(side_effect=RuntimeError("consumer broke"))
        service = _service(
            client, session_manager, store, sink, import_dir, on_file_received=consumer
        )

        files = service.download(RemoteObjectRef("1", f"{STUDIES}/1"))

        consumer.assert_called_once_with(files[0])
        assert sink.get(Direction.DOWNLOAD, f"{STUDIES}/1").ok


# =============================================================================
# Poller Tests
# =============================================================================


class TestPolling:
    """Tests for listing and dispatching studies."""

    def test_poll_downloads_every_study(self, session_manager, store, sink, import_dir):
        client = FakeClient(
            ["a", "b", "c"],
            {"a": _single_part(b"A"), "c": _single_part(b"C")},
        )
        received = []
        service = _service(
            client, session_manager, store, sink, import_dir, on_file_received=received.append
        )

        dispatched = service.poll_once()
        assert service.wait_idle(timeout=10)
        service.shutdown()

        assert [r.remote_id for r in dispatched] == ["a", "b", "c"]
        assert sorted(client.requested) == [f"{STUDIES}/{uid}" for uid in "abc"]
        assert sorted(p.name for p in received) == ["a", "c"]
        assert sink.counts(Direction.DOWNLOAD).succeeded == 2
        assert sink.get(Direction.DOWNLOAD, f"{STUDIES}/b") is None

    def test_completed_studies_not_downloaded_again(
        self, session_manager, store, sink, import_dir
    ):
        client = FakeClient(["a", "b"], {"a": _single_part(b"A")})
        service = _service(client, session_manager, store, sink, import_dir)

        service.poll_once()
        assert service.wait_idle(timeout=10)
        second = service.poll_once()
        assert service.wait_idle(timeout=10)
        service.shutdown()

        assert [r.remote_id for r in second] == ["b"]
        assert client.requested.count(f"{STUDIES}/a") == 1
        assert client.requested.count(f"{STUDIES}/b") == 2

    def test_state_transitions(self, session_manager, store, sink, import_dir):
        client = FakeClient([])
        service = _service(client, session_manager, store, sink, import_dir)
        seen = []
        client.on_list = lambda: seen.append(service.state)

        assert service.state is PollerState.IDLE
        service.poll_once()

        assert seen == [PollerState.LISTING]
        assert service.state is PollerState.IDLE

        service.shutdown()
        service.poll_once()
        assert service.state is PollerState.STOPPED

    def test_first_poll_failure_is_fatal(self, session_manager, store, sink, import_dir):
        client = FakeClient([])
        client.list_error = RemoteOperationError("list studies", "store not found", 404)
        service = _service(client, session_manager, store, sink, import_dir)

        with pytest.raises(RemoteOperationError):
            service.start()

        assert service.state is PollerState.STOPPED
        assert not service.is_running

    def test_later_poll_failures_are_logged(self, session_manager, store, sink, import_dir):
        client = FakeClient([])
        service = _service(client, session_manager, store, sink, import_dir, interval=0.02)

        service.start()
        client.list_error = RemoteOperationError("list studies", "unavailable", 500)
        deadline = time.monotonic() + 5
        while client.listings < 3 and time.monotonic() < deadline:
            time.sleep(0.01)

        assert service.is_running
        service.shutdown()
        assert client.listings >= 3

    def test_shutdown_while_waiting_is_prompt(self, session_manager, store, sink, import_dir):
        service = _service(FakeClient([]), session_manager, store, sink, import_dir, interval=60)
        service.start()
        poller = service._poller

        started = time.monotonic()
        service.shutdown(timeout=2.0)

        assert time.monotonic() - started < 2.0
        assert poller is not None and not poller.is_alive()
        assert service.state is PollerState.STOPPED

    def test_shutdown_during_dispatch_submits_nothing(
        self, session_manager, store, sink, import_dir
    ):
        client = FakeClient(["a", "b"], {"a": _single_part(b"A")})
        service = _service(client, session_manager, store, sink, import_dir)
        claim = service._claim

        def claim_then_stop(url: str) -> bool:
            # Stop lands after the per-study stop check has passed
            service.shutdown()
            return claim(url)

        service._claim = claim_then_stop
        dispatched = service.poll_once()

        assert dispatched == []
        assert service._pool is None
        assert service.wait_idle(timeout=1)
        assert client.requested == []
        assert service._in_flight == set()

    def test_studies_gone_from_listing_are_forgotten(
        self, session_manager, store, sink, import_dir
    ):
        client = FakeClient(["a", "b"], {"a": _single_part(b"A"), "b": _single_part(b"B")})
        service = _service(client, session_manager, store, sink, import_dir)

        service.poll_once()
        assert service.wait_idle(timeout=10)
        assert service._completed == {f"{STUDIES}/a", f"{STUDIES}/b"}

        client.study_ids = ["b"]
        assert service.poll_once() == []
        service.shutdown()

        assert service._completed == {f"{STUDIES}/b"}
