"""Import pipeline: poll a DICOM store and download new studies.

A poller thread lists the store's studies every interval and fans the
downloads out to a fixed-size worker pool. Each WADO-RS response is decoded
part by part into the import directory and every persisted file is handed to
the consumer callback.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dicomsync.core.config import DEFAULT_IMPORT_WORKERS, DEFAULT_POLL_INTERVAL_MS
from dicomsync.core.exceptions import ConfigurationError, DicomSyncError
from dicomsync.core.logging import log_context
from dicomsync.core.status import TransferStatusSink
from dicomsync.models.store import StoreDescriptor
from dicomsync.models.transfer import (
    Direction,
    PollerState,
    RemoteObjectRef,
    TransferResult,
)
from dicomsync.transfer.constants import DEFAULT_CHUNK_SIZE, SHUTDOWN_JOIN_TIMEOUT
from dicomsync.transfer.multipart import (
    MultipartDecoder,
    PartSink,
    boundary_from_content_type,
    filename_from_disposition,
    suggest_filename,
)

if TYPE_CHECKING:
    import httpx

    from dicomsync.core.client import HealthcareClient
    from dicomsync.core.session import SessionManager

logger = logging.getLogger(__name__)

FileReceived = Callable[[Path], None]


class ImportService:
    """Periodic study poller with concurrent downloads.

    Studies already downloaded successfully, or currently downloading, are
    skipped by later polls.
    """

    def __init__(
        self,
        client: HealthcareClient,
        session_manager: SessionManager,
        store: StoreDescriptor,
        sink: TransferStatusSink,
        import_dir: Path,
        *,
        on_file_received: FileReceived | None = None,
        workers: int = DEFAULT_IMPORT_WORKERS,
        interval: float = DEFAULT_POLL_INTERVAL_MS / 1000,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        """Initialize import service.

        Args:
            client: Healthcare API client.
            session_manager: Shared session used by every request.
            store: Source DICOM store.
            sink: Where download outcomes are recorded.
            import_dir: Directory receiving downloaded files.
            on_file_received: Called with the path of every persisted file.
            workers: Maximum concurrent downloads.
            interval: Seconds between polls.
            chunk_size: Read size for response bodies.

        Raises:
            ConfigurationError: If the import directory or settings are invalid.
        """
        if workers < 1:
            raise ConfigurationError("Import worker count must be positive", "workers", workers)
        if interval <= 0:
            raise ConfigurationError("Poll interval must be positive", "interval", interval)

        import_dir = Path(import_dir)
        if import_dir.exists() and not import_dir.is_dir():
            raise ConfigurationError(
                "Import path is not a directory", "import_directory", str(import_dir)
            )
        try:
            import_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigurationError(
                f"Cannot create import directory: {e}", "import_directory", str(import_dir)
            ) from e

        self.client = client
        self.session = session_manager
        self.store = store
        self.sink = sink
        self.import_dir = import_dir
        self.on_file_received = on_file_received
        self.workers = workers
        self.interval = interval
        self.chunk_size = chunk_size

        self._state = PollerState.IDLE
        self._state_lock = threading.Lock()
        self._stop = threading.Event()
        self._pool: ThreadPoolExecutor | None = None
        self._pool_lock = threading.Lock()
        self._poller: threading.Thread | None = None

        self._claims_lock = threading.Lock()
        self._in_flight: set[str] = set()
        self._completed: set[str] = set()

        self._idle = threading.Condition()
        self._pending = 0

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> PollerState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: PollerState) -> None:
        with self._state_lock:
            if self._state is not PollerState.STOPPED:
                self._state = state

    @property
    def is_running(self) -> bool:
        return self._poller is not None and self._poller.is_alive() and not self._stop.is_set()

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Run the first poll, then keep polling in the background.

        Raises:
            AuthError: If sign-in fails during the first poll.
            DicomSyncError: If the first listing fails.
        """
        if self.is_running:
            return

        self._stop.clear()
        with self._state_lock:
            self._state = PollerState.IDLE

        try:
            with log_context("import start-up", logger, store=str(self.store)):
                self.poll_once()
        except Exception:
            self.shutdown()
            raise

        self._poller = threading.Thread(
            target=self._poll_loop,
            name="dicomsync-import-poller",
            daemon=True,
        )
        self._poller.start()
        logger.info(
            "Import service polling every %.1fs with %d workers", self.interval, self.workers
        )

    def shutdown(self, timeout: float = SHUTDOWN_JOIN_TIMEOUT) -> None:
        """Stop polling and cancel queued downloads.

        Downloads already in flight are not waited for.
        """
        self._stop.set()
        with self._state_lock:
            self._state = PollerState.STOPPED

        with self._pool_lock:
            pool, self._pool = self._pool, None
        if pool is not None:
            pool.shutdown(wait=False, cancel_futures=True)

        poller = self._poller
        if poller is not None and poller is not threading.current_thread():
            poller.join(timeout)
            if poller.is_alive():
                logger.warning("Import poller did not stop within %.1fs", timeout)

        with self._idle:
            self._pending = 0
            self._idle.notify_all()
        logger.info("Import service stopped")

    def __enter__(self) -> ImportService:
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.shutdown()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every dispatched download has finished.

        Returns:
            True if no download is pending, False on timeout.
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout)

    # =========================================================================
    # Poller
    # =========================================================================

    def _poll_loop(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.poll_once()
            except DicomSyncError as e:
                logger.error("Import poll failed: %s", e)
            except Exception:
                logger.exception("Unexpected error during import poll")
        logger.debug("Import poller exiting")

    def _get_pool(self) -> ThreadPoolExecutor:
        with self._pool_lock:
            if self._stop.is_set():
                raise RuntimeError("Import service is stopped")
            if self._pool is None:
                self._pool = ThreadPoolExecutor(
                    max_workers=self.workers,
                    thread_name_prefix="dicomsync-import",
                )
            return self._pool

    def poll_once(self) -> list[RemoteObjectRef]:
        """List the store's studies and dispatch a download for each new one.

        Studies that drop out of the listing are forgotten, so the set of
        completed downloads never outgrows the store.

        Returns:
            The studies dispatched by this poll.
        """
        self._set_state(PollerState.LISTING)
        try:
            self.session.ensure_signed_in()
            study_ids = self.client.list_study_ids(self.store)
            logger.debug("Store %s lists %d studies", self.store, len(study_ids))

            refs = [
                RemoteObjectRef(study_id, self.client.study_url(self.store, study_id))
                for study_id in study_ids
            ]
            with self._claims_lock:
                self._completed &= {ref.url for ref in refs}

            self._set_state(PollerState.DISPATCHING)
            dispatched: list[RemoteObjectRef] = []
            for ref in refs:
                if self._stop.is_set():
                    break
                if not self._claim(ref.url):
                    continue
                with self._idle:
                    self._pending += 1
                try:
                    self._get_pool().submit(self._run, ref)
                except RuntimeError:
                    # Stopped mid-dispatch
                    self._release(ref.url, done=False)
                    self._finish_one()
                    break
                dispatched.append(ref)
            return dispatched
        finally:
            self._set_state(PollerState.IDLE)

    def _claim(self, url: str) -> bool:
        with self._claims_lock:
            if url in self._in_flight or url in self._completed:
                return False
            self._in_flight.add(url)
            return True

    def _release(self, url: str, done: bool) -> None:
        with self._claims_lock:
            self._in_flight.discard(url)
            if done:
                self._completed.add(url)

    def _finish_one(self) -> None:
        with self._idle:
            self._pending = max(0, self._pending - 1)
            self._idle.notify_all()

    # =========================================================================
    # Downloads
    # =========================================================================

    def _run(self, ref: RemoteObjectRef) -> None:
        done = False
        try:
            done = self.download(ref) is not None
        except DicomSyncError as e:
            logger.error("Download of %s failed: %s", ref.url, e)
        except Exception:
            logger.exception("Unexpected error downloading %s", ref.url)
        finally:
            self._release(ref.url, done)
            self._finish_one()

    def download(self, ref: RemoteObjectRef) -> list[Path] | None:
        """Download one study into the import directory.

        Returns:
            Persisted files, or None if the store did not answer with HTTP 200.

        Raises:
            TransportError: On network failure.
            ProtocolError: On a malformed multipart response.
        """
        self.session.ensure_signed_in()

        with self.client.open_study(ref.url) as resp:
            if resp.status_code != 200:
                logger.error("Download of %s failed: HTTP %d", ref.url, resp.status_code)
                return None
            files = self._save(ref, resp)

        for path in files:
            self._deliver(path)

        self.sink.record(
            Direction.DOWNLOAD,
            ref.url,
            TransferResult.OK,
            f"{len(files)} file(s)",
        )
        return files

    def _save(self, ref: RemoteObjectRef, resp: httpx.Response) -> list[Path]:
        base = suggest_filename(ref.url, resp.headers.get("Content-Disposition"))
        boundary = boundary_from_content_type(resp.headers.get("Content-Type"))
        written: list[Path] = []

        def open_part(index: int, headers: dict[str, str]) -> PartSink:
            name = filename_from_disposition(headers.get("Content-Disposition"))
            if not name:
                name = base if index == 0 else f"{base}_{index}"
            path = self.import_dir / name
            written.append(path)
            return path.open("wb")

        decoder = MultipartDecoder(boundary, open_part, source=ref.url)
        try:
            for chunk in resp.iter_bytes(self.chunk_size):
                decoder.feed(chunk)
            decoder.close()
        except BaseException:
            decoder.abort()
            for path in written:
                path.unlink(missing_ok=True)
            raise

        logger.info("Downloaded %s into %d file(s)", ref.url, len(written))
        return written

    def _deliver(self, path: Path) -> None:
        if self.on_file_received is None:
            return
        try:
            self.on_file_received(path)
        except Exception:
            logger.exception("File consumer failed for %s", path)
