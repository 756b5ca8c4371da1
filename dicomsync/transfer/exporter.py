"""Export pipeline: local DICOM files to a Cloud Healthcare DICOM store.

Files are submitted to an unbounded queue. A dispatcher thread takes them in
FIFO order and hands each one to a fixed-size worker pool that uploads it
with STOW-RS and records the outcome.
"""

from __future__ import annotations

import logging
import queue
import shutil
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dicomsync.core.config import DEFAULT_EXPORT_WORKERS
from dicomsync.core.exceptions import ConfigurationError, DicomSyncError
from dicomsync.core.logging import log_context
from dicomsync.core.status import TransferStatusSink
from dicomsync.models.store import StoreDescriptor
from dicomsync.models.transfer import (
    Direction,
    TaskState,
    TransferOutcome,
    TransferResult,
    TransferTask,
)
from dicomsync.transfer.constants import SHUTDOWN_JOIN_TIMEOUT
from dicomsync.transfer.multipart import MultipartEncoder

if TYPE_CHECKING:
    from dicomsync.core.client import HealthcareClient
    from dicomsync.core.session import SessionManager

logger = logging.getLogger(__name__)

_STOP = object()


class ExportService:
    """Queue-fed uploader with a bounded number of concurrent uploads.

    Example:
        >>> service = ExportService(client, session_manager, store, sink)
        >>> service.start()
        >>> service.submit(Path("/data/incoming/img0001.dcm"))
        >>> service.wait_idle()
        >>> service.shutdown()
    """

    def __init__(
        self,
        client: HealthcareClient,
        session_manager: SessionManager,
        store: StoreDescriptor,
        sink: TransferStatusSink,
        *,
        workers: int = DEFAULT_EXPORT_WORKERS,
        include_content_disposition: bool = False,
        staging_dir: Path | None = None,
        ensure_store: bool = True,
    ):
        """Initialize export service.

        Args:
            client: Healthcare API client.
            session_manager: Shared session used by every upload.
            store: Destination DICOM store.
            sink: Where upload outcomes are recorded.
            workers: Maximum concurrent uploads.
            include_content_disposition: Send the file name in a
                Content-Disposition part header.
            staging_dir: If set, submitted files are copied here and only the
                copy is deleted after a successful upload.
            ensure_store: Create the store at start-up if it is missing.

        Raises:
            ConfigurationError: If the worker count is not positive.
        """
        if workers < 1:
            raise ConfigurationError("Export worker count must be positive", "workers", workers)

        self.client = client
        self.session = session_manager
        self.store = store
        self.sink = sink
        self.workers = workers
        self.include_content_disposition = include_content_disposition
        self.staging_dir = Path(staging_dir) if staging_dir else None
        self.ensure_store = ensure_store

        self._queue: queue.Queue[Any] = queue.Queue()
        self._stop = threading.Event()
        self._pool: ThreadPoolExecutor | None = None
        self._dispatcher: threading.Thread | None = None

        self._auth_lock = threading.Lock()
        self._warn_on_auth_failure = True

        self._idle = threading.Condition()
        self._pending = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return (
            self._dispatcher is not None
            and self._dispatcher.is_alive()
            and not self._stop.is_set()
        )

    @property
    def queue_size(self) -> int:
        """Number of submitted files not yet handed to a worker."""
        return self._queue.qsize()

    def start(self) -> None:
        """Sign in, make sure the store exists and start the dispatcher.

        Raises:
            AuthError: If sign-in fails.
            DicomSyncError: If the store cannot be checked or created.
        """
        if self.is_running:
            return

        with log_context("export start-up", logger, store=str(self.store)):
            self.session.ensure_signed_in()
            if self.ensure_store:
                self.client.ensure_dicom_store(self.store)

        self._discard_stop_markers()
        self._stop.clear()
        self._pool = ThreadPoolExecutor(
            max_workers=self.workers,
            thread_name_prefix="dicomsync-export",
        )
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop,
            name="dicomsync-export-dispatcher",
            daemon=True,
        )
        self._dispatcher.start()
        logger.info("Export service started with %d workers", self.workers)

    def shutdown(self, timeout: float = SHUTDOWN_JOIN_TIMEOUT) -> None:
        """Stop dispatching and cancel queued uploads.

        Uploads already in flight are not waited for.
        """
        self._stop.set()
        self._queue.put(_STOP)

        if self._pool is not None:
            self._pool.shutdown(wait=False, cancel_futures=True)

        dispatcher = self._dispatcher
        if dispatcher is not None and dispatcher is not threading.current_thread():
            dispatcher.join(timeout)
            if dispatcher.is_alive():
                logger.warning("Export dispatcher did not stop within %.1fs", timeout)

        with self._idle:
            self._pending = 0
            self._idle.notify_all()
        logger.info("Export service stopped")

    def __enter__(self) -> ExportService:
        self.start()
        return self

    def __exit__(self, *args: Any) -> None:
        self.shutdown()

    # =========================================================================
    # Producer Side
    # =========================================================================

    def submit(self, path: Path | str) -> TransferTask:
        """Queue a file for upload. Never blocks.

        Returns:
            The queued task; its state follows the upload.
        """
        source = Path(path)
        local_path = self._stage(source) if self.staging_dir else source
        try:
            task = TransferTask.from_path(local_path)
        except OSError:
            task = TransferTask(local_path=local_path, size_bytes=0)
        if local_path != source:
            task.source_path = source

        with self._idle:
            self._pending += 1
        self._queue.put(task)
        logger.debug("Queued %s for export", task.subject)
        return task

    def _stage(self, path: Path) -> Path:
        assert self.staging_dir is not None
        self.staging_dir.mkdir(parents=True, exist_ok=True)
        staged = self.staging_dir / f"{uuid.uuid4().hex[:8]}-{path.name}"
        shutil.copy2(path, staged)
        return staged

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until every submitted file has an outcome.

        Returns:
            True if the pipeline drained, False on timeout.
        """
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout)

    # =========================================================================
    # Dispatcher
    # =========================================================================

    def _discard_stop_markers(self) -> None:
        """Drop stop markers left by an earlier shutdown, keeping queued tasks in order."""
        kept = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is not _STOP:
                kept.append(item)
        for item in kept:
            self._queue.put(item)

    def _dispatch_loop(self) -> None:
        while not self._stop.is_set():
            task = self._queue.get()
            if task is _STOP or self._stop.is_set():
                break
            assert self._pool is not None
            try:
                self._pool.submit(self._run, task)
            except RuntimeError:
                # Pool already shut down
                break
        logger.debug("Export dispatcher exiting")

    def _run(self, task: TransferTask) -> None:
        try:
            self.process(task)
        finally:
            with self._idle:
                self._pending = max(0, self._pending - 1)
                self._idle.notify_all()

    # =========================================================================
    # Worker
    # =========================================================================

    def process(self, task: TransferTask) -> TransferOutcome:
        """Upload one file and record exactly one outcome for it."""
        task.state = TaskState.IN_FLIGHT
        result, detail = self._upload(task)

        if result is TransferResult.OK:
            task.state = TaskState.SUCCEEDED
            try:
                task.local_path.unlink()
            except OSError as e:
                logger.warning("Uploaded %s but could not delete it: %s", task.local_path, e)
        else:
            task.state = TaskState.FAILED

        return self.sink.record(Direction.UPLOAD, task.subject, result, detail)

    def _upload(self, task: TransferTask) -> tuple[TransferResult, str]:
        path = task.local_path
        try:
            task.size_bytes = path.stat().st_size
        except OSError as e:
            logger.error("Cannot read %s: %s", path, e)
            return TransferResult.FAIL, f"Cannot read file: {e}"

        if task.size_bytes == 0:
            logger.error("File %s is empty, not uploading", path)
            return TransferResult.FAIL, "Empty file"

        try:
            self.session.ensure_signed_in()
            encoder = MultipartEncoder(
                path,
                filename=path.name if self.include_content_disposition else None,
            )
            resp = self.client.store_instance(self.store, encoder)
        except (DicomSyncError, OSError) as e:
            logger.error("Upload of %s failed: %s", path, e)
            return TransferResult.FAIL, str(e)
        except Exception as e:
            logger.exception("Unexpected error uploading %s", path)
            return TransferResult.FAIL, str(e)

        return self._interpret(path, resp.status_code, resp.text)

    def _interpret(self, path: Path, status_code: int, body: str) -> tuple[TransferResult, str]:
        if status_code in (401, 403):
            with self._auth_lock:
                warn = self._warn_on_auth_failure
                self._warn_on_auth_failure = False
            if warn:
                logger.warning(
                    "Upload of %s was refused with HTTP %d; check access to %s",
                    path,
                    status_code,
                    self.store,
                )
            else:
                logger.debug("Upload of %s refused with HTTP %d", path, status_code)
            return TransferResult.FAIL, f"HTTP {status_code}"

        with self._auth_lock:
            self._warn_on_auth_failure = True

        if status_code == 200:
            logger.info("Uploaded %s", path)
            return TransferResult.OK, ""

        logger.error("Upload of %s failed: HTTP %d %s", path, status_code, body[:200])
        return TransferResult.FAIL, f"HTTP {status_code}"
