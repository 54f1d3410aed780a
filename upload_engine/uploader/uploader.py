"""Controller for resumable HTTP uploads."""

import logging
import threading
from concurrent import futures
from pathlib import Path
from typing import Any, Optional, Union

from upload_engine.core.exceptions import UploadStateError
from upload_engine.uploader.connection import ConnectionFactory, HttpxConnectionFactory
from upload_engine.uploader.data import FileUploadData
from upload_engine.uploader.models import ResponseMessage, UploadState
from upload_engine.uploader.options import UploadOptions
from upload_engine.uploader.progress import ProgressNotifier, UploadProgress
from upload_engine.uploader.task import UploadTask

logger = logging.getLogger(__name__)


class ResumableUploader:
    """
    Uploads a payload to a URL with the resumable upload protocol.

    start() and resume() hand an UploadTask to a worker thread and return
    at once with a future for the final ResponseMessage; pause() asks the
    running task to stop at its next write boundary. Every accessor can be
    called from any thread while the upload runs.

    Usage:
        options = UploadOptions(url=upload_url, data=BytesUploadData(payload))
        with ResumableUploader(options) as uploader:
            response = uploader.start().result()
    """

    def __init__(
        self,
        options: UploadOptions,
        connection_factory: Optional[ConnectionFactory] = None,
        executor: Optional[futures.Executor] = None,
    ):
        self.options = options
        self.last_error: Optional[BaseException] = None

        self._owns_factory = connection_factory is None
        self._connection_factory = connection_factory or HttpxConnectionFactory()
        self._owns_executor = executor is None
        self._executor = executor or futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="resumable-upload"
        )
        self._owns_data = False

        self._lock = threading.RLock()
        self._url = options.url
        self._state = UploadState.NOT_STARTED
        self._bytes_uploaded = 0
        self._reported_bytes = 0
        self._generation = 0
        self._future: Optional[futures.Future] = None
        self._wakeup = threading.Event()
        self._notifier: Optional[ProgressNotifier] = None

        self.options.backoff_policy.reset()

    @classmethod
    def from_file(
        cls,
        url: str,
        path: Union[str, Path],
        connection_factory: Optional[ConnectionFactory] = None,
        executor: Optional[futures.Executor] = None,
        **option_values: Any,
    ) -> "ResumableUploader":
        """Create an uploader for a file; the file is closed by close()."""
        data = FileUploadData(path)
        try:
            options = UploadOptions(url=url, data=data, **option_values)
        except Exception:
            data.close()
            raise
        uploader = cls(options, connection_factory=connection_factory, executor=executor)
        uploader._owns_data = True
        return uploader

    # Lifecycle

    def start(self) -> futures.Future:
        """Upload the payload from its first byte."""
        with self._lock:
            if self._state != UploadState.NOT_STARTED:
                raise UploadStateError(f"Cannot start an upload that is {self._state.value}")
            logger.info(f"Starting upload of {self.total_bytes} bytes to {self._url}")
            return self._launch(resume=False)

    def resume(self) -> futures.Future:
        """Ask the server how much it holds and upload the rest."""
        with self._lock:
            if self._state not in (UploadState.PAUSED, UploadState.NOT_STARTED):
                raise UploadStateError(f"Cannot resume an upload that is {self._state.value}")
            logger.info(f"Resuming upload to {self._url}")
            return self._launch(resume=True)

    def pause(self) -> None:
        """
        Stop the upload at the next write boundary.

        The request in flight is abandoned; resume() later re-queries the
        server for the bytes it kept.
        """
        with self._lock:
            if self._state != UploadState.IN_PROGRESS:
                raise UploadStateError(f"Cannot pause an upload that is {self._state.value}")
            self._state = UploadState.PAUSED
            self._wakeup.set()
            if self._notifier is not None:
                self._notifier.stop()
        logger.info(f"Paused upload to {self._url} after {self.get_num_bytes_uploaded()} bytes")

    def _launch(self, resume: bool) -> futures.Future:
        self._generation += 1
        self._state = UploadState.IN_PROGRESS
        self._wakeup = threading.Event()

        task = UploadTask(
            self,
            self._connection_factory,
            resume=resume,
            generation=self._generation,
            wakeup=self._wakeup,
            previous=self._future,
        )

        if self.options.progress_listener is not None:
            self._notifier = ProgressNotifier(
                self.snapshot, self.options.progress_listener, self.options.progress_interval
            )
            self._notifier.start()

        self._future = self._executor.submit(task)
        return self._future

    def close(self) -> None:
        """Release the worker thread and any resources the uploader created."""
        if self._notifier is not None:
            self._notifier.stop()
        if self._owns_executor:
            self._executor.shutdown(wait=True)
        if self._owns_factory:
            self._connection_factory.close()
        if self._owns_data:
            self.options.data.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # Accessors

    @property
    def url(self) -> str:
        with self._lock:
            return self._url

    @property
    def total_bytes(self) -> int:
        return self.options.data.length

    def get_upload_state(self) -> UploadState:
        with self._lock:
            return self._state

    def is_paused(self) -> bool:
        return self.get_upload_state() == UploadState.PAUSED

    def is_done(self) -> bool:
        with self._lock:
            return self._future is not None and self._future.done()

    def get_num_bytes_uploaded(self) -> int:
        """Bytes sent so far; never decreases for the life of the uploader."""
        with self._lock:
            return self._reported_bytes

    def get_progress(self) -> float:
        with self._lock:
            if self.total_bytes == 0:
                return 1.0 if self._state == UploadState.COMPLETE else 0.0
            return self._reported_bytes / self.total_bytes

    def get_response(self) -> Optional[ResponseMessage]:
        """
        Return the final response once the upload task has finished.

        None means there is no response yet, or none will come (the task was
        paused or failed); check get_upload_state() and last_error.
        """
        with self._lock:
            future = self._future
        if future is None or not future.done():
            return None
        try:
            return future.result()
        except Exception as e:
            self._fail(e)
            return None

    def snapshot(self) -> UploadProgress:
        with self._lock:
            return UploadProgress(
                state=self._state,
                bytes_uploaded=self._reported_bytes,
                total_bytes=self.total_bytes,
                progress=self.get_progress(),
                url=self._url,
            )

    # Called by UploadTask on the worker thread

    def _is_current(self, generation: int) -> bool:
        with self._lock:
            return self._state == UploadState.IN_PROGRESS and generation == self._generation

    def _set_url(self, url: str) -> None:
        with self._lock:
            if url != self._url:
                logger.info(f"Upload moved to {url}")
                self._url = url

    def _add_bytes_uploaded(self, count: int) -> None:
        with self._lock:
            self._set_bytes_uploaded(self._bytes_uploaded + count)

    def _set_bytes_uploaded(self, count: int) -> None:
        with self._lock:
            self._bytes_uploaded = max(0, min(count, self.total_bytes))
            self._reported_bytes = max(self._reported_bytes, self._bytes_uploaded)

    def _complete(self) -> None:
        with self._lock:
            if self._state.is_terminal:
                return
            # A response that arrives after pause() still finishes the upload
            self._state = UploadState.COMPLETE
            self._set_bytes_uploaded(self.total_bytes)
        logger.info(f"Upload to {self._url} complete ({self.total_bytes} bytes)")

    def _fail(self, error: BaseException) -> None:
        with self._lock:
            if self._state.is_terminal:
                return
            self._state = UploadState.CLIENT_ERROR
            self.last_error = error
        logger.error(f"Upload to {self._url} failed: {error}")
        self._send_completion_notification()

    def _pause_from_task(self, generation: int) -> None:
        with self._lock:
            if self._is_current(generation):
                self.pause()

    def _send_completion_notification(self) -> None:
        with self._lock:
            notifier = self._notifier
        if notifier is not None:
            notifier.notify_final()
