"""Periodic progress notifications for an uploader."""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from upload_engine.uploader.models import UploadState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UploadProgress:
    """Read-only view of an uploader at one point in time."""
    state: UploadState
    bytes_uploaded: int
    total_bytes: int
    progress: float
    url: str


ProgressListener = Callable[[UploadProgress], None]


class ProgressNotifier:
    """
    Calls a listener with uploader snapshots on a fixed interval.

    The first call happens immediately. Once the uploader leaves IN_PROGRESS
    the notifier delivers that final snapshot exactly once, whether it is
    observed by a timer tick or by notify_final(), and then stops.
    """

    def __init__(
        self,
        snapshot: Callable[[], UploadProgress],
        listener: ProgressListener,
        interval: float,
    ):
        self._snapshot = snapshot
        self._listener = listener
        self._interval = interval
        self._stopped = threading.Event()
        self._lock = threading.Lock()
        self._final_sent = False
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(
            target=self._run, name="upload-progress", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stopped.set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def notify_final(self) -> None:
        """Deliver the terminal snapshot if no tick has delivered it yet."""
        self._notify()
        self.stop()

    def _run(self) -> None:
        while not self._stopped.is_set():
            self._notify()
            if self._stopped.wait(self._interval):
                break

    def _notify(self) -> None:
        # Listener calls are serialized so nothing follows the final snapshot
        with self._lock:
            if self._final_sent:
                return
            snapshot = self._snapshot()
            if snapshot.state != UploadState.IN_PROGRESS:
                self._final_sent = True
                self._stopped.set()
            elif self._stopped.is_set():
                return

            try:
                self._listener(snapshot)
            except Exception:
                logger.exception("Progress listener raised an exception")
