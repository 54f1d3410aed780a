"""Random-access payload sources for resumable uploads."""

import os
import tempfile
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import BinaryIO, Union

from upload_engine.core.exceptions import UploadDataError

Buffer = Union[bytearray, memoryview]


class UploadData(ABC):
    """
    A length-bounded byte source that can be read from any offset.

    The length is fixed when the source is created. One source belongs to
    one uploader for its whole lifetime.
    """

    @property
    @abstractmethod
    def length(self) -> int:
        """Total number of bytes in the payload."""

    @abstractmethod
    def read_at(self, offset: int, buffer: Buffer) -> int:
        """
        Fill buffer with bytes starting at offset.

        Returns:
            Number of bytes copied into buffer; 0 once offset reaches the
            end of the available data.

        Raises:
            UploadDataError: If the underlying source cannot be read
        """

    def close(self) -> None:
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _check_offset(self, offset: int) -> None:
        if offset < 0 or offset > self.length:
            raise UploadDataError(
                f"Offset {offset} outside payload of {self.length} bytes"
            )


class BytesUploadData(UploadData):
    """Payload held in memory."""

    def __init__(self, data: bytes):
        self._data = memoryview(bytes(data))

    @property
    def length(self) -> int:
        return len(self._data)

    def read_at(self, offset: int, buffer: Buffer) -> int:
        self._check_offset(offset)
        count = min(len(buffer), self.length - offset)
        buffer[:count] = self._data[offset:offset + count]
        return count


class FileUploadData(UploadData):
    """
    Payload backed by a file on disk.

    The length is taken when the file is opened; a file that later shrinks
    makes read_at return short counts, which the upload task reports as a
    client error.
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        if not self.path.is_file() or not os.access(self.path, os.R_OK):
            raise UploadDataError(f"The file must exist and be readable: {self.path}")

        self._file = open(self.path, "rb")
        self._length = os.fstat(self._file.fileno()).st_size
        self._lock = threading.Lock()

    @property
    def length(self) -> int:
        return self._length

    def read_at(self, offset: int, buffer: Buffer) -> int:
        self._check_offset(offset)
        with self._lock:
            try:
                self._file.seek(offset)
                return self._file.readinto(buffer) or 0
            except (OSError, ValueError) as e:
                raise UploadDataError(f"Failed to read {self.path} at {offset}: {e}") from e

    def close(self) -> None:
        self._file.close()


class StreamUploadData(UploadData):
    """
    Payload read from a forward-only stream of known length.

    Everything read from the stream is spooled (in memory up to
    spool_size bytes, then to a temporary file) so that earlier offsets can
    be read again when the server asks to resume from a previous byte.
    """

    def __init__(self, stream: BinaryIO, length: int, spool_size: int = 8 * 1024 * 1024):
        if length < 0:
            raise ValueError("length must not be negative")
        self._stream = stream
        self._length = length
        self._spool = tempfile.SpooledTemporaryFile(max_size=spool_size)
        self._spooled = 0
        self._lock = threading.Lock()

    @property
    def length(self) -> int:
        return self._length

    def read_at(self, offset: int, buffer: Buffer) -> int:
        self._check_offset(offset)
        wanted = min(len(buffer), self._length - offset)
        with self._lock:
            try:
                self._fill_spool(offset + wanted)
                available = max(0, min(wanted, self._spooled - offset))
                if available == 0:
                    return 0
                self._spool.seek(offset)
                chunk = self._spool.read(available)
                buffer[:len(chunk)] = chunk
                return len(chunk)
            except OSError as e:
                raise UploadDataError(f"Failed to read stream at {offset}: {e}") from e

    def _fill_spool(self, end: int) -> None:
        """Copy bytes from the stream into the spool until it holds end bytes."""
        self._spool.seek(0, os.SEEK_END)
        while self._spooled < end:
            chunk = self._stream.read(min(64 * 1024, end - self._spooled))
            if not chunk:
                break
            self._spool.write(chunk)
            self._spooled += len(chunk)

    def close(self) -> None:
        self._spool.close()
