"""The blocking work of one resumable upload attempt."""

import logging
import threading
from concurrent import futures
from typing import TYPE_CHECKING, Optional
from urllib.parse import urljoin

from upload_engine.core.exceptions import ConnectionBrokenError, UploadDataError
from upload_engine.uploader.backoff import BackoffPolicy
from upload_engine.uploader.connection import ConnectionFactory, HttpConnection
from upload_engine.uploader.models import ResponseMessage, UploadState
from upload_engine.utils.ranges import format_content_range, next_byte_from_range_header

if TYPE_CHECKING:
    from upload_engine.uploader.uploader import ResumableUploader

logger = logging.getLogger(__name__)

RESUME_INCOMPLETE = 308
SERVICE_UNAVAILABLE = 503


class UploadTask:
    """
    Sends a payload to the uploader's URL chunk by chunk.

    Each chunk is one request whose body is written in write_buffer_size
    pieces; the task stops between pieces as soon as its uploader is paused
    or has launched a newer task. Meant to run on an executor thread:
    calling the task returns the final ResponseMessage, or None when the
    upload was paused or failed on the client side.
    """

    def __init__(
        self,
        uploader: "ResumableUploader",
        connection_factory: ConnectionFactory,
        resume: bool,
        generation: int,
        wakeup: threading.Event,
        previous: Optional[futures.Future] = None,
    ):
        self.uploader = uploader
        self.connection_factory = connection_factory
        self.resume = resume
        self.generation = generation
        self.wakeup = wakeup
        self.previous = previous

        options = uploader.options
        self.data = options.data
        self.chunk_size = options.chunk_size
        self.method = options.request_method.value
        self.headers = dict(options.headers)
        self.backoff_policy = options.backoff_policy
        self.send_empty_final_chunk = options.send_empty_final_chunk
        self.write_buffer_size = options.write_buffer_size
        self.max_consecutive_retries = options.max_consecutive_retries
        self.retries = 0

    def __call__(self) -> Optional[ResponseMessage]:
        if self.previous is not None:
            # Only one task may touch the payload at a time
            futures.wait([self.previous])
            if self.uploader.get_upload_state() == UploadState.COMPLETE:
                return self.previous.result()
        if not self.is_active():
            return None

        try:
            return self.upload()
        except Exception as e:
            logger.exception(f"Upload to {self.uploader.url} failed unexpectedly")
            self.uploader._fail(e)
            raise

    def is_active(self) -> bool:
        return self.uploader._is_current(self.generation)

    def upload(self) -> Optional[ResponseMessage]:
        total_bytes = self.data.length
        start = self.query_next_start_byte() if self.resume else 0

        while self.is_active():
            length = min(self.chunk_size, total_bytes - start)
            connection = self.connection_factory.open(self.uploader.url, self.method)
            self._set_headers(connection, start, length, total_bytes)
            completed = False

            try:
                self._write_slice(connection, start, length)
                if not self.is_active():
                    # Paused mid-chunk: the response is left unread
                    break

                status_code = connection.get_response_code()
                if status_code == RESUME_INCOMPLETE:
                    next_byte = self._handle_incomplete(connection, start, length, total_bytes)
                    if 0 < total_bytes <= next_byte and not self.send_empty_final_chunk:
                        completed = True
                        return self._complete(connection, status_code)
                    if next_byte > start:
                        self.backoff_policy.reset()
                        self.retries = 0
                    else:
                        logger.warning(
                            f"Server acknowledged nothing new past byte {start} "
                            f"of {self.uploader.url}"
                        )
                        self._wait_before_retry()
                    start = next_byte
                elif status_code == SERVICE_UNAVAILABLE:
                    logger.warning(
                        f"Server unavailable for bytes {start}-{start + length - 1} "
                        f"of {self.uploader.url}"
                    )
                    start = self._recover(start)
                else:
                    completed = True
                    return self._complete(connection, status_code)
            except UploadDataError as e:
                logger.error(f"Cannot read payload for {self.uploader.url}: {e}")
                self.uploader._fail(e)
            except ConnectionBrokenError as e:
                logger.warning(f"Connection broken while uploading: {e}")
                start = self._recover(start)
            finally:
                if not completed:
                    connection.close()

        return None

    def query_next_start_byte(self) -> int:
        """
        Ask the server how many bytes it already holds with an empty request.

        Anything but a 308 (including a transport failure) means starting
        from byte 0. The uploader's byte counter is set to the answer, which
        drops any bytes that were written but never acknowledged.
        """
        connection = self.connection_factory.open(self.uploader.url, self.method)
        connection.set_header("Content-Length", "0")
        for name, value in self.headers.items():
            connection.set_header(name, value)

        try:
            if connection.get_response_code() == RESUME_INCOMPLETE:
                next_byte = next_byte_from_range_header(connection.get_header_field("Range"))
            else:
                next_byte = 0
        except ConnectionBrokenError as e:
            logger.warning(f"Offset probe failed, restarting from byte 0: {e}")
            next_byte = 0
        finally:
            connection.close()

        next_byte = min(next_byte, self.data.length)
        self.uploader._set_bytes_uploaded(next_byte)
        logger.debug(f"Server holds {next_byte} bytes of {self.uploader.url}")
        return next_byte

    def _set_headers(self, connection: HttpConnection, start: int, length: int, total_bytes: int) -> None:
        connection.set_header("Content-Length", str(length))
        connection.set_header("Content-Range", format_content_range(start, length, total_bytes))
        # Content-Type is left out so the server can detect it from the payload
        for name, value in self.headers.items():
            connection.set_header(name, value)

    def _write_slice(self, connection: HttpConnection, start: int, length: int) -> int:
        """
        Copy bytes [start, start + length) of the payload into the request body.

        Returns:
            Number of bytes written before the slice ended or the task was
            stopped.

        Raises:
            UploadDataError: If the payload ends early or cannot be read
            ConnectionBrokenError: If writing to the connection fails
        """
        out = connection.get_output_stream()
        buffer = memoryview(bytearray(max(1, min(self.write_buffer_size, length))))
        offset = start
        remaining = length
        written = 0

        while remaining > 0 and self.is_active():
            count = self.data.read_at(offset, buffer[:min(len(buffer), remaining)])
            if count == 0:
                raise UploadDataError(
                    f"Payload ended at byte {offset} with {remaining} bytes still expected"
                )

            try:
                out.write(buffer[:count])
                out.flush()
            except OSError as e:
                raise ConnectionBrokenError(str(e), url=connection.url) from e

            offset += count
            remaining -= count
            written += count
            self.uploader._add_bytes_uploaded(count)

        return written

    def _handle_incomplete(self, connection: HttpConnection, start: int, length: int, total_bytes: int) -> int:
        """Apply a 308 response and return the next byte to send."""
        range_header = connection.get_header_field("Range")
        if range_header is not None:
            next_byte = next_byte_from_range_header(range_header)
        else:
            logger.warning(
                f"308 without Range header from {self.uploader.url}, "
                f"assuming bytes {start}-{start + length - 1} were stored"
            )
            next_byte = start + length
        next_byte = min(next_byte, total_bytes)
        self.uploader._set_bytes_uploaded(next_byte)

        location = connection.get_header_field("Location")
        if location:
            self.uploader._set_url(urljoin(self.uploader.url, location))

        logger.debug(f"Server acknowledged {next_byte}/{total_bytes} bytes")
        return next_byte

    def _recover(self, start: int) -> int:
        """
        Re-synchronise with the server after a 503 or a broken connection.

        Returns the byte to resume from. The uploader is paused when the
        backoff policy gives up or the retry ceiling is reached.
        """
        if not self.is_active():
            return start

        start = self.query_next_start_byte()
        self._wait_before_retry()
        return start

    def _wait_before_retry(self) -> None:
        """
        Count one retry without progress and sleep as the backoff policy says.

        Pauses the upload instead when the policy stops or the retry ceiling
        is reached.
        """
        if not self.is_active():
            return

        self.retries += 1
        if self.retries > self.max_consecutive_retries:
            logger.warning(
                f"Giving up after {self.retries - 1} retries without progress, pausing upload"
            )
            self.uploader._pause_from_task(self.generation)
            return

        delay = self.backoff_policy.next_delay()
        if delay == BackoffPolicy.STOP:
            logger.warning(f"Backoff exhausted for {self.uploader.url}, pausing upload")
            self.uploader._pause_from_task(self.generation)
        else:
            logger.info(f"Retrying {self.uploader.url} in {delay:.2f}s")
            # Returns early when the upload is paused
            self.wakeup.wait(delay)

    def _complete(self, connection: HttpConnection, status_code: int) -> ResponseMessage:
        response = ResponseMessage(
            status_code=status_code,
            content_length=connection.get_content_length(),
            body=connection.get_input_stream(),
        )
        self.uploader._complete()
        self.backoff_policy.reset()
        self.uploader._send_completion_notification()
        return response
