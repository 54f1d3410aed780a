"""HTTP connections used by the upload task."""

import io
import logging
import queue
import threading
from abc import ABC, abstractmethod
from typing import BinaryIO, Dict, Optional

import httpx

from upload_engine.core.config import settings
from upload_engine.core.exceptions import ConnectionBrokenError

logger = logging.getLogger(__name__)


class HttpConnection(ABC):
    """
    One HTTP exchange: set headers, write the body, then read the response.

    The response is available once the body has been written. Transport
    failures surface as ConnectionBrokenError.
    """

    def __init__(self, url: str, method: str):
        self.url = url
        self.method = method
        self.headers: Dict[str, str] = {}

    def set_header(self, name: str, value: str) -> None:
        self.headers[name] = value

    @abstractmethod
    def get_output_stream(self) -> BinaryIO:
        """Writable stream receiving the request body."""

    @abstractmethod
    def get_response_code(self) -> int:
        pass

    @abstractmethod
    def get_header_field(self, name: str) -> Optional[str]:
        pass

    @abstractmethod
    def get_input_stream(self) -> BinaryIO:
        """Readable stream over the response body."""

    @abstractmethod
    def get_content_length(self) -> int:
        """Declared response length, or -1 when the server did not declare one."""

    def close(self) -> None:
        pass


class ConnectionFactory(ABC):
    """Opens connections to upload URLs."""

    @abstractmethod
    def open(self, url: str, method: str) -> HttpConnection:
        pass

    def close(self) -> None:
        pass


_END_OF_BODY = object()
_ABANDONED = object()


class _BodyWriter(io.RawIOBase):
    """Writable end of a streamed request body."""

    def __init__(self, connection: "HttpxConnection"):
        self._connection = connection

    def writable(self) -> bool:
        return True

    def write(self, data) -> int:
        self._connection._put(bytes(data))
        return len(data)


class HttpxConnection(HttpConnection):
    """
    Connection that streams the body through an httpx client.

    The request runs on a sender thread from the first body write (or from
    the first call that needs the response). Body pieces pass through a
    bounded queue, so writes block while the network is behind and the
    caller's byte count follows what was actually sent.
    """

    BODY_QUEUE_SIZE = 4
    WRITE_POLL_SECONDS = 0.1
    ABANDON_JOIN_SECONDS = 1.0

    def __init__(self, client: httpx.Client, url: str, method: str):
        super().__init__(url, method)
        self._client = client
        self._body: queue.Queue = queue.Queue(maxsize=self.BODY_QUEUE_SIZE)
        self._sender: Optional[threading.Thread] = None
        self._finished = False
        self._response: Optional[httpx.Response] = None
        self._error: Optional[BaseException] = None

    def get_output_stream(self) -> BinaryIO:
        return _BodyWriter(self)

    def _start(self) -> None:
        if self._sender is None:
            self._sender = threading.Thread(
                target=self._run_request, name="upload-request", daemon=True
            )
            self._sender.start()

    def _body_pieces(self):
        while True:
            piece = self._body.get()
            if piece is _END_OF_BODY:
                return
            if piece is _ABANDONED:
                raise ConnectionBrokenError(f"{self.method} {self.url} abandoned", url=self.url)
            yield piece

    def _run_request(self) -> None:
        try:
            # 308 is a step of the upload protocol, never a redirect to follow
            self._response = self._client.request(
                self.method,
                self.url,
                content=self._body_pieces(),
                headers=self.headers,
                follow_redirects=False,
            )
        except Exception as e:
            # Raised to the task by _send()
            self._error = e

    def _put(self, piece) -> None:
        self._start()
        while self._sender.is_alive():
            try:
                self._body.put(piece, timeout=self.WRITE_POLL_SECONDS)
                return
            except queue.Full:
                continue
        # The request already ended; _send() reports how

    def _send(self) -> httpx.Response:
        if not self._finished:
            self._finished = True
            self._put(_END_OF_BODY)
            self._sender.join()
            if self._response is not None:
                logger.debug(f"{self.method} {self.url} -> {self._response.status_code}")

        if self._error is not None:
            if isinstance(self._error, httpx.TransportError):
                raise ConnectionBrokenError(
                    f"{self.method} {self.url} failed: {self._error}", url=self.url
                ) from self._error
            raise self._error
        return self._response

    def get_response_code(self) -> int:
        return self._send().status_code

    def get_header_field(self, name: str) -> Optional[str]:
        return self._send().headers.get(name)

    def get_input_stream(self) -> BinaryIO:
        return io.BytesIO(self._send().content)

    def get_content_length(self) -> int:
        value = self._send().headers.get("Content-Length")
        try:
            return int(value) if value is not None else -1
        except ValueError:
            return -1

    def close(self) -> None:
        if self._sender is not None and not self._finished:
            # Abandoned mid-body: unsent pieces are dropped and the request fails
            self._finished = True
            while True:
                try:
                    self._body.get_nowait()
                except queue.Empty:
                    break
            self._put(_ABANDONED)
            self._sender.join(self.ABANDON_JOIN_SECONDS)
        if self._response is not None:
            self._response.close()


class HttpxConnectionFactory(ConnectionFactory):
    """
    Creates HttpxConnection objects sharing one httpx.Client.

    A client passed in by the caller is left open by close().
    """

    def __init__(
        self,
        client: Optional[httpx.Client] = None,
        timeout: float = settings.REQUEST_TIMEOUT_SECONDS,
    ):
        self._owns_client = client is None
        self.client = client or httpx.Client(timeout=timeout)

    def open(self, url: str, method: str) -> HttpConnection:
        return HttpxConnection(self.client, url, method)

    def close(self) -> None:
        if self._owns_client:
            self.client.close()
