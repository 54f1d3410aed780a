import io
import pytest
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Union
from fastapi.testclient import TestClient
from main import app
from upload_engine.api.dependencies import get_upload_service
from upload_engine.core.exceptions import UploadStateError
from upload_engine.services.upload_service import UploadService
from upload_engine.uploader.backoff import BackoffPolicy
from upload_engine.uploader.connection import ConnectionFactory, HttpConnection
from upload_engine.uploader.data import BytesUploadData, UploadData
from upload_engine.uploader.models import UploadState
from upload_engine.uploader.options import UploadOptions
from upload_engine.uploader.uploader import ResumableUploader
from upload_engine.utils.ranges import format_range_header, parse_content_range

UPLOAD_URL = "http://upload.test/uploads/session-1"
PAYLOAD = bytes(range(65, 65 + 25))  # 25 bytes, "ABC...Y"


@dataclass
class RecordedRequest:
    method: str
    url: str
    headers: Dict[str, str]
    body: bytes

    @property
    def content_range(self) -> Optional[str]:
        return self.headers.get("Content-Range")

    @property
    def is_probe(self) -> bool:
        return self.content_range is None


@dataclass
class FakeResponse:
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""


class FakeConnection(HttpConnection):
    def __init__(self, server: "FakeUploadServer", url: str, method: str):
        super().__init__(url, method)
        self._server = server
        self._body = io.BytesIO()
        self._response: Optional[FakeResponse] = None

    def get_output_stream(self):
        return self._body

    def _send(self) -> FakeResponse:
        if self._response is None:
            self._response = self._server.handle(
                RecordedRequest(self.method, self.url, dict(self.headers), self._body.getvalue())
            )
        return self._response

    def get_response_code(self) -> int:
        return self._send().status_code

    def get_header_field(self, name: str) -> Optional[str]:
        return self._send().headers.get(name)

    def get_input_stream(self):
        return io.BytesIO(self._send().body)

    def get_content_length(self) -> int:
        return len(self._send().body)


class FakeUploadServer(ConnectionFactory):
    """
    In-memory resumable upload server that records every request.

    intercept, when set, sees each request first and may return a
    FakeResponse, raise an exception, or return None to let the default
    resumable behavior answer.
    """

    def __init__(self):
        self.requests: List[RecordedRequest] = []
        self.received = bytearray()
        self.complete = False
        self.finalize_explicitly = False
        self.intercept: Optional[Callable[[RecordedRequest], Optional[FakeResponse]]] = None

    def open(self, url: str, method: str) -> HttpConnection:
        return FakeConnection(self, url, method)

    def handle(self, request: RecordedRequest) -> FakeResponse:
        self.requests.append(request)
        if self.intercept is not None:
            response = self.intercept(request)
            if response is not None:
                return response
        return self.respond(request)

    def respond(self, request: RecordedRequest) -> FakeResponse:
        if request.is_probe:
            return self._status_response()

        start, _, total = parse_content_range(request.content_range)
        if start is not None and start <= len(self.received):
            self.received[start:start + len(request.body)] = request.body

        all_stored = total is not None and len(self.received) >= total
        if all_stored and (start is None or not self.finalize_explicitly):
            self.complete = True
        return self._status_response()

    def _status_response(self) -> FakeResponse:
        if self.complete:
            return FakeResponse(200, body=b'{"status": "complete"}')
        headers = {}
        range_header = format_range_header(len(self.received))
        if range_header:
            headers["Range"] = range_header
        return FakeResponse(308, headers=headers)

    def chunk_requests(self) -> List[RecordedRequest]:
        return [request for request in self.requests if not request.is_probe]

    def content_ranges(self) -> List[str]:
        return [request.content_range for request in self.chunk_requests()]


class ImmediateBackoffPolicy(BackoffPolicy):
    """Retries without waiting, max_retries times in a row."""

    def __init__(self, max_retries: int = 3):
        self.max_retries = max_retries
        self.attempts = 0
        self.resets = 0

    def next_delay(self) -> float:
        if self.attempts >= self.max_retries:
            return self.STOP
        self.attempts += 1
        return 0.0

    def reset(self) -> None:
        self.attempts = 0
        self.resets += 1


@pytest.fixture
def fake_server():
    return FakeUploadServer()


@pytest.fixture
def make_uploader(fake_server):
    """Build uploaders talking to fake_server; they are closed after the test."""
    uploaders = []

    def _make(payload: Union[bytes, UploadData] = PAYLOAD, **option_values) -> ResumableUploader:
        option_values.setdefault("chunk_size", 10)
        option_values.setdefault("backoff_policy", ImmediateBackoffPolicy())
        data = payload if isinstance(payload, UploadData) else BytesUploadData(payload)
        options = UploadOptions(url=UPLOAD_URL, data=data, **option_values)
        uploader = ResumableUploader(options, connection_factory=fake_server)
        uploaders.append(uploader)
        return uploader

    yield _make

    for uploader in uploaders:
        if uploader.get_upload_state() == UploadState.IN_PROGRESS:
            try:
                uploader.pause()
            except UploadStateError:
                pass
        uploader.close()


@pytest.fixture
def upload_dirs(tmp_path):
    return tmp_path / "uploads", tmp_path / "uploads" / "temp"


@pytest.fixture
def test_client(upload_dirs):
    """Create a test client for the FastAPI app with storage under tmp_path."""
    upload_dir, temp_dir = upload_dirs
    app.dependency_overrides[get_upload_service] = lambda: UploadService(upload_dir, temp_dir)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def upload_url(test_client):
    """Open an upload session on the reference endpoint and return its URL."""
    response = test_client.post(
        "/api/uploads",
        params={"filename": "payload.bin", "total_bytes": len(PAYLOAD)}
    )
    return response.headers["Location"]
