from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO

METHOD_OVERRIDE_HEADER = "X-HTTP-Method-Override"


class UploadState(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    PAUSED = "paused"
    COMPLETE = "complete"
    CLIENT_ERROR = "client_error"

    @property
    def is_terminal(self) -> bool:
        return self in (UploadState.COMPLETE, UploadState.CLIENT_ERROR)


class RequestMethod(str, Enum):
    PUT = "PUT"
    POST = "POST"  # tunnelled, sent with X-HTTP-Method-Override: PUT


@dataclass(frozen=True)
class ResponseMessage:
    """
    Final response of a completed upload.

    content_length is the length the server declared, -1 if it declared none.
    """
    status_code: int
    content_length: int
    body: BinaryIO = field(repr=False)

    def receive_message(self, encoding: str = "utf-8") -> str:
        """Read the whole response body as text."""
        if self.body.seekable():
            self.body.seek(0)
        return self.body.read().decode(encoding)
