"""Exceptions raised by the upload engine."""


class UploadError(Exception):
    """Base exception for the upload engine."""
    pass


class UploadStateError(UploadError, RuntimeError):
    """Raised when an operation is not valid in the uploader's current state."""
    pass


class UploadDataError(UploadError, IOError):
    """Raised when the payload source cannot supply the bytes it promised."""
    pass


class ConnectionBrokenError(UploadError, ConnectionError):
    """Raised when the transport fails while a request is in flight.

    Attributes:
        url: URL of the request that failed, when known
    """

    def __init__(self, message, url=None):
        super().__init__(message)
        self.url = url
