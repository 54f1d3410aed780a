from typing import Dict, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from upload_engine.core.config import settings
from upload_engine.uploader.backoff import BackoffPolicy, ExponentialBackoffPolicy
from upload_engine.uploader.data import UploadData
from upload_engine.uploader.models import METHOD_OVERRIDE_HEADER, RequestMethod
from upload_engine.uploader.progress import ProgressListener


class UploadOptions(BaseModel):
    """
    Configuration of one resumable upload, validated once at construction.

    Only url and data are required; everything else defaults to the
    values in settings.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, validate_assignment=True)

    url: str
    data: UploadData
    chunk_size: int = Field(default_factory=lambda: settings.DEFAULT_CHUNK_SIZE, gt=0)
    request_method: RequestMethod = RequestMethod.PUT
    headers: Dict[str, str] = Field(default_factory=dict)
    backoff_policy: BackoffPolicy = Field(default_factory=ExponentialBackoffPolicy)
    progress_listener: Optional[ProgressListener] = None
    progress_interval: float = Field(
        default_factory=lambda: settings.PROGRESS_INTERVAL_SECONDS, gt=0
    )
    send_empty_final_chunk: bool = Field(
        default_factory=lambda: settings.SEND_EMPTY_FINAL_CHUNK
    )
    write_buffer_size: int = Field(
        default_factory=lambda: settings.WRITE_BUFFER_SIZE, gt=0
    )
    max_consecutive_retries: int = Field(
        default_factory=lambda: settings.MAX_CONSECUTIVE_RETRIES, gt=0
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc or not parsed.path:
            raise ValueError(
                "The url must be an http(s) URL with a non-empty host and path"
            )
        return value

    @model_validator(mode="after")
    def set_method_override(self) -> "UploadOptions":
        # Runs again whenever request_method is reassigned
        if self.request_method == RequestMethod.POST:
            self.headers[METHOD_OVERRIDE_HEADER] = RequestMethod.PUT.value
        else:
            self.headers.pop(METHOD_OVERRIDE_HEADER, None)
        return self
