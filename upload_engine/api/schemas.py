from pydantic import BaseModel
from typing import Optional

class UploadResponse(BaseModel):
    upload_id: str
    filename: str
    status: str  # "pending", "partial", "complete"
    bytes_received: int
    total_bytes: Optional[int] = None
    next_expected_byte: int
