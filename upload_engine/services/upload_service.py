import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Any, Dict, Optional

import aiofiles
from fastapi import HTTPException, status

logger = logging.getLogger(__name__)


class UploadService:
    """
    Storage behind the reference resumable-upload endpoint.

    Each upload session is a .part file that grows from byte 0 plus a .meta
    JSON document in the temp directory. Completed files are moved to the
    upload directory.
    """

    def __init__(self, upload_dir: Path, temp_dir: Path):
        self.upload_dir = Path(upload_dir)
        self.temp_dir = Path(temp_dir)

        # Create storage directories if they don't exist
        self.upload_dir.mkdir(exist_ok=True, parents=True)
        self.temp_dir.mkdir(exist_ok=True, parents=True)

    async def create_upload(self, filename: str, total_bytes: Optional[int] = None) -> Dict[str, Any]:
        """
        Open a new upload session and return its status.
        """
        if total_bytes is not None and total_bytes < 0:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="total_bytes must not be negative"
            )

        upload_id = uuid.uuid4().hex
        metadata = {
            "upload_id": upload_id,
            "filename": Path(filename).name,
            "total_bytes": total_bytes,
            "bytes_received": 0,
            "status": "pending",
            "created_at": time.time(),
        }
        async with aiofiles.open(self._part_path(upload_id), "wb"):
            pass
        await self._save_metadata(metadata)

        logger.info(f"Created upload {upload_id} for {metadata['filename']}")
        return self._status(metadata)

    async def get_upload_status(self, upload_id: str) -> Dict[str, Any]:
        """
        Get the current status of an upload.
        """
        metadata = await self._get_metadata(upload_id)
        return self._status(metadata)

    async def save_chunk(
        self,
        upload_id: str,
        chunk_data: bytes,
        start_byte: Optional[int],
        total_bytes: Optional[int],
    ) -> Dict[str, Any]:
        """
        Store a chunk at start_byte and complete the upload once every byte
        up to total_bytes is present.

        A start_byte of None carries no data and only declares the total
        length, which finalizes an upload whose bytes have all arrived.
        Chunks that would leave a gap are ignored; the returned status tells
        the client where to continue.
        """
        metadata = await self._get_metadata(upload_id)
        if metadata["status"] == "complete":
            return self._status(metadata)

        if total_bytes is not None:
            if metadata["total_bytes"] is not None and metadata["total_bytes"] != total_bytes:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Total length changed from {metadata['total_bytes']} to {total_bytes}"
                )
            metadata["total_bytes"] = total_bytes

        if start_byte is not None:
            if start_byte > metadata["bytes_received"]:
                logger.warning(
                    f"Ignoring chunk at {start_byte} for {upload_id}, "
                    f"only {metadata['bytes_received']} bytes stored"
                )
            else:
                async with aiofiles.open(self._part_path(upload_id), "r+b") as f:
                    await f.seek(start_byte)
                    await f.write(chunk_data)
                metadata["bytes_received"] = max(
                    metadata["bytes_received"], start_byte + len(chunk_data)
                )
                metadata["status"] = "partial"

        if metadata["total_bytes"] is not None and metadata["bytes_received"] >= metadata["total_bytes"]:
            await self._assemble_complete_file(metadata)

        await self._save_metadata(metadata)
        return self._status(metadata)

    async def delete_upload(self, upload_id: str) -> bool:
        """
        Delete a stored file or cancel an upload.
        """
        meta_path = self._meta_path(upload_id)
        if not meta_path.exists():
            return False

        metadata = await self._get_metadata(upload_id)
        for path in (self._part_path(upload_id), self._complete_path(metadata)):
            if path.exists():
                path.unlink()
        meta_path.unlink()
        return True

    def _status(self, metadata: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "upload_id": metadata["upload_id"],
            "filename": metadata["filename"],
            "status": metadata["status"],
            "bytes_received": metadata["bytes_received"],
            "total_bytes": metadata["total_bytes"],
            "next_expected_byte": metadata["bytes_received"],
        }

    def _part_path(self, upload_id: str) -> Path:
        return self.temp_dir / f"{upload_id}.part"

    def _meta_path(self, upload_id: str) -> Path:
        return self.temp_dir / f"{upload_id}.meta"

    def _complete_path(self, metadata: Dict[str, Any]) -> Path:
        return self.upload_dir / f"{metadata['upload_id']}-{metadata['filename']}"

    async def _get_metadata(self, upload_id: str) -> Dict[str, Any]:
        meta_path = self._meta_path(upload_id)
        if not meta_path.exists():
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Upload {upload_id} not found"
            )

        async with aiofiles.open(meta_path, "r") as f:
            content = await f.read()
            return json.loads(content)

    async def _save_metadata(self, metadata: Dict[str, Any]) -> None:
        metadata["last_update"] = time.time()
        async with aiofiles.open(self._meta_path(metadata["upload_id"]), "w") as f:
            await f.write(json.dumps(metadata))

    async def _assemble_complete_file(self, metadata: Dict[str, Any]) -> None:
        """
        Trim the part file to the declared length and move it into place.
        """
        part_path = self._part_path(metadata["upload_id"])
        os.truncate(part_path, metadata["total_bytes"])
        os.replace(part_path, self._complete_path(metadata))

        metadata["bytes_received"] = metadata["total_bytes"]
        metadata["status"] = "complete"
        logger.info(f"Upload {metadata['upload_id']} complete ({metadata['total_bytes']} bytes)")
