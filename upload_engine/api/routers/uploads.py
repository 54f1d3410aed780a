from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from upload_engine.api.schemas import UploadResponse
from upload_engine.api.dependencies import get_upload_service
from upload_engine.services.upload_service import UploadService
from upload_engine.utils.ranges import format_range_header, parse_content_range

router = APIRouter(tags=["uploads"])

RESUME_INCOMPLETE = 308

def upload_status_response(result: Dict[str, Any]) -> Response:
    """
    Answer a chunk or status request: 200 with the upload status once the
    upload is complete, otherwise 308 with the range stored so far.
    """
    if result["status"] == "complete":
        return JSONResponse(content=UploadResponse(**result).model_dump())

    headers = {}
    range_header = format_range_header(result["bytes_received"])
    if range_header:
        headers["Range"] = range_header
    return Response(status_code=RESUME_INCOMPLETE, headers=headers)

@router.post("/uploads", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def create_upload(
    request: Request,
    response: Response,
    filename: str,
    total_bytes: Optional[int] = None,
    upload_service: UploadService = Depends(get_upload_service)
):
    """
    Start a resumable upload. The Location header is the URL to send chunks to.
    """
    result = await upload_service.create_upload(filename, total_bytes)
    response.headers["Location"] = str(request.url_for("upload_chunk", upload_id=result["upload_id"]))
    return result

@router.api_route("/uploads/{upload_id}", methods=["PUT", "POST"], name="upload_chunk")
async def upload_chunk(
    upload_id: str,
    request: Request,
    content_range: Optional[str] = Header(None),
    x_http_method_override: Optional[str] = Header(None),
    upload_service: UploadService = Depends(get_upload_service)
):
    """
    Receive one chunk of an upload.

    An empty request without Content-Range, or with "bytes */N", asks how
    many bytes the server holds (and finalizes the upload if all of them
    are present).
    """
    if request.method == "POST" and (x_http_method_override or "").upper() != "PUT":
        raise HTTPException(
            status_code=status.HTTP_405_METHOD_NOT_ALLOWED,
            detail="POST requires X-HTTP-Method-Override: PUT"
        )

    chunk_data = await request.body()

    if content_range is None:
        if chunk_data:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Content-Range header is required for non-empty chunks"
            )
        result = await upload_service.get_upload_status(upload_id)
        return upload_status_response(result)

    try:
        start_byte, end_byte, total_bytes = parse_content_range(content_range)
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e)
        )

    expected_length = 0 if start_byte is None else end_byte - start_byte + 1
    if len(chunk_data) != expected_length:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Body has {len(chunk_data)} bytes, Content-Range declares {expected_length}"
        )

    result = await upload_service.save_chunk(
        upload_id=upload_id,
        chunk_data=chunk_data,
        start_byte=start_byte,
        total_bytes=total_bytes
    )
    return upload_status_response(result)

@router.get("/uploads/{upload_id}", response_model=UploadResponse)
async def get_upload_status(
    upload_id: str,
    upload_service: UploadService = Depends(get_upload_service)
):
    """
    Get the status of an upload.
    """
    return await upload_service.get_upload_status(upload_id)

@router.delete("/uploads/{upload_id}")
async def delete_upload(
    upload_id: str,
    upload_service: UploadService = Depends(get_upload_service)
):
    """
    Delete an uploaded file or cancel an ongoing upload.
    """
    success = await upload_service.delete_upload(upload_id)
    if not success:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Upload {upload_id} not found"
        )
    return {"detail": f"Upload {upload_id} deleted successfully"}
