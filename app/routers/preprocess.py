import logging
from fastapi import APIRouter, UploadFile, File, HTTPException

from app.config import MAX_UPLOAD_BYTES
from app.models import PreprocessRequest, PreprocessResponse
from app.services.image_preprocess_service import image_preprocess_service, PreprocessResult

router = APIRouter(prefix="/api/preprocess", tags=["preprocess"])

logger = logging.getLogger(__name__)

# base64 inflates payloads by 4/3, plus room for a data URL header
MAX_BASE64_CHARS = MAX_UPLOAD_BYTES * 4 // 3 + 256


def _to_response(result: PreprocessResult) -> PreprocessResponse:
    width, height = result.size
    return PreprocessResponse(
        prepared_image_base64=result.data_url,
        mime_type=result.mime_type,
        width=width,
        height=height,
        has_skin_pixels=result.has_skin_pixels,
        execution_times=result.execution_times,
    )


@router.post("", response_model=PreprocessResponse)
async def preprocess_image(payload: PreprocessRequest):
    """Prepares a base64 / data URL image (camera capture) for analysis."""
    if not payload.base64_image:
        raise HTTPException(status_code=400, detail="base64_image is required")
    if len(payload.base64_image) > MAX_BASE64_CHARS:
        raise HTTPException(status_code=413, detail=f"Image exceeds {MAX_UPLOAD_BYTES} bytes")

    result = await image_preprocess_service.process_image_async(payload.base64_image)
    return _to_response(result)


@router.post("/upload", response_model=PreprocessResponse)
async def preprocess_upload(file: UploadFile = File(...)):
    """Prepares an uploaded image file for analysis."""
    # One byte past the limit is enough to tell an oversize upload apart
    content = await file.read(MAX_UPLOAD_BYTES + 1)
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty")
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail=f"Image exceeds {MAX_UPLOAD_BYTES} bytes")

    logger.info(f"Preprocessing upload {file.filename} ({len(content)} bytes)")
    result = await image_preprocess_service.process_image_async(content)
    return _to_response(result)
