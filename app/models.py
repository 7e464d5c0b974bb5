from pydantic import BaseModel
from typing import Dict, Optional

from app.config import MAX_DIMENSION, OUTPUT_MIME_TYPE


class HealthCheckResponse(BaseModel):
    status: str
    max_dimension: int = MAX_DIMENSION


class PreprocessRequest(BaseModel):
    base64_image: Optional[str] = None # Data URL or bare base64 (camera capture)


class PreprocessResponse(BaseModel):
    prepared_image_base64: str # data:image/jpeg;base64,...
    mime_type: str = OUTPUT_MIME_TYPE
    width: int
    height: int
    has_skin_pixels: bool
    execution_times: Optional[Dict[str, str]] = None


class ErrorResponse(BaseModel):
    detail: str
    stage: Optional[str] = None # Set for surface acquisition failures
