import os
import logging
from dotenv import load_dotenv

load_dotenv()

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.models import ErrorResponse
from app.routers.api import router as api_router
from app.routers.preprocess import router as preprocess_router
from app.services.image_preprocess_service import DecodeFailure, SurfaceAcquisitionFailure

# Configure logging
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "INFO").upper())
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Dermatolog Skin Scan Preprocessor",
    description="FastAPI service that standardizes skin photos before AI analysis",
    version="1.0.0"
)

app.include_router(api_router)
app.include_router(preprocess_router)


@app.exception_handler(DecodeFailure)
async def decode_failure_handler(request: Request, exc: DecodeFailure):
    logger.warning(f"Rejected unreadable image on {request.url.path}: {exc}")
    return JSONResponse(status_code=422, content=ErrorResponse(detail=str(exc)).model_dump())


@app.exception_handler(SurfaceAcquisitionFailure)
async def surface_failure_handler(request: Request, exc: SurfaceAcquisitionFailure):
    # Usually memory pressure; the client may retry
    logger.error(f"Surface acquisition failed at {exc.stage.value} stage on {request.url.path}")
    return JSONResponse(
        status_code=503,
        content=ErrorResponse(detail=str(exc), stage=exc.stage.value).model_dump(),
    )
