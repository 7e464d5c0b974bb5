from fastapi import APIRouter
from app.models import HealthCheckResponse

router = APIRouter(prefix="/api")


@router.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """Health check endpoint."""
    return HealthCheckResponse(status="OK")
