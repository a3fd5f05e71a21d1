"""
Health check endpoint.
"""
from fastapi import APIRouter

from ..config import get_settings
from ..models import HealthResponse
from .. import __version__

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check if the API is running and report which backends it uses."""
    settings = get_settings()
    return HealthResponse(
        status="ok",
        version=__version__,
        storage=settings.storage_type,
        judge=settings.judge_provider,
    )
