# rescue_tracker/api/v1/routes_health.py
from fastapi import APIRouter, Depends

from rescue_tracker.api.deps import get_registry
from rescue_tracker.core.config import settings
from rescue_tracker.services.session_registry import SessionRegistry

router = APIRouter(
    prefix="/health",
    tags=["health"],
)


@router.get("/", summary="Health check")
async def health_check(registry: SessionRegistry = Depends(get_registry)):
    """
    Simple health check endpoint to verify that the API is running.
    """
    return {
        "status": "ok",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "routing_provider": settings.ROUTING_PROVIDER,
        "open_sessions": len(registry),
    }
