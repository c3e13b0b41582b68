# rescue_tracker/main.py

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from rescue_tracker.api.v1 import routes_health, routes_tracking
from rescue_tracker.core.config import settings
from rescue_tracker.core.errors import (
    CaseUpdateError,
    ConfigurationError,
    ProviderNotReady,
    SessionNotFound,
)
from rescue_tracker.core.logger import logger

# Domain error -> HTTP status
ERROR_STATUS = {
    SessionNotFound: 404,
    ConfigurationError: 422,
    CaseUpdateError: 502,
    ProviderNotReady: 503,
}


def _make_error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        logger.warning("{} {} -> {}: {}", request.method, request.url.path, status_code, exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return handler


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Live route tracking for responders travelling to rescue cases.",
    )

    # Routers
    app.include_router(routes_health.router, prefix="", tags=["health"])
    app.include_router(routes_tracking.router, prefix="", tags=["tracking"])

    for exc_type, status_code in ERROR_STATUS.items():
        app.add_exception_handler(exc_type, _make_error_handler(status_code))

    logger.info(
        "{} {} started (environment={}, routing provider={})",
        settings.APP_NAME,
        settings.APP_VERSION,
        settings.ENVIRONMENT,
        settings.ROUTING_PROVIDER,
    )
    return app


app = create_app()
