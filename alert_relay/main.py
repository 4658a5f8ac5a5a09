from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from alert_relay.api.router import api_router
from alert_relay.config import get_settings
from alert_relay.core.errors import ConfigurationError, CronAuthError
from alert_relay.core.logging import get_logger, setup_logging
from alert_relay.core.scheduler import start_scheduler, stop_scheduler
from alert_relay.schemas.cron import CronErrorResponse

logger = get_logger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    # Startup
    setup_logging()
    await start_scheduler()
    yield
    # Shutdown
    await stop_scheduler()


app = FastAPI(
    title="Alert Relay",
    description="Alert digest scheduling and durable email delivery",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug else None,
    redoc_url="/api/redoc" if settings.debug else None,
)


def _error_response(status_code: int, error: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=CronErrorResponse(
            error=error,
            message=message,
            timestamp=datetime.now(UTC).isoformat(),
        ).model_dump(),
    )


@app.exception_handler(CronAuthError)
async def cron_auth_error_handler(request: Request, exc: CronAuthError) -> JSONResponse:
    return _error_response(status.HTTP_401_UNAUTHORIZED, "Unauthorized", str(exc))


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError) -> JSONResponse:
    logger.bind(path=request.url.path, error=str(exc)).error("server_misconfigured")
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "Server misconfiguration", str(exc)
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.bind(path=request.url.path, error=str(exc)).error("request_failed")
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", str(exc)
    )


# Include API routes
app.include_router(api_router)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint for load balancers."""
    return {"status": "healthy"}
