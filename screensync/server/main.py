"""
ScreenSync API server.

Publishing, per-screen reconciliation and playback diagnostics for
screens driven by the remote signage platform.
"""

import time
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from screensync.common.cache import redis_client
from screensync.common.clock import SystemClock
from screensync.common.config import get_settings
from screensync.common.database import close_db, create_tables, init_db
from screensync.common.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    ScreenSyncError,
)
from screensync.common.logger import clear_log_context, get_logger, log_context
from screensync.common.utils import generate_request_id
from screensync.platform.client import PlatformClient
from screensync.schemas.response import ErrorResponse
from screensync.server.middleware.metrics import MetricsMiddleware, metrics_endpoint
from screensync.server.routers import health, platform, publish, screens, uploads
from screensync.upload.storage import FilesystemObjectStorage

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    settings = get_settings()

    logger.info(
        "Starting ScreenSync server",
        version=settings.app_version,
        env=settings.env,
    )

    await init_db()
    if settings.debug:
        await create_tables()

    await redis_client.connect()

    app.state.clock = SystemClock()
    app.state.storage = FilesystemObjectStorage(settings.storage.root)
    app.state.platform_client = PlatformClient.from_settings(settings.platform, clock=app.state.clock)
    if not app.state.platform_client.auth_configured:
        logger.error("Platform token missing or malformed; every platform call will fail")

    logger.info("ScreenSync server started successfully")

    yield

    logger.info("Shutting down ScreenSync server")
    await app.state.platform_client.aclose()
    await redis_client.close()
    await close_db()
    logger.info("ScreenSync server stopped")


def _status_for(exc: ScreenSyncError) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, InvalidTransitionError):
        return 409
    return 400


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="ScreenSync",
        description="Screen playback reconciliation for digital out-of-home advertising",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Prometheus metrics middleware
    app.add_middleware(MetricsMiddleware)

    # Prometheus metrics endpoint
    app.add_api_route("/metrics", metrics_endpoint, methods=["GET"], tags=["monitoring"])

    # Request logging middleware
    @app.middleware("http")
    async def logging_middleware(request: Request, call_next: Any) -> Any:
        """Log all requests with timing."""
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        request.state.request_id = request_id
        log_context(request_id=request_id)

        start_time = time.perf_counter()

        try:
            response = await call_next(request)
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            clear_log_context()

        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
            request_id=request_id,
        )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

        return response

    @app.exception_handler(ScreenSyncError)
    async def screensync_error_handler(
        request: Request,
        exc: ScreenSyncError,
    ) -> JSONResponse:
        """Handle ScreenSync errors."""
        logger.warning(
            "ScreenSync error",
            error=exc.__class__.__name__,
            message=exc.message,
            details=exc.details,
        )

        return JSONResponse(
            status_code=_status_for(exc),
            content=ErrorResponse(
                error=exc.__class__.__name__,
                message=exc.message,
                details=exc.details,
                request_id=getattr(request.state, "request_id", None),
            ).model_dump(),
        )

    @app.exception_handler(Exception)
    async def general_error_handler(
        request: Request,
        exc: Exception,
    ) -> JSONResponse:
        """Handle unexpected errors."""
        logger.error(
            "Unexpected error",
            error=str(exc),
            error_type=exc.__class__.__name__,
        )

        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="InternalServerError",
                message="An unexpected error occurred",
                request_id=getattr(request.state, "request_id", None),
            ).model_dump(),
        )

    app.include_router(health.router, tags=["health"])
    app.include_router(publish.router, prefix="/api/v1", tags=["publish"])
    app.include_router(screens.router, prefix="/api/v1/screens", tags=["screens"])
    app.include_router(uploads.router, prefix="/api/v1/uploads", tags=["uploads"])
    app.include_router(platform.router, prefix="/api/v1/platform", tags=["platform"])

    return app


app = create_app()


def main() -> None:
    """Run the server using uvicorn."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "screensync.server.main:app",
        host=settings.server.host,
        port=settings.server.port,
        workers=settings.server.workers,
        reload=settings.server.reload,
        log_level="info" if not settings.debug else "debug",
    )


if __name__ == "__main__":
    main()
