"""
FastAPI application factory
"""

import asyncio
import time
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from metalpulse import __version__
from metalpulse.core.config import ConfigManager, MetalPulseConfig
from metalpulse.core.container import MetalPulseServices, build_services
from metalpulse.core.exceptions import ErrorCode, MetalPulseError
from metalpulse.core.logging import get_logger
from metalpulse.web.metrics import router as metrics_router
from metalpulse.web.models import ErrorResponse
from metalpulse.web.routes import aggregate_router, health_router, ingest_router, quote_router

logger = get_logger(__name__)

_STATUS_BY_CODE = {
    ErrorCode.INVALID_QUERY.value: 400,
    ErrorCode.STORE_ERROR.value: 503,
    ErrorCode.STORE_TIMEOUT.value: 503,
    ErrorCode.POOL_EXHAUSTED.value: 503,
}


def create_app(
    config: MetalPulseConfig | None = None,
    services: MetalPulseServices | None = None,
) -> FastAPI:
    """Create the FastAPI application.

    Args:
        config: Configuration used to build services; loaded from disk and
            environment when omitted.
        services: Prebuilt services, mainly for tests. The background
            scheduler is started only when the app builds its own services
            and ``web.run_scheduler`` is enabled.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        owned = services is None
        active = services or build_services(config or ConfigManager().get_config())
        app.state.services = active
        app.state.start_time = time.time()

        stop_event = asyncio.Event()
        scheduler_task: asyncio.Task[None] | None = None
        if owned and active.config.web.run_scheduler and active.config.feeds:
            scheduler_task = asyncio.create_task(active.scheduler.run_forever(stop_event))

        yield

        stop_event.set()
        if scheduler_task is not None:
            scheduler_task.cancel()
            with suppress(asyncio.CancelledError):
                await scheduler_task
        if owned:
            await active.aclose()

    app = FastAPI(
        title="metalpulse",
        description="Metal and futures quote ingestion with session-bounded aggregation",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    _setup_routes(app)
    _setup_exception_handlers(app)
    return app


def _setup_routes(app: FastAPI) -> None:
    """Register routers"""
    app.include_router(aggregate_router, prefix="/api/v1", tags=["aggregate"])
    app.include_router(quote_router, prefix="/api/v1", tags=["quotes"])
    app.include_router(ingest_router, prefix="/api/v1", tags=["ingest"])
    app.include_router(health_router, prefix="/api/v1", tags=["health"])
    app.include_router(metrics_router)


def _setup_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers"""

    @app.exception_handler(MetalPulseError)
    async def metalpulse_exception_handler(request: Request, exc: MetalPulseError) -> JSONResponse:
        status_code = _STATUS_BY_CODE.get(exc.error_code, 500)
        logger.bind(error_code=exc.error_code).warning("request failed: {path}", path=request.url.path)
        return JSONResponse(
            status_code=status_code,
            content=ErrorResponse(
                error=exc.__class__.__name__,
                message=exc.message,
                details=exc.to_payload(),
                request_id=str(uuid.uuid4()),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error="HTTPException",
                message=str(exc.detail),
                details={"status_code": exc.status_code},
                request_id=str(uuid.uuid4()),
            ).model_dump(mode="json"),
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.bind(error_code=ErrorCode.INTERNAL_ERROR.value).exception("unhandled error")
        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="InternalServerError",
                message="internal server error",
                details={"type": type(exc).__name__},
                request_id=str(uuid.uuid4()),
            ).model_dump(mode="json"),
        )
