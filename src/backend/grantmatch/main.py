"""
grantmatch API entrypoint.

The lifespan owns the background side of the service: the work queue is
restored from scrape_job, workers start consuming it and, when enabled,
the scheduler starts enqueueing source windows.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from grantmatch.api.router import api_router
from grantmatch.container import ServiceContainer
from grantmatch.core.config import get_settings
from grantmatch.core.exceptions import AppException
from grantmatch.core.logging import get_logger, setup_logging
from grantmatch.db.session import close_db, get_engine, get_session_factory
from grantmatch.schemas.common import HealthResponse

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    settings = get_settings()
    logger.info("service_starting", version=settings.app_version, environment=settings.environment)

    try:
        async with get_engine().begin() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("database_unreachable", error=str(e))
        raise

    # A container installed before startup (tests) is used as is
    container = getattr(app.state, "container", None)
    if container is None:
        container = ServiceContainer.build(get_session_factory(), settings)
        app.state.container = container
    await container.start()

    yield

    logger.info("service_stopping")
    await container.stop()
    await close_db()


def create_application() -> FastAPI:
    """Build the FastAPI app; services are attached in the lifespan."""
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Funding-program ingestion, eligibility extraction and match scoring",
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next):
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(method=request.method, path=request.url.path)
        return await call_next(request)

    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
        logger.warning("request_failed", error_code=exc.error_code, message=exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("request_crashed", error=str(exc))
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "INTERNAL_ERROR",
                    "message": "An unexpected error occurred",
                    "details": {"error": str(exc)} if settings.debug else {},
                }
            },
        )

    @app.get("/health", response_model=HealthResponse)
    async def health_check(request: Request) -> HealthResponse:
        """Liveness plus queue depth and match-cache counters."""
        components = {}
        container = getattr(request.app.state, "container", None)
        if container is not None:
            components["queue"] = container.queue.stats()
            components["cache"] = container.cache.stats()
        return HealthResponse(
            version=settings.app_version,
            environment=settings.environment,
            components=components,
        )

    return app


app = create_application()
