"""
FastAPI application factory and lifespan management.

Creates the main FastAPI application with:
- Async lifespan wiring the job store, scheduler, draft service and rooms
- Exception handlers rendering the failure envelope
- CORS middleware configuration
- API router mounting
- Health check endpoint
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from starlette.exceptions import HTTPException as StarletteHTTPException

from schemaforge.core.config import APP_VERSION, get_settings
from schemaforge.database.connection import close_db, get_session, init_db
from schemaforge.models.responses import ErrorBody, ErrorResponse, HealthResponse
from schemaforge.realtime.rooms import RoomManager
from schemaforge.services.draft_service import DraftService
from schemaforge.services.job_events import JobEventBus
from schemaforge.services.job_store import JobStore
from schemaforge.services.maintenance import MaintenanceService
from schemaforge.services.scheduler import BatchScheduler, UrlProcessor
from schemaforge.services.schema_service import SchemaGenerationService
from schemaforge.utils.exceptions import SchemaForgeError
from schemaforge.utils.logging import configure_logging, get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.

    Startup: create tables, build the in-process registries, start the
    maintenance loop. Shutdown: interrupt running jobs, close sockets and
    connections.
    """
    settings = get_settings()

    # === STARTUP ===
    configure_logging()
    logger.info("Starting application", app_name=settings.app_name)

    await init_db()

    app.state.schema_service = SchemaGenerationService(settings)
    processor: UrlProcessor = (
        app.state.url_processor_override or app.state.schema_service.generate_for_url
    )

    app.state.job_store = JobStore(
        max_urls_per_job=settings.bulk_max_urls_per_job,
        max_active_jobs_per_user=settings.bulk_max_active_jobs_per_user,
        retention=timedelta(days=settings.bulk_job_retention_days),
    )
    app.state.job_events = JobEventBus()
    app.state.scheduler = BatchScheduler(
        app.state.job_store,
        processor,
        app.state.job_events,
        max_concurrent_jobs=settings.bulk_max_concurrent_jobs,
    )
    app.state.draft_service = DraftService(settings)
    app.state.rooms = RoomManager()

    app.state.maintenance = MaintenanceService(
        app.state.job_store,
        interval=settings.maintenance_interval,
        stale_hours=settings.autosave_stale_hours,
    )
    app.state.maintenance.start()

    logger.info("Application started")

    yield

    # === SHUTDOWN ===
    logger.info("Shutting down application")

    await app.state.maintenance.stop()
    await app.state.scheduler.shutdown()
    await app.state.rooms.close_all()
    await app.state.schema_service.close()
    await close_db()

    logger.info("Application shutdown complete")


def _error_response(status_code: int, body: ErrorBody) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(ErrorResponse(error=body)),
    )


async def schemaforge_error_handler(request: Request, exc: SchemaForgeError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("Request failed", path=request.url.path, **exc.to_dict())
    else:
        logger.info(
            "Request rejected",
            path=request.url.path,
            error_type=type(exc).__name__,
            status_code=exc.status_code,
        )
    return _error_response(exc.status_code, ErrorBody(**exc.to_dict()))


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(
        status.HTTP_400_BAD_REQUEST,
        ErrorBody(
            error_type="InvalidInputError",
            message="Request validation failed",
            details={"errors": jsonable_encoder(exc.errors())},
        ),
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(
        exc.status_code,
        ErrorBody(error_type="HTTPError", message=str(exc.detail)),
    )


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error", path=request.url.path, error=str(exc))
    return _error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        ErrorBody(error_type="InternalServerError", message="Internal server error"),
    )


def create_app(url_processor: UrlProcessor | None = None) -> FastAPI:
    """
    Application factory.

    Args:
        url_processor: Replaces external schema generation in bulk jobs
            (tests and offline runs)

    Returns:
        Configured FastAPI application
    """
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="JSON-LD structured data generation with bulk processing and autosave",
        version=APP_VERSION,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.url_processor_override = url_processor

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(SchemaForgeError, schemaforge_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Include routers
    from api.routes.autosave import router as autosave_router
    from api.routes.bulk import router as bulk_router
    from api.routes.projects import router as projects_router
    from api.routes.realtime import router as realtime_router

    app.include_router(bulk_router, prefix="/api/v1")
    app.include_router(projects_router, prefix="/api/v1")
    app.include_router(autosave_router, prefix="/api/v1")
    app.include_router(realtime_router)

    # Health check endpoint (no auth required)
    @app.get("/health", tags=["Health"], response_model=HealthResponse)
    async def health_check(request: Request) -> HealthResponse:
        """
        Health check endpoint.

        Reports database reachability and the number of bulk jobs processing.
        """
        database = "connected"
        try:
            async with get_session() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            logger.warning("Health check database probe failed", error=str(e))
            database = "disconnected"

        return HealthResponse(
            status="healthy" if database == "connected" else "degraded",
            version=APP_VERSION,
            database=database,
            active_jobs=request.app.state.scheduler.active_count,
        )

    # Root endpoint
    @app.get("/", tags=["Root"])
    async def root() -> dict:
        """Root endpoint with API information."""
        return {
            "app": settings.app_name,
            "version": APP_VERSION,
            "docs": "/docs" if settings.debug else "Disabled in production",
            "health": "/health",
            "api": "/api/v1",
            "websocket": "/ws/autosave",
        }

    logger.info("FastAPI application created")

    return app


# Application instance for uvicorn
app = create_app()
