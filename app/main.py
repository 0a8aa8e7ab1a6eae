"""
Main FastAPI application for the Video Lifecycle API
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from app.config import get_settings, validate_required_storage
from app.core.dependencies import verify_upload_directory
from app.core.middleware import add_cors_middleware, add_request_logging_middleware
from app.database import AsyncSessionLocal, close_database, init_database
from app.schemas.upload import HealthCheck
from app.services.job_queue import JobQueue
from app.services.processors import VideoLifecycleProcessors
from app.services.storage import create_media_storages

# Import API routers
from app.api import dashboard, videos

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.debug else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan management.

    Args:
        app: FastAPI application instance
    """
    # Startup
    logger.info(f"Starting {settings.app_name}...")

    try:
        await init_database()
        logger.info("Database initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    if not verify_upload_directory():
        logger.error("Upload directory is not accessible")
        raise RuntimeError("Upload directory setup failed")

    missing = validate_required_storage()
    if missing:
        for problem in missing:
            logger.error(problem)
        raise RuntimeError("Storage configuration is incomplete")

    storages = create_media_storages()
    job_queue = JobQueue(AsyncSessionLocal)
    VideoLifecycleProcessors(AsyncSessionLocal, storages, settings).register(job_queue)

    app.state.job_queue = job_queue

    if settings.job_queue_enabled:
        await job_queue.start()
    else:
        logger.warning("Job queue disabled, scheduled jobs will not run in this process")

    logger.info("Application startup complete")

    yield

    # Shutdown
    logger.info(f"Shutting down {settings.app_name}...")

    try:
        await job_queue.stop()
    except Exception as e:
        logger.error(f"Error stopping job queue: {e}")

    try:
        await close_database()
        logger.info("Database connections closed")
    except Exception as e:
        logger.error(f"Error during database shutdown: {e}")

    logger.info("Application shutdown complete")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    description="Video upload, update and deletion lifecycle driven by a durable job queue",
    version=settings.version,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan
)


def jsonable_errors(exc: RequestValidationError) -> list:
    # Error contexts can hold exception instances
    return [{key: value for key, value in error.items() if key != "ctx"} for error in exc.errors()]


# Add custom exception handlers
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Custom handler for request validation errors (422).
    Logs the validation errors for debugging.
    """
    logger.warning(f"Request validation failed for {request.method} {request.url}")
    logger.warning(f"Validation errors: {exc.errors()}")

    return JSONResponse(
        status_code=422,
        content={
            "detail": "Request validation failed",
            "errors": jsonable_errors(exc)
        }
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """
    Custom handler for HTTP exceptions.
    """
    if exc.status_code >= 500:
        logger.error(f"HTTP {exc.status_code} error for {request.method} {request.url}: {exc.detail}")
    elif exc.status_code >= 400:
        logger.warning(f"HTTP {exc.status_code} error for {request.method} {request.url}: {exc.detail}")

    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail}
    )


# Add middleware
add_cors_middleware(app)
add_request_logging_middleware(app)

# Serve blobs written by the local storage backend
if "local" in (settings.video_storage_type.lower(), settings.thumbnail_storage_type.lower()):
    try:
        os.makedirs(settings.local_storage_root, exist_ok=True)
        app.mount(
            settings.local_storage_base_url,
            StaticFiles(directory=settings.local_storage_root),
            name="media"
        )
    except OSError as e:
        logger.warning(f"Could not mount local media files: {e}")

# Include API routes
app.include_router(
    videos.router,
    prefix="/api/v1/videos",
    tags=["videos"]
)
app.include_router(
    dashboard.router,
    prefix="/api/v1/job-dashboard",
    tags=["job-dashboard"]
)


@app.get("/")
async def root() -> dict:
    """
    Root endpoint with API information.

    Returns:
        dict: Basic API information
    """
    return {
        "message": f"Welcome to {settings.app_name}",
        "version": settings.version,
        "docs": "/docs",
        "status": "operational"
    }


@app.get("/api/v1/health", response_model=HealthCheck)
async def health_check(request: Request) -> HealthCheck:
    """
    Health check endpoint.

    Returns:
        HealthCheck: Application health status
    """
    # Check database connection
    database_connected = True
    try:
        from app.database import engine
        from sqlalchemy import text
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        database_connected = False

    upload_directory_accessible = verify_upload_directory()

    job_queue = getattr(request.app.state, "job_queue", None)
    job_queue_running = job_queue is not None and job_queue.is_running

    return HealthCheck(
        status="healthy" if database_connected and upload_directory_accessible else "unhealthy",
        timestamp=datetime.now(),
        version=settings.version,
        database_connected=database_connected,
        upload_directory_accessible=upload_directory_accessible,
        job_queue_running=job_queue_running
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info"
    )
