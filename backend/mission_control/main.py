"""
Mission Control - Main FastAPI Application
Backend for the Meta Agent dashboard: conversations with branching, personas,
scheduled tasks, benchmarks and voice.
"""

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import os

from .config import settings
from .database import AsyncSessionLocal, init_db, close_db
from .exceptions import NotFoundError, PermissionDeniedError, ProviderError, StorageError
from .logger import get_logger, setup_logging
from .routers import (
    benchmarks_router,
    chat_router,
    conversations_router,
    personas_router,
    profile_router,
    tasks_router,
    voice_router
)
from .services.scheduler_service import SchedulerWorker

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging()
    await init_db()

    # Create upload directory
    os.makedirs(settings.UPLOAD_DIR, exist_ok=True)

    worker = None
    if settings.SCHEDULER_ENABLED:
        worker = SchedulerWorker(AsyncSessionLocal, settings.SCHEDULER_POLL_INTERVAL)
        worker.start()

    logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)
    yield

    # Shutdown
    if worker is not None:
        await worker.stop()
    await close_db()


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Mission Control backend: branching conversations, personas, scheduled tasks, benchmarks and voice",
    lifespan=lifespan
)


# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(PermissionDeniedError)
async def permission_denied_handler(request: Request, exc: PermissionDeniedError):
    return JSONResponse(status_code=status.HTTP_403_FORBIDDEN, content={"detail": str(exc)})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error("Storage error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": str(exc)})


@app.exception_handler(ProviderError)
async def provider_error_handler(request: Request, exc: ProviderError):
    logger.error("Provider %s failed: %s", exc.provider, exc)
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"detail": str(exc), "provider": exc.provider}
    )


# Include routers
app.include_router(benchmarks_router)
app.include_router(chat_router)
app.include_router(conversations_router)
app.include_router(personas_router)
app.include_router(profile_router)
app.include_router(tasks_router)
app.include_router(voice_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION
    }


@app.get("/api")
async def api_info():
    """API information endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "endpoints": {
            "benchmarks": "/api/benchmarks",
            "chat": "/api/chat",
            "conversations": "/api/conversations",
            "personas": "/api/personas",
            "profile": "/api/profile",
            "tasks": "/api/tasks",
            "voice": "/api/voice"
        }
    }
