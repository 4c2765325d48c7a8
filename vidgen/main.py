"""
Vidgen API - Video Generation and Post-Processing
FastAPI Backend Entry Point
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from vidgen.core.config import settings
from vidgen.core.database import Database
from vidgen.core.redis import RedisManager
from vidgen.api import clips, events, jobs, processing, projects, system
from vidgen.services.inference_client import InferenceClient
from vidgen.services.job_store import JobStore
from vidgen.services.progress import ProgressChannel
from vidgen.services.storage import StorageService
from vidgen.workers.queue import QueueManager

logger = logging.getLogger(__name__)

VERSION = "0.1.0"

CONTENT_TYPES = {
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mov": "video/quicktime",
    ".gif": "image/gif",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build shared clients on startup and close them on shutdown."""
    logger.info("Starting Vidgen API...")
    database = Database(settings.DATABASE_URL)
    database.init_db()
    redis_manager = RedisManager(settings.REDIS_URL)
    store = JobStore(database)

    app.state.database = database
    app.state.redis_manager = redis_manager
    app.state.store = store
    app.state.queue_manager = QueueManager(redis_manager, store)
    app.state.channel = ProgressChannel(redis_manager)
    app.state.inference = InferenceClient(settings.COMFYUI_URL)
    app.state.storage = StorageService(settings.STORAGE_PATH)
    logger.info("Database tables created")
    yield
    logger.info("Shutting down Vidgen API...")
    await redis_manager.aclose()
    redis_manager.close()
    database.dispose()


app = FastAPI(
    title="Vidgen API",
    description="Text/image-to-video generation with queued post-processing and export",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(projects.router, prefix="/api/projects", tags=["Projects"])
app.include_router(clips.router, prefix="/api", tags=["Clips"])
app.include_router(processing.router, prefix="/api/processing", tags=["Processing"])
app.include_router(jobs.router, prefix="/api/jobs", tags=["Jobs"])
app.include_router(events.router, prefix="/api/events", tags=["Events"])
app.include_router(system.router, prefix="/api/system", tags=["System"])


@app.get("/health", tags=["Health"])
async def health_check():
    """Detailed status of the database, Redis and the inference service."""
    status = {
        "status": "healthy",
        "version": VERSION,
        "services": {}
    }

    # Check database connection
    try:
        db = app.state.database.session()
        try:
            db.execute(text("SELECT 1"))
        finally:
            db.close()
        status["services"]["database"] = "ok"
    except SQLAlchemyError as e:
        status["services"]["database"] = f"error: {str(e)}"
        status["status"] = "degraded"

    # Check Redis connection
    redis_status = app.state.redis_manager.health_check()
    if redis_status.get("connected"):
        status["services"]["redis"] = "ok"
        status["services"]["redis_version"] = redis_status.get("redis_version")
    else:
        status["services"]["redis"] = f"error: {redis_status.get('error', 'not connected')}"
        status["status"] = "degraded"

    # Inference being down only affects generation jobs
    status["services"]["inference"] = "ok" if await app.state.inference.is_available() else "unavailable"

    return status


@app.get("/files/{file_path:path}", tags=["Files"])
async def serve_file(file_path: str):
    """Serve generated videos and thumbnails from local storage."""
    base = app.state.storage.base_path.resolve()
    path = (base / file_path).resolve()
    if base not in path.parents or not path.is_file():
        raise HTTPException(status_code=404, detail=f"File not found: {file_path}")

    def iter_file():
        with open(path, "rb") as f:
            while True:
                chunk = f.read(1024 * 1024)
                if not chunk:
                    break
                yield chunk

    return StreamingResponse(
        iter_file(),
        media_type=CONTENT_TYPES.get(path.suffix.lower(), "application/octet-stream"),
        headers={"Cache-Control": "public, max-age=3600"},
    )


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint."""
    return {
        "message": "Vidgen API - Video Generation and Post-Processing",
        "docs": "/docs",
        "health": "/health",
    }
