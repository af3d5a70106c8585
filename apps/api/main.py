"""
Media Extractor - FastAPI Backend
Main application entry point with health check and API routing.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings, validate_timeout_settings
from database import engine, Base
import models  # noqa: F401
from routers import health, media
from services.background import BackgroundWork
from services.media_queue import recover_stalled_media_tasks
from services.media_worker import build_worker_dependencies


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Media Extractor API...")
    validate_timeout_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    try:
        recovered = await recover_stalled_media_tasks()
        if recovered:
            print(f"♻️ Requeued {recovered} stalled media tasks after startup.")
    except Exception as exc:
        print(f"⚠️ Stalled media task recovery skipped: {exc}")

    background = BackgroundWork()
    app.state.background = background
    app.state.worker_deps = build_worker_dependencies(background=background)
    yield
    # Shutdown
    if background.pending:
        print(f"⏳ Waiting for {background.pending} background jobs...")
    await background.drain(timeout=float(settings.STORAGE_UPLOAD_TIMEOUT_SECONDS))
    print("👋 Shutting down API...")


app = FastAPI(
    title="Media Extractor API",
    description="Extract transcripts and videos from YouTube and TikTok links",
    version="0.1.0",
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
app.include_router(health.router, tags=["Health"])
app.include_router(media.router, prefix="/media", tags=["Media"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Media Extractor API",
        "version": "0.1.0",
        "status": "running"
    }
