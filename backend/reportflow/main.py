"""
FastAPI application for the report pipeline.

Provides an HTTP API for turning financial reports into narrated video,
with WebSocket progress updates.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from reportflow.api import routes, websocket
from reportflow.config import get_settings
from reportflow.logging_config import setup_logging
from reportflow.services.job_manager import get_job_manager

# Configure logging before anything else
settings = get_settings()
setup_logging(settings)
logger = logging.getLogger(__name__)


def mount_media(app: FastAPI, media_dir: Path) -> None:
    """Serve synthesized audio from media_dir under /media (see media_base_url)."""
    app.mount("/media", StaticFiles(directory=media_dir, check_dir=False), name="media")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Logs startup info and resumes pipelines persisted by a previous process.
    """
    logger.info("Starting ReportFlow API")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Inbox directory: {settings.inbox_dir}")
    logger.info(f"Snapshot directory: {settings.snapshot_dir}")

    try:
        settings.media_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.warning(f"Media directory unavailable: {settings.media_dir} ({e})")

    try:
        await get_job_manager().restore_all()
    except ValueError as e:
        logger.warning(f"Snapshots not restored, providers not configured: {e}")

    yield

    logger.info("Shutting down ReportFlow API")


app = FastAPI(
    title="ReportFlow API",
    description="API for the financial report to video pipeline",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(routes.router)
app.include_router(websocket.router)
mount_media(app, settings.media_dir)


@app.get("/health")
async def health_check() -> dict:
    """
    Health check endpoint.

    Returns:
        Basic health status
    """
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "reportflow.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
