"""Menu Media Backend Application.

This is the main entry point for the restaurant website's media service.
Admins upload dish, gallery and hero images; the service stores resized
derivatives and serves them to the public site with long-lived caching.

Modules:
    - media: upload validation, derivative generation, serving, retention
    - config: YAML-backed settings
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from menumedia.config import get_config
from menumedia.media.errors import MediaError
from menumedia.media.retention import RetentionTask
from menumedia.media.router import router as media_router, static_router
from menumedia.media.service import MediaPipeline

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# PIL logs every plugin import and chunk it parses at DEBUG.
for _noisy in (
    "PIL",
    "PIL.PngImagePlugin",
    "PIL.TiffImagePlugin",
    "multipart",
    "python_multipart",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

_retention_task: Optional[RetentionTask] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup/shutdown events."""
    global _retention_task

    # Startup
    config = get_config()

    # Apply configured log level to root logger so that
    # `logging.level: "debug"` in menumedia.settings.yaml activates DEBUG output.
    configured_level = getattr(logging, config.logging.level.upper(), None)
    if configured_level is not None:
        logging.getLogger().setLevel(configured_level)
        logger.info("Root logger level set to %s", config.logging.level.upper())

    pipeline = MediaPipeline.get_instance()
    logger.info(
        "Media pipeline ready: media_root=%s temp_dir=%s sizes=%s",
        pipeline.media_root,
        pipeline.receiver.temp_dir,
        ",".join(pipeline.spec.labels),
    )

    retention = config.media.retention
    if retention.enabled:
        _retention_task = RetentionTask(
            pipeline,
            interval_seconds=retention.interval_seconds,
            max_age_days=retention.max_age_days,
        )
        await _retention_task.start()
    else:
        logger.info("Retention sweep disabled in config.")

    yield  # Application runs here

    # Shutdown
    if _retention_task is not None:
        await _retention_task.stop()
        _retention_task = None
    logger.info("Application shutdown complete")


# Create FastAPI application with metadata
app = FastAPI(
    title="Menu Media API",
    description="Image upload, optimization and delivery for the restaurant website",
    version="0.1.0",
    lifespan=lifespan,
)

# Register all routers
app.include_router(media_router)
app.include_router(static_router)


@app.exception_handler(MediaError)
async def media_error_handler(request: Request, exc: MediaError):
    if exc.status_code >= 500:
        logger.error(f"{exc.title}: {exc} path={request.url.path}")
    else:
        logger.warning(f"{exc.title}: {exc} path={request.url.path}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.title, "details": exc.details},
    )


@app.get("/health")
async def health() -> dict:
    """Health check endpoint.

    Returns:
        dict: Status object indicating the server is running.
    """
    return {"status": "ok"}
