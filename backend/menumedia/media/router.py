"""FastAPI router for image upload, retrieval and retention endpoints.

Endpoints:
    POST /media/upload: Receive an image and generate its derivatives
    POST /media/cleanup: Run the retention sweep over every group
    GET /media/markup/{filename}: Responsive <picture> snippet for an upload
    GET /media/{size}/{filename}: Serve one derivative with cache headers
    GET /uploads/website/{media_key}/{name}: Serve a stored file as-is

Data Storage:
    Derivatives are plain files under <media_root>/<media_key>/. Nothing
    else records which derivatives exist.
"""
import logging
import time
from email.utils import formatdate
from pathlib import Path
from typing import Dict, Optional

from fastapi import APIRouter, File, Form, Query, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import FileResponse, HTMLResponse, Response

from .errors import DerivativeNotFound, ValidationError
from .markup import render_picture
from .schemas import CleanupResponse, ProcessedUpload
from .service import MediaPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/media", tags=["media"])
static_router = APIRouter(prefix="/uploads/website", tags=["media"])

CACHE_MAX_AGE_SECONDS = 31536000


def cache_headers(path: Path, max_age: int = CACHE_MAX_AGE_SECONDS) -> Dict[str, str]:
    """Long-lived caching headers with an ETag derived from the file mtime."""
    mtime_ms = int(path.stat().st_mtime * 1000)
    return {
        "Cache-Control": f"public, max-age={max_age}",
        "ETag": f'"{mtime_ms}"',
        "Expires": formatdate(time.time() + max_age, usegmt=True),
    }


def etag_matches(if_none_match: Optional[str], etag: str) -> bool:
    """Weak comparison of an ``If-None-Match`` header against *etag*."""
    if not if_none_match:
        return False
    candidates = [tag.strip() for tag in if_none_match.split(",")]
    if "*" in candidates:
        return True
    return etag in (tag[2:] if tag.startswith("W/") else tag for tag in candidates)


def cached_file_response(
    request: Request, path: Path, max_age: int = CACHE_MAX_AGE_SECONDS
) -> Response:
    headers = cache_headers(path, max_age)
    if etag_matches(request.headers.get("if-none-match"), headers["ETag"]):
        return Response(status_code=304, headers=headers)
    return FileResponse(path, headers=headers)


# =============================================================================
# Write side
# =============================================================================


@router.post("/upload", response_model=ProcessedUpload)
async def upload_image(
    request: Request,
    image: Optional[UploadFile] = File(None),
    media_key: Optional[str] = Form(None),
) -> ProcessedUpload:
    """Upload an image and generate its derivatives.

    Args:
        image: The image file (JPEG, PNG, GIF or WebP, at most 10MB)
        media_key: Optional group key of letters, digits, "_" and "-"
            (no dots or slashes); blank or missing means "general"

    Returns:
        ProcessedUpload with generated sizes, directory and retrieval URLs

    Raises:
        ValidationError 400: If no file was sent or the media key contains
            other characters (e.g. "menu.items")
        PayloadTooLarge 413: If the file exceeds the size limit
        UnsupportedMediaType 415: If the file is not an allowed image type
        ImageProcessingFailed 500: If any derivative could not be produced
    """
    if image is None:
        raise ValidationError("No file uploaded")

    pipeline = MediaPipeline.get_instance()
    key = pipeline.group_key(media_key)

    handle = await pipeline.receiver.receive(image, field_name="image")
    result = await run_in_threadpool(pipeline.process_upload, handle, key)

    result.urls = {
        label: str(
            request.url_for("get_derivative", size=label, filename=result.filename)
            .include_query_params(media_key=key)
        )
        for label in result.sizes
    }

    logger.info(
        f"Image uploaded: {result.original_name} -> {result.filename} "
        f"({len(result.sizes)} derivatives) in {key}"
    )
    return result


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_media(
    max_age_days: Optional[float] = Query(None, ge=0),
) -> CleanupResponse:
    """Delete derivatives older than *max_age_days* in every group.

    Args:
        max_age_days: Age threshold; defaults to the configured retention

    Returns:
        One report per group directory and the total removed
    """
    pipeline = MediaPipeline.get_instance()
    reports = await run_in_threadpool(pipeline.sweep, max_age_days)
    return CleanupResponse(
        reports=reports,
        removed_count=sum(len(r.removed) for r in reports),
    )


# =============================================================================
# Read side
# =============================================================================


@router.get("/markup/{filename}", response_class=HTMLResponse)
async def picture_markup(
    request: Request,
    filename: str,
    media_key: Optional[str] = None,
    alt: str = "",
) -> HTMLResponse:
    """Responsive <picture> markup referencing an upload's derivatives."""
    pipeline = MediaPipeline.get_instance()
    key = pipeline.group_key(media_key)
    base_url = f"{str(request.base_url).rstrip('/')}{static_router.prefix}/{key}"
    return HTMLResponse(render_picture(base_url, filename, alt, pipeline.spec))


@router.get("/{size}/{filename}", name="get_derivative")
async def get_derivative(
    request: Request,
    size: str,
    filename: str,
    media_key: Optional[str] = None,
) -> Response:
    """Serve a derivative, falling back to a stored original of that name.

    Raises:
        DerivativeNotFound 404: If neither the derivative nor the original exists
    """
    pipeline = MediaPipeline.get_instance()
    try:
        path = pipeline.resolve_derivative(size, filename, media_key)
    except DerivativeNotFound:
        path = pipeline.resolve_fallback(filename, media_key)
        logger.debug(f"No {size} derivative for {filename}, serving original")
    return cached_file_response(request, path, pipeline.cache_max_age_seconds)


@static_router.get("/{media_key}/{name}", name="get_stored_file")
async def get_stored_file(request: Request, media_key: str, name: str) -> Response:
    """Serve any stored file in a group directory by its on-disk name."""
    pipeline = MediaPipeline.get_instance()
    path = pipeline.resolve_fallback(name, media_key)
    return cached_file_response(request, path, pipeline.cache_max_age_seconds)
