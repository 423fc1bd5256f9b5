"""Upload receiver: validation and temporary storage for incoming images.

Files are stored in: <temp_dir>/<field>-<epoch_ms>-<random><ext>
"""
import logging
import random
import time
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

from .errors import PayloadTooLarge, StorageUnavailable, UnsupportedMediaType
from .schemas import UploadedFile

logger = logging.getLogger(__name__)

# Extension (without dot) -> canonical MIME type
ALLOWED_TYPES = {
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
}

UNSUPPORTED_MESSAGE = "Only image files (JPEG, JPG, PNG, GIF, WebP) are allowed"

CHUNK_SIZE = 64 * 1024


def _canonical_mime(content_type: Optional[str]) -> Optional[str]:
    if not content_type:
        return None
    mime = content_type.split(";", 1)[0].strip().lower()
    kind, _, subtype = mime.partition("/")
    if kind != "image" or subtype not in ALLOWED_TYPES:
        return None
    return ALLOWED_TYPES[subtype]


def check_image_type(filename: str, content_type: Optional[str]) -> str:
    """Validate that extension and declared MIME type agree on an allowed type.

    Args:
        filename: Client-declared filename
        content_type: Client-declared MIME type

    Returns:
        The lower-cased extension including the dot

    Raises:
        UnsupportedMediaType: If either is outside the allow-set or they disagree
    """
    ext = Path(filename or "").suffix.lower()
    expected = ALLOWED_TYPES.get(ext.lstrip("."))
    declared = _canonical_mime(content_type)

    if expected is None or declared is None or expected != declared:
        raise UnsupportedMediaType(UNSUPPORTED_MESSAGE)
    return ext


class UploadReceiver:
    """Accepts one image upload and parks it in temporary storage."""

    def __init__(self, temp_dir: str, max_upload_bytes: int = 10 * 1024 * 1024) -> None:
        self._temp_dir = Path(temp_dir)
        self.max_upload_bytes = max_upload_bytes

    @property
    def temp_dir(self) -> Path:
        return self._temp_dir

    def _ensure_temp_dir(self) -> None:
        # exist_ok tolerates concurrent requests racing on creation
        try:
            self._temp_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailable(f"Cannot create temp directory {self._temp_dir}: {e}") from e

    def _generate_filename(self, field_name: str, ext: str) -> str:
        unique_suffix = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
        return f"{field_name}-{unique_suffix}{ext}"

    async def receive(self, upload: UploadFile, field_name: str = "image") -> UploadedFile:
        """Validate an upload and copy it into temporary storage.

        The body is copied in chunks; as soon as the running total passes
        ``max_upload_bytes`` the partial file is removed and the upload is
        rejected, so nothing downstream ever sees it.

        Args:
            upload: The multipart file part
            field_name: Form field name, used as the temp filename prefix

        Returns:
            UploadedFile handle pointing at the temporary copy

        Raises:
            UnsupportedMediaType: If the extension/MIME pair is not allowed
            PayloadTooLarge: If the body exceeds the size limit
            StorageUnavailable: If the temp directory cannot be created or written
        """
        original_filename = upload.filename or ""
        ext = check_image_type(original_filename, upload.content_type)

        self._ensure_temp_dir()
        filename = self._generate_filename(field_name, ext)
        temp_path = self._temp_dir / filename

        size_bytes = 0
        try:
            with temp_path.open("wb") as fh:
                while True:
                    chunk = await upload.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size_bytes += len(chunk)
                    if size_bytes > self.max_upload_bytes:
                        raise PayloadTooLarge(
                            f"File size exceeds limit of {self.max_upload_bytes} bytes"
                        )
                    fh.write(chunk)
        except PayloadTooLarge:
            temp_path.unlink(missing_ok=True)
            logger.warning(f"Rejected oversized upload: {original_filename}")
            raise
        except OSError as e:
            temp_path.unlink(missing_ok=True)
            raise StorageUnavailable(f"Cannot write temporary file {temp_path}: {e}") from e

        logger.info(f"Received upload: {original_filename} -> {temp_path} ({size_bytes} bytes)")

        return UploadedFile(
            path=str(temp_path),
            filename=filename,
            original_filename=original_filename,
            content_type=upload.content_type or "",
            size_bytes=size_bytes,
        )
