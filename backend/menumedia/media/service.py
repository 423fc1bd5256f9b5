"""Media pipeline service.

Ties the upload receiver and the derivative generator together and owns
the on-disk layout: derivatives live in <media_root>/<group_key>/. There is
no manifest; what exists is whatever the directory listing shows.
"""
import logging
import re
from pathlib import Path
from typing import List, Optional

from menumedia.config import MediaSettings, get_config

from .errors import DerivativeNotFound, ValidationError
from .generator import DerivativeGenerator, derivative_name
from .receiver import UploadReceiver
from .schemas import CleanupReport, DerivativeSpec, ProcessedUpload, UploadedFile

logger = logging.getLogger(__name__)

_GROUP_KEY_RE = re.compile(r"^[A-Za-z0-9_-]+$")


class MediaPipeline:
    """Service for receiving, optimizing, serving and retiring images."""

    _instance: Optional["MediaPipeline"] = None

    def __init__(
        self,
        media_root: str,
        temp_dir: str,
        spec: Optional[DerivativeSpec] = None,
        max_upload_bytes: int = 10 * 1024 * 1024,
        default_group_key: str = "general",
        retention_days: float = 30,
        cache_max_age_seconds: int = 31536000,
    ) -> None:
        """Initialize the pipeline.

        Args:
            media_root: Root directory for group subdirectories
            temp_dir: Directory for uploads awaiting processing
            spec: Derivative presets; defaults to the five standard sizes
            max_upload_bytes: Upload size limit
            default_group_key: Group used when a request names none
            retention_days: Default age threshold for sweeps
            cache_max_age_seconds: Cache lifetime advertised when serving
        """
        self.media_root = Path(media_root)
        self.default_group_key = default_group_key
        self.retention_days = retention_days
        self.cache_max_age_seconds = cache_max_age_seconds
        self.receiver = UploadReceiver(temp_dir, max_upload_bytes)
        self.generator = DerivativeGenerator(spec)

    @classmethod
    def from_settings(cls, settings: MediaSettings) -> "MediaPipeline":
        return cls(
            media_root=settings.media_root,
            temp_dir=settings.temp_dir,
            spec=settings.derivative_spec(),
            max_upload_bytes=settings.max_upload_bytes,
            default_group_key=settings.default_group_key,
            retention_days=settings.retention.max_age_days,
            cache_max_age_seconds=settings.cache_max_age_seconds,
        )

    @classmethod
    def get_instance(cls) -> "MediaPipeline":
        """Get or create the singleton instance from the loaded configuration."""
        if cls._instance is None:
            cls._instance = cls.from_settings(get_config().media)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (for testing)."""
        cls._instance = None

    @property
    def spec(self) -> DerivativeSpec:
        return self.generator.spec

    # ------------------------------------------------------------------
    # Path helpers
    # ------------------------------------------------------------------

    def group_key(self, key: Optional[str]) -> str:
        """Normalize a caller-supplied group key, applying the default.

        Keys may contain only ASCII letters, digits, ``_`` and ``-``; they
        name a directory directly under ``media_root``.

        Raises:
            ValidationError: If the key contains any other character
        """
        if key is None or not key.strip():
            return self.default_group_key
        key = key.strip()
        if not _GROUP_KEY_RE.match(key):
            raise ValidationError(f"Invalid media key: {key!r}")
        return key

    def group_dir(self, key: Optional[str]) -> Path:
        return self.media_root / self.group_key(key)

    @staticmethod
    def _check_filename(filename: str) -> None:
        if not filename or filename in (".", "..") or "/" in filename or "\\" in filename:
            raise ValidationError(f"Invalid filename: {filename!r}")

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def process_upload(self, upload: UploadedFile, group_key: Optional[str] = None) -> ProcessedUpload:
        """Generate derivatives for a received upload.

        The temporary file is removed afterwards whether generation
        succeeded or not.

        Args:
            upload: Handle returned by the receiver
            group_key: Target group; defaults to ``default_group_key``

        Returns:
            ProcessedUpload describing the generated derivatives

        Raises:
            ValidationError: If the group key is malformed
            ImageProcessingFailed: If any derivative could not be produced
        """
        temp_path = Path(upload.path)
        try:
            key = self.group_key(group_key)
            output_dir = self.media_root / key
            logger.info(f"Processing image for {key}: {upload.filename}")

            outputs = self.generator.generate(str(temp_path), str(output_dir), upload.filename)
        finally:
            try:
                temp_path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not remove temporary file {temp_path}: {e}")

        logger.info(f"Image processing complete: {upload.filename}")
        return ProcessedUpload(
            original_name=upload.original_filename,
            filename=upload.filename,
            media_key=key,
            sizes=list(outputs.keys()),
            directory=str(output_dir.resolve()),
        )

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def resolve_derivative(self, size: str, filename: str, group_key: Optional[str] = None) -> Path:
        """Locate an existing derivative.

        Raises:
            ValidationError: If the filename or group key is malformed
            DerivativeNotFound: If the size is unknown or the file is absent
        """
        self._check_filename(filename)
        directory = self.group_dir(group_key)
        if size not in self.spec.labels:
            raise DerivativeNotFound(f"Unknown size: {size}")

        path = directory / derivative_name(size, filename)
        if not path.is_file():
            raise DerivativeNotFound(f"No {size} derivative for {filename}")
        return path

    def resolve_fallback(self, filename: str, group_key: Optional[str] = None) -> Path:
        """Locate an original stored directly in the group directory."""
        self._check_filename(filename)
        path = self.group_dir(group_key) / filename
        if not path.is_file():
            raise DerivativeNotFound(f"Image not found: {filename}")
        return path

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def sweep(self, max_age_days: Optional[float] = None) -> List[CleanupReport]:
        """Run the retention sweep over every group directory.

        Args:
            max_age_days: Age threshold; defaults to ``retention_days``

        Returns:
            One CleanupReport per group directory
        """
        age = self.retention_days if max_age_days is None else max_age_days
        if not self.media_root.is_dir():
            return []

        reports = []
        for directory in sorted(p for p in self.media_root.iterdir() if p.is_dir()):
            removed = self.generator.cleanup(str(directory), age)
            reports.append(
                CleanupReport(directory=str(directory), max_age_days=age, removed=removed)
            )

        total = sum(len(r.removed) for r in reports)
        logger.info(f"Retention sweep removed {total} files from {len(reports)} directories")
        return reports
