"""Image upload and derivative module for the restaurant website.

Uploaded images are validated, parked in a temporary directory, and turned
into five resized JPEG derivatives plus one WebP, stored per group key:

    <media_root>/<media_key>/<label>_<filename>
    <media_root>/<media_key>/webp_<stem>.webp

Supported upload types: jpeg, jpg, png, gif, webp, at most 10MB.
Stale derivatives are removed by an age-based retention sweep.
"""

from .errors import (
    DerivativeNotFound,
    ImageProcessingFailed,
    MediaError,
    PayloadTooLarge,
    StorageUnavailable,
    UnsupportedMediaType,
    ValidationError,
)
from .generator import DerivativeGenerator, derivative_name
from .receiver import UploadReceiver, check_image_type
from .schemas import DEFAULT_PRESETS, DerivativeSpec, SizePreset, UploadedFile

__all__ = [
    "DEFAULT_PRESETS",
    "DerivativeGenerator",
    "DerivativeNotFound",
    "DerivativeSpec",
    "ImageProcessingFailed",
    "MediaError",
    "PayloadTooLarge",
    "SizePreset",
    "StorageUnavailable",
    "UnsupportedMediaType",
    "UploadReceiver",
    "UploadedFile",
    "ValidationError",
    "check_image_type",
    "derivative_name",
]
