"""Exception classes for the media pipeline.

Every error carries the HTTP status and short title the API layer renders
as ``{"error": title, "details": message}``.
"""


class MediaError(Exception):
    """
    Base exception class for all media pipeline errors.
    """
    status_code = 500
    title = "Media error"

    def __init__(self, message: str, title: str = None) -> None:
        super().__init__(message)
        if title:
            self.title = title

    @property
    def details(self) -> str:
        return str(self)


class ValidationError(MediaError):
    """
    Raised when an upload or request parameter is rejected before storage.
    """
    status_code = 400
    title = "Invalid request"


class PayloadTooLarge(ValidationError):
    """
    Raised when an upload exceeds the configured size limit.
    """
    status_code = 413
    title = "File too large"


class UnsupportedMediaType(ValidationError):
    """
    Raised when the extension or declared MIME type is not an allowed image type.
    """
    status_code = 415
    title = "Unsupported media type"


class StorageUnavailable(MediaError):
    """
    Raised when a storage directory cannot be created or written.
    """
    status_code = 503
    title = "Storage unavailable"


class ImageProcessingFailed(MediaError):
    """
    Raised when decoding, resizing or encoding any derivative fails.
    """
    status_code = 500
    title = "Failed to process image"


class DerivativeNotFound(MediaError):
    """
    Raised when no derivative (and no fallback original) exists for a request.
    """
    status_code = 404
    title = "Image not found"
