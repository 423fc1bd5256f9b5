"""Pydantic schemas for the media pipeline.

This module defines the data models shared by the upload receiver, the
derivative generator and the HTTP layer:
- SizePreset: one target box (label, width, height)
- DerivativeSpec: the immutable preset set injected into the generator
- UploadedFile: handle for a temporary upload awaiting processing
- ProcessedUpload: API response after a successful upload
- CleanupReport: result of one retention sweep over a group directory

Derivatives are stored in group-scoped directories
(``<media_root>/<group_key>/``) named ``<label>_<filename>``, plus one
``webp_<stem>.webp`` file per upload.
"""
from typing import Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SizePreset(BaseModel):
    """Target box for one derivative, filled with a cover fit."""
    model_config = ConfigDict(frozen=True)

    label: str = Field(..., min_length=1, pattern=r"^[A-Za-z0-9-]+$", description="Size label")
    width: int = Field(..., gt=0, description="Target width in pixels")
    height: int = Field(..., gt=0, description="Target height in pixels")


DEFAULT_PRESETS: Tuple[SizePreset, ...] = (
    SizePreset(label="thumbnail", width=150, height=150),
    SizePreset(label="small", width=400, height=300),
    SizePreset(label="medium", width=800, height=600),
    SizePreset(label="large", width=1200, height=900),
    SizePreset(label="hero", width=1920, height=1080),
)

WEBP_LABEL = "webp"


class DerivativeSpec(BaseModel):
    """Immutable description of every derivative produced per upload.

    Each preset yields one progressive JPEG; ``webp`` yields one additional
    modern-format file. A generator holds one spec for its whole lifetime.
    """
    model_config = ConfigDict(frozen=True)

    presets: Tuple[SizePreset, ...] = DEFAULT_PRESETS
    webp: SizePreset = SizePreset(label=WEBP_LABEL, width=800, height=600)
    raster_quality: int = Field(85, ge=1, le=100)
    webp_quality: int = Field(80, ge=1, le=100)

    @model_validator(mode="after")
    def _unique_labels(self) -> "DerivativeSpec":
        labels = [p.label for p in self.presets]
        if not labels:
            raise ValueError("at least one size preset is required")
        if len(set(labels)) != len(labels):
            raise ValueError(f"duplicate size labels: {labels}")
        if self.webp.label != WEBP_LABEL:
            raise ValueError(f"modern-format preset must be labelled '{WEBP_LABEL}'")
        if WEBP_LABEL in labels:
            raise ValueError(f"'{WEBP_LABEL}' is reserved for the modern-format derivative")
        return self

    @property
    def labels(self) -> List[str]:
        """Every output label in generation order."""
        return [p.label for p in self.presets] + [WEBP_LABEL]

    def get(self, label: str) -> SizePreset:
        if label == WEBP_LABEL:
            return self.webp
        for preset in self.presets:
            if preset.label == label:
                return preset
        raise KeyError(label)


class UploadedFile(BaseModel):
    """A received upload sitting in temporary storage.

    Owned by the receiver until handed to the pipeline, which deletes
    ``path`` once processing finishes either way.
    """
    path: str = Field(..., description="Temporary file path")
    filename: str = Field(..., description="Generated collision-resistant filename")
    original_filename: str = Field(..., description="Filename declared by the client")
    content_type: str = Field(..., description="Declared MIME type")
    size_bytes: int = Field(..., ge=0, description="Bytes written")


class ProcessedUpload(BaseModel):
    """Response after a successful upload and derivative generation."""
    original_name: str = Field(..., description="Original filename")
    filename: str = Field(..., description="Generated filename shared by all derivatives")
    media_key: str = Field(..., description="Group key the derivatives were stored under")
    sizes: List[str] = Field(..., description="Generated labels in generation order")
    directory: str = Field(..., description="Directory holding the derivatives")
    urls: Dict[str, str] = Field(default_factory=dict, description="Retrieval URL per label")


class CleanupReport(BaseModel):
    """Files removed by one retention sweep."""
    directory: str
    max_age_days: float
    removed: List[str] = Field(default_factory=list)


class CleanupResponse(BaseModel):
    reports: List[CleanupReport]
    removed_count: int
