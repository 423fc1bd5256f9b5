"""Shared test fixtures and configuration for backend tests."""
import io
from pathlib import Path
from typing import Callable, Tuple

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from menumedia.config import AppConfig, MediaSettings, reset_config, set_config
from menumedia.main import app
from menumedia.media.service import MediaPipeline


def encode_image(
    size: Tuple[int, int] = (1024, 768),
    fmt: str = "JPEG",
    mode: str = "RGB",
    color=(200, 80, 40),
) -> bytes:
    """Encode a solid-color image in memory."""
    if mode == "RGBA" and len(color) == 3:
        color = color + (128,)
    image = Image.new(mode, size, color)
    buffer = io.BytesIO()
    image.save(buffer, fmt)
    return buffer.getvalue()


@pytest.fixture
def make_image(tmp_path) -> Callable[..., Path]:
    """Write a synthetic image to disk and return its path."""
    def _make(name: str = "source.jpg", size=(1024, 768), fmt="JPEG", mode="RGB") -> Path:
        path = tmp_path / "sources" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(encode_image(size, fmt, mode))
        return path
    return _make


@pytest.fixture
def media_settings(tmp_path) -> MediaSettings:
    """Media settings rooted in a per-test temporary directory."""
    return MediaSettings(
        media_root=str(tmp_path / "uploads" / "website"),
        temp_dir=str(tmp_path / "uploads" / "temp"),
    )


@pytest.fixture
def pipeline(media_settings) -> MediaPipeline:
    """Install a pipeline built from *media_settings* as the singleton."""
    set_config(AppConfig(media=media_settings))
    MediaPipeline.reset_instance()
    instance = MediaPipeline.get_instance()
    yield instance
    MediaPipeline.reset_instance()
    reset_config()


@pytest.fixture
def api_client(pipeline):
    """Provide a TestClient for the main FastAPI app.

    Depends on *pipeline* so every request hits the temporary media root.
    """
    return TestClient(app)
