"""Tests for the media HTTP endpoints.

Every test runs against a pipeline rooted in pytest's tmp_path (see the
``pipeline`` fixture in conftest.py), so real files are written and read.
"""
import io
import os
import time
from email.utils import parsedate_to_datetime
from pathlib import Path

import pytest
from PIL import Image

from menumedia.media.schemas import DerivativeSpec, SizePreset
from menumedia.media.service import MediaPipeline

from conftest import encode_image


def upload(client, data: bytes, filename: str = "dish.jpg", content_type: str = "image/jpeg", **form):
    return client.post(
        "/media/upload",
        files={"image": (filename, data, content_type)},
        data=form,
    )


@pytest.fixture
def uploaded(api_client, pipeline):
    """Upload one 1024x768 JPEG into the 'menu' group."""
    resp = upload(api_client, encode_image(), media_key="menu")
    assert resp.status_code == 200, resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# POST /media/upload
# ---------------------------------------------------------------------------


class TestUpload:
    def test_generates_six_derivatives(self, uploaded, pipeline):
        assert uploaded["sizes"] == ["thumbnail", "small", "medium", "large", "hero", "webp"]
        assert uploaded["media_key"] == "menu"
        assert uploaded["original_name"] == "dish.jpg"

        directory = Path(uploaded["directory"])
        assert directory == (pipeline.media_root / "menu").resolve()
        names = sorted(p.name for p in directory.iterdir())
        stem = Path(uploaded["filename"]).stem
        assert names == sorted(
            [f"{label}_{uploaded['filename']}" for label in ("thumbnail", "small", "medium", "large", "hero")]
            + [f"webp_{stem}.webp"]
        )

    def test_temp_file_removed_after_success(self, uploaded, pipeline):
        assert list(pipeline.receiver.temp_dir.iterdir()) == []

    def test_urls_point_at_retrieval_endpoint(self, uploaded):
        url = uploaded["urls"]["medium"]
        assert f"/media/medium/{uploaded['filename']}" in url
        assert "media_key=menu" in url
        assert set(uploaded["urls"]) == set(uploaded["sizes"])

    def test_default_media_key(self, api_client, pipeline):
        resp = upload(api_client, encode_image(size=(300, 300)))

        assert resp.status_code == 200
        assert resp.json()["media_key"] == "general"
        assert (pipeline.media_root / "general").is_dir()

    def test_png_upload(self, api_client):
        resp = upload(api_client, encode_image(fmt="PNG", mode="RGBA"), "logo.png", "image/png")

        assert resp.status_code == 200
        assert resp.json()["filename"].endswith(".png")

    def test_oversized_upload_returns_413(self, api_client, pipeline):
        pipeline.receiver.max_upload_bytes = 1024

        resp = upload(api_client, encode_image(), media_key="menu")

        assert resp.status_code == 413
        assert resp.json()["error"] == "File too large"
        assert not (pipeline.media_root / "menu").exists()
        assert list(pipeline.receiver.temp_dir.iterdir()) == []

    def test_mismatched_type_returns_415(self, api_client, pipeline):
        resp = upload(api_client, encode_image(fmt="PNG"), "logo.png", "image/gif")

        assert resp.status_code == 415
        body = resp.json()
        assert body["error"] == "Unsupported media type"
        assert "Only image files" in body["details"]
        assert not pipeline.media_root.exists()

    def test_corrupt_image_returns_500_and_cleans_temp(self, api_client, pipeline):
        data = encode_image()
        resp = upload(api_client, data[: len(data) // 2], media_key="menu")

        assert resp.status_code == 500
        body = resp.json()
        assert body["error"] == "Failed to process image"
        assert body["details"]
        assert list(pipeline.receiver.temp_dir.iterdir()) == []
        assert list((pipeline.media_root / "menu").iterdir()) == []

    def test_missing_file_returns_400(self, api_client):
        resp = api_client.post("/media/upload", data={"media_key": "menu"})

        assert resp.status_code == 400
        assert resp.json()["details"] == "No file uploaded"

    def test_unwritable_temp_dir_returns_503(self, api_client, pipeline, tmp_path, monkeypatch):
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        broken = MediaPipeline(
            media_root=str(pipeline.media_root),
            temp_dir=str(blocker / "temp"),
        )
        monkeypatch.setattr(MediaPipeline, "_instance", broken)

        resp = upload(api_client, encode_image(), media_key="menu")

        assert resp.status_code == 503
        body = resp.json()
        assert body["error"] == "Storage unavailable"
        assert "temp" in body["details"]
        assert not (pipeline.media_root / "menu").exists()

    def test_invalid_media_key_returns_400(self, api_client, pipeline):
        resp = upload(api_client, encode_image(), media_key="../../etc")

        assert resp.status_code == 400
        assert not pipeline.receiver.temp_dir.exists()

    def test_dotted_media_key_returns_400(self, api_client, pipeline):
        resp = upload(api_client, encode_image(), media_key="menu.items")

        assert resp.status_code == 400
        assert "menu.items" in resp.json()["details"]
        assert not pipeline.media_root.exists()


# ---------------------------------------------------------------------------
# GET /media/{size}/{filename}
# ---------------------------------------------------------------------------


class TestServeDerivative:
    def test_serves_derivative_with_cache_headers(self, api_client, uploaded, pipeline):
        resp = api_client.get(f"/media/small/{uploaded['filename']}", params={"media_key": "menu"})

        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "public, max-age=31536000"
        path = pipeline.media_root / "menu" / f"small_{uploaded['filename']}"
        assert resp.headers["etag"] == f'"{int(path.stat().st_mtime * 1000)}"'
        expires = parsedate_to_datetime(resp.headers["expires"]).timestamp()
        assert expires > time.time() + 364 * 24 * 3600
        assert resp.content == path.read_bytes()

    def test_matching_etag_returns_304(self, api_client, uploaded):
        url = f"/media/thumbnail/{uploaded['filename']}"
        first = api_client.get(url, params={"media_key": "menu"})

        second = api_client.get(
            url,
            params={"media_key": "menu"},
            headers={"If-None-Match": first.headers["etag"]},
        )

        assert second.status_code == 304
        assert second.content == b""

    @pytest.mark.parametrize("header", ['W/{etag}', '"other", {etag}', "*"])
    def test_weak_or_listed_etag_returns_304(self, api_client, uploaded, header):
        url = f"/media/small/{uploaded['filename']}"
        etag = api_client.get(url, params={"media_key": "menu"}).headers["etag"]

        resp = api_client.get(
            url,
            params={"media_key": "menu"},
            headers={"If-None-Match": header.format(etag=etag)},
        )

        assert resp.status_code == 304

    def test_stale_etag_returns_body(self, api_client, uploaded):
        resp = api_client.get(
            f"/media/small/{uploaded['filename']}",
            params={"media_key": "menu"},
            headers={"If-None-Match": '"1", W/"2"'},
        )

        assert resp.status_code == 200
        assert resp.content

    def test_webp_derivative_resolved_from_original_name(self, api_client, uploaded):
        resp = api_client.get(f"/media/webp/{uploaded['filename']}", params={"media_key": "menu"})

        assert resp.status_code == 200
        assert resp.content[:4] == b"RIFF"
        assert resp.content[8:12] == b"WEBP"

    def test_falls_back_to_stored_original(self, api_client, pipeline):
        directory = pipeline.media_root / "gallery"
        directory.mkdir(parents=True)
        (directory / "legacy.jpg").write_bytes(encode_image(size=(50, 50)))

        resp = api_client.get("/media/large/legacy.jpg", params={"media_key": "gallery"})

        assert resp.status_code == 200
        assert resp.content == (directory / "legacy.jpg").read_bytes()

    def test_missing_returns_404(self, api_client, pipeline):
        resp = api_client.get("/media/medium/nothing.jpg")

        assert resp.status_code == 404
        assert resp.json()["error"] == "Image not found"

    def test_unknown_size_without_original_returns_404(self, api_client, uploaded):
        resp = api_client.get(f"/media/poster/{uploaded['filename']}", params={"media_key": "menu"})

        assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Markup, static files, cleanup, health
# ---------------------------------------------------------------------------


class TestMarkupAndStatic:
    def test_markup_references_derivatives(self, api_client, uploaded):
        filename = uploaded["filename"]
        resp = api_client.get(f"/media/markup/{filename}", params={"media_key": "menu", "alt": "Our dish"})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/html")
        assert f"/uploads/website/menu/medium_{filename}" in resp.text
        assert 'alt="Our dish"' in resp.text

    def test_markup_follows_configured_presets(self, api_client, pipeline, monkeypatch):
        spec = DerivativeSpec(presets=(
            SizePreset(label="card", width=320, height=240),
            SizePreset(label="banner", width=1600, height=400),
        ))
        custom = MediaPipeline(
            media_root=str(pipeline.media_root),
            temp_dir=str(pipeline.receiver.temp_dir),
            spec=spec,
        )
        monkeypatch.setattr(MediaPipeline, "_instance", custom)
        filename = upload(api_client, encode_image(), media_key="menu").json()["filename"]

        resp = api_client.get(f"/media/markup/{filename}", params={"media_key": "menu"})

        assert resp.status_code == 200
        assert "medium_" not in resp.text
        for label in ("card", "banner"):
            assert f"/uploads/website/menu/{label}_{filename}" in resp.text
            assert api_client.get(f"/uploads/website/menu/{label}_{filename}").status_code == 200

    def test_markup_urls_are_served(self, api_client, uploaded):
        resp = api_client.get(f"/uploads/website/menu/large_{uploaded['filename']}")

        assert resp.status_code == 200
        assert resp.headers["cache-control"].startswith("public")
        with Image.open(io.BytesIO(resp.content)) as image:
            assert image.size == (1200, 900)


class TestCleanupEndpoint:
    def test_removes_stale_derivatives(self, api_client, uploaded, pipeline):
        directory = pipeline.media_root / "menu"
        stale = directory / f"hero_{uploaded['filename']}"
        then = time.time() - 45 * 24 * 3600
        os.utime(stale, (then, then))

        resp = api_client.post("/media/cleanup", params={"max_age_days": 30})

        assert resp.status_code == 200
        body = resp.json()
        assert body["removed_count"] == 1
        assert body["reports"][0]["removed"] == [stale.name]
        assert not stale.exists()
        assert len(list(directory.iterdir())) == 5

    def test_default_age_keeps_fresh_files(self, api_client, uploaded):
        resp = api_client.post("/media/cleanup")

        assert resp.status_code == 200
        assert resp.json()["removed_count"] == 0

    def test_negative_age_rejected(self, api_client):
        resp = api_client.post("/media/cleanup", params={"max_age_days": -1})

        assert resp.status_code == 422


def test_health(api_client):
    assert api_client.get("/health").json() == {"status": "ok"}
