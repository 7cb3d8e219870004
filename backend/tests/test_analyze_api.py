"""Tests for POST /api/analyze and GET /health."""

from __future__ import annotations

import io
import os
from dataclasses import replace
from unittest.mock import patch

import httpx
import pytest
from conftest import FakeSession
from fastapi.testclient import TestClient
from PIL import Image

from app.main import create_app
from services.inference import EmotionInferenceEngine
from services.pipeline import AnalysisPipeline
from services.settings import PipelineSettings


def _jpeg_bytes(value: int = 128) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (64, 64), (value, value, value)).save(buf, format="JPEG")
    return buf.getvalue()


@pytest.fixture
def client(settings: PipelineSettings, fake_engine: EmotionInferenceEngine):
    with TestClient(create_app(settings, fake_engine)) as test_client:
        yield test_client


def test_health_reports_dependencies(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert isinstance(body["ffmpeg"], bool)
    assert body["model"] is True
    assert "timestamp" in body


def test_analyze_image_success(client: TestClient, settings: PipelineSettings) -> None:
    response = client.post(
        "/api/analyze",
        files={"media": ("suspect.jpg", _jpeg_bytes(), "image/jpeg")},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "success"
    assert body["originalFilename"] == "suspect.jpg"
    assert len(body["emotions"]) == 1
    frame = body["emotions"][0]
    assert frame["file"].endswith(".jpg")
    assert len(frame["prediction"]) == 8
    confidences = [p["confidence"] for p in frame["prediction"]]
    assert confidences == sorted(confidences, reverse=True)
    metrics = body["metrics"]
    assert set(metrics) == {"criminalLikelihood", "angerAverage", "fearAverage"}
    assert all(v.endswith("%") for v in metrics.values())
    assert "message" not in body
    assert body["timestamp"]
    # The stored upload is gone once the response is out.
    assert os.listdir(settings.upload_dir) == []


def test_analyze_partial_success_keeps_good_frames(
    client: TestClient, settings: PipelineSettings, fake_engine: EmotionInferenceEngine
) -> None:
    from models.media import FrameHandle

    class _TwoFrameExtractor:
        def extract(self, asset, max_frames, *, janitor=None, run_id=None):  # noqa: ANN001
            good = os.path.join(settings.scratch_root, "frame-1.jpg")
            bad = os.path.join(settings.scratch_root, "frame-2.jpg")
            with open(good, "wb") as fh:
                fh.write(_jpeg_bytes())
            with open(bad, "wb") as fh:
                fh.write(b"garbage")
            return [
                FrameHandle(source_asset=asset, index=0, path=good),
                FrameHandle(source_asset=asset, index=1, path=bad),
            ]

    client.app.state.pipeline = AnalysisPipeline(settings, fake_engine, extractor=_TwoFrameExtractor())
    response = client.post(
        "/api/analyze",
        files={"media": ("clip.mp4", b"fake video", "video/mp4")},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "partial_success"
    assert len(body["emotions"]) == 2
    assert body["emotions"][1]["prediction"] == [{"emotion": "Error", "confidence": 0.0}]
    assert len(body["emotions"][0]["prediction"]) == 8
    assert os.listdir(settings.scratch_root) == []


def test_analyze_rejects_unsupported_type(client: TestClient, settings: PipelineSettings) -> None:
    response = client.post(
        "/api/analyze",
        files={"media": ("notes.txt", b"hello", "text/plain")},
    )
    assert response.status_code == 415
    assert response.json()["status"] == "error"
    assert os.listdir(settings.upload_dir) == []


def test_analyze_rejects_oversized_upload(settings: PipelineSettings, fake_engine: EmotionInferenceEngine) -> None:
    small = replace(settings, max_upload_bytes=100)
    with TestClient(create_app(small, fake_engine)) as client:
        response = client.post(
            "/api/analyze",
            files={"media": ("big.jpg", _jpeg_bytes(), "image/jpeg")},
        )
    assert response.status_code == 413
    assert response.json()["message"] == "File too large"
    assert os.listdir(settings.upload_dir) == []


def test_analyze_requires_media_field(client: TestClient) -> None:
    response = client.post("/api/analyze", files={"other": ("a.jpg", _jpeg_bytes(), "image/jpeg")})
    assert response.status_code == 422


def test_missing_model_maps_to_error_response(settings: PipelineSettings) -> None:
    engine = EmotionInferenceEngine(os.path.join(settings.upload_dir, "..", "missing.onnx"))
    with TestClient(create_app(settings, engine)) as client:
        response = client.post(
            "/api/analyze",
            files={"media": ("suspect.png", _jpeg_bytes(), "image/png")},
        )

    assert response.status_code == 422
    body = response.json()
    assert body["status"] == "error"
    assert body["emotions"] == []
    assert "Model file not found" in body["message"]
    assert body["metrics"]["criminalLikelihood"] == "0.00%"
    assert os.listdir(settings.upload_dir) == []


def test_pipeline_crash_maps_to_500(client: TestClient) -> None:
    with patch.object(AnalysisPipeline, "run", side_effect=RuntimeError("kaboom")):
        response = client.post(
            "/api/analyze",
            files={"media": ("suspect.jpg", _jpeg_bytes(), "image/jpeg")},
        )
    assert response.status_code == 500
    assert response.json() == {"status": "error", "message": "Internal server error", "details": "kaboom"}


def test_mime_and_extension_disagreement_is_logged(
    client: TestClient, fake_session: FakeSession, caplog: pytest.LogCaptureFixture
) -> None:
    response = client.post(
        "/api/analyze",
        files={"media": ("clip.jpg", _jpeg_bytes(), "video/mp4")},
    )
    # Extension wins: the file is analysed as an image.
    assert response.status_code == 200
    assert fake_session.calls == 1
    assert any("disagrees" in r.getMessage() for r in caplog.records)


@pytest.mark.anyio
async def test_analyze_over_asgi_transport(settings: PipelineSettings, fake_engine: EmotionInferenceEngine) -> None:
    app = create_app(settings, fake_engine)
    app.state.settings = settings
    app.state.engine = fake_engine
    app.state.pipeline = AnalysisPipeline(settings, fake_engine)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        response = await http.post(
            "/api/analyze",
            files={"media": ("a.gif", _jpeg_bytes(), "image/gif")},
        )
    assert response.status_code == 200
    assert response.json()["status"] == "success"
