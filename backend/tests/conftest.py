from __future__ import annotations

import os
import shutil
import threading
from types import SimpleNamespace
from typing import Any

import av
import numpy as np
import pytest
from PIL import Image

from models.prediction import EMOTION_LABELS
from services.inference import EmotionInferenceEngine
from services.settings import PipelineSettings

requires_ffmpeg = pytest.mark.skipif(shutil.which("ffmpeg") is None, reason="ffmpeg binary not on PATH")


class FakeSession:
    """
    Stand-in for onnxruntime.InferenceSession.

    Output is a deterministic function of the input tensor's mean so the
    same frame always scores the same and different frames differ.
    """

    def __init__(self, *, delay: float = 0.0, n_outputs: int = len(EMOTION_LABELS)) -> None:
        self.calls = 0
        self.delay = delay
        self.n_outputs = n_outputs
        self.seen_shapes: list[tuple[int, ...]] = []
        self._lock = threading.Lock()

    def get_inputs(self) -> list[Any]:
        return [SimpleNamespace(name="Input3")]

    def get_outputs(self) -> list[Any]:
        return [SimpleNamespace(name="Plus692_Output_0")]

    def run(self, output_names: list[str], feeds: dict[str, np.ndarray]) -> list[np.ndarray]:
        assert output_names == ["Plus692_Output_0"]
        tensor = feeds["Input3"]
        with self._lock:
            self.calls += 1
            self.seen_shapes.append(tuple(tensor.shape))
        if self.delay:
            threading.Event().wait(self.delay)
        mean = float(tensor.mean())
        raw = np.array([[mean * (i + 1) / self.n_outputs for i in range(self.n_outputs)]], dtype=np.float32)
        return [raw]


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def fake_engine(fake_session: FakeSession) -> EmotionInferenceEngine:
    return EmotionInferenceEngine("unused.onnx", session=fake_session)


@pytest.fixture
def settings(tmp_path) -> PipelineSettings:
    scratch = tmp_path / "scratch"
    uploads = tmp_path / "uploads"
    scratch.mkdir()
    uploads.mkdir()
    return PipelineSettings(
        model_path=str(tmp_path / "model.onnx"),
        scratch_root=str(scratch),
        upload_dir=str(uploads),
        frame_timeout=5.0,
        transcoder_timeout=30.0,
    )


def write_solid_jpeg(path: os.PathLike[str] | str, value: int = 128, size: tuple[int, int] = (64, 64)) -> str:
    Image.new("RGB", size, (value, value, value)).save(path, format="JPEG")
    return os.fspath(path)


def write_test_video(path: os.PathLike[str] | str, *, seconds: float = 2.0, fps: int = 10) -> str:
    """Encode a short MP4 whose frames fade from dark to light."""
    width, height = 64, 48
    n_frames = int(seconds * fps)
    with av.open(os.fspath(path), "w", format="mp4") as container:
        stream = container.add_stream("mpeg4", rate=fps)
        stream.width = width
        stream.height = height
        stream.pix_fmt = "yuv420p"
        for i in range(n_frames):
            level = int(255 * i / max(n_frames - 1, 1))
            rgb = np.full((height, width, 3), level, dtype=np.uint8)
            frame = av.VideoFrame.from_ndarray(rgb, format="rgb24").reformat(format="yuv420p")
            for packet in stream.encode(frame):
                container.mux(packet)
        for packet in stream.encode():
            container.mux(packet)
    return os.fspath(path)
