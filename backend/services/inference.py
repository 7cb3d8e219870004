from __future__ import annotations

import logging
import os
import threading
from typing import Any, Iterable

import numpy as np
from PIL import Image, UnidentifiedImageError

from models.prediction import EMOTION_LABELS, EmotionScore
from services.errors import InferenceError
from services.settings import DEFAULT_FRAME_TIMEOUT, DEFAULT_MODEL_INPUT_SIZE, PipelineSettings

logger = logging.getLogger(__name__)

# Luminance weights applied after resizing; the grey level is truncated to an 8-bit int.
_LUMA_WEIGHTS = np.array([0.2126, 0.7152, 0.0722], dtype=np.float64)


def preprocess_frame(frame_path: str, size: int = DEFAULT_MODEL_INPUT_SIZE) -> np.ndarray:
    """
    Load a frame and build the model input tensor.

    Resize to size x size (bilinear), reduce to one grey channel, scale
    0..255 to 0..1. Returns float32 with shape [1, 1, size, size].
    """
    try:
        with Image.open(frame_path) as img:
            rgb = img.convert("RGB").resize((size, size), Image.Resampling.BILINEAR)
    except (FileNotFoundError, UnidentifiedImageError, OSError) as exc:
        raise InferenceError(f"Cannot read frame {os.path.basename(frame_path)}: {exc}") from exc

    pixels = np.asarray(rgb, dtype=np.float64)
    red, green, blue = pixels[..., 0], pixels[..., 1], pixels[..., 2]
    grey = np.floor(
        _LUMA_WEIGHTS[0] * red + _LUMA_WEIGHTS[1] * green + _LUMA_WEIGHTS[2] * blue
    ).clip(0, 255)
    tensor = (grey / 255.0).astype(np.float32)
    return tensor.reshape(1, 1, size, size)


def postprocess_scores(raw: Iterable[float]) -> tuple[EmotionScore, ...]:
    """Bind raw outputs to labels by position, scale to percent and sort highest first."""
    values = np.asarray(list(raw), dtype=np.float64).reshape(-1)
    if values.shape[0] != len(EMOTION_LABELS):
        raise InferenceError(
            f"Model returned {values.shape[0]} scores, expected {len(EMOTION_LABELS)}"
        )
    scores = [
        EmotionScore(label=label, confidence=min(max(round(float(v) * 100, 2), 0.0), 100.0))
        for label, v in zip(EMOTION_LABELS, values)
    ]
    scores.sort(key=lambda s: s.confidence, reverse=True)
    return tuple(scores)


def _default_providers() -> list[str]:
    import onnxruntime as ort  # noqa: PLC0415

    available = [p for p in ort.get_available_providers() if isinstance(p, str)]
    if "CUDAExecutionProvider" in available:
        return ["CUDAExecutionProvider", "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


class EmotionInferenceEngine:
    """
    Process-wide holder of the emotion model session.

    The ONNX Runtime session is built on first use and shared by every
    caller until close(). InferenceSession.run is safe to call from several
    threads, so scoring is concurrent unless serialize_inference is set.
    In that mode a caller waits at most lock_timeout seconds for the lock;
    a session.run that never returns keeps holding it, so later calls fail
    with InferenceError instead of queueing behind it forever.

    `session` may be any object exposing run(output_names, feeds),
    get_inputs() and get_outputs(); tests inject a fake one.
    """

    def __init__(
        self,
        model_path: str,
        *,
        input_size: int = DEFAULT_MODEL_INPUT_SIZE,
        providers: Iterable[str] | None = None,
        serialize_inference: bool = False,
        lock_timeout: float = DEFAULT_FRAME_TIMEOUT,
        session: Any | None = None,
    ) -> None:
        self._model_path = model_path
        self._input_size = input_size
        self._providers = list(providers) if providers else None
        self._session = session
        self._init_lock = threading.Lock()
        self._run_lock = threading.Lock() if serialize_inference else None
        self._lock_timeout = lock_timeout
        self._input_name: str | None = None
        self._output_name: str | None = None

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> EmotionInferenceEngine:
        return cls(
            settings.model_path,
            input_size=settings.model_input_size,
            providers=settings.model_providers or None,
            serialize_inference=settings.serialize_inference,
            lock_timeout=settings.frame_timeout,
        )

    @property
    def model_path(self) -> str:
        return self._model_path

    @property
    def loaded(self) -> bool:
        return self._session is not None

    def model_available(self) -> bool:
        return self._session is not None or os.path.isfile(self._model_path)

    def ensure_loaded(self) -> Any:
        """Return the shared session, creating it on first call. Raises InferenceError."""
        if self._session is not None:
            return self._session
        with self._init_lock:
            if self._session is None:
                self._session = self._create_session()
        return self._session

    def _create_session(self) -> Any:
        if not os.path.isfile(self._model_path):
            raise InferenceError(f"Model file not found at: {self._model_path}")
        import onnxruntime as ort  # noqa: PLC0415

        providers = self._providers or _default_providers()
        try:
            session = ort.InferenceSession(self._model_path, providers=providers)
        except Exception as exc:  # noqa: BLE001
            raise InferenceError(f"Cannot load model {self._model_path}: {exc}") from exc
        logger.info(
            "[inference] Loaded model %s (providers=%s)",
            self._model_path,
            session.get_providers(),
        )
        return session

    def _io_names(self, session: Any) -> tuple[str, str]:
        if self._input_name is None or self._output_name is None:
            self._input_name = session.get_inputs()[0].name
            self._output_name = session.get_outputs()[0].name
        return self._input_name, self._output_name

    def score(self, frame_path: str) -> tuple[EmotionScore, ...]:
        """Emotion confidences for one frame, highest first."""
        session = self.ensure_loaded()
        tensor = preprocess_frame(frame_path, self._input_size)
        input_name, output_name = self._io_names(session)
        if self._run_lock is not None:
            if not self._run_lock.acquire(timeout=self._lock_timeout):
                raise InferenceError(
                    f"Timed out after {self._lock_timeout:.1f}s waiting for the model "
                    f"to score {os.path.basename(frame_path)}"
                )
            try:
                outputs = self._run(session, input_name, output_name, tensor, frame_path)
            finally:
                self._run_lock.release()
        else:
            outputs = self._run(session, input_name, output_name, tensor, frame_path)
        return postprocess_scores(outputs[0])

    @staticmethod
    def _run(session: Any, input_name: str, output_name: str, tensor: np.ndarray, frame_path: str) -> Any:
        try:
            return session.run([output_name], {input_name: tensor})
        except Exception as exc:  # noqa: BLE001
            raise InferenceError(
                f"Model rejected frame {os.path.basename(frame_path)}: {exc}"
            ) from exc

    def close(self) -> None:
        """Drop the session; the next score() call loads it again."""
        with self._init_lock:
            if self._session is not None:
                logger.info("[inference] Releasing model session for %s", self._model_path)
            self._session = None
            self._input_name = None
            self._output_name = None
