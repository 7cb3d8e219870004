"""Runtime configuration for the analysis pipeline, read from the environment."""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

DEFAULT_MODEL_PATH = "model.onnx"
DEFAULT_FFMPEG = "ffmpeg"
DEFAULT_MAX_FRAMES = 5
DEFAULT_FRAME_SIZE = (320, 240)
DEFAULT_MODEL_INPUT_SIZE = 64
DEFAULT_WORKERS = 2
DEFAULT_TRANSCODER_TIMEOUT = 60.0
DEFAULT_FRAME_TIMEOUT = 15.0
DEFAULT_UPLOAD_DIR = "uploads"
DEFAULT_MAX_UPLOAD_BYTES = 100 * 1024 * 1024  # 100MB

ALLOWED_MIME_TYPES = (
    "image/jpeg",
    "image/png",
    "image/gif",
    "video/mp4",
    "video/quicktime",
)


def _env_str(name: str, default: str) -> str:
    return os.environ.get(name, "").strip() or default


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("[settings] %s=%r is not an integer; using %d", name, raw, default)
        return default
    if value <= 0:
        logger.warning("[settings] %s must be > 0 (got %d); using %d", name, value, default)
        return default
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("[settings] %s=%r is not a number; using %.1f", name, raw, default)
        return default
    if value <= 0:
        logger.warning("[settings] %s must be > 0 (got %s); using %.1f", name, value, default)
        return default
    return value


def _env_truthy(name: str, default: bool = False) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _parse_size(name: str, default: tuple[int, int]) -> tuple[int, int]:
    """Parse "WIDTHxHEIGHT"."""
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    try:
        width, height = (int(part) for part in raw.split("x", 1))
    except ValueError:
        logger.warning("[settings] %s=%r is not WIDTHxHEIGHT; using %dx%d", name, raw, *default)
        return default
    if width <= 0 or height <= 0:
        logger.warning("[settings] %s=%r must be positive; using %dx%d", name, raw, *default)
        return default
    return width, height


def resolve_ffmpeg(value: str) -> str:
    """
    FFMPEG_PATH may name the binary itself or a directory holding it.
    A bare name is looked up on PATH by the OS at spawn time.
    """
    if os.path.isdir(value):
        return os.path.join(value, "ffmpeg")
    return value


@dataclass(frozen=True)
class PipelineSettings:
    model_path: str = DEFAULT_MODEL_PATH
    model_providers: tuple[str, ...] = ()
    serialize_inference: bool = False
    ffmpeg_path: str = DEFAULT_FFMPEG
    max_frames: int = DEFAULT_MAX_FRAMES
    frame_size: tuple[int, int] = DEFAULT_FRAME_SIZE
    model_input_size: int = DEFAULT_MODEL_INPUT_SIZE
    worker_count: int = DEFAULT_WORKERS
    transcoder_timeout: float = DEFAULT_TRANSCODER_TIMEOUT
    frame_timeout: float = DEFAULT_FRAME_TIMEOUT
    scratch_root: str = field(default_factory=tempfile.gettempdir)
    upload_dir: str = DEFAULT_UPLOAD_DIR
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    allowed_mime_types: tuple[str, ...] = ALLOWED_MIME_TYPES

    @classmethod
    def from_env(cls) -> PipelineSettings:
        providers = tuple(
            p.strip() for p in os.environ.get("EMOTION_MODEL_PROVIDERS", "").split(",") if p.strip()
        )
        return cls(
            model_path=_env_str("EMOTION_MODEL_PATH", DEFAULT_MODEL_PATH),
            model_providers=providers,
            serialize_inference=_env_truthy("EMOTION_SERIALIZE_INFERENCE"),
            ffmpeg_path=resolve_ffmpeg(_env_str("FFMPEG_PATH", DEFAULT_FFMPEG)),
            max_frames=_env_int("ANALYSIS_MAX_FRAMES", DEFAULT_MAX_FRAMES),
            frame_size=_parse_size("ANALYSIS_FRAME_SIZE", DEFAULT_FRAME_SIZE),
            model_input_size=_env_int("ANALYSIS_MODEL_INPUT_SIZE", DEFAULT_MODEL_INPUT_SIZE),
            worker_count=_env_int("ANALYSIS_WORKERS", DEFAULT_WORKERS),
            transcoder_timeout=_env_float("ANALYSIS_TRANSCODER_TIMEOUT", DEFAULT_TRANSCODER_TIMEOUT),
            frame_timeout=_env_float("ANALYSIS_FRAME_TIMEOUT", DEFAULT_FRAME_TIMEOUT),
            scratch_root=_env_str("ANALYSIS_SCRATCH_DIR", tempfile.gettempdir()),
            upload_dir=_env_str("UPLOAD_DIR", DEFAULT_UPLOAD_DIR),
            max_upload_bytes=_env_int("UPLOAD_MAX_BYTES", DEFAULT_MAX_UPLOAD_BYTES),
        )

    def ffmpeg_available(self) -> bool:
        return shutil.which(self.ffmpeg_path) is not None
