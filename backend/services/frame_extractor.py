"""Frame extraction: the image itself, or evenly spaced stills sampled from a video with ffmpeg."""

from __future__ import annotations

import logging
import os
import re
import subprocess
import tempfile
import uuid
from typing import TYPE_CHECKING

import av
import av.error

from models.media import FrameHandle, MediaAsset, MediaKind
from services.errors import ExtractionError
from services.settings import (
    DEFAULT_FFMPEG,
    DEFAULT_FRAME_SIZE,
    DEFAULT_MAX_FRAMES,
    DEFAULT_TRANSCODER_TIMEOUT,
    PipelineSettings,
)

if TYPE_CHECKING:
    from services.janitor import ResourceJanitor

logger = logging.getLogger(__name__)

FRAME_EXTENSION = ".jpg"
FRAME_PATTERN = "frame-{number}" + FRAME_EXTENSION
_FRAME_NUMBER_RE = re.compile(r"frame-(\d+)\.jpg$")
_STDERR_TAIL_CHARS = 800


def probe_duration(video_path: str) -> float:
    """Media duration in seconds, read from the container (or its first video stream)."""
    try:
        with av.open(video_path) as container:
            if container.duration is not None and container.duration > 0:
                return float(container.duration) / av.time_base
            for stream in container.streams.video:
                if stream.duration is not None and stream.time_base is not None:
                    return float(stream.duration * stream.time_base)
    except (av.error.FFmpegError, OSError) as exc:
        raise ExtractionError(f"Cannot read video {os.path.basename(video_path)}: {exc}") from exc
    raise ExtractionError(f"Unknown duration for video {os.path.basename(video_path)}")


def sample_timemarks(duration: float, count: int) -> list[float]:
    """Evenly spaced timestamps at (i+1)/(count+1) of the duration, skipping both ends."""
    if count <= 0:
        return []
    step = duration / (count + 1)
    return [round(step * (i + 1), 3) for i in range(count)]


def frame_number(filename: str) -> int | None:
    match = _FRAME_NUMBER_RE.search(filename)
    return int(match.group(1)) if match else None


def build_ffmpeg_command(
    ffmpeg_path: str,
    video_path: str,
    timemarks: list[float],
    output_dir: str,
    frame_size: tuple[int, int],
) -> list[str]:
    """One process: an input seek per timemark, each mapped to a single-frame JPEG output."""
    width, height = frame_size
    cmd = [ffmpeg_path, "-hide_banner", "-loglevel", "error", "-y"]
    for ts in timemarks:
        cmd += ["-ss", f"{ts:.3f}", "-i", video_path]
    for i in range(len(timemarks)):
        out_path = os.path.join(output_dir, FRAME_PATTERN.format(number=i + 1))
        cmd += ["-map", f"{i}:v:0", "-frames:v", "1", "-s", f"{width}x{height}", out_path]
    return cmd


class FrameExtractor:
    """
    Turns a MediaAsset into an ordered list of FrameHandles.

    Images are their own single frame. Videos are sampled into a fresh
    scratch directory that is handed to the janitor as soon as it exists;
    the extractor itself never deletes anything.
    """

    def __init__(
        self,
        *,
        ffmpeg_path: str = DEFAULT_FFMPEG,
        frame_size: tuple[int, int] = DEFAULT_FRAME_SIZE,
        timeout: float = DEFAULT_TRANSCODER_TIMEOUT,
        scratch_root: str | None = None,
    ) -> None:
        self._ffmpeg_path = ffmpeg_path
        self._frame_size = frame_size
        self._timeout = timeout
        self._scratch_root = scratch_root or tempfile.gettempdir()

    @classmethod
    def from_settings(cls, settings: PipelineSettings) -> FrameExtractor:
        return cls(
            ffmpeg_path=settings.ffmpeg_path,
            frame_size=settings.frame_size,
            timeout=settings.transcoder_timeout,
            scratch_root=settings.scratch_root,
        )

    def extract(
        self,
        asset: MediaAsset,
        max_frames: int = DEFAULT_MAX_FRAMES,
        *,
        janitor: ResourceJanitor | None = None,
        run_id: str | None = None,
    ) -> list[FrameHandle]:
        if max_frames <= 0:
            raise ValueError("max_frames must be > 0")
        if asset.kind is MediaKind.IMAGE:
            return [FrameHandle(source_asset=asset, index=0, path=asset.path)]

        scratch_dir = self._make_scratch_dir(run_id or uuid.uuid4().hex)
        if janitor is not None:
            janitor.register_dir(scratch_dir)

        duration = probe_duration(asset.path)
        timemarks = sample_timemarks(duration, max_frames)
        cmd = build_ffmpeg_command(self._ffmpeg_path, asset.path, timemarks, scratch_dir, self._frame_size)
        logger.info(
            "[frame_extractor] Sampling %d frames from %s (duration=%.2fs) into %s",
            len(timemarks),
            os.path.basename(asset.path),
            duration,
            scratch_dir,
        )
        logger.debug("[frame_extractor] ffmpeg command: %s", " ".join(cmd))
        self._run_transcoder(cmd)

        paths = self._collect_frames(scratch_dir, max_frames)
        if not paths:
            raise ExtractionError(f"Transcoder produced no frames for {os.path.basename(asset.path)}")
        logger.info("[frame_extractor] Extracted %d frames", len(paths))
        return [FrameHandle(source_asset=asset, index=i, path=p) for i, p in enumerate(paths)]

    def _make_scratch_dir(self, run_id: str) -> str:
        os.makedirs(self._scratch_root, exist_ok=True)
        return tempfile.mkdtemp(prefix=f"frames_{run_id}_", dir=self._scratch_root)

    def _run_transcoder(self, cmd: list[str]) -> None:
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=self._timeout)
        except subprocess.TimeoutExpired as exc:
            raise ExtractionError(f"Transcoder timed out after {self._timeout:.0f}s") from exc
        except OSError as exc:
            raise ExtractionError(f"Transcoder could not start ({cmd[0]}): {exc}") from exc
        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()[-_STDERR_TAIL_CHARS:]
            raise ExtractionError(f"Transcoder exited with code {proc.returncode}: {stderr}")

    @staticmethod
    def _collect_frames(scratch_dir: str, max_frames: int) -> list[str]:
        numbered: list[tuple[int, str]] = []
        for name in os.listdir(scratch_dir):
            number = frame_number(name)
            if number is None:
                continue
            path = os.path.join(scratch_dir, name)
            if os.path.getsize(path) == 0:
                continue
            numbered.append((number, path))
        numbered.sort()
        return [path for _, path in numbered[:max_frames]]
