from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from typing import Callable, Protocol, Sequence

from models.media import FrameHandle
from models.prediction import EmotionScore, FramePrediction
from services.errors import InferenceError
from services.settings import DEFAULT_FRAME_TIMEOUT, DEFAULT_WORKERS, PipelineSettings

logger = logging.getLogger(__name__)


class FrameScorer(Protocol):
    def score(self, frame_path: str) -> tuple[EmotionScore, ...]: ...


class FrameWorkerPool:
    """
    Scores a batch of frames with at most worker_count frames in flight.

    Results land in a slot per input position, so the output order always
    matches the input order. Any failure, including a frame that exceeds
    frame_timeout, becomes a failed FramePrediction for that frame only.

    Each frame runs on its own daemon thread and its deadline starts when
    that thread starts. A timed-out frame is abandoned: its thread is not
    joined (Python cannot interrupt a blocked session.run) and its place
    goes to the next queued frame. Abandoned threads never block
    interpreter shutdown.
    """

    def __init__(
        self,
        scorer: FrameScorer,
        *,
        worker_count: int = DEFAULT_WORKERS,
        frame_timeout: float = DEFAULT_FRAME_TIMEOUT,
    ) -> None:
        if worker_count <= 0:
            raise ValueError("worker_count must be > 0")
        self._scorer = scorer
        self._worker_count = worker_count
        self._frame_timeout = frame_timeout

    @classmethod
    def from_settings(cls, scorer: FrameScorer, settings: PipelineSettings) -> FrameWorkerPool:
        return cls(scorer, worker_count=settings.worker_count, frame_timeout=settings.frame_timeout)

    def _score_one(self, frame: FrameHandle) -> FramePrediction:
        try:
            scores = self._scorer.score(frame.path)
        except InferenceError as exc:
            logger.warning("[frame_workers] Frame %d (%s) failed: %s", frame.index, frame.path, exc)
            return FramePrediction.failed(frame, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "[frame_workers] Frame %d (%s) raised unexpectedly: %s",
                frame.index,
                frame.path,
                exc,
                exc_info=True,
            )
            return FramePrediction.failed(frame, f"{type(exc).__name__}: {exc}")
        return FramePrediction(frame=frame, scores=scores)

    def run_all(
        self,
        frames: Sequence[FrameHandle],
        *,
        on_frame_done: Callable[[FrameHandle], None] | None = None,
    ) -> list[FramePrediction]:
        results: list[FramePrediction | None] = [None] * len(frames)
        if not frames:
            return []

        queued = deque(enumerate(frames))
        running: dict[int, float] = {}  # slot -> deadline (monotonic)
        finished: queue.Queue[tuple[int, FramePrediction]] = queue.Queue()

        def work(slot: int, frame: FrameHandle) -> None:
            finished.put((slot, self._score_one(frame)))

        def settle(slot: int, prediction: FramePrediction) -> None:
            results[slot] = prediction
            if on_frame_done is not None:
                on_frame_done(frames[slot])

        while queued or running:
            while queued and len(running) < self._worker_count:
                slot, frame = queued.popleft()
                running[slot] = time.monotonic() + self._frame_timeout
                threading.Thread(
                    target=work,
                    args=(slot, frame),
                    name=f"frame-worker-{frame.index}",
                    daemon=True,
                ).start()

            wait = max(0.0, min(running.values()) - time.monotonic())
            try:
                slot, prediction = finished.get(timeout=wait)
            except queue.Empty:
                pass
            else:
                # Late results from abandoned frames are dropped.
                if running.pop(slot, None) is not None:
                    settle(slot, prediction)

            now = time.monotonic()
            for slot, deadline in list(running.items()):
                if deadline > now:
                    continue
                del running[slot]
                frame = frames[slot]
                logger.warning(
                    "[frame_workers] Frame %d timed out after %.1fs; abandoning its worker",
                    frame.index,
                    self._frame_timeout,
                )
                settle(slot, FramePrediction.failed(frame, f"Inference timed out after {self._frame_timeout:.1f}s"))

        ok = sum(1 for r in results if r is not None and r.ok)
        logger.info("[frame_workers] Scored %d/%d frames", ok, len(frames))
        return [r for r in results if r is not None]
