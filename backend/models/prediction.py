from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .media import FrameHandle

# Positional binding to the model's output vector; fixed by training.
EMOTION_LABELS: tuple[str, ...] = (
    "neutral",
    "happiness",
    "surprise",
    "sadness",
    "anger",
    "disgust",
    "fear",
    "contempt",
)

ERROR_LABEL = "Error"


class RunStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    TOTAL_FAILURE = "total_failure"


@dataclass(frozen=True)
class EmotionScore:
    label: str                 # one of EMOTION_LABELS, or ERROR_LABEL for the sentinel
    confidence: float          # 0.0–100.0


ERROR_SCORE = EmotionScore(label=ERROR_LABEL, confidence=0.0)


@dataclass(frozen=True)
class FramePrediction:
    frame: FrameHandle
    scores: tuple[EmotionScore, ...]   # sorted by confidence, descending
    ok: bool = True
    error: str | None = None

    @classmethod
    def failed(cls, frame: FrameHandle, reason: str) -> FramePrediction:
        """Failed frame: keeps the wire shape with a single sentinel score."""
        return cls(frame=frame, scores=(ERROR_SCORE,), ok=False, error=reason)


@dataclass(frozen=True)
class AnalysisResult:
    per_frame: tuple[FramePrediction, ...]
    per_emotion_average: dict[str, float]
    risk_score: float          # 0.0–100.0
    status: RunStatus
    error: str | None = None   # set for pipeline-level failures
    run_id: str = field(default="", compare=False)

    @classmethod
    def failed(cls, reason: str, *, run_id: str = "") -> AnalysisResult:
        """Pipeline-level failure: no per-frame breakdown."""
        return cls(
            per_frame=(),
            per_emotion_average={label: 0.0 for label in EMOTION_LABELS},
            risk_score=0.0,
            status=RunStatus.TOTAL_FAILURE,
            error=reason,
            run_id=run_id,
        )
