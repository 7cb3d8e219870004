from .media import FrameHandle, MediaAsset, MediaKind
from .prediction import (
    EMOTION_LABELS,
    ERROR_LABEL,
    ERROR_SCORE,
    AnalysisResult,
    EmotionScore,
    FramePrediction,
    RunStatus,
)

__all__ = [
    "MediaKind",
    "MediaAsset",
    "FrameHandle",
    "EMOTION_LABELS",
    "ERROR_LABEL",
    "ERROR_SCORE",
    "EmotionScore",
    "FramePrediction",
    "RunStatus",
    "AnalysisResult",
]
