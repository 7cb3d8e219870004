"""Reduce per-frame predictions to one AnalysisResult."""

from __future__ import annotations

from typing import Sequence

from models.prediction import EMOTION_LABELS, AnalysisResult, FramePrediction, RunStatus

RISK_LABELS = ("anger", "fear")
RISK_CAP = 100.0


def average_confidence(predictions: Sequence[FramePrediction], label: str) -> float:
    """Mean confidence for one label over successful frames; 0.0 when none carry it."""
    values = [
        score.confidence
        for prediction in predictions
        if prediction.ok
        for score in prediction.scores
        if score.label == label
    ]
    return sum(values) / len(values) if values else 0.0


def risk_score(averages: dict[str, float]) -> float:
    """Heuristic, not a model output: mean of the anger and fear averages, capped at 100."""
    raw = sum(averages.get(label, 0.0) for label in RISK_LABELS) / len(RISK_LABELS)
    return max(0.0, min(raw, RISK_CAP))


def run_status(predictions: Sequence[FramePrediction]) -> RunStatus:
    failed = sum(1 for p in predictions if not p.ok)
    if failed == len(predictions):
        return RunStatus.TOTAL_FAILURE
    if failed:
        return RunStatus.PARTIAL_SUCCESS
    return RunStatus.SUCCESS


def aggregate(predictions: Sequence[FramePrediction], *, run_id: str = "") -> AnalysisResult:
    if not predictions:
        raise ValueError("aggregate() needs at least one prediction")
    ordered = tuple(sorted(predictions, key=lambda p: p.frame.index))
    averages = {label: average_confidence(ordered, label) for label in EMOTION_LABELS}
    return AnalysisResult(
        per_frame=ordered,
        per_emotion_average=averages,
        risk_score=risk_score(averages),
        status=run_status(ordered),
        run_id=run_id,
    )
