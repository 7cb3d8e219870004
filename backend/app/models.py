from datetime import datetime, timezone
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ResponseStatus(StrEnum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    ERROR = "error"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EmotionPrediction(_CamelModel):
    emotion: str
    confidence: float


class FrameEmotions(_CamelModel):
    file: str
    prediction: list[EmotionPrediction]


class AnalysisMetrics(_CamelModel):
    criminal_likelihood: str
    anger_average: str
    fear_average: str


class AnalyzeResponse(_CamelModel):
    status: ResponseStatus
    original_filename: str
    emotions: list[FrameEmotions]
    metrics: AnalysisMetrics
    timestamp: datetime = Field(default_factory=_utcnow)
    message: str | None = None


class ErrorResponse(_CamelModel):
    status: ResponseStatus = ResponseStatus.ERROR
    message: str
    details: str | None = None


class HealthResponse(_CamelModel):
    status: str = "ok"
    timestamp: datetime = Field(default_factory=_utcnow)
    ffmpeg: bool
    model: bool
