from .errors import ExtractionError, InferenceError, PipelineError, ResourceCleanupWarning
from .settings import PipelineSettings

__all__ = [
    "PipelineSettings",
    "PipelineError",
    "ExtractionError",
    "InferenceError",
    "ResourceCleanupWarning",
]
