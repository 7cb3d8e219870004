"""Error taxonomy for the media analysis pipeline."""


class PipelineError(Exception):
    """Base class for analysis pipeline failures."""


class ExtractionError(PipelineError):
    """Transcoder unavailable, failed, timed out or produced no frames. Aborts the run."""


class InferenceError(PipelineError):
    """Model missing, frame unreadable or input rejected by the runtime."""


class ResourceCleanupWarning(UserWarning):
    """A scratch artifact could not be removed. Logged, never raised."""
