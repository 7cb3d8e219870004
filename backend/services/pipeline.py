"""End-to-end analysis of one uploaded asset."""

from __future__ import annotations

import logging
import time
import uuid

from models.media import MediaAsset
from models.prediction import AnalysisResult
from services.aggregator import aggregate
from services.errors import ExtractionError, InferenceError
from services.frame_extractor import FrameExtractor
from services.frame_workers import FrameWorkerPool
from services.inference import EmotionInferenceEngine
from services.janitor import ResourceJanitor
from services.settings import PipelineSettings

logger = logging.getLogger(__name__)


class AnalysisPipeline:
    """
    Classify → extract → score → aggregate, wrapped in a ResourceJanitor.

    The uploaded asset and every scratch artifact are gone when run()
    returns or raises. Extraction failures and a missing model become a
    TOTAL_FAILURE result; per-frame problems degrade single frames only.
    """

    def __init__(
        self,
        settings: PipelineSettings,
        engine: EmotionInferenceEngine,
        *,
        extractor: FrameExtractor | None = None,
        pool: FrameWorkerPool | None = None,
    ) -> None:
        self._settings = settings
        self._engine = engine
        self._extractor = extractor or FrameExtractor.from_settings(settings)
        self._pool = pool or FrameWorkerPool.from_settings(engine, settings)

    @property
    def engine(self) -> EmotionInferenceEngine:
        return self._engine

    def run(self, asset: MediaAsset) -> AnalysisResult:
        run_id = uuid.uuid4().hex[:12]
        started = time.monotonic()
        logger.info("[pipeline] run=%s start kind=%s path=%s", run_id, asset.kind.value, asset.path)

        with ResourceJanitor(run_id) as janitor:
            janitor.register_file(asset.path)
            try:
                self._engine.ensure_loaded()
                frames = self._extractor.extract(
                    asset,
                    self._settings.max_frames,
                    janitor=janitor,
                    run_id=run_id,
                )
            except (ExtractionError, InferenceError) as exc:
                logger.error("[pipeline] run=%s aborted before inference: %s", run_id, exc)
                return AnalysisResult.failed(str(exc), run_id=run_id)

            predictions = self._pool.run_all(
                frames,
                on_frame_done=lambda frame: janitor.release(frame.path),
            )
            result = aggregate(predictions, run_id=run_id)

        logger.info(
            "[pipeline] run=%s done status=%s frames=%d risk=%.2f in %.2fs",
            run_id,
            result.status.value,
            len(result.per_frame),
            result.risk_score,
            time.monotonic() - started,
        )
        return result
