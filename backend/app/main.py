import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.models import HealthResponse
from routes.analyze import router as analyze_router
from services.inference import EmotionInferenceEngine
from services.pipeline import AnalysisPipeline
from services.settings import PipelineSettings

logger = logging.getLogger(__name__)


def create_app(
    settings: PipelineSettings | None = None,
    engine: EmotionInferenceEngine | None = None,
) -> FastAPI:
    """
    Build the API. The inference engine is created once at startup and
    shared by every request; it is closed when the app shuts down.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        resolved = settings or PipelineSettings.from_env()
        shared_engine = engine or EmotionInferenceEngine.from_settings(resolved)
        app.state.settings = resolved
        app.state.engine = shared_engine
        app.state.pipeline = AnalysisPipeline(resolved, shared_engine)
        logger.info(
            "[app] Ready: model=%s ffmpeg=%s max_frames=%d workers=%d",
            resolved.model_path,
            resolved.ffmpeg_path,
            resolved.max_frames,
            resolved.worker_count,
        )
        try:
            yield
        finally:
            shared_engine.close()

    app = FastAPI(title="EmotiLens API", version="0.1.0", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    def health(request: Request) -> HealthResponse:
        state = request.app.state
        return HealthResponse(
            ffmpeg=state.settings.ffmpeg_available(),
            model=state.engine.model_available(),
        )

    app.include_router(analyze_router, prefix="/api")
    return app


app = create_app()
