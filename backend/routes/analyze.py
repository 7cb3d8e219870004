"""Media analysis REST API: POST /api/analyze with a multipart `media` field."""

import logging
import os
import re
import secrets
import time

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from app.models import (
    AnalysisMetrics,
    AnalyzeResponse,
    EmotionPrediction,
    ErrorResponse,
    FrameEmotions,
    ResponseStatus,
)
from models.media import MediaAsset, MediaKind
from models.prediction import AnalysisResult, RunStatus
from services.media_classifier import media_asset
from services.pipeline import AnalysisPipeline
from services.settings import PipelineSettings

router = APIRouter(tags=["analysis"])
logger = logging.getLogger(__name__)

_UPLOAD_CHUNK_BYTES = 1024 * 1024
_SAFE_EXTENSION = re.compile(r"^\.[A-Za-z0-9]{1,8}$")

_STATUS_BY_RUN = {
    RunStatus.SUCCESS: ResponseStatus.SUCCESS,
    RunStatus.PARTIAL_SUCCESS: ResponseStatus.PARTIAL_SUCCESS,
    RunStatus.TOTAL_FAILURE: ResponseStatus.ERROR,
}


class UploadTooLarge(Exception):
    pass


def get_settings(request: Request) -> PipelineSettings:
    return request.app.state.settings


def get_pipeline(request: Request) -> AnalysisPipeline:
    return request.app.state.pipeline


def _error(status_code: int, message: str, details: str | None = None) -> JSONResponse:
    body = ErrorResponse(message=message, details=details)
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(mode="json", by_alias=True, exclude_none=True),
    )


def _stored_filename(original_name: str) -> str:
    """<millis>-<random><ext>, keeping the original extension when it looks sane."""
    ext = os.path.splitext(os.path.basename(original_name))[1]
    if not _SAFE_EXTENSION.match(ext):
        ext = ""
    return f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}{ext}"


async def _save_upload(media: UploadFile, dest: str, max_bytes: int) -> int:
    written = 0
    with open(dest, "wb") as out:
        while chunk := await media.read(_UPLOAD_CHUNK_BYTES):
            written += len(chunk)
            if written > max_bytes:
                raise UploadTooLarge(f"File exceeds {max_bytes} bytes")
            out.write(chunk)
    return written


def _warn_on_kind_mismatch(asset: MediaAsset, content_type: str) -> None:
    # Extension decides the kind; a declared video/* with an image extension still goes down the image path.
    declared = MediaKind.VIDEO if content_type.startswith("video/") else MediaKind.IMAGE
    if declared is not asset.kind:
        logger.warning(
            "[analyze] Declared type %s disagrees with extension-derived kind %s for %s",
            content_type,
            asset.kind.value,
            os.path.basename(asset.path),
        )


def _fmt_percent(value: float) -> str:
    return f"{value:.2f}%"


def build_response(result: AnalysisResult, original_filename: str) -> AnalyzeResponse:
    emotions = [
        FrameEmotions(
            file=os.path.basename(prediction.frame.path),
            prediction=[
                EmotionPrediction(emotion=score.label, confidence=score.confidence)
                for score in prediction.scores
            ],
        )
        for prediction in result.per_frame
    ]
    averages = result.per_emotion_average
    return AnalyzeResponse(
        status=_STATUS_BY_RUN[result.status],
        original_filename=original_filename,
        emotions=emotions,
        metrics=AnalysisMetrics(
            criminal_likelihood=_fmt_percent(result.risk_score),
            anger_average=_fmt_percent(averages.get("anger", 0.0)),
            fear_average=_fmt_percent(averages.get("fear", 0.0)),
        ),
        message=result.error,
    )


@router.post(
    "/analyze",
    response_model=AnalyzeResponse,
    response_model_exclude_none=True,
    responses={413: {"model": ErrorResponse}, 415: {"model": ErrorResponse}, 422: {"model": AnalyzeResponse}},
)
async def analyze_media(
    media: UploadFile = File(..., description="Image or video to analyze"),
    settings: PipelineSettings = Depends(get_settings),
    pipeline: AnalysisPipeline = Depends(get_pipeline),
):
    """Run emotion analysis on one uploaded image or video."""
    original_filename = media.filename or "upload"
    content_type = (media.content_type or "").lower()
    logger.info("[analyze] POST /api/analyze file=%s type=%s", original_filename, content_type)

    if content_type not in settings.allowed_mime_types:
        return _error(415, "Invalid file type. Only images and videos are allowed.", content_type or None)

    os.makedirs(settings.upload_dir, exist_ok=True)
    dest = os.path.join(settings.upload_dir, _stored_filename(original_filename))
    try:
        size = await _save_upload(media, dest, settings.max_upload_bytes)
    except UploadTooLarge as exc:
        os.unlink(dest)
        return _error(413, "File too large", str(exc))
    except OSError:
        if os.path.exists(dest):
            os.unlink(dest)
        raise
    finally:
        await media.close()
    logger.info("[analyze] Stored upload %s (%d bytes)", dest, size)

    asset = media_asset(dest)
    _warn_on_kind_mismatch(asset, content_type)

    try:
        result = await run_in_threadpool(pipeline.run, asset)
    except Exception as exc:  # noqa: BLE001
        logger.error("[analyze] Analysis crashed for %s: %s", original_filename, exc, exc_info=True)
        return _error(500, "Internal server error", str(exc))

    response = build_response(result, original_filename)
    if result.status is RunStatus.TOTAL_FAILURE:
        return JSONResponse(
            status_code=422,
            content=response.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
    return response
