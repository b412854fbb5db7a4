"""Recording processing endpoints.

For a stage-by-stage map see `app.pipelines.audio.flow.AudioProcessingFlow`.
The POST `/audio/process` endpoint runs one recording through download,
PCM normalization, streaming transcription, annotation and persistence.
"""

import logging

from fastapi import APIRouter, HTTPException, status

from app.controllers.dependencies import PipelineDep
from app.pipelines.audio import (
    AudioProcessingFlow,
    DuplicateRun,
    PersistenceFailure,
    PipelineStageError,
    RecordingContext,
)
from app.views import (
    ErrorResponse,
    ProcessAudioRequest,
    ProcessAudioResponse,
    RecordingStatusResponse,
)

router = APIRouter(prefix="/audio", tags=["audio"])

logger = logging.getLogger(__name__)

PIPELINE_STAGES = tuple(AudioProcessingFlow.describe())
"""Ordered pipeline metadata used for quick reference and debugging."""


@router.post(
    "/process",
    response_model=ProcessAudioResponse,
    responses={
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
        status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse},
    },
)
async def process_audio(
    payload: ProcessAudioRequest,
    pipeline: PipelineDep,
) -> ProcessAudioResponse:
    """Transcribe and annotate an uploaded table-visit recording."""

    logger.info(
        "POST /audio/process recording=%s table=%s url=%s",
        payload.recording_id,
        payload.table_id,
        payload.audio_url,
    )
    try:
        result = await pipeline.run(
            payload.recording_id,
            payload.audio_url,
            RecordingContext(
                restaurant_id=payload.restaurant_id,
                table_id=payload.table_id,
            ),
        )
    except DuplicateRun as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except PipelineStageError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc

    annotation = result.annotation
    logger.info(
        "Process complete recording=%s score=%s", payload.recording_id, annotation.sentiment_score
    )
    return ProcessAudioResponse(
        recording_id=result.recording_id,
        transcript=result.transcript,
        corrected_transcript=annotation.corrected_transcript,
        ai_summary=annotation.summary,
        sentiment_score=annotation.sentiment_score,
        keywords=annotation.keywords,
        manager_questions=annotation.manager_questions,
        customer_answers=annotation.customer_answers,
        transcript_source=result.transcript_source,
        annotation_source=result.annotation_source,
    )


@router.get(
    "/status/{recording_id}",
    response_model=RecordingStatusResponse,
    responses={status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
)
async def get_status(recording_id: str, pipeline: PipelineDep) -> RecordingStatusResponse:
    """Report the persisted processing status of a recording."""

    try:
        record = await pipeline.sink.get_record(recording_id)
    except PersistenceFailure as exc:
        logger.error("Status lookup failed for %s: %s", recording_id, exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Recording status is temporarily unavailable",
        ) from exc
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Recording not found")
    return RecordingStatusResponse(**record)
