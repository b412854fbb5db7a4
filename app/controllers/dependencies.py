"""Common FastAPI dependencies reused across controllers."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from app.pipelines.audio import AudioProcessingPipeline


def get_pipeline(request: Request) -> AudioProcessingPipeline:
    """Return the pipeline built once at application start-up."""

    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Recording pipeline is not initialised",
        )
    return pipeline


PipelineDep = Annotated[AudioProcessingPipeline, Depends(get_pipeline)]


__all__ = ["get_pipeline", "PipelineDep"]
