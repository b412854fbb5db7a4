"""Annotation stage: ask the chat model to correct and tag the transcript."""

from __future__ import annotations

import logging
from typing import Sequence

from app.services.llm_client import ChatCompletionClient, LlmInvocationError
from app.services.response_contract import AnnotationParseFailure, AnnotationResult
from app.telemetry import record_annotation

from .prompts import build_annotation_request

logger = logging.getLogger("app.services.audio_pipeline")

SOURCE_MODEL = "model"
SOURCE_FALLBACK = "fallback"


def _truncate(value: str, max_length: int = 300) -> str:
    if len(value) <= max_length:
        return value
    return value[: max_length - 3] + "..."


async def annotate_transcript(
    transcript: str,
    vocabulary: Sequence[str],
    client: ChatCompletionClient,
) -> tuple[AnnotationResult, str]:
    """Return the annotation and where it came from; never raises on model trouble."""

    if not client.configured:
        logger.warning("Annotation API key not configured, using fallback result")
        record_annotation(SOURCE_FALLBACK)
        return AnnotationResult.fallback(transcript), SOURCE_FALLBACK

    request = build_annotation_request(transcript, vocabulary)
    try:
        raw_response = await client.invoke(
            system_prompt=request.system_prompt,
            user_prompt=request.user_prompt,
        )
        logger.info(
            "Annotation raw response (%s chars): %s",
            len(raw_response or ""),
            _truncate(raw_response or ""),
        )
        result = AnnotationResult.from_reply(raw_response, transcript)
    except (LlmInvocationError, AnnotationParseFailure) as exc:
        logger.error("Annotation failed: %s, using fallback result", exc)
        record_annotation(SOURCE_FALLBACK)
        return AnnotationResult.fallback(transcript), SOURCE_FALLBACK

    record_annotation(SOURCE_MODEL)
    return result, SOURCE_MODEL


__all__ = ["SOURCE_FALLBACK", "SOURCE_MODEL", "annotate_transcript"]
