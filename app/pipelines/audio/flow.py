"""High-level orchestration map for the recording pipeline.

``orchestrator.AudioProcessingPipeline`` runs these stages for one recording;
this module documents the canonical order so team members can navigate the
codebase more easily:

1. ``ingestion`` – download the recording and sniff its container format.
2. ``transcoding`` – normalize to 16 kHz mono PCM with ffmpeg.
3. ``transcription`` – stream PCM to Xunfei dictation over WebSocket.
4. ``prompts`` / ``llm`` – correct and tag the transcript with the chat model.
5. ``persistence`` – write the outcome and status to the result sink.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List


@dataclass(frozen=True)
class PipelineStage:
    """Human-readable description of one stage in the recording pipeline."""

    order: int
    name: str
    module: str
    summary: str


class AudioProcessingFlow:
    """Utility wrapper for documenting the `/audio/process` flow."""

    _STAGES: List[PipelineStage] = [
        PipelineStage(
            1,
            "Ingestion",
            "app.pipelines.audio.ingestion",
            "Download the recording and classify it as webm, wav, mp3, ogg or pcm.",
        ),
        PipelineStage(
            2,
            "Transcoding",
            "app.services.transcoding",
            "Convert compressed audio to 16 kHz mono s16le PCM through ffmpeg temp files.",
        ),
        PipelineStage(
            3,
            "Transcription",
            "app.pipelines.audio.transcription",
            "Stream 1280-byte frames every 40 ms to Xunfei and collect word fragments.",
        ),
        PipelineStage(
            4,
            "Annotation",
            "app.pipelines.audio.llm",
            "Correct dish names and extract summary, sentiment, keywords and dialogue.",
        ),
        PipelineStage(
            5,
            "Persistence",
            "app.pipelines.audio.persistence",
            "Store transcript, annotation and the processed status for the recording.",
        ),
    ]

    @classmethod
    def describe(cls) -> Iterable[PipelineStage]:
        """Expose the ordered list of stages for debugging and documentation."""

        return tuple(cls._STAGES)


__all__ = ["AudioProcessingFlow", "PipelineStage"]
