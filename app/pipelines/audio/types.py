"""Typed containers and errors shared across the recording pipeline.

These live in their own module so the stages (`ingestion`, `transcription`,
`llm`, `persistence`, `orchestrator`) can import them without creating
circular dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from app.services.response_contract import AnnotationResult


class AudioFormat(str, Enum):
    WEBM = "webm"
    WAV = "wav"
    MP3 = "mp3"
    OGG = "ogg"
    PCM = "pcm"


class RecordingStatus(str, Enum):
    UNSET = "unset"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"

    @classmethod
    def parse(cls, value: Optional[str]) -> "RecordingStatus":
        if not value:
            return cls.UNSET
        try:
            return cls(value)
        except ValueError:
            return cls.UNSET


@dataclass(frozen=True)
class RecordingContext:
    """Advisory ownership data sent along with a processing request."""

    restaurant_id: Optional[str] = None
    table_id: Optional[str] = None


@dataclass(frozen=True)
class AnnotationRequest:
    """Prompts handed to the annotation model."""

    transcript: str
    vocabulary: tuple[str, ...]
    system_prompt: str
    user_prompt: str


@dataclass(frozen=True)
class ProcessingResult:
    """Outcome of one pipeline run handed back to the caller."""

    recording_id: str
    transcript: str
    annotation: AnnotationResult
    transcript_source: str
    annotation_source: str
    elapsed_ms: float


class DuplicateRun(RuntimeError):
    """The recording is already being processed or was processed before."""


class AlreadyProcessing(DuplicateRun):
    def __init__(self, recording_id: str) -> None:
        self.recording_id = recording_id
        super().__init__(f"Recording {recording_id} is already being processed")


class AlreadyInState(DuplicateRun):
    def __init__(self, recording_id: str, status: RecordingStatus) -> None:
        self.recording_id = recording_id
        self.status = status
        super().__init__(f"Recording {recording_id} already {status.value}")


class PersistenceFailure(RuntimeError):
    """Raised by result sinks when a write or read cannot be completed."""


class PipelineStageError(RuntimeError):
    """A fatal failure that aborted the run, tagged with the failing stage."""

    def __init__(self, stage: str, cause: BaseException) -> None:
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} failed: {cause}")


__all__ = [
    "AlreadyInState",
    "AlreadyProcessing",
    "AnnotationRequest",
    "AudioFormat",
    "DuplicateRun",
    "PersistenceFailure",
    "PipelineStageError",
    "ProcessingResult",
    "RecordingContext",
    "RecordingStatus",
]
