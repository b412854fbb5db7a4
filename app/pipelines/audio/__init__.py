"""Recording processing pipeline package.

Modules are organised by the order in which `/audio/process` executes:

1. `ingestion` – download the recording and sniff its format.
2. `transcription` – normalize to PCM and stream to the speech service.
3. `prompts` / `llm` – annotate the transcript with the chat model.
4. `persistence` – result sinks and menu vocabulary sources.
5. `orchestrator` – locking, status guards and stage sequencing.

The FastAPI controller imports from here so contributors can jump straight
to the relevant stage without wading through a single monolithic file.
"""

from .flow import AudioProcessingFlow, PipelineStage
from .ingestion import AudioFetchError, fetch_audio, sniff_audio_format
from .llm import annotate_transcript
from .orchestrator import AudioProcessingPipeline, RecordingLockManager
from .persistence import (
    InMemoryResultSink,
    ResultSink,
    SqlAlchemyResultSink,
    SqlAlchemyVocabularySource,
    StaticVocabularySource,
    VocabularySource,
)
from .prompts import build_annotation_request
from .transcription import mock_transcript, transcribe_recording, transcribe_stage
from .types import (
    AlreadyInState,
    AlreadyProcessing,
    AnnotationRequest,
    AudioFormat,
    DuplicateRun,
    PersistenceFailure,
    PipelineStageError,
    ProcessingResult,
    RecordingContext,
    RecordingStatus,
)

__all__ = [
    "AlreadyInState",
    "AlreadyProcessing",
    "AnnotationRequest",
    "AudioFetchError",
    "AudioFormat",
    "AudioProcessingFlow",
    "AudioProcessingPipeline",
    "DuplicateRun",
    "InMemoryResultSink",
    "PersistenceFailure",
    "PipelineStage",
    "PipelineStageError",
    "ProcessingResult",
    "RecordingContext",
    "RecordingLockManager",
    "RecordingStatus",
    "ResultSink",
    "SqlAlchemyResultSink",
    "SqlAlchemyVocabularySource",
    "StaticVocabularySource",
    "VocabularySource",
    "annotate_transcript",
    "build_annotation_request",
    "fetch_audio",
    "mock_transcript",
    "sniff_audio_format",
    "transcribe_recording",
    "transcribe_stage",
]
