"""Duplicate-safe orchestration of one recording through the pipeline.

``AudioProcessingPipeline.run`` sequences vocabulary lookup, transcription,
annotation and persistence for a single recording. Two guards prevent double
processing: an in-process ``RecordingLockManager`` and the persisted
``RecordingStatus``. The lock is always released, and a run that aborts leaves
the recording in ``error`` with a message instead of stuck in ``processing``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from typing import Awaitable, Iterator, Optional

from app.services.llm_client import ChatCompletionClient
from app.services.transcoding import normalize_to_pcm
from app.services.transcribe import XunfeiSpeechClient
from app.telemetry import observe_stage, record_pipeline_run

from .ingestion import fetch_audio
from .llm import annotate_transcript
from .persistence import ResultSink, VocabularySource
from .transcription import Fetcher, Normalizer, transcribe_stage
from .types import (
    AlreadyInState,
    AlreadyProcessing,
    PersistenceFailure,
    PipelineStageError,
    ProcessingResult,
    RecordingContext,
    RecordingStatus,
)

logger = logging.getLogger("app.services.audio_pipeline")
transcript_logger = logging.getLogger("app.logs.transcript")

_BLOCKING_STATUSES = frozenset({RecordingStatus.PROCESSING, RecordingStatus.PROCESSED})


class RecordingLockManager:
    """Set of recording ids with a run in flight in this process.

    ``try_acquire`` has no await point, so check-and-insert is atomic with
    respect to other coroutines on the loop.
    """

    def __init__(self) -> None:
        self._held: set[str] = set()

    def try_acquire(self, recording_id: str) -> bool:
        if recording_id in self._held:
            return False
        self._held.add(recording_id)
        return True

    def release(self, recording_id: str) -> None:
        self._held.discard(recording_id)

    def is_held(self, recording_id: str) -> bool:
        return recording_id in self._held

    def __len__(self) -> int:
        return len(self._held)


@contextmanager
def _timed_stage(label: str, stage: str) -> Iterator[None]:
    logger.info("%s Starting %s...", label, stage)
    started = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - started
        observe_stage(stage, elapsed)
        logger.info("%s %s finished in %.0fms", label, stage, elapsed * 1000)


class AudioProcessingPipeline:
    """Fetch, transcribe, annotate and persist one recording at a time per id."""

    def __init__(
        self,
        *,
        sink: ResultSink,
        vocabulary_source: VocabularySource,
        speech_client: XunfeiSpeechClient,
        llm_client: ChatCompletionClient,
        fetch: Fetcher = fetch_audio,
        normalize: Normalizer = normalize_to_pcm,
        locks: Optional[RecordingLockManager] = None,
    ) -> None:
        self._sink = sink
        self._vocabulary_source = vocabulary_source
        self._speech_client = speech_client
        self._llm_client = llm_client
        self._fetch = fetch
        self._normalize = normalize
        self.locks = locks or RecordingLockManager()

    @property
    def sink(self) -> ResultSink:
        return self._sink

    async def run(
        self,
        recording_id: str,
        audio_url: str,
        context: Optional[RecordingContext] = None,
    ) -> ProcessingResult:
        if not self.locks.try_acquire(recording_id):
            logger.warning("Recording %s is already being processed (locked)", recording_id)
            record_pipeline_run("duplicate")
            raise AlreadyProcessing(recording_id)

        logger.info("Lock acquired for recording %s", recording_id)
        try:
            return await self._run_locked(recording_id, audio_url, context or RecordingContext())
        finally:
            self.locks.release(recording_id)
            logger.info("Lock released for recording %s", recording_id)

    async def _run_locked(
        self,
        recording_id: str,
        audio_url: str,
        context: RecordingContext,
    ) -> ProcessingResult:
        current_status = await self._read_status(recording_id)
        if current_status in _BLOCKING_STATUSES:
            logger.warning("Recording %s already has status: %s", recording_id, current_status.value)
            record_pipeline_run("duplicate")
            raise AlreadyInState(recording_id, current_status)

        stage = "mark-processing"
        started = time.perf_counter()
        try:
            await self._write(
                "status update", self._sink.set_status(recording_id, RecordingStatus.PROCESSING)
            )
            logger.info("========== PIPELINE START ==========")
            logger.info("Recording: %s | Table: %s", recording_id, context.table_id)
            logger.info("Audio URL: %s", audio_url)

            stage = "vocabulary"
            with _timed_stage("[Step 1/4]", stage):
                vocabulary = await self._load_vocabulary(context)
            logger.info("[Step 1/4] Loaded %s dish names", len(vocabulary))

            stage = "transcription"
            with _timed_stage("[Step 2/4]", stage):
                transcript = await transcribe_stage(
                    recording_id,
                    audio_url,
                    self._speech_client,
                    fetch=self._fetch,
                    normalize=self._normalize,
                )
            logger.info(
                "[Step 2/4] Transcript (%s, %s): %s",
                transcript.source,
                transcript.termination or "n/a",
                transcript.text,
            )
            transcript_logger.info(
                "recording=%s | source=%s | text=%s",
                recording_id,
                transcript.source,
                transcript.text,
            )

            stage = "annotation"
            with _timed_stage("[Step 3/4]", stage):
                annotation, annotation_source = await annotate_transcript(
                    transcript.text, vocabulary, self._llm_client
                )
            logger.info(
                "[Step 3/4] Summary: %s | Score: %s | Keywords: %s",
                annotation.summary,
                annotation.sentiment_score,
                len(annotation.keywords),
            )

            result = ProcessingResult(
                recording_id=recording_id,
                transcript=transcript.text,
                annotation=annotation,
                transcript_source=transcript.source,
                annotation_source=annotation_source,
                elapsed_ms=round((time.perf_counter() - started) * 1000, 2),
            )

            stage = "persistence"
            with _timed_stage("[Step 4/4]", stage):
                await self._write("result save", self._sink.save_result(recording_id, result))
        except asyncio.CancelledError:
            logger.warning("Pipeline cancelled for %s during %s", recording_id, stage)
            record_pipeline_run("cancelled")
            await self._write(
                "error status",
                self._sink.mark_error(
                    recording_id,
                    f"{stage} cancelled. Re-submit the recording to retry.",
                ),
            )
            raise
        except Exception as exc:
            logger.exception("Pipeline failed for %s during %s", recording_id, stage)
            record_pipeline_run("failed")
            await self._write(
                "error status",
                self._sink.mark_error(
                    recording_id,
                    f"{stage} failed: {exc}. Fix the cause and re-submit the recording to retry.",
                ),
            )
            raise PipelineStageError(stage, exc) from exc

        logger.info("========== PIPELINE COMPLETE ==========")
        logger.info("Total time: %.0fms", result.elapsed_ms)
        record_pipeline_run("processed")
        return result

    async def _read_status(self, recording_id: str) -> RecordingStatus:
        try:
            status = await self._sink.get_status(recording_id)
        except PersistenceFailure as exc:
            logger.warning("Failed to get status for %s: %s", recording_id, exc)
            return RecordingStatus.UNSET
        return status or RecordingStatus.UNSET

    async def _load_vocabulary(self, context: RecordingContext) -> list[str]:
        try:
            return list(await self._vocabulary_source(context))
        except PersistenceFailure as exc:
            logger.warning("Dish names unavailable, continuing without them: %s", exc)
            return []

    async def _write(self, description: str, operation: Awaitable[None]) -> None:
        """Await a sink write; failures are logged and never unwind the run."""

        try:
            await operation
        except PersistenceFailure as exc:
            logger.error("Persistence %s failed: %s", description, exc)


__all__ = ["AudioProcessingPipeline", "RecordingLockManager"]
