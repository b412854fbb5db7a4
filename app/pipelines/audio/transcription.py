"""Transcription stage of the recording pipeline."""

from __future__ import annotations

import logging
import zlib
from dataclasses import dataclass
from typing import Awaitable, Callable

from app.services.transcoding import TranscodeFailure, normalize_to_pcm
from app.services.transcribe import (
    SpeechProtocolError,
    TranscriptionError,
    TranscriptionResult,
    XunfeiSpeechClient,
)

from .ingestion import AudioFetchError, fetch_audio, sniff_audio_format
from .types import AudioFormat

logger = logging.getLogger("app.services.audio_pipeline")

Fetcher = Callable[[str], Awaitable[bytes]]
Normalizer = Callable[[bytes, str], Awaitable[bytes]]

_SNIFF_BYTES = 16

MOCK_TRANSCRIPTS = (
    "今天的清蒸路鱼很新鲜，油门大虾也不错，就是等的时间有点长",
    "招牌红烧肉味道很好，肥而不腻，下次还会来",
    "宫保鸡丁有点咸了，不过服务态度很好",
    "蒜蓉粉丝虾很入味，鲜嫩可口，五星好评",
)

SOURCE_SPEECH = "speech"
SOURCE_MOCK = "mock"


@dataclass(frozen=True)
class TranscriptOutcome:
    text: str
    source: str
    termination: str | None = None


def mock_transcript(recording_id: str) -> str:
    """Pick a demo transcript; the same recording always gets the same one."""

    index = zlib.crc32(recording_id.encode("utf-8")) % len(MOCK_TRANSCRIPTS)
    return MOCK_TRANSCRIPTS[index]


async def transcribe_recording(
    audio_url: str,
    client: XunfeiSpeechClient,
    *,
    fetch: Fetcher = fetch_audio,
    normalize: Normalizer = normalize_to_pcm,
) -> TranscriptionResult:
    """Download, normalize to PCM when needed, and stream to the speech service."""

    audio_bytes = await fetch(audio_url)
    audio_format = sniff_audio_format(audio_url, audio_bytes[:_SNIFF_BYTES])
    if audio_format is AudioFormat.PCM:
        pcm = audio_bytes
    else:
        pcm = await normalize(audio_bytes, audio_format.value)
        logger.info(
            "Converted %s to PCM: %.1fKB", audio_format.value, len(pcm) / 1024
        )
    return await client.transcribe_pcm(pcm)


async def transcribe_stage(
    recording_id: str,
    audio_url: str,
    client: XunfeiSpeechClient,
    *,
    fetch: Fetcher = fetch_audio,
    normalize: Normalizer = normalize_to_pcm,
) -> TranscriptOutcome:
    """Run the speech stage, degrading to a demo transcript on soft failures.

    ``TranscodeFailure`` and ``SpeechProtocolError`` propagate: there is no
    sensible transcript to continue with.
    """

    if not client.configured:
        logger.warning("Speech credentials not configured, using mock transcript")
        return TranscriptOutcome(mock_transcript(recording_id), SOURCE_MOCK)

    try:
        result = await transcribe_recording(
            audio_url, client, fetch=fetch, normalize=normalize
        )
    except (TranscodeFailure, SpeechProtocolError):
        raise
    except (AudioFetchError, TranscriptionError, OSError) as exc:
        logger.error("Speech transcription failed: %s, using mock transcript", exc)
        return TranscriptOutcome(mock_transcript(recording_id), SOURCE_MOCK)

    return TranscriptOutcome(result.transcript, SOURCE_SPEECH, result.reason.value)


__all__ = [
    "MOCK_TRANSCRIPTS",
    "TranscriptOutcome",
    "mock_transcript",
    "transcribe_recording",
    "transcribe_stage",
]
