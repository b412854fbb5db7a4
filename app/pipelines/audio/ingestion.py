"""Audio ingestion helpers: download the recording and classify its format."""

from __future__ import annotations

import logging
from typing import Final

import httpx

from app.config.settings import settings

from .types import AudioFormat

logger = logging.getLogger("app.services.audio_pipeline")

# Checked in order against the lower-cased source URL.
_EXTENSION_HINTS: Final[tuple[tuple[str, AudioFormat], ...]] = (
    (".webm", AudioFormat.WEBM),
    (".wav", AudioFormat.WAV),
    (".mp3", AudioFormat.MP3),
    (".ogg", AudioFormat.OGG),
    (".pcm", AudioFormat.PCM),
)

_EBML_MAGIC: Final[bytes] = b"\x1a\x45\xdf\xa3"
_MP3_SYNC: Final[bytes] = b"\xff\xfb"


class AudioFetchError(RuntimeError):
    """Raised when the recording cannot be downloaded."""


def sniff_audio_format(source: str, head: bytes) -> AudioFormat:
    """Classify a recording from its URL/filename hint and leading bytes.

    The browser recorder produces WebM, so anything unrecognised is WebM.
    """

    source_lower = (source or "").lower()
    for extension, audio_format in _EXTENSION_HINTS:
        if extension in source_lower:
            return audio_format

    if len(head) >= 4:
        if head[:4] == _EBML_MAGIC:
            return AudioFormat.WEBM
        if head[:4] == b"RIFF":
            return AudioFormat.WAV
        if head[:2] == _MP3_SYNC or head[:3] == b"ID3":
            return AudioFormat.MP3
        if head[:4] == b"OggS":
            return AudioFormat.OGG

    return AudioFormat.WEBM


async def fetch_audio(
    url: str,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bytes:
    """Download the recording body; no transformation is applied."""

    try:
        async with httpx.AsyncClient(
            timeout=settings.pipeline.fetch_timeout_seconds,
            follow_redirects=True,
            transport=transport,
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        raise AudioFetchError(
            f"Download failed: HTTP {exc.response.status_code}"
        ) from exc
    except httpx.RequestError as exc:
        raise AudioFetchError(f"Download failed: {exc}") from exc

    audio_bytes = response.content
    logger.info("Audio downloaded: %.1fKB", len(audio_bytes) / 1024)
    return audio_bytes


__all__ = ["AudioFetchError", "fetch_audio", "sniff_audio_format"]
