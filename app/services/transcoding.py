"""ffmpeg wrapper that normalizes recordings into raw PCM."""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
from contextlib import ExitStack

from fastapi.concurrency import run_in_threadpool

from app.config.settings import settings

logger = logging.getLogger(__name__)

PCM_SAMPLE_RATE_HZ = 16000


class TranscodeFailure(RuntimeError):
    """Raised when ffmpeg cannot turn the recording into PCM."""


def _reserve_temp_path(cleanup: ExitStack, *, prefix: str, suffix: str) -> str:
    """Create an empty uniquely-named temp file and schedule its removal."""

    handle, path = tempfile.mkstemp(prefix=prefix, suffix=suffix)
    os.close(handle)
    cleanup.callback(_remove_quietly, path)
    return path


def _remove_quietly(path: str) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as exc:
        logger.warning("Could not remove temp file %s: %s", path, exc)


def normalize_to_pcm_sync(audio_bytes: bytes, source_format: str) -> bytes:
    """Convert ``audio_bytes`` to 16 kHz mono s16le PCM using temp files."""

    with ExitStack() as cleanup:
        input_path = _reserve_temp_path(
            cleanup, prefix="visit_in_", suffix=f".{source_format}"
        )
        with open(input_path, "wb") as input_file:
            input_file.write(audio_bytes)

        output_path = _reserve_temp_path(cleanup, prefix="visit_out_", suffix=".pcm")

        command = [
            settings.pipeline.ffmpeg_binary,
            "-y",
            "-i", input_path,
            "-ar", str(PCM_SAMPLE_RATE_HZ),
            "-ac", "1",
            "-f", "s16le",
            output_path,
        ]
        try:
            subprocess.run(
                command,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.PIPE,
                check=True,
            )
        except FileNotFoundError as exc:
            raise TranscodeFailure(
                f"ffmpeg binary not found: {settings.pipeline.ffmpeg_binary}"
            ) from exc
        except subprocess.CalledProcessError as exc:
            error_msg = exc.stderr.decode("utf-8", errors="replace") if exc.stderr else "No stderr"
            logger.error("ffmpeg failed. stderr: %s", error_msg[-2000:])
            raise TranscodeFailure(
                f"ffmpeg failed to convert {source_format} to PCM (exit {exc.returncode})"
            ) from exc

        try:
            with open(output_path, "rb") as output_file:
                pcm = output_file.read()
        except OSError as exc:
            raise TranscodeFailure(f"Could not read ffmpeg output: {exc}") from exc

    if not pcm:
        raise TranscodeFailure(f"ffmpeg produced no PCM output for {source_format} input")
    return pcm


async def normalize_to_pcm(audio_bytes: bytes, source_format: str) -> bytes:
    """Run the blocking conversion in a worker thread."""

    return await run_in_threadpool(normalize_to_pcm_sync, audio_bytes, source_format)


__all__ = [
    "PCM_SAMPLE_RATE_HZ",
    "TranscodeFailure",
    "normalize_to_pcm",
    "normalize_to_pcm_sync",
]
