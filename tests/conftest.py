"""Shared fakes for the pipeline test-suite."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
import sys
from typing import Any, Callable, Optional

import pytest
from pydantic import SecretStr

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

from app.config.settings import XunfeiConfig  # noqa: E402
from app.pipelines.audio import (  # noqa: E402
    AudioProcessingPipeline,
    InMemoryResultSink,
    StaticVocabularySource,
)
from app.services.transcribe import TerminationReason, TranscriptionResult  # noqa: E402

_CLOSE = object()


class FakeWebSocket:
    """Scriptable stand-in for a websockets client connection."""

    def __init__(self, on_send: Optional[Callable[["FakeWebSocket", dict], None]] = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._inbound: asyncio.Queue = asyncio.Queue()
        self._on_send = on_send

    def push(self, message: Any) -> None:
        if not isinstance(message, (str, bytes)):
            message = json.dumps(message, ensure_ascii=False)
        self._inbound.put_nowait(message)

    def push_error(self, error: BaseException) -> None:
        self._inbound.put_nowait(error)

    def push_close(self) -> None:
        self._inbound.put_nowait(_CLOSE)

    async def send(self, message: str) -> None:
        frame = json.loads(message)
        self.sent.append(frame)
        if self._on_send is not None:
            self._on_send(self, frame)

    async def close(self) -> None:
        self.closed = True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        while True:
            item = await self._inbound.get()
            if item is _CLOSE:
                return
            if isinstance(item, BaseException):
                raise item
            yield item


def fragment_message(*words: str, status: int = 1, code: int = 0) -> dict[str, Any]:
    return {
        "code": code,
        "message": "success",
        "sid": "iat000001",
        "data": {
            "status": status,
            "result": {"ws": [{"cw": [{"w": word}]} for word in words]},
        },
    }


@pytest.fixture
def xunfei_config() -> XunfeiConfig:
    return XunfeiConfig(
        app_id="app123",
        api_key=SecretStr("key456"),
        api_secret=SecretStr("secret789"),
        frame_interval_ms=0,
        timeout_seconds=2.0,
    )


class FakeSpeechClient:
    def __init__(self, transcript: str = "清蒸鲈鱼很新鲜", *, configured: bool = True, error=None):
        self.configured = configured
        self.transcript = transcript
        self.error = error
        self.calls: list[bytes] = []

    async def transcribe_pcm(self, pcm: bytes) -> TranscriptionResult:
        self.calls.append(pcm)
        if self.error is not None:
            raise self.error
        return TranscriptionResult(
            transcript=self.transcript,
            reason=TerminationReason.COMPLETE,
            frames_sent=1,
            total_frames=1,
        )


class FakeLlmClient:
    def __init__(self, reply: Optional[str] = None, *, configured: bool = True, error=None):
        self.configured = configured
        self.reply = reply
        self.error = error
        self.prompts: list[tuple[str, str]] = []

    async def invoke(self, *, system_prompt: str, user_prompt: str, **_: Any) -> Optional[str]:
        self.prompts.append((system_prompt, user_prompt))
        if self.error is not None:
            raise self.error
        return self.reply


VALID_REPLY = json.dumps(
    {
        "correctedTranscript": "清蒸鲈鱼很新鲜",
        "aiSummary": "鲈鱼新鲜",
        "sentimentScore": 0.9,
        "keywords": ["清蒸鲈鱼", "新鲜"],
        "managerQuestions": ["菜还合口味吗？"],
        "customerAnswers": ["清蒸鲈鱼很新鲜"],
    },
    ensure_ascii=False,
)


async def fake_fetch(url: str) -> bytes:
    return b"\x1a\x45\xdf\xa3" + b"\x00" * 64


async def fake_normalize(audio_bytes: bytes, source_format: str) -> bytes:
    return b"\x01\x02" * 1000


def build_pipeline(
    *,
    sink: Optional[InMemoryResultSink] = None,
    speech: Optional[FakeSpeechClient] = None,
    llm: Optional[FakeLlmClient] = None,
    vocabulary_source=None,
    fetch=fake_fetch,
    normalize=fake_normalize,
) -> AudioProcessingPipeline:
    return AudioProcessingPipeline(
        sink=sink or InMemoryResultSink(),
        vocabulary_source=vocabulary_source or StaticVocabularySource(),
        speech_client=speech or FakeSpeechClient(),
        llm_client=llm or FakeLlmClient(VALID_REPLY),
        fetch=fetch,
        normalize=normalize,
    )
