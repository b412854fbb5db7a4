"""Xunfei streaming dictation client over WebSocket.

The upstream service expects a signed ``wss://`` URL, PCM audio pushed in
fixed-size frames at real-time cadence, and answers with JSON envelopes that
carry word fragments. One call to :meth:`XunfeiSpeechClient.transcribe_pcm`
owns one :class:`TranscriptionSession`; whichever of completion, protocol
error, transport error, close or timeout happens first settles the session's
result future, and every later event is ignored.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
import json
import logging
import math
from dataclasses import dataclass
from email.utils import formatdate
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping
from urllib.parse import urlencode

from websockets.asyncio.client import connect as websocket_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from app.config.settings import XunfeiConfig, settings
from app.telemetry import record_speech_termination

logger = logging.getLogger(__name__)

AUDIO_FORMAT = "audio/L16;rate=16000"
AUDIO_ENCODING = "raw"

STATUS_FIRST_FRAME = 0
STATUS_CONTINUE_FRAME = 1
STATUS_LAST_FRAME = 2


class TranscriptionError(RuntimeError):
    """Raised when the speech service cannot produce a transcript."""


class UpstreamAuthMissing(TranscriptionError):
    """Raised when the speech credentials are not configured."""


class SpeechProtocolError(TranscriptionError):
    """The service answered with a non-zero response code."""

    def __init__(self, code: Any, message: str | None = None, sid: str | None = None) -> None:
        self.code = code
        self.sid = sid
        super().__init__(f"Speech service error {code}: {message or 'no message'} (sid={sid})")


class SpeechTimeoutError(TranscriptionError):
    """No completion signal and no fragments before the deadline."""


class SpeechTransportError(TranscriptionError):
    """The socket failed or closed before any fragment arrived."""


class TerminationReason(str, Enum):
    COMPLETE = "complete"
    TIMEOUT_PARTIAL = "timeout-partial"
    ERROR_PARTIAL = "error-partial"
    CLOSED = "closed"


class SessionState(str, Enum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    DRAINING = "draining"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class TranscriptionResult:
    """Structured transcription outcome returned to the pipeline."""

    transcript: str
    reason: TerminationReason
    frames_sent: int
    total_frames: int
    sid: str | None = None

    @property
    def partial(self) -> bool:
        return self.reason is not TerminationReason.COMPLETE


class TranscriptionSession:
    """Ephemeral state for one streaming call."""

    def __init__(self, total_frames: int) -> None:
        self.total_frames = total_frames
        self.fragments: list[str] = []
        self.frame_cursor = 0
        self.state = SessionState.CONNECTING
        self.reason: TerminationReason | None = None
        self.sid: str | None = None
        self._result: asyncio.Future[TranscriptionResult] = (
            asyncio.get_running_loop().create_future()
        )

    @property
    def transcript(self) -> str:
        return "".join(self.fragments)

    @property
    def resolved(self) -> bool:
        return self._result.done()

    def advance(self, frames_sent: int) -> None:
        if frames_sent > self.frame_cursor:
            self.frame_cursor = frames_sent

    def succeed(self, reason: TerminationReason) -> None:
        if self.resolved:
            return
        self.state = SessionState.SUCCEEDED
        self.reason = reason
        self._result.set_result(
            TranscriptionResult(
                transcript=self.transcript,
                reason=reason,
                frames_sent=self.frame_cursor,
                total_frames=self.total_frames,
                sid=self.sid,
            )
        )

    def fail(self, error: TranscriptionError) -> None:
        if self.resolved:
            return
        self.state = SessionState.FAILED
        self._result.set_exception(error)

    def settle_partial(self, reason: TerminationReason, error: TranscriptionError) -> None:
        """Keep whatever arrived so far, or fail when nothing did."""

        if self.fragments:
            self.succeed(reason)
        else:
            self.fail(error)

    async def wait(self, timeout_seconds: float) -> TranscriptionResult:
        try:
            return await asyncio.wait_for(asyncio.shield(self._result), timeout_seconds)
        except asyncio.TimeoutError:
            self.settle_partial(
                TerminationReason.TIMEOUT_PARTIAL,
                SpeechTimeoutError(f"Speech service timed out after {timeout_seconds:g}s"),
            )
            return self._result.result()


def rfc1123_now() -> str:
    """Current time formatted like ``Mon, 19 Oct 2026 08:00:00 GMT``."""

    return formatdate(usegmt=True)


def build_auth_url(
    *,
    host: str,
    path: str,
    api_key: str,
    api_secret: str,
    date: str | None = None,
) -> str:
    """Return the signed connection URL expected by the dictation endpoint."""

    date = date or rfc1123_now()
    signature_origin = f"host: {host}\ndate: {date}\nGET {path} HTTP/1.1"
    digest = hmac.new(
        api_secret.encode("utf-8"),
        signature_origin.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    signature = base64.b64encode(digest).decode("ascii")

    authorization_origin = (
        f'api_key="{api_key}", algorithm="hmac-sha256", '
        f'headers="host date request-line", signature="{signature}"'
    )
    authorization = base64.b64encode(authorization_origin.encode("utf-8")).decode("ascii")

    query = urlencode({"authorization": authorization, "date": date, "host": host})
    return f"wss://{host}{path}?{query}"


def frame_status(index: int, total_frames: int) -> int:
    """Status flag for the frame at ``index``; the last frame always wins."""

    if index >= total_frames - 1:
        return STATUS_LAST_FRAME
    if index == 0:
        return STATUS_FIRST_FRAME
    return STATUS_CONTINUE_FRAME


def count_frames(byte_length: int, frame_size: int) -> int:
    return math.ceil(byte_length / frame_size)


def _extract_fragments(result: Any) -> list[str]:
    """Flatten ``result.ws[].cw[].w`` into word fragments, in order."""

    if not isinstance(result, Mapping):
        return []
    fragments: list[str] = []
    for word in result.get("ws") or ():
        if not isinstance(word, Mapping):
            continue
        for candidate in word.get("cw") or ():
            fragment = candidate.get("w") if isinstance(candidate, Mapping) else None
            if isinstance(fragment, str) and fragment:
                fragments.append(fragment)
    return fragments


ConnectFactory = Callable[[str], Awaitable[Any]]


class XunfeiSpeechClient:
    """High-level facade for streaming PCM audio to Xunfei dictation."""

    def __init__(
        self,
        config: XunfeiConfig | None = None,
        *,
        connect: ConnectFactory | None = None,
    ) -> None:
        self._config = config or settings.xunfei
        self._connect = connect or websocket_connect

    @property
    def configured(self) -> bool:
        return self._config.configured

    def build_auth_url(self, date: str | None = None) -> str:
        if not self.configured:
            raise UpstreamAuthMissing("Xunfei credentials not configured")
        return build_auth_url(
            host=self._config.host,
            path=self._config.path,
            api_key=self._config.api_key.get_secret_value(),
            api_secret=self._config.api_secret.get_secret_value(),
            date=date,
        )

    def build_frame(self, chunk: bytes, index: int, total_frames: int) -> dict[str, Any]:
        """Wrap one PCM chunk; only the first frame carries session metadata."""

        frame: dict[str, Any] = {
            "data": {
                "status": frame_status(index, total_frames),
                "format": AUDIO_FORMAT,
                "encoding": AUDIO_ENCODING,
                "audio": base64.b64encode(chunk).decode("ascii"),
            }
        }
        if index == 0:
            frame["common"] = {"app_id": self._config.app_id}
            frame["business"] = {
                "language": self._config.language,
                "domain": self._config.domain,
                "accent": self._config.accent,
                "vad_eos": self._config.vad_eos,
                "dwa": self._config.dwa,
                "ptt": 0,
            }
        return frame

    async def transcribe_pcm(self, pcm: bytes) -> TranscriptionResult:
        """Stream 16 kHz mono s16le audio and return the recognised text."""

        if not self.configured:
            raise UpstreamAuthMissing("Xunfei credentials not configured")
        if not pcm:
            raise TranscriptionError("PCM payload is empty.")

        total_frames = count_frames(len(pcm), self._config.frame_size)
        session = TranscriptionSession(total_frames)
        url = self.build_auth_url()

        try:
            websocket = await self._connect(url)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            record_speech_termination("connect-failed")
            raise SpeechTransportError(f"Could not connect to speech service: {exc}") from exc

        session.state = SessionState.STREAMING
        logger.info(
            "Speech session started. Bytes: %s. Frames: %s.", len(pcm), total_frames
        )
        sender = asyncio.create_task(self._send_frames(websocket, pcm, session))
        receiver = asyncio.create_task(self._receive(websocket, session))
        try:
            result = await session.wait(self._config.timeout_seconds)
        except TranscriptionError:
            record_speech_termination("failed")
            raise
        finally:
            for task in (sender, receiver):
                task.cancel()
            await asyncio.gather(sender, receiver, return_exceptions=True)
            await self._close_quietly(websocket)

        record_speech_termination(result.reason.value)
        logger.info(
            "Speech session finished (%s): %s chars, %s/%s frames sent.",
            result.reason.value,
            len(result.transcript),
            result.frames_sent,
            result.total_frames,
        )
        return result

    async def _send_frames(
        self,
        websocket: Any,
        pcm: bytes,
        session: TranscriptionSession,
    ) -> None:
        frame_size = self._config.frame_size
        interval = self._config.frame_interval_ms / 1000
        try:
            for index in range(session.total_frames):
                if session.resolved:
                    return
                chunk = pcm[index * frame_size : (index + 1) * frame_size]
                frame = self.build_frame(chunk, index, session.total_frames)
                await websocket.send(json.dumps(frame))
                session.advance(index + 1)
                if frame["data"]["status"] == STATUS_LAST_FRAME:
                    break
                await asyncio.sleep(interval)
        except ConnectionClosed:
            # The receiver observes the close and settles the session.
            logger.debug("Socket closed after %s frames", session.frame_cursor)
            return
        except (OSError, WebSocketException) as exc:
            logger.warning("Sending audio failed at frame %s: %s", session.frame_cursor, exc)
            session.settle_partial(
                TerminationReason.ERROR_PARTIAL,
                SpeechTransportError(f"Sending audio failed: {exc}"),
            )
            return

        if not session.resolved:
            session.state = SessionState.DRAINING

    async def _receive(self, websocket: Any, session: TranscriptionSession) -> None:
        try:
            async for raw in websocket:
                if self._handle_message(session, raw):
                    return
        except ConnectionClosed as exc:
            logger.warning("Speech socket closed abnormally: %s", exc)
            session.settle_partial(
                TerminationReason.CLOSED,
                SpeechTransportError(f"Speech socket closed before any result arrived: {exc}"),
            )
            return
        except (OSError, WebSocketException) as exc:
            logger.warning("Speech socket error: %s", exc)
            session.settle_partial(
                TerminationReason.ERROR_PARTIAL,
                SpeechTransportError(f"Speech socket error: {exc}"),
            )
            return

        session.settle_partial(
            TerminationReason.CLOSED,
            SpeechTransportError("Speech socket closed before any result arrived"),
        )

    def _handle_message(self, session: TranscriptionSession, raw: Any) -> bool:
        """Apply one inbound envelope; return True once the session is settled."""

        try:
            envelope = json.loads(raw)
        except (TypeError, ValueError):
            logger.debug("Ignoring undecodable speech message")
            return False
        if not isinstance(envelope, Mapping):
            return False

        sid = envelope.get("sid")
        if sid:
            session.sid = sid

        code = envelope.get("code")
        if code != 0:
            session.fail(SpeechProtocolError(code, envelope.get("message"), session.sid))
            return True

        data = envelope.get("data")
        if not isinstance(data, Mapping):
            return False

        session.fragments.extend(_extract_fragments(data.get("result")))

        if data.get("status") == STATUS_LAST_FRAME:
            session.succeed(TerminationReason.COMPLETE)
            return True
        return False

    @staticmethod
    async def _close_quietly(websocket: Any) -> None:
        try:
            await websocket.close()
        except (OSError, WebSocketException) as exc:
            logger.debug("Ignoring error while closing speech socket: %s", exc)


def get_speech_client() -> XunfeiSpeechClient:
    """Return the module-level speech client singleton."""
    return _DEFAULT_CLIENT


_DEFAULT_CLIENT = XunfeiSpeechClient()


__all__ = [
    "SessionState",
    "SpeechProtocolError",
    "SpeechTimeoutError",
    "SpeechTransportError",
    "TerminationReason",
    "TranscriptionError",
    "TranscriptionResult",
    "TranscriptionSession",
    "UpstreamAuthMissing",
    "XunfeiSpeechClient",
    "build_auth_url",
    "count_frames",
    "frame_status",
    "get_speech_client",
    "rfc1123_now",
]
