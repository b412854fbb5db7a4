"""Protocol tests for the Xunfei streaming client against a scripted socket."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import hmac
from urllib.parse import parse_qs, urlparse

import pytest
from websockets.exceptions import ConnectionClosedError

from app.services.transcribe import (
    SpeechProtocolError,
    SpeechTimeoutError,
    SpeechTransportError,
    TerminationReason,
    TranscriptionError,
    UpstreamAuthMissing,
    XunfeiSpeechClient,
    build_auth_url,
    count_frames,
    frame_status,
)

from conftest import FakeWebSocket, fragment_message

FIXED_DATE = "Mon, 19 Oct 2026 08:00:00 GMT"


def _client(config, websocket: FakeWebSocket, urls: list[str] | None = None) -> XunfeiSpeechClient:
    async def connect(url: str) -> FakeWebSocket:
        if urls is not None:
            urls.append(url)
        return websocket

    return XunfeiSpeechClient(config, connect=connect)


def _complete_on_last_frame(*words: str):
    def on_send(websocket: FakeWebSocket, frame: dict) -> None:
        if frame["data"]["status"] == 2:
            websocket.push(fragment_message(*words, status=2))

    return on_send


def test_auth_url_signature_matches_hmac_of_request_line():
    url = build_auth_url(
        host="iat-api.xfyun.cn",
        path="/v2/iat",
        api_key="key456",
        api_secret="secret789",
        date=FIXED_DATE,
    )

    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    assert parsed.scheme == "wss"
    assert parsed.netloc == "iat-api.xfyun.cn"
    assert parsed.path == "/v2/iat"
    assert query["date"] == [FIXED_DATE]
    assert query["host"] == ["iat-api.xfyun.cn"]

    expected_signature = base64.b64encode(
        hmac.new(
            b"secret789",
            f"host: iat-api.xfyun.cn\ndate: {FIXED_DATE}\nGET /v2/iat HTTP/1.1".encode(),
            hashlib.sha256,
        ).digest()
    ).decode()
    authorization = base64.b64decode(query["authorization"][0]).decode()
    assert authorization == (
        'api_key="key456", algorithm="hmac-sha256", '
        f'headers="host date request-line", signature="{expected_signature}"'
    )


def test_auth_url_is_deterministic_for_fixed_date():
    kwargs = dict(host="h", path="/p", api_key="k", api_secret="s", date=FIXED_DATE)
    assert build_auth_url(**kwargs) == build_auth_url(**kwargs)


@pytest.mark.parametrize(
    ("total", "expected"),
    [
        (1, [2]),
        (2, [0, 2]),
        (4, [0, 1, 1, 2]),
    ],
)
def test_frame_status_sequence(total, expected):
    assert [frame_status(index, total) for index in range(total)] == expected


@pytest.mark.parametrize(
    ("length", "frames"),
    [(1, 1), (1280, 1), (1281, 2), (1280 * 3, 3), (1280 * 3 + 7, 4)],
)
def test_count_frames_rounds_up(length, frames):
    assert count_frames(length, 1280) == frames


def test_frames_are_sent_in_order_with_metadata_on_first_only(xunfei_config):
    pcm = bytes(range(256)) * 11
    websocket = FakeWebSocket(on_send=_complete_on_last_frame("好"))
    client = _client(xunfei_config, websocket)

    result = asyncio.run(client.transcribe_pcm(pcm))

    assert result.reason is TerminationReason.COMPLETE
    assert result.total_frames == 3
    assert [frame["data"]["status"] for frame in websocket.sent] == [0, 1, 2]
    assert "common" in websocket.sent[0] and "business" in websocket.sent[0]
    assert websocket.sent[0]["common"] == {"app_id": "app123"}
    assert websocket.sent[0]["business"]["language"] == "zh_cn"
    assert websocket.sent[0]["business"]["dwa"] == "wpgs"
    for frame in websocket.sent[1:]:
        assert "common" not in frame and "business" not in frame
    for frame in websocket.sent:
        assert frame["data"]["format"] == "audio/L16;rate=16000"
        assert frame["data"]["encoding"] == "raw"
    replayed = b"".join(base64.b64decode(frame["data"]["audio"]) for frame in websocket.sent)
    assert replayed == pcm
    assert websocket.closed


def test_single_frame_is_marked_last_and_carries_metadata(xunfei_config):
    websocket = FakeWebSocket(on_send=_complete_on_last_frame("好"))
    client = _client(xunfei_config, websocket)

    asyncio.run(client.transcribe_pcm(b"\x00\x01" * 100))

    assert len(websocket.sent) == 1
    assert websocket.sent[0]["data"]["status"] == 2
    assert "common" in websocket.sent[0]


def test_connects_with_signed_url(xunfei_config):
    urls: list[str] = []
    websocket = FakeWebSocket(on_send=_complete_on_last_frame("好"))

    asyncio.run(_client(xunfei_config, websocket, urls).transcribe_pcm(b"\x00" * 10))

    assert len(urls) == 1
    assert urls[0].startswith("wss://iat-api.xfyun.cn/v2/iat?authorization=")


def test_fragments_are_concatenated_verbatim(xunfei_config):
    def on_send(websocket: FakeWebSocket, frame: dict) -> None:
        if frame["data"]["status"] == 2:
            websocket.push(fragment_message("今天", "的"))
            websocket.push(fragment_message("清蒸", "鲈鱼"))
            websocket.push(fragment_message("很新鲜", status=2))

    websocket = FakeWebSocket(on_send=on_send)

    result = asyncio.run(_client(xunfei_config, websocket).transcribe_pcm(b"\x00" * 2000))

    assert result.transcript == "今天的清蒸鲈鱼很新鲜"
    assert result.sid == "iat000001"
    assert not result.partial


def test_completion_before_all_frames_stops_sending(xunfei_config):
    config = xunfei_config.model_copy(update={"frame_interval_ms": 10})

    def on_send(websocket: FakeWebSocket, frame: dict) -> None:
        if frame["data"]["status"] == 0:
            websocket.push(fragment_message("早", status=2))

    websocket = FakeWebSocket(on_send=on_send)

    result = asyncio.run(_client(config, websocket).transcribe_pcm(b"\x00" * 1280 * 50))

    assert result.transcript == "早"
    assert result.reason is TerminationReason.COMPLETE
    assert result.total_frames == 50
    assert len(websocket.sent) < 50
    assert websocket.closed


def test_nonzero_code_fails_even_with_fragments(xunfei_config):
    def on_send(websocket: FakeWebSocket, frame: dict) -> None:
        if frame["data"]["status"] == 2:
            websocket.push(fragment_message("今天"))
            websocket.push({"code": 10165, "message": "invalid handle", "sid": "iat9"})

    websocket = FakeWebSocket(on_send=on_send)

    with pytest.raises(SpeechProtocolError) as excinfo:
        asyncio.run(_client(xunfei_config, websocket).transcribe_pcm(b"\x00" * 100))

    assert excinfo.value.code == 10165
    assert excinfo.value.sid == "iat9"
    assert websocket.closed


def test_timeout_keeps_partial_transcript(xunfei_config):
    config = xunfei_config.model_copy(update={"timeout_seconds": 0.2})

    def on_send(websocket: FakeWebSocket, frame: dict) -> None:
        if frame["data"]["status"] == 2:
            websocket.push(fragment_message("服务", "很好"))

    websocket = FakeWebSocket(on_send=on_send)

    result = asyncio.run(_client(config, websocket).transcribe_pcm(b"\x00" * 100))

    assert result.transcript == "服务很好"
    assert result.reason is TerminationReason.TIMEOUT_PARTIAL
    assert result.partial
    assert websocket.closed


def test_timeout_without_fragments_fails(xunfei_config):
    config = xunfei_config.model_copy(update={"timeout_seconds": 0.2})
    websocket = FakeWebSocket()

    with pytest.raises(SpeechTimeoutError):
        asyncio.run(_client(config, websocket).transcribe_pcm(b"\x00" * 100))

    assert websocket.closed


def test_transport_error_keeps_partial_transcript(xunfei_config):
    def on_send(websocket: FakeWebSocket, frame: dict) -> None:
        if frame["data"]["status"] == 2:
            websocket.push(fragment_message("味道"))
            websocket.push_error(OSError("connection reset"))

    websocket = FakeWebSocket(on_send=on_send)

    result = asyncio.run(_client(xunfei_config, websocket).transcribe_pcm(b"\x00" * 100))

    assert result.transcript == "味道"
    assert result.reason is TerminationReason.ERROR_PARTIAL


def test_abnormal_close_keeps_partial_transcript_as_closed(xunfei_config):
    def on_send(websocket: FakeWebSocket, frame: dict) -> None:
        if frame["data"]["status"] == 2:
            websocket.push(fragment_message("上菜", "很快"))
            websocket.push_error(ConnectionClosedError(None, None))

    websocket = FakeWebSocket(on_send=on_send)

    result = asyncio.run(_client(xunfei_config, websocket).transcribe_pcm(b"\x00" * 100))

    assert result.transcript == "上菜很快"
    assert result.reason is TerminationReason.CLOSED


def test_abnormal_close_without_fragments_fails(xunfei_config):
    def on_send(websocket: FakeWebSocket, frame: dict) -> None:
        websocket.push_error(ConnectionClosedError(None, None))

    websocket = FakeWebSocket(on_send=on_send)

    with pytest.raises(SpeechTransportError):
        asyncio.run(_client(xunfei_config, websocket).transcribe_pcm(b"\x00" * 100))


def test_transport_error_without_fragments_fails(xunfei_config):
    def on_send(websocket: FakeWebSocket, frame: dict) -> None:
        websocket.push_error(OSError("connection reset"))

    websocket = FakeWebSocket(on_send=on_send)

    with pytest.raises(SpeechTransportError):
        asyncio.run(_client(xunfei_config, websocket).transcribe_pcm(b"\x00" * 100))


def test_close_keeps_partial_transcript(xunfei_config):
    def on_send(websocket: FakeWebSocket, frame: dict) -> None:
        if frame["data"]["status"] == 2:
            websocket.push(fragment_message("一般"))
            websocket.push_close()

    websocket = FakeWebSocket(on_send=on_send)

    result = asyncio.run(_client(xunfei_config, websocket).transcribe_pcm(b"\x00" * 100))

    assert result.transcript == "一般"
    assert result.reason is TerminationReason.CLOSED


def test_close_without_fragments_fails_immediately(xunfei_config):
    def on_send(websocket: FakeWebSocket, frame: dict) -> None:
        websocket.push_close()

    websocket = FakeWebSocket(on_send=on_send)

    with pytest.raises(SpeechTransportError):
        asyncio.run(_client(xunfei_config, websocket).transcribe_pcm(b"\x00" * 100))


def test_undecodable_messages_are_ignored(xunfei_config):
    def on_send(websocket: FakeWebSocket, frame: dict) -> None:
        if frame["data"]["status"] == 2:
            websocket.push("not json")
            websocket.push("[1, 2]")
            websocket.push(fragment_message("好吃", status=2))

    websocket = FakeWebSocket(on_send=on_send)

    result = asyncio.run(_client(xunfei_config, websocket).transcribe_pcm(b"\x00" * 100))

    assert result.transcript == "好吃"


def test_connect_failure_is_transport_error(xunfei_config):
    async def connect(url: str):
        raise OSError("dns failure")

    client = XunfeiSpeechClient(xunfei_config, connect=connect)

    with pytest.raises(SpeechTransportError):
        asyncio.run(client.transcribe_pcm(b"\x00" * 100))


def test_empty_pcm_is_rejected_before_connecting(xunfei_config):
    urls: list[str] = []
    client = _client(xunfei_config, FakeWebSocket(), urls)

    with pytest.raises(TranscriptionError):
        asyncio.run(client.transcribe_pcm(b""))

    assert urls == []


def test_missing_credentials_raise(xunfei_config):
    config = xunfei_config.model_copy(update={"app_id": ""})
    urls: list[str] = []
    client = _client(config, FakeWebSocket(), urls)

    assert not client.configured
    with pytest.raises(UpstreamAuthMissing):
        asyncio.run(client.transcribe_pcm(b"\x00" * 100))
    assert urls == []
