"""Integration-style tests for the /audio endpoints."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.controllers.dependencies import get_pipeline
from app.main import app
from app.pipelines.audio import InMemoryResultSink
from app.services.transcoding import TranscodeFailure

from conftest import FakeLlmClient, FakeSpeechClient, build_pipeline


@pytest.fixture
def sink() -> InMemoryResultSink:
    return InMemoryResultSink()


@pytest.fixture(autouse=True)
def override_dependencies(sink: InMemoryResultSink):
    """Swap the real pipeline for one backed by fakes and in-memory storage."""

    pipeline = build_pipeline(sink=sink)
    app.dependency_overrides[get_pipeline] = lambda: pipeline

    yield pipeline

    app.dependency_overrides.clear()


def test_process_audio_returns_annotation(sink: InMemoryResultSink):
    client = TestClient(app)

    response = client.post(
        "/audio/process",
        json={
            "recording_id": "rec-001",
            "audio_url": "https://cdn.example.com/visits/rec-001.webm",
            "table_id": "A3",
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["success"] is True
    assert payload["recording_id"] == "rec-001"
    assert payload["transcript"] == "清蒸鲈鱼很新鲜"
    assert payload["sentiment_score"] == 0.9
    assert payload["keywords"] == ["清蒸鲈鱼", "新鲜"]
    assert payload["transcript_source"] == "speech"
    assert payload["annotation_source"] == "model"
    assert sink.records["rec-001"]["status"] == "processed"


def test_process_audio_rejects_processed_recording(sink: InMemoryResultSink):
    sink.seed("rec-002", status="processed")
    client = TestClient(app)

    response = client.post(
        "/audio/process",
        json={"recording_id": "rec-002", "audio_url": "https://cdn.example.com/rec-002.webm"},
    )

    assert response.status_code == 409
    assert "already processed" in response.json()["detail"]


def test_process_audio_reports_stage_failure(sink: InMemoryResultSink):
    async def broken_normalize(audio_bytes: bytes, source_format: str) -> bytes:
        raise TranscodeFailure("ffmpeg exploded")

    pipeline = build_pipeline(sink=sink, normalize=broken_normalize)
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    client = TestClient(app)

    response = client.post(
        "/audio/process",
        json={"recording_id": "rec-003", "audio_url": "https://cdn.example.com/rec-003.webm"},
    )

    assert response.status_code == 502
    assert "transcription failed" in response.json()["detail"]
    assert sink.records["rec-003"]["status"] == "error"


def test_process_audio_validates_payload():
    client = TestClient(app)

    response = client.post("/audio/process", json={"recording_id": ""})

    assert response.status_code == 422


def test_status_endpoint(sink: InMemoryResultSink):
    pipeline = build_pipeline(
        sink=sink,
        speech=FakeSpeechClient(configured=False),
        llm=FakeLlmClient(configured=False),
    )
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    client = TestClient(app)

    client.post(
        "/audio/process",
        json={"recording_id": "rec-004", "audio_url": "https://cdn.example.com/rec-004.webm"},
    )
    response = client.get("/audio/status/rec-004")

    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "processed"
    assert payload["ai_summary"] == "无摘要"
    assert payload["processed_at"] is not None


def test_status_endpoint_unknown_recording():
    client = TestClient(app)

    response = client.get("/audio/status/missing")

    assert response.status_code == 404


def test_health_and_metrics_endpoints():
    client = TestClient(app)

    health = client.get("/health")
    metrics = client.get("/metrics")

    assert health.status_code == 200
    assert health.json()["status"] == "healthy"
    assert metrics.status_code == 200
    assert "recording_pipeline_runs_total" in metrics.text
