"""Schemas for the recording processing endpoints."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ProcessAudioRequest(BaseModel):
    recording_id: str = Field(min_length=1, max_length=64)
    audio_url: str = Field(min_length=1, max_length=2048)
    table_id: Optional[str] = None
    restaurant_id: Optional[str] = None


class ProcessAudioResponse(BaseModel):
    success: bool = True
    recording_id: str
    transcript: str
    corrected_transcript: str
    ai_summary: str
    sentiment_score: float
    keywords: List[str]
    manager_questions: List[str]
    customer_answers: List[str]
    transcript_source: str
    annotation_source: str


class RecordingStatusResponse(BaseModel):
    recording_id: str
    status: str
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    ai_summary: Optional[str] = None
