"""SQLAlchemy model for recorded table visits."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Float, String, Text
from sqlalchemy.dialects.postgresql import JSONB

from app.models.base import Base


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class VisitRecord(Base):
    """One uploaded table-visit recording and its processing outcome."""

    __tablename__ = "visit_records"

    id = Column(String(64), primary_key=True)
    restaurant_id = Column(String(64), nullable=True, index=True)
    table_id = Column(String(32), nullable=True)
    audio_url = Column(String(2048), nullable=True)
    # One of RecordingStatus; NULL means the pipeline never touched the row.
    status = Column(String(16), nullable=True, index=True)

    raw_transcript = Column(Text, nullable=True)
    corrected_transcript = Column(Text, nullable=True)
    ai_summary = Column(Text, nullable=True)
    sentiment_score = Column(Float, nullable=True)
    keywords = Column(JSONB, nullable=True)
    manager_questions = Column(JSONB, nullable=True)
    customer_answers = Column(JSONB, nullable=True)
    error_message = Column(Text, nullable=True)

    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )


__all__ = ["VisitRecord"]
