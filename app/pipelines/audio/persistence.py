"""Persistence stage: result sinks and menu vocabulary sources.

The orchestrator only needs a narrow key-value contract (status read, status
write, final result write, error write). ``SqlAlchemyResultSink`` backs it
with the ``visit_records`` table; ``InMemoryResultSink`` is used in mock
storage mode and in tests.
"""

from __future__ import annotations

import logging
from contextlib import AbstractAsyncContextManager
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.menu_dish import MenuDish
from app.models.visit_record import VisitRecord

from .types import PersistenceFailure, ProcessingResult, RecordingContext, RecordingStatus

logger = logging.getLogger("app.services.audio_pipeline")

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]

DEFAULT_DISH_NAMES = (
    "清蒸鲈鱼",
    "油焖大虾",
    "招牌红烧肉",
    "宫保鸡丁",
    "蒜蓉粉丝虾",
    "酸菜鱼",
    "小炒黄牛肉",
    "干锅花菜",
)


class ResultSink(Protocol):
    async def get_status(self, recording_id: str) -> Optional[RecordingStatus]: ...

    async def set_status(self, recording_id: str, status: RecordingStatus) -> None: ...

    async def save_result(self, recording_id: str, result: ProcessingResult) -> None: ...

    async def mark_error(self, recording_id: str, message: str) -> None: ...

    async def get_record(self, recording_id: str) -> Optional[dict[str, Any]]: ...


class VocabularySource(Protocol):
    async def __call__(self, context: RecordingContext) -> list[str]: ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _result_fields(result: ProcessingResult) -> dict[str, Any]:
    annotation = result.annotation
    return {
        "raw_transcript": result.transcript,
        "corrected_transcript": annotation.corrected_transcript,
        "ai_summary": annotation.summary,
        "sentiment_score": annotation.sentiment_score,
        "keywords": list(annotation.keywords),
        "manager_questions": list(annotation.manager_questions),
        "customer_answers": list(annotation.customer_answers),
        "status": RecordingStatus.PROCESSED.value,
        "error_message": None,
        "processed_at": _utc_now(),
    }


def _record_view(record: VisitRecord) -> dict[str, Any]:
    return {
        "recording_id": record.id,
        "status": RecordingStatus.parse(record.status).value,
        "processed_at": record.processed_at,
        "error_message": record.error_message,
        "ai_summary": record.ai_summary,
    }


class SqlAlchemyResultSink:
    """Write pipeline state into ``visit_records``."""

    def __init__(self, session_scope: SessionScope) -> None:
        self._session_scope = session_scope

    async def get_status(self, recording_id: str) -> Optional[RecordingStatus]:
        try:
            async with self._session_scope() as session:
                result = await session.execute(
                    select(VisitRecord.status).where(VisitRecord.id == recording_id)
                )
                status = result.scalar_one_or_none()
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceFailure(f"Failed to read status for {recording_id}: {exc}") from exc
        return RecordingStatus.parse(status) if status else None

    async def set_status(self, recording_id: str, status: RecordingStatus) -> None:
        await self._update(recording_id, {"status": status.value})

    async def save_result(self, recording_id: str, result: ProcessingResult) -> None:
        await self._update(recording_id, _result_fields(result))

    async def mark_error(self, recording_id: str, message: str) -> None:
        await self._update(
            recording_id,
            {"status": RecordingStatus.ERROR.value, "error_message": message},
        )

    async def get_record(self, recording_id: str) -> Optional[dict[str, Any]]:
        try:
            async with self._session_scope() as session:
                record = await session.get(VisitRecord, recording_id)
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceFailure(f"Failed to load {recording_id}: {exc}") from exc
        return _record_view(record) if record else None

    async def _update(self, recording_id: str, fields: dict[str, Any]) -> None:
        try:
            async with self._session_scope() as session:
                record = await session.get(VisitRecord, recording_id)
                if record is None:
                    # Recordings normally exist already; keep the outcome anyway.
                    record = VisitRecord(id=recording_id)
                    session.add(record)
                for key, value in fields.items():
                    setattr(record, key, value)
                await session.commit()
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceFailure(f"Failed to update {recording_id}: {exc}") from exc


class InMemoryResultSink:
    """Dictionary-backed sink for mock storage mode."""

    def __init__(self) -> None:
        self.records: dict[str, dict[str, Any]] = {}

    def seed(self, recording_id: str, **fields: Any) -> None:
        self.records.setdefault(recording_id, {}).update(fields)

    async def get_status(self, recording_id: str) -> Optional[RecordingStatus]:
        record = self.records.get(recording_id)
        if not record or not record.get("status"):
            return None
        return RecordingStatus.parse(record["status"])

    async def set_status(self, recording_id: str, status: RecordingStatus) -> None:
        self.seed(recording_id, status=status.value)

    async def save_result(self, recording_id: str, result: ProcessingResult) -> None:
        self.seed(recording_id, **_result_fields(result))
        logger.info(
            "[MOCK] Saved results for %s: summary=%s score=%s keywords=%s",
            recording_id,
            result.annotation.summary,
            result.annotation.sentiment_score,
            ", ".join(result.annotation.keywords),
        )

    async def mark_error(self, recording_id: str, message: str) -> None:
        self.seed(recording_id, status=RecordingStatus.ERROR.value, error_message=message)

    async def get_record(self, recording_id: str) -> Optional[dict[str, Any]]:
        record = self.records.get(recording_id)
        if record is None:
            return None
        return {
            "recording_id": recording_id,
            "status": RecordingStatus.parse(record.get("status")).value,
            "processed_at": record.get("processed_at"),
            "error_message": record.get("error_message"),
            "ai_summary": record.get("ai_summary"),
        }


class SqlAlchemyVocabularySource:
    """Active dish names for the restaurant that owns the recording."""

    def __init__(self, session_scope: SessionScope, *, max_entries: int = 200) -> None:
        self._session_scope = session_scope
        self._max_entries = max_entries

    async def __call__(self, context: RecordingContext) -> list[str]:
        query = select(MenuDish.name).where(MenuDish.active.is_(True))
        if context.restaurant_id:
            query = query.where(MenuDish.restaurant_id == context.restaurant_id)
        query = query.order_by(MenuDish.id).limit(self._max_entries)
        try:
            async with self._session_scope() as session:
                result = await session.execute(query)
                return [name for name in result.scalars().all() if name]
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceFailure(f"Failed to load dish names: {exc}") from exc


class StaticVocabularySource:
    def __init__(self, names: Iterable[str] = DEFAULT_DISH_NAMES) -> None:
        self._names = list(names)

    async def __call__(self, context: RecordingContext) -> list[str]:
        return list(self._names)


__all__ = [
    "DEFAULT_DISH_NAMES",
    "InMemoryResultSink",
    "ResultSink",
    "SqlAlchemyResultSink",
    "SqlAlchemyVocabularySource",
    "StaticVocabularySource",
    "VocabularySource",
]
