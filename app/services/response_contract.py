"""Pydantic models for validating the annotation model's JSON replies.

The model is asked for JSON only but regularly wraps it in Markdown fences or
prose. ``extract_json_object`` repairs the text, ``AnnotationResult`` then
normalizes each field independently so a bad field never discards the good
ones.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any, List, Mapping

from pydantic import BaseModel, Field, ValidationInfo, model_validator

SUMMARY_FALLBACK = "无摘要"
SENTIMENT_FALLBACK = 0.5

_LEADING_JSON_FENCE = re.compile(r"^```json\s*")
_LEADING_FENCE = re.compile(r"^```\s*")
_TRAILING_FENCE = re.compile(r"```\s*$")
# Greedy on purpose: spans from the first "{" to the last "}".
_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


class AnnotationParseFailure(ValueError):
    """Raised when no JSON object can be recovered from the model reply."""


def strip_code_fence(payload: str) -> str:
    """Trim whitespace and remove a surrounding Markdown code fence."""

    cleaned = payload.strip()
    if cleaned.startswith("```json"):
        cleaned = _TRAILING_FENCE.sub("", _LEADING_JSON_FENCE.sub("", cleaned))
    elif cleaned.startswith("```"):
        cleaned = _TRAILING_FENCE.sub("", _LEADING_FENCE.sub("", cleaned))
    return cleaned


def extract_json_object(payload: str | None) -> str:
    """Return the outermost ``{...}`` span of a loosely formatted reply."""

    if not payload or not payload.strip():
        raise AnnotationParseFailure("Empty model reply")

    match = _JSON_OBJECT.search(strip_code_fence(payload))
    if not match:
        raise AnnotationParseFailure("No JSON object found in model reply")
    return match.group(0)


def _pick(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return None


def _text_or(value: Any, fallback: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return fallback


def _score_or_fallback(value: Any) -> float:
    if isinstance(value, bool):
        return SENTIMENT_FALLBACK
    try:
        if isinstance(value, str):
            value = float(value.strip())
        if not isinstance(value, (int, float)):
            return SENTIMENT_FALLBACK
        score = float(value)
    except (OverflowError, ValueError):
        return SENTIMENT_FALLBACK
    if math.isnan(score):
        return SENTIMENT_FALLBACK
    return max(0.0, min(1.0, score))


def _string_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


class AnnotationResult(BaseModel):
    """Structured feedback extracted from one table-visit transcript.

    Validation never fails on content: missing or mistyped fields fall back to
    the transcript (``corrected_transcript``), ``"无摘要"`` (``summary``),
    ``0.5`` (``sentiment_score``) or an empty list. Pass the raw transcript in
    the validation context so the corrected-text fallback can echo it.
    """

    corrected_transcript: str = Field(alias="correctedTranscript")
    summary: str = Field(default=SUMMARY_FALLBACK, alias="aiSummary")
    sentiment_score: float = Field(default=SENTIMENT_FALLBACK, alias="sentimentScore")
    keywords: List[str] = Field(default_factory=list)
    manager_questions: List[str] = Field(default_factory=list, alias="managerQuestions")
    customer_answers: List[str] = Field(default_factory=list, alias="customerAnswers")

    model_config = {"populate_by_name": True, "extra": "ignore"}

    @model_validator(mode="before")
    @classmethod
    def apply_fallbacks(cls, data: Any, info: ValidationInfo) -> dict[str, Any]:
        context = info.context or {}
        transcript = context.get("transcript", "")
        raw = data if isinstance(data, Mapping) else {}
        return {
            "correctedTranscript": _text_or(
                _pick(raw, "correctedTranscript", "corrected_transcript"), transcript
            ),
            "aiSummary": _text_or(_pick(raw, "aiSummary", "summary"), SUMMARY_FALLBACK),
            "sentimentScore": _score_or_fallback(
                _pick(raw, "sentimentScore", "sentiment_score")
            ),
            "keywords": _string_list(_pick(raw, "keywords")),
            "managerQuestions": _string_list(
                _pick(raw, "managerQuestions", "manager_questions")
            ),
            "customerAnswers": _string_list(
                _pick(raw, "customerAnswers", "customer_answers")
            ),
        }

    @classmethod
    def from_reply(cls, payload: str | None, transcript: str) -> "AnnotationResult":
        """Repair and parse a model reply; raise ``AnnotationParseFailure`` if hopeless."""

        candidate = extract_json_object(payload)
        try:
            data = json.loads(candidate)
        except ValueError as exc:
            raise AnnotationParseFailure(f"Invalid JSON in model reply: {exc}") from exc
        if not isinstance(data, dict):
            raise AnnotationParseFailure("Model reply JSON is not an object")
        return cls.model_validate(data, context={"transcript": transcript})

    @classmethod
    def fallback(cls, transcript: str) -> "AnnotationResult":
        """Deterministic result used whenever the model cannot be consulted."""

        return cls.model_validate({}, context={"transcript": transcript})


__all__ = [
    "SENTIMENT_FALLBACK",
    "SUMMARY_FALLBACK",
    "AnnotationParseFailure",
    "AnnotationResult",
    "extract_json_object",
    "strip_code_fence",
]
