"""Prompt construction for the transcript annotation stage."""

from __future__ import annotations

from typing import Sequence

from app.config.settings import settings

from .types import AnnotationRequest

_SYSTEM_TEMPLATE = """分析餐饮桌访对话，提取结构化信息。

菜单参考（用于纠正菜名错字）：{vocabulary}

只输出如下格式的JSON，不要输出任何其他内容：
{{
  "correctedTranscript": "纠正菜名错字后的完整文本",
  "aiSummary": "20字以内的摘要",
  "sentimentScore": 0.5,
  "keywords": ["关键词1", "关键词2"],
  "managerQuestions": ["店长的问题1", "店长的问题2"],
  "customerAnswers": ["顾客的回答1", "顾客的回答2"]
}}

规则：
1. sentimentScore 取值0到1，0表示极差，0.5表示中性，1表示极好
2. keywords 提取菜名、评价词、服务相关词，最多10个
3. managerQuestions 为店长或服务员说的话（问候或询问）
4. customerAnswers 为顾客的回复
5. 没有内容的项返回空数组[]"""


def cap_vocabulary(vocabulary: Sequence[str], limit: int | None = None) -> tuple[str, ...]:
    """Keep the first ``limit`` non-blank entries, de-duplicated in order."""

    limit = settings.annotation.vocabulary_limit if limit is None else limit
    kept: list[str] = []
    for entry in vocabulary:
        if len(kept) >= limit:
            break
        name = entry.strip() if isinstance(entry, str) else ""
        if name and name not in kept:
            kept.append(name)
    return tuple(kept)


def build_annotation_request(
    transcript: str,
    vocabulary: Sequence[str],
    *,
    limit: int | None = None,
) -> AnnotationRequest:
    """Assemble system/user prompts for the annotation model."""

    capped = cap_vocabulary(vocabulary, limit)
    return AnnotationRequest(
        transcript=transcript,
        vocabulary=capped,
        system_prompt=_SYSTEM_TEMPLATE.format(vocabulary="、".join(capped) or "（无）"),
        user_prompt=f"对话文本：\n{transcript}",
    )


__all__ = ["build_annotation_request", "cap_vocabulary"]
