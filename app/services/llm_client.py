"""Thin client for an OpenAI-compatible chat completion endpoint."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from app.config.settings import AnnotationConfig, settings

logger = logging.getLogger(__name__)


class LlmInvocationError(RuntimeError):
    """Raised when the chat completion request fails."""


class ChatCompletionClient:
    """POST system/user prompts and return the first choice's text."""

    def __init__(
        self,
        config: AnnotationConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or settings.annotation
        self._transport = transport

    @property
    def configured(self) -> bool:
        return self._config.configured

    async def invoke(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int | None = None,
        temperature: float | None = None,
        model: str | None = None,
    ) -> str | None:
        """Run one completion; ``None`` means no credentials or no content."""

        if not self.configured:
            return None

        payload = {
            "model": model or self._config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": (
                temperature if temperature is not None else self._config.temperature
            ),
            "max_tokens": max_tokens or self._config.max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self._config.api_key.get_secret_value()}",
            "Content-Type": "application/json",
        }

        try:
            async with httpx.AsyncClient(
                timeout=self._config.timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.post(self._config.api_url, json=payload, headers=headers)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text[:300]
            raise LlmInvocationError(
                f"Chat completion failed with HTTP {exc.response.status_code}: {detail}"
            ) from exc
        except httpx.RequestError as exc:
            raise LlmInvocationError(f"Chat completion request failed: {exc}") from exc
        except ValueError as exc:
            raise LlmInvocationError(f"Chat completion returned invalid JSON: {exc}") from exc

        content = _first_choice_content(body)
        return content.strip() if content and content.strip() else None


def _first_choice_content(body: Any) -> str | None:
    if not isinstance(body, dict):
        return None
    choices = body.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    return content if isinstance(content, str) else None


__all__ = ["ChatCompletionClient", "LlmInvocationError"]
