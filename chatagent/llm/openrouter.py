"""OpenRouter implementation of LLMProvider."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from chatagent.config import Settings
from chatagent.llm.base import LLMProvider
from chatagent.models import LLMResponse, LLMToolCall

_LOGGER = logging.getLogger(__name__)

_RETRY_BACKOFF_SECONDS = (2, 5, 15)
_RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class OpenRouterProvider(LLMProvider):
    """LLM provider using OpenRouter's OpenAI-compatible chat endpoint."""

    def __init__(self, settings: Settings, backoff_seconds: tuple[float, ...] = _RETRY_BACKOFF_SECONDS) -> None:
        self._settings = settings
        self._backoff_seconds = backoff_seconds

    async def generate(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> LLMResponse:
        payload: dict[str, Any] = {"model": self._settings.openrouter_model, "messages": messages}
        if tools:
            payload["tools"] = tools
        data = await self._post(payload)
        return parse_completion(data)

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self._settings.openrouter_api_key}",
            "Content-Type": "application/json",
        }
        timeout = httpx.Timeout(self._settings.request_timeout_seconds)
        async with httpx.AsyncClient(base_url=self._settings.openrouter_base_url, timeout=timeout) as client:
            attempt = 0
            while True:
                response = await client.post("/chat/completions", headers=headers, json=payload)
                if response.status_code in _RETRYABLE_STATUS and attempt < len(self._backoff_seconds):
                    wait = self._backoff_seconds[attempt]
                    attempt += 1
                    _LOGGER.warning(
                        "OpenRouter returned %d, retrying in %ss (attempt %d/%d)",
                        response.status_code,
                        wait,
                        attempt,
                        len(self._backoff_seconds),
                    )
                    await asyncio.sleep(wait)
                    continue
                response.raise_for_status()
                return response.json()


def parse_completion(data: dict[str, Any]) -> LLMResponse:
    """Turn a chat-completions payload into an LLMResponse."""

    choice = data["choices"][0]
    message = choice["message"]
    content = message.get("content") or ""
    _LOGGER.info(
        "LLM response: finish_reason=%r content=%r tool_calls=%d",
        choice.get("finish_reason"),
        content[:200],
        len(message.get("tool_calls") or []),
    )
    tool_calls = [
        LLMToolCall(
            name=raw.get("function", {}).get("name", ""),
            arguments=_safe_json_loads(raw.get("function", {}).get("arguments") or "{}"),
            call_id=raw.get("id"),
        )
        for raw in message.get("tool_calls") or []
    ]
    return LLMResponse(content=content, tool_calls=tool_calls, raw=data)


def _safe_json_loads(raw: str) -> dict[str, Any]:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return parsed if isinstance(parsed, dict) else {}
