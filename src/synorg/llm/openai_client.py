"""OpenAI-compatible chat completions client over httpx."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from synorg.config import LlmSettings
from synorg.llm.base import LlmResponse, build_system_message, build_user_message, normalize_usage
from synorg.orchestrator.sanitization import redact_secrets

logger = logging.getLogger(__name__)


class OpenAiChatClient:
    """Requests JSON-object completions; transport and API errors become ``LlmResponse.error``."""

    def __init__(
        self,
        settings: LlmSettings,
        *,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not settings.api_key:
            raise ValueError("SYNORG_LLM_API_KEY (or OPENAI_API_KEY) is required.")
        self.settings = settings
        self._api_key = settings.api_key
        self._client = httpx.Client(
            base_url=settings.api_base_url.rstrip("/"),
            timeout=httpx.Timeout(settings.request_timeout_seconds, connect=10.0),
            headers={"Authorization": f"Bearer {settings.api_key}"},
            transport=transport,
        )

    def chat(
        self,
        prompt: str,
        context: dict[str, Any],
        schema: dict[str, Any],
    ) -> LlmResponse:
        body = {
            "model": self.settings.model,
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": build_system_message(context, schema)},
                {"role": "user", "content": build_user_message(prompt, context)},
            ],
        }
        try:
            response = self._client.post("/chat/completions", json=body)
        except httpx.TimeoutException:
            logger.warning("LLM request timed out after %ss", self.settings.request_timeout_seconds)
            return LlmResponse(content=None, error="LLM request timed out")
        except httpx.HTTPError as exc:
            message = self._redact(str(exc))
            logger.warning("LLM request failed: %s", message)
            return LlmResponse(content=None, error=f"LLM request failed: {message}")

        if not response.is_success:
            detail = self._redact(response.text)[:500]
            logger.warning("LLM API returned HTTP %s: %s", response.status_code, detail)
            return LlmResponse(
                content=None,
                error=f"LLM API returned HTTP {response.status_code}: {detail}",
            )
        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            return LlmResponse(content=None, error="LLM API returned an unexpected payload")
        return LlmResponse(content=content, usage=normalize_usage(data.get("usage")))

    def close(self) -> None:
        self._client.close()

    def _redact(self, text: str) -> str:
        return redact_secrets(text, secrets=(self._api_key,))
