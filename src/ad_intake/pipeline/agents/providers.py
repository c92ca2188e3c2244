"""HTTP clients for the OpenRouter and Gemini extraction providers."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ad_intake.pipeline.agents.base import AgentConfigurationError

logger = logging.getLogger(__name__)

OPENROUTER_CHAT_URL = "https://openrouter.ai/api/v1/chat/completions"
GEMINI_GENERATE_URL = (
    "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
)


class _HttpProvider:
    label = "provider"

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        timeout_seconds: float,
        client: httpx.Client | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout_seconds, connect=10.0))

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> _HttpProvider:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _post_json(self, url: str, **kwargs: Any) -> Any:
        response = self._client.post(url, **kwargs)
        response.raise_for_status()
        logger.debug("%s answered with HTTP %d", self.label, response.status_code)
        return response.json()


class OpenRouterProvider(_HttpProvider):
    """OpenAI-compatible chat completion through OpenRouter."""

    label = "OpenRouter"

    def complete(self, prompt: str) -> str:
        if not self.api_key:
            raise AgentConfigurationError("OPENROUTER_API_KEY missing")
        data = self._post_json(
            OPENROUTER_CHAT_URL,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
            },
        )
        return _first_text(data, ("choices", 0, "message", "content"))


class GeminiProvider(_HttpProvider):
    """Google Generative Language ``generateContent`` endpoint."""

    label = "Gemini"

    def complete(self, prompt: str) -> str:
        if not self.api_key:
            raise AgentConfigurationError("GOOGLE_API_KEY missing")
        data = self._post_json(
            GEMINI_GENERATE_URL.format(model=self.model),
            params={"key": self.api_key},
            json={"contents": [{"parts": [{"text": prompt}]}]},
        )
        return _first_text(data, ("candidates", 0, "content", "parts", 0, "text"))


def _first_text(data: Any, path: tuple[str | int, ...]) -> str:
    current = data
    for step in path:
        if isinstance(step, int):
            if not isinstance(current, list) or len(current) <= step:
                return ""
        elif not isinstance(current, dict) or step not in current:
            return ""
        current = current[step]
    return "" if current is None else str(current)
