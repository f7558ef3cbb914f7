"""Custom HTTP provider for self-hosted reply services."""

from typing import Any

import httpx

from replybot.config.schema import LLMSettings
from replybot.errors import ConfigError
from replybot.providers.base import LLMProvider, GenerationContext, PROBE_TEXT


class CustomHTTPProvider(LLMProvider):
    """
    Posts the message to an operator-supplied endpoint.

    Request body:
        {"message": str, "context": {...},
         "settings": {"maxTokens": int, "temperature": float, "systemPrompt": str}}

    The reply is read from the "response" field, or "message" if absent.
    """

    name = "custom"

    def __init__(self, settings: LLMSettings, client: httpx.AsyncClient | None = None):
        super().__init__(settings)
        self._client = client or httpx.AsyncClient(timeout=settings.timeout_seconds)
        self._request_count = 0

    def validate(self) -> None:
        if not self.settings.custom_endpoint:
            raise ConfigError("Custom endpoint not configured")

    async def complete(
        self,
        system_prompt: str,
        user_text: str,
        context: GenerationContext | None = None,
    ) -> str:
        payload = {
            "message": user_text,
            "context": context.to_dict() if context else {},
            "settings": {
                "maxTokens": self.settings.max_tokens,
                "temperature": self.settings.temperature,
                "systemPrompt": system_prompt,
            },
        }

        response = await self._client.post(
            self.settings.custom_endpoint,
            json=payload,
            headers={"Content-Type": "application/json", **self.settings.headers},
        )
        response.raise_for_status()
        self._request_count += 1

        return self._parse_response(response.json())

    def _parse_response(self, data: Any) -> str:
        if not isinstance(data, dict):
            return ""
        reply = data.get("response") or data.get("message") or ""
        return str(reply).strip()

    async def test_connection(self) -> bool:
        reply = await self.complete(self.settings.system_prompt, PROBE_TEXT)
        return bool(reply)

    async def close(self) -> None:
        await self._client.aclose()

    def get_usage_stats(self) -> dict[str, Any]:
        return {"request_count": self._request_count}
