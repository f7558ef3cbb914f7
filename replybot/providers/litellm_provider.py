"""LiteLLM-backed providers: OpenAI-compatible, Gemini and local Ollama."""

from typing import Any

import litellm
from litellm import acompletion

from replybot.config.schema import LLMSettings
from replybot.errors import ConfigError
from replybot.providers.base import LLMProvider, GenerationContext, PROBE_TEXT


class LiteLLMProvider(LLMProvider):
    """
    Provider using LiteLLM's unified completion API.

    Subclasses only declare how model names are prefixed, which API base
    applies by default and whether a key is mandatory.
    """

    prefix: str = ""
    default_api_base: str | None = None
    requires_api_key: bool = True
    probe_max_tokens: int = 5

    def __init__(self, settings: LLMSettings):
        super().__init__(settings)

        # Usage tracking
        self._total_tokens = 0
        self._prompt_tokens = 0
        self._completion_tokens = 0
        self._request_count = 0

        # Disable LiteLLM logging noise
        litellm.suppress_debug_info = True

    def validate(self) -> None:
        if self.requires_api_key and not self.settings.api_key:
            raise ConfigError(f"{self.name} provider requires an API key")
        if not self.settings.model:
            raise ConfigError(f"{self.name} provider requires a model")

    def _format_model_name(self, model: str) -> str:
        """Format model name for LiteLLM based on provider."""
        if self.prefix and not model.startswith(self.prefix):
            return f"{self.prefix}{model}"
        return model

    def _get_api_base(self) -> str | None:
        return self.settings.base_url or self.default_api_base

    async def complete(
        self,
        system_prompt: str,
        user_text: str,
        context: GenerationContext | None = None,
    ) -> str:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_text},
        ]
        return await self._call(messages, self.settings.max_tokens)

    async def test_connection(self) -> bool:
        reply = await self._call(
            [{"role": "user", "content": PROBE_TEXT}],
            self.probe_max_tokens,
        )
        return bool(reply)

    async def _call(self, messages: list[dict[str, Any]], max_tokens: int) -> str:
        kwargs: dict[str, Any] = {
            "model": self._format_model_name(self.settings.model),
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": self.settings.temperature,
        }

        if self.settings.api_key:
            kwargs["api_key"] = self.settings.api_key

        api_base = self._get_api_base()
        if api_base:
            kwargs["api_base"] = api_base

        if self.settings.headers:
            kwargs["extra_headers"] = dict(self.settings.headers)

        response = await acompletion(**kwargs)
        self._request_count += 1
        return self._parse_response(response)

    def _parse_response(self, response: Any) -> str:
        """Extract the reply text and track usage."""
        if hasattr(response, "usage") and response.usage:
            self._total_tokens += getattr(response.usage, "total_tokens", 0) or 0
            self._prompt_tokens += getattr(response.usage, "prompt_tokens", 0) or 0
            self._completion_tokens += getattr(response.usage, "completion_tokens", 0) or 0

        if not response.choices:
            return ""

        content = response.choices[0].message.content
        return (content or "").strip()

    def get_usage_stats(self) -> dict[str, Any]:
        """Get usage statistics."""
        return {
            "total_tokens": self._total_tokens,
            "prompt_tokens": self._prompt_tokens,
            "completion_tokens": self._completion_tokens,
            "request_count": self._request_count,
        }


class OpenAICompatibleProvider(LiteLLMProvider):
    """OpenAI or any OpenAI-compatible endpoint (set base_url)."""
    name = "openai"
    prefix = "openai/"


class GeminiProvider(LiteLLMProvider):
    """Google Gemini via the Generative Language API."""
    name = "gemini"
    prefix = "gemini/"


class OllamaProvider(LiteLLMProvider):
    """Local Ollama server."""
    name = "ollama"
    prefix = "ollama/"
    default_api_base = "http://localhost:11434"
    requires_api_key = False
