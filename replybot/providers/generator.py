"""
Response generator with provider lifecycle management.

Provides:
- Provider selection from configuration (once per initialization)
- Connectivity probe at initialization (fails closed)
- Timeout-bound generation with cancellation
- Hot swap of settings
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from loguru import logger

from replybot.config.schema import LLMSettings
from replybot.errors import GenerationError, GenerationTimeout, ProviderNotReady
from replybot.providers.base import LLMProvider, GenerationContext, build_system_prompt
from replybot.providers.custom import CustomHTTPProvider
from replybot.providers.litellm_provider import (
    GeminiProvider,
    OllamaProvider,
    OpenAICompatibleProvider,
)


PROVIDERS: dict[str, type[LLMProvider]] = {
    "openai": OpenAICompatibleProvider,
    "gemini": GeminiProvider,
    "ollama": OllamaProvider,
    "custom": CustomHTTPProvider,
}

PROVIDER_DESCRIPTIONS = {
    "openai": "OpenAI or any OpenAI-compatible API (set base_url)",
    "gemini": "Google Gemini models",
    "ollama": "Local models served by Ollama",
    "custom": "Self-hosted HTTP endpoint",
}


def create_provider(settings: LLMSettings) -> LLMProvider:
    """Instantiate the provider class named in the settings."""
    try:
        provider_cls = PROVIDERS[settings.provider]
    except KeyError:
        raise GenerationError(f"Unsupported LLM provider: {settings.provider}") from None
    return provider_cls(settings)


class GeneratorState(Enum):
    """Generator lifecycle states."""
    DISABLED = "disabled"          # Turned off in settings
    INITIALIZING = "initializing"  # Probing the provider
    READY = "ready"                # Provider validated
    ERROR = "error"                # Probe or validation failed


class ResponseGenerator:
    """
    Turns (text, context) into a reply through the configured provider.

    generate() raises GenerationError (or GenerationTimeout /
    ProviderNotReady) on any failure; callers substitute their fallback.
    """

    def __init__(
        self,
        settings: LLMSettings | None = None,
        provider_factory: Callable[[LLMSettings], LLMProvider] = create_provider,
    ):
        self._settings = settings or LLMSettings()
        self._provider_factory = provider_factory
        self._provider: LLMProvider | None = None

        self._state = GeneratorState.DISABLED
        self._error: str | None = None
        self._initialized_at: datetime | None = None
        self._lock = asyncio.Lock()

        # Stats
        self._success_count = 0
        self._failure_count = 0
        self._timeout_count = 0
        self._last_error: str = ""

    @property
    def state(self) -> GeneratorState:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == GeneratorState.READY

    @property
    def settings(self) -> LLMSettings:
        return self._settings

    @property
    def provider(self) -> LLMProvider | None:
        return self._provider

    @property
    def error(self) -> str | None:
        return self._error

    async def initialize(self, settings: LLMSettings | None = None) -> bool:
        """
        (Re)build the provider and probe it.

        Args:
            settings: New settings, or None to reuse the current ones.

        Returns:
            True if the generator is ready.
        """
        async with self._lock:
            if settings is not None:
                self._settings = settings

            await self._close_provider()
            self._error = None

            if not self._settings.enabled:
                self._state = GeneratorState.DISABLED
                logger.info("Response generator disabled in settings")
                return False

            self._state = GeneratorState.INITIALIZING
            provider_name = self._settings.provider
            logger.info(f"Initializing response generator with provider: {provider_name}")

            provider: LLMProvider | None = None
            try:
                provider = self._provider_factory(self._settings)
                provider.validate()

                ok = await asyncio.wait_for(
                    provider.test_connection(),
                    timeout=self._settings.timeout_seconds,
                )
                if not ok:
                    raise GenerationError("connection test returned an empty reply", provider_name)

            except asyncio.TimeoutError:
                self._fail_init(f"connection test timed out after {self._settings.timeout_ms} ms")
                await self._close(provider)
                return False

            except Exception as e:
                self._fail_init(str(e))
                await self._close(provider)
                return False

            self._provider = provider
            self._state = GeneratorState.READY
            self._initialized_at = datetime.now()
            logger.info(f"Response generator ready ({provider_name}/{self._settings.model})")
            return True

    def _fail_init(self, error: str) -> None:
        self._state = GeneratorState.ERROR
        self._error = error
        logger.error(f"Response generator initialization failed: {error}")

    async def update_settings(self, settings: LLMSettings) -> bool:
        """
        Apply new settings.

        Provider, credential or enablement changes trigger a full
        re-initialization; parameter changes (model, prompt, tokens,
        temperature, limits) are applied in place.

        Returns:
            True if the generator is ready afterwards.
        """
        if settings == self._settings:
            return self.is_ready

        if self._settings.requires_reinit(settings):
            logger.info("LLM settings changed, reinitializing provider")
            return await self.initialize(settings)

        self._settings = settings
        if self._provider is not None:
            self._provider.settings = settings
        return self.is_ready

    async def generate(self, user_text: str, context: GenerationContext | None = None) -> str:
        """
        Generate a reply.

        Args:
            user_text: Inbound message text.
            context: Sender and business-hours context for the prompt.

        Returns:
            Non-empty reply text.

        Raises:
            ProviderNotReady: Generator disabled or not initialized.
            GenerationTimeout: Provider exceeded the timeout.
            GenerationError: Any other provider failure or an empty reply.
        """
        provider = self._provider
        if not self.is_ready or provider is None:
            raise ProviderNotReady(
                f"response generator is not ready ({self._state.value})",
                self._settings.provider,
            )

        system_prompt = build_system_prompt(self._settings.system_prompt, context)

        try:
            reply = await asyncio.wait_for(
                provider.complete(system_prompt, user_text, context),
                timeout=self._settings.timeout_seconds,
            )
        except asyncio.TimeoutError:
            self._timeout_count += 1
            self._record_failure("Request timeout")
            raise GenerationTimeout(
                f"Request timeout after {self._settings.timeout_ms} ms",
                provider.name,
            ) from None
        except Exception as e:
            self._record_failure(str(e))
            raise GenerationError(str(e), provider.name) from e

        if not reply:
            self._record_failure("empty response")
            raise GenerationError("provider returned an empty response", provider.name)

        self._success_count += 1
        return reply

    def _record_failure(self, error: str) -> None:
        self._failure_count += 1
        self._last_error = error
        logger.warning(f"Generation failed ({self._settings.provider}): {error}")

    async def get_health(self) -> dict[str, Any]:
        """Probe the provider and report health."""
        if not self._settings.enabled:
            return {"status": "disabled", "message": "LLM service disabled in settings"}

        if not self.is_ready or self._provider is None:
            return {
                "status": "error",
                "message": self._error or "LLM service not initialized",
                "provider": self._settings.provider,
            }

        try:
            await asyncio.wait_for(
                self._provider.test_connection(),
                timeout=self._settings.timeout_seconds,
            )
        except Exception as e:
            return {
                "status": "error",
                "message": str(e) or type(e).__name__,
                "provider": self._settings.provider,
            }

        return {
            "status": "healthy",
            "provider": self._settings.provider,
            "model": self._settings.model,
            "last_checked": datetime.now().isoformat(),
        }

    def get_status(self) -> dict[str, Any]:
        """Get generator status."""
        return {
            "state": self._state.value,
            "is_ready": self.is_ready,
            "enabled": self._settings.enabled,
            "provider": self._settings.provider,
            "model": self._settings.model,
            "error": self._error,
            "initialized_at": self._initialized_at.isoformat() if self._initialized_at else None,
            "success_count": self._success_count,
            "failure_count": self._failure_count,
            "timeout_count": self._timeout_count,
            "last_error": self._last_error,
        }

    def public_settings(self) -> dict[str, Any]:
        """Settings without credentials, plus readiness."""
        data = self._settings.public_dict()
        data["is_initialized"] = self.is_ready
        return data

    async def close(self) -> None:
        """Release the provider."""
        async with self._lock:
            await self._close_provider()
            if self._state == GeneratorState.READY:
                self._state = GeneratorState.DISABLED

    async def _close_provider(self) -> None:
        provider, self._provider = self._provider, None
        await self._close(provider)

    @staticmethod
    async def _close(provider: LLMProvider | None) -> None:
        if provider is None:
            return
        try:
            await provider.close()
        except Exception as e:
            logger.debug(f"Error closing provider: {e}")
