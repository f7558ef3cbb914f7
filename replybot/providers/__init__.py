"""Response providers and the generator that drives them."""

from replybot.providers.base import LLMProvider, GenerationContext, build_system_prompt
from replybot.providers.custom import CustomHTTPProvider
from replybot.providers.generator import (
    PROVIDERS,
    GeneratorState,
    ResponseGenerator,
    create_provider,
)
from replybot.providers.litellm_provider import (
    GeminiProvider,
    LiteLLMProvider,
    OllamaProvider,
    OpenAICompatibleProvider,
)

__all__ = [
    "LLMProvider",
    "GenerationContext",
    "build_system_prompt",
    "LiteLLMProvider",
    "OpenAICompatibleProvider",
    "GeminiProvider",
    "OllamaProvider",
    "CustomHTTPProvider",
    "PROVIDERS",
    "GeneratorState",
    "ResponseGenerator",
    "create_provider",
]
